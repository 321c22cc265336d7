import logging
from functools import wraps
from typing import Callable, TypeVar, Any, AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql import text
from sqlalchemy.exc import (
    SQLAlchemyError,
    OperationalError,
    DisconnectionError,
    TimeoutError,
)
from asyncpg.exceptions import (
    ConnectionFailureError,
    ConnectionDoesNotExistError,
)
from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import (
    DATABASE_URL,
    DB_RETRY_ATTEMPTS,
    DB_RETRY_BACKOFF_FACTOR,
    DB_RETRY_DELAY,
)
from .exceptions import DatabaseConnectionError, DatabaseTimeoutError

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

# Пространства имен для pg_advisory_xact_lock(namespace, key)
TEACHER_SCHEDULE_LOCK = 1001

TRANSIENT_ERRORS = (
    OperationalError,
    DisconnectionError,
    TimeoutError,
    ConnectionFailureError,
    ConnectionDoesNotExistError,
)


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # In-memory SQLite живет, пока жив единственный connection
        return {
            "poolclass": StaticPool,
            "connect_args": {"check_same_thread": False},
        }
    return {
        "pool_size": 20,
        "max_overflow": 10,
        "pool_timeout": 30,
        "pool_recycle": 3600,
        "pool_pre_ping": True,
    }


engine = create_async_engine(DATABASE_URL, echo=False, **_engine_options(DATABASE_URL))

async_session = sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

Base = declarative_base()


def db_retry(max_attempts: int = None, delay: float = None) -> Callable[[F], F]:
    """
    Повтор операции при обрыве соединения или таймауте.

    Бизнес-ошибки не повторяются. После последней попытки ошибка соединения
    превращается в DatabaseConnectionError, таймаут в DatabaseTimeoutError.
    """
    max_attempts = max_attempts or DB_RETRY_ATTEMPTS
    delay = DB_RETRY_DELAY if delay is None else delay

    def decorator(func: F) -> F:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            retrying = AsyncRetrying(
                stop=stop_after_attempt(max_attempts),
                wait=wait_exponential(multiplier=delay, exp_base=DB_RETRY_BACKOFF_FACTOR),
                retry=retry_if_exception_type(TRANSIENT_ERRORS),
                before_sleep=before_sleep_log(logger, logging.WARNING),
            )
            try:
                async for attempt in retrying:
                    with attempt:
                        return await func(*args, **kwargs)
            except RetryError as e:
                last = e.last_attempt.exception()
                logger.error(
                    f"{func.__name__} failed after {max_attempts} attempts: {last}",
                    extra={"function": func.__name__, "exception_type": type(last).__name__},
                )
                if isinstance(last, TimeoutError):
                    raise DatabaseTimeoutError(func.__name__, 30) from last
                raise DatabaseConnectionError(
                    f"Database unavailable after {max_attempts} attempts"
                ) from last

        return wrapper

    return decorator


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Dependency: сессия на запрос, rollback если обработчик упал"""
    session = async_session()
    try:
        yield session
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


class DatabaseManager:
    """Схема, проверка соединения и закрытие пула"""

    @staticmethod
    @db_retry()
    async def create_tables():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created")

    @staticmethod
    @db_retry()
    async def check_connection():
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True

    @staticmethod
    async def close_connections():
        await engine.dispose()
        logger.info("Database connections closed")


db_manager = DatabaseManager()


class TransactionManager:
    """
    Unit of work над одной сессией: commit при успехе, rollback при любой ошибке.

        async with TransactionManager(session):
            ...
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if exc_type:
            await self.session.rollback()
            logger.debug(f"Transaction rolled back: {exc_type.__name__}")
        else:
            await self.session.commit()


async def advisory_xact_lock(session: AsyncSession, namespace: int, key: int) -> None:
    """
    Транзакционная advisory-блокировка PostgreSQL (снимается на commit/rollback).

    На других диалектах ничего не делает: SQLite сериализует писателей сам.
    """
    if session.get_bind().dialect.name != "postgresql":
        return

    await session.execute(
        text("SELECT pg_advisory_xact_lock(:namespace, :key)"),
        {"namespace": namespace, "key": key % 2147483647},
    )


def db_operation(func: F) -> F:
    """CRUD-операция: debug-лог начала/конца, error-лог ошибок SQLAlchemy"""

    @wraps(func)
    async def wrapper(*args, **kwargs):
        logger.debug(f"Database operation: {func.__name__}")
        try:
            return await func(*args, **kwargs)
        except SQLAlchemyError as e:
            logger.error(
                f"SQLAlchemy error in {func.__name__}: {e}",
                extra={"operation": func.__name__, "exception_type": type(e).__name__},
            )
            raise

    return wrapper
