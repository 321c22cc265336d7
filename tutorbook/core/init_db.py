import asyncio
import logging
import sys

from sqlalchemy import select, func

from tutorbook.core.config import ENVIRONMENT
from tutorbook.core.database import async_session, db_manager, engine, Base
from tutorbook.core.exceptions import DatabaseError, ConfigurationError

# Регистрируем все модели в metadata
from tutorbook.teachers.models import UserTeacher, Course, TeacherAvailableSlot
from tutorbook.students.models import UserStudent, LessonPurchase
from tutorbook.reservations.models import Reservation

logger = logging.getLogger(__name__)

MODELS = [
    UserTeacher,
    Course,
    TeacherAvailableSlot,
    UserStudent,
    LessonPurchase,
    Reservation,
]


async def init_database():
    """Initialize database tables"""
    try:
        logger.info("Starting database initialization...")

        await db_manager.check_connection()
        logger.info("Database connection verified")

        await db_manager.create_tables()
        logger.info("Database initialization completed successfully")

    except DatabaseError:
        raise
    except Exception as e:
        logger.error(f"Unexpected error during database initialization: {e}")
        raise DatabaseError(f"Database initialization failed: {str(e)}")


async def verify_database_setup():
    """Each mapped table must be queryable"""
    try:
        async with async_session() as session:
            counts = {}
            for model in MODELS:
                result = await session.execute(select(func.count()).select_from(model))
                counts[model.__tablename__] = result.scalar()

        logger.info(f"Database verification passed: {counts}")
        return counts

    except Exception as e:
        logger.error(f"Database verification failed: {e}")
        raise DatabaseError(f"Database verification failed: {str(e)}")


async def reset_database():
    """Reset database (for development/testing only)"""
    if ENVIRONMENT not in ["development", "dev", "test"]:
        raise ConfigurationError(
            "ENVIRONMENT",
            "Database reset is only allowed in development or test environments",
        )

    logger.warning("RESETTING DATABASE - ALL DATA WILL BE LOST!")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await init_database()
    logger.info("Database reset completed")


if __name__ == "__main__":
    commands = {
        "init": init_database,
        "verify": verify_database_setup,
        "reset": reset_database,
    }

    command = sys.argv[1] if len(sys.argv) > 1 else "init"
    if command not in commands:
        print(f"Unknown command: {command}")
        print("Available commands: init, verify, reset")
        sys.exit(1)

    try:
        asyncio.run(commands[command]())
    except KeyboardInterrupt:
        logger.info("Database initialization cancelled by user")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        sys.exit(1)
