from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from slowapi.errors import RateLimitExceeded

from tutorbook.core.limits import limiter, rate_limit_handler
from tutorbook.core.init_db import init_database
from tutorbook.core.error_handlers import setup_exception_handlers
from tutorbook.core.database import db_manager
from tutorbook.core.middleware import setup_middleware
from tutorbook.core.logging_utils import (
    setup_logging,
    get_logger,
    log_business_event,
    error_tracker,
)
from tutorbook.core.config import (
    validate_config,
    APP_NAME,
    APP_VERSION,
    CORS_ORIGINS,
    DEBUG,
    ENVIRONMENT,
    LOG_LEVEL,
    LOG_FORMAT,
)

from tutorbook.teachers.routers import schedule as teacher_schedule
from tutorbook.students.routers import lessons as student_lessons
from tutorbook.reservations.routers import reservations

# Настройка системы логирования
setup_logging(LOG_LEVEL, LOG_FORMAT)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Управление жизненным циклом приложения"""

    logger.info(f"Starting {APP_NAME} v{APP_VERSION}")

    try:
        validate_config()
        logger.info("Configuration validated")

        await init_database()
        logger.info("Database initialized")

        log_business_event(
            "application_started",
            "system",
            0,
            {"version": APP_VERSION, "environment": ENVIRONMENT},
        )

    except Exception as e:
        logger.error(f"Application startup failed: {str(e)}")
        error_tracker.track_error(
            "STARTUP_ERROR",
            str(e),
            {"component": "application_startup", "version": APP_VERSION},
        )
        raise

    yield

    logger.info("Shutting down application...")
    await db_manager.close_connections()
    logger.info("Application shutdown completed")


app = FastAPI(
    title=APP_NAME,
    description="Teacher availability, lesson reservations and prepaid lesson balances",
    version=APP_VERSION,
    lifespan=lifespan,
    debug=DEBUG,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_exception_handlers(app)

setup_middleware(
    app,
    {
        "slow_request_threshold": 5.0,
        "exclude_paths": [
            "/health",
            "/docs",
            "/openapi.json",
            "/redoc",
            "/favicon.ico",
        ],
    },
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_handler)

app.include_router(teacher_schedule.router, prefix="/api/v1")
app.include_router(student_lessons.router, prefix="/api/v1")
app.include_router(reservations.router, prefix="/api/v1")


@app.get("/health", tags=["System"])
async def health_check():
    """Проверка состояния сервиса и базы данных"""
    try:
        await db_manager.check_connection()
        database = "ok"
    except Exception as e:
        logger.warning(f"Health check: database unavailable: {e}")
        database = "unavailable"

    return {
        "status": "ok" if database == "ok" else "degraded",
        "app": APP_NAME,
        "version": APP_VERSION,
        "database": database,
        "errors": error_tracker.get_stats()["total_errors"],
    }
