import os

# Настройки PostgreSQL
POSTGRES_USER = os.getenv("POSTGRES_USER", "postgres")
POSTGRES_PASSWORD = os.getenv("POSTGRES_PASSWORD", "postgres")
POSTGRES_DB = os.getenv("POSTGRES_DB", "tutorbook")
POSTGRES_HOST = os.getenv("POSTGRES_HOST", "db")
POSTGRES_PORT = os.getenv("POSTGRES_PORT", "5432")

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql+asyncpg://{POSTGRES_USER}:{POSTGRES_PASSWORD}@{POSTGRES_HOST}:{POSTGRES_PORT}/{POSTGRES_DB}",
)

# Настройки Telegram (отдельные боты для преподавателей и студентов)
TELEGRAM_BOT_TOKEN_TEACHER = os.getenv("TELEGRAM_BOT_TOKEN_TEACHER")
TELEGRAM_BOT_TOKEN_STUDENT = os.getenv("TELEGRAM_BOT_TOKEN_STUDENT")
NOTIFICATIONS_ENABLED = os.getenv("NOTIFICATIONS_ENABLED", "true").lower() == "true"

# Настройки среды
ENVIRONMENT = os.getenv("ENVIRONMENT", "production").lower()
DEBUG = ENVIRONMENT in ["development", "dev"]

# Настройки retry для базы данных
DB_RETRY_ATTEMPTS = int(os.getenv("DB_RETRY_ATTEMPTS", "3"))
DB_RETRY_DELAY = float(os.getenv("DB_RETRY_DELAY", "1.0"))
DB_RETRY_BACKOFF_FACTOR = float(os.getenv("DB_RETRY_BACKOFF_FACTOR", "2.0"))

# Настройки логирования
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if not DEBUG else "DEBUG")
LOG_FORMAT = os.getenv("LOG_FORMAT", "json" if not DEBUG else "text")

# Rate limiting
RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"
RATE_LIMIT_DEFAULT = os.getenv("RATE_LIMIT_DEFAULT", "120/minute")

# Правила бронирования
RESERVATION_MIN_LEAD_HOURS = int(os.getenv("RESERVATION_MIN_LEAD_HOURS", "24"))
RESERVATION_CANCEL_MIN_HOURS = int(os.getenv("RESERVATION_CANCEL_MIN_HOURS", "24"))
DEFAULT_LESSON_DURATION_MINUTES = int(
    os.getenv("DEFAULT_LESSON_DURATION_MINUTES", "60")
)
MAX_SLOTS_PER_TEACHER = int(os.getenv("MAX_SLOTS_PER_TEACHER", "50"))
CONFLICT_CHECK_DEFAULT_DAYS = int(os.getenv("CONFLICT_CHECK_DEFAULT_DAYS", "30"))
CONFLICT_CHECK_MAX_DAYS = int(os.getenv("CONFLICT_CHECK_MAX_DAYS", "365"))

# Настройки приложения
APP_NAME = os.getenv("APP_NAME", "Tutorbook Scheduling API")
APP_VERSION = os.getenv("APP_VERSION", "1.0.0")
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]


# Валидация критичных настроек
def validate_config():
    """Валидация конфигурации при запуске"""
    errors = []

    if not TELEGRAM_BOT_TOKEN_TEACHER:
        errors.append("TELEGRAM_BOT_TOKEN_TEACHER is required")

    if not TELEGRAM_BOT_TOKEN_STUDENT:
        errors.append("TELEGRAM_BOT_TOKEN_STUDENT is required")

    if not DATABASE_URL:
        errors.append("DATABASE_URL is required")

    if DB_RETRY_ATTEMPTS < 1:
        errors.append("DB_RETRY_ATTEMPTS must be >= 1")

    if DB_RETRY_DELAY < 0:
        errors.append("DB_RETRY_DELAY must be >= 0")

    if RESERVATION_MIN_LEAD_HOURS < 0:
        errors.append("RESERVATION_MIN_LEAD_HOURS must be >= 0")

    if RESERVATION_CANCEL_MIN_HOURS < 0:
        errors.append("RESERVATION_CANCEL_MIN_HOURS must be >= 0")

    if DEFAULT_LESSON_DURATION_MINUTES <= 0:
        errors.append("DEFAULT_LESSON_DURATION_MINUTES must be > 0")

    if CONFLICT_CHECK_DEFAULT_DAYS > CONFLICT_CHECK_MAX_DAYS:
        errors.append("CONFLICT_CHECK_DEFAULT_DAYS must not exceed CONFLICT_CHECK_MAX_DAYS")

    if errors:
        raise ValueError(f"Configuration errors: {'; '.join(errors)}")
