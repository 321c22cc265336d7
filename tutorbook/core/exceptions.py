"""
Пользовательские исключения для централизованной обработки ошибок
"""

from typing import Optional, Dict, Any


class BaseAppException(Exception):
    """Базовое исключение приложения"""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)


# === Ошибки аутентификации ===
class AuthenticationError(BaseAppException):
    """Ошибка аутентификации"""

    def __init__(
        self,
        message: str = "Authentication failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, 401, "AUTHENTICATION_ERROR", details)


class ForbiddenError(BaseAppException):
    """Актор не является участником бронирования или владельцем расписания"""

    def __init__(self, action: str, resource: str, reason: str = None):
        message = f"Permission denied: cannot {action} {resource}"
        if reason:
            message += f" - {reason}"
        details = {"action": action, "resource": resource, "reason": reason}
        super().__init__(message, 403, "FORBIDDEN", details)


# === Ошибки валидации ===
class ValidationError(BaseAppException):
    """Ошибка валидации данных"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, 400, "VALIDATION_ERROR", details)


# === Ошибки ресурсов ===
class NotFoundError(BaseAppException):
    """Ресурс не найден"""

    def __init__(self, resource: str, identifier: str = None):
        if identifier:
            message = f"{resource} with identifier '{identifier}' not found"
            details = {"resource": resource, "identifier": identifier}
        else:
            message = f"{resource} not found"
            details = {"resource": resource}
        super().__init__(message, 404, "NOT_FOUND", details)


# === Расписание и бронирования ===
class ScheduleConflictError(BaseAppException):
    """Пересечение временных интервалов (слоты или бронирования)"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, 409, "SCHEDULE_CONFLICT", details)


class OutsideAvailableHoursError(BaseAppException):
    """Запрошенное время не покрыто ни одним активным слотом"""

    def __init__(self, teacher_id: int, weekday: int, start: str, end: str):
        message = (
            f"Teacher {teacher_id} is not available on weekday {weekday} "
            f"between {start} and {end}"
        )
        details = {
            "teacher_id": teacher_id,
            "weekday": weekday,
            "start_time": start,
            "end_time": end,
        }
        super().__init__(message, 400, "OUTSIDE_AVAILABLE_HOURS", details)


class InvalidStateTransitionError(BaseAppException):
    """Переход статуса бронирования запрещен"""

    def __init__(self, reservation_id: int, action: str, reason: str):
        message = f"Cannot {action} reservation {reservation_id}: {reason}"
        details = {"reservation_id": reservation_id, "action": action, "reason": reason}
        super().__init__(message, 409, "INVALID_STATE_TRANSITION", details)


# === Учет занятий ===
class InsufficientLessonBalanceError(BaseAppException):
    """Нет оплаченных занятий с остатком"""

    def __init__(self, student_id: int, course_id: int):
        message = f"No remaining lessons for course {course_id}"
        details = {"student_id": student_id, "course_id": course_id}
        super().__init__(message, 400, "INSUFFICIENT_LESSON_BALANCE", details)


class LedgerInvariantViolationError(BaseAppException):
    """Нарушение инварианта 0 <= quantity_used <= quantity_total"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, 500, "LEDGER_INVARIANT_VIOLATION", details)


# === Ошибки базы данных ===
class DatabaseError(BaseAppException):
    """Ошибка базы данных"""

    def __init__(
        self,
        message: str = "Database operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, 500, "DATABASE_ERROR", details)


class DatabaseConnectionError(BaseAppException):
    """Ошибка подключения к базе данных"""

    def __init__(self, message: str = "Database connection failed"):
        super().__init__(message, 503, "DATABASE_CONNECTION_ERROR")


class DatabaseTimeoutError(BaseAppException):
    """Таймаут операции с базой данных"""

    def __init__(self, operation: str, timeout: int):
        message = f"Database operation '{operation}' timed out after {timeout}s"
        details = {"operation": operation, "timeout": timeout}
        super().__init__(message, 504, "DATABASE_TIMEOUT", details)


class DatabaseIntegrityError(BaseAppException):
    """Ошибка целостности данных"""

    def __init__(self, constraint: str, details: Optional[Dict[str, Any]] = None):
        message = f"Database integrity constraint violated: {constraint}"
        error_details = {"constraint": constraint}
        if details:
            error_details.update(details)
        super().__init__(message, 409, "DATABASE_INTEGRITY_ERROR", error_details)


# === Ошибки конфигурации ===
class ConfigurationError(BaseAppException):
    """Ошибка конфигурации"""

    def __init__(self, parameter: str, message: str = None):
        message = (
            message or f"Configuration parameter '{parameter}' is invalid or missing"
        )
        details = {"parameter": parameter}
        super().__init__(message, 500, "CONFIGURATION_ERROR", details)
