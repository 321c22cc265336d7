"""
Обработчики ошибок FastAPI.

Любая ошибка уходит клиенту одним конвертом:
{"error": CODE, "message": ..., "details": {...}, "path": ...}
"""

import json
import logging
import re
import traceback
from typing import Any, Dict, Optional, Union
from fastapi import Request, HTTPException, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError, ValidationException
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import (
    SQLAlchemyError,
    IntegrityError,
    OperationalError,
    TimeoutError,
    DisconnectionError,
)
from asyncpg.exceptions import (
    PostgresError,
    ConnectionFailureError,
    ConnectionDoesNotExistError,
    TooManyConnectionsError,
)

from tutorbook.core.config import DEBUG
from tutorbook.core.exceptions import (
    BaseAppException,
    DatabaseError,
    DatabaseConnectionError,
    DatabaseTimeoutError,
    DatabaseIntegrityError,
)
from tutorbook.core.logging_utils import error_tracker

logger = logging.getLogger(__name__)


def error_response(
    request: Request,
    status_code: int,
    error: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "message": message,
            "details": details or {},
            "path": request.url.path,
        },
        headers=headers,
    )


async def app_exception_handler(
    request: Request, exc: BaseAppException
) -> JSONResponse:
    """Доменные ошибки: 4xx пишем как warning, 5xx как error и в трекер"""

    logger.log(
        logging.WARNING if exc.status_code < 500 else logging.ERROR,
        f"{exc.error_code}: {exc.message}",
        extra={
            "error_code": exc.error_code,
            "status_code": exc.status_code,
            "details": exc.details,
            "path": request.url.path,
            "method": request.method,
        },
    )
    if exc.status_code >= 500:
        error_tracker.track_error(
            exc.error_code, exc.message, {"path": request.url.path, "details": exc.details}
        )

    return error_response(
        request, exc.status_code, exc.error_code, exc.message, exc.details
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    logger.warning(
        f"HTTP {exc.status_code} on {request.method} {request.url.path}: {exc.detail}"
    )
    return error_response(
        request,
        exc.status_code,
        "HTTP_ERROR",
        str(exc.detail),
        headers=getattr(exc, "headers", None),
    )


def _json_safe(value):
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        return str(value)


async def validation_exception_handler(
    request: Request, exc: Union[ValidationException, PydanticValidationError]
) -> JSONResponse:
    """Ошибки валидации запроса: 400 и список ошибок по полям"""

    fields = [
        {
            "field": " -> ".join(str(loc) for loc in error.get("loc", [])),
            "message": error.get("msg", "Validation error"),
            "type": error.get("type", "value_error"),
            "input": _json_safe(error.get("input")),
        }
        for error in exc.errors()
    ]
    logger.warning(
        f"Validation failed on {request.method} {request.url.path}",
        extra={"errors": fields, "path": request.url.path},
    )
    return error_response(
        request,
        status.HTTP_400_BAD_REQUEST,
        "VALIDATION_ERROR",
        f"Validation failed for {len(fields)} field(s)",
        {"fields": fields},
    )


def _constraint_name(exc: IntegrityError) -> str:
    name = getattr(exc.orig, "constraint_name", None)
    if name:
        return name
    match = re.search(r'constraint "([^"]+)"', str(exc.orig))
    return match.group(1) if match else "unknown"


def map_database_error(exc: Exception) -> BaseAppException:
    """Ошибка SQLAlchemy или asyncpg -> доменное исключение"""
    if isinstance(exc, IntegrityError):
        return DatabaseIntegrityError(_constraint_name(exc))
    if isinstance(
        exc,
        (
            OperationalError,
            DisconnectionError,
            ConnectionFailureError,
            ConnectionDoesNotExistError,
            TooManyConnectionsError,
        ),
    ):
        return DatabaseConnectionError("Database connection lost")
    if isinstance(exc, TimeoutError):
        return DatabaseTimeoutError("database_operation", 30)
    if isinstance(exc, PostgresError):
        return DatabaseError(
            "PostgreSQL error", details={"postgres_code": getattr(exc, "sqlstate", None)}
        )
    return DatabaseError()


async def database_exception_handler(
    request: Request, exc: Union[SQLAlchemyError, PostgresError]
) -> JSONResponse:
    logger.error(
        f"Database exception: {type(exc).__name__} - {exc}",
        extra={
            "exception_type": type(exc).__name__,
            "path": request.url.path,
            "method": request.method,
            "traceback": traceback.format_exc(),
        },
    )
    return await app_exception_handler(request, map_database_error(exc))


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"Unhandled exception: {type(exc).__name__} - {exc}",
        extra={
            "exception_type": type(exc).__name__,
            "path": request.url.path,
            "method": request.method,
            "traceback": traceback.format_exc(),
        },
    )

    # Трассировку отдаем только в dev
    details = (
        {"exception_type": type(exc).__name__, "traceback": traceback.format_exc()}
        if DEBUG
        else {}
    )
    return error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "INTERNAL_SERVER_ERROR",
        "An unexpected error occurred",
        details,
    )


def setup_exception_handlers(app):
    app.add_exception_handler(BaseAppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)

    # Иначе FastAPI ответит своим обработчиком с кодом 422
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationException, validation_exception_handler)
    app.add_exception_handler(PydanticValidationError, validation_exception_handler)

    app.add_exception_handler(SQLAlchemyError, database_exception_handler)
    app.add_exception_handler(PostgresError, database_exception_handler)

    app.add_exception_handler(Exception, general_exception_handler)

    logger.info("Exception handlers registered")
