import logging
import time
import uuid
from typing import Callable, Iterable, Optional
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from tutorbook.core.logging_utils import error_tracker

logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


def client_ip(request: Request) -> str:
    """IP клиента за прокси Mini-App"""
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Один проход на запрос: request id, журнал запроса с ролью клиента,
    время выполнения, медленные запросы, учет 5xx и security headers.
    """

    def __init__(
        self,
        app: ASGIApp,
        exclude_paths: Optional[Iterable[str]] = None,
        slow_request_threshold: float = 1.0,
    ):
        super().__init__(app)
        self.exclude_paths = set(exclude_paths or ())
        self.slow_request_threshold = slow_request_threshold

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:8]
        request.state.request_id = request_id
        quiet = request.url.path in self.exclude_paths

        context = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "client_role": request.headers.get("x-client-role"),
        }
        if not quiet:
            logger.info(
                f"{request.method} {request.url.path} started",
                extra={**context, "client_ip": client_ip(request)},
            )

        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            error_tracker.track_error(f"UNHANDLED_{type(e).__name__}", str(e), context)
            logger.error(
                f"{request.method} {request.url.path} failed: {type(e).__name__}",
                extra={**context, "duration_ms": self._elapsed_ms(started)},
            )
            raise

        duration_ms = self._elapsed_ms(started)
        context.update(status_code=response.status_code, duration_ms=duration_ms)

        if response.status_code >= 500:
            error_tracker.track_error(
                f"HTTP_{response.status_code}", "Server error response", context
            )
        if duration_ms > self.slow_request_threshold * 1000:
            logger.warning(
                f"Slow request: {request.method} {request.url.path}",
                extra={**context, "category": "performance"},
            )
        elif not quiet:
            logger.info(f"{request.method} {request.url.path} completed", extra=context)

        response.headers["X-Request-ID"] = request_id
        response.headers.update(SECURITY_HEADERS)
        return response

    @staticmethod
    def _elapsed_ms(started: float) -> float:
        return round((time.perf_counter() - started) * 1000, 2)


def setup_middleware(app, config: dict = None):
    """
    Args:
        app: FastAPI приложение
        config: exclude_paths (без журнала), slow_request_threshold (секунды)
    """
    config = config or {}
    app.add_middleware(
        RequestContextMiddleware,
        exclude_paths=config.get("exclude_paths", ["/health", "/docs", "/openapi.json"]),
        slow_request_threshold=config.get("slow_request_threshold", 1.0),
    )
    logger.info("Request middleware configured")
