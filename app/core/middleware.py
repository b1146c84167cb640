"""
FastAPI Middleware

- Correlation ID per request
- Request logging (Telegram ids masked, health probes at debug level)
- Security headers for a JSON-only API
- Rate limiting on the Telegram update endpoints
- AppException / unexpected error -> JSON error body
"""
import re
import time
from collections import defaultdict, deque
from typing import Callable, Iterable

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.exceptions import AppException, ErrorCode
from app.core.logging import get_correlation_id, get_logger, set_correlation_id

logger = get_logger(__name__)

# numeric Telegram ids in paths such as /api/bot/users/123456789/stats
_TELEGRAM_ID_IN_PATH_RE = re.compile(r"/(\d{2})\d{3,}(\d{2})(?=/|$)")

TELEGRAM_UPDATE_PATHS = frozenset({"/api/bot/webhook", "/api/telegram/webhook"})

# admin responses carry user profiles and exports
_NO_STORE_PREFIX = "/api/bot/"


def _mask_path_ids(path: str) -> str:
    """Mask the middle digits of Telegram ids in a URL path"""
    return _TELEGRAM_ID_IN_PATH_RE.sub(r"/\1***\2", path)


def _error_response(status_code: int, code: ErrorCode, message: str, headers: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code.value, "message": message, "details": {}}},
        headers={"X-Correlation-ID": get_correlation_id(), **(headers or {})},
    )


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Reuses an inbound X-Correlation-ID or starts a new one"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = set_correlation_id(request.headers.get("X-Correlation-ID"))
        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers["X-Correlation-ID"] = correlation_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.monotonic()
        safe_path = _mask_path_ids(request.url.path)
        is_probe = safe_path.startswith("/health")

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"Request failed: {request.method} {safe_path}",
                extra_data={
                    "method": request.method,
                    "path": safe_path,
                    "duration_seconds": round(time.monotonic() - start_time, 4),
                    "error": str(e),
                },
                exc_info=True,
            )
            raise

        if response.status_code >= 400:
            log = logger.warning
        elif is_probe:
            log = logger.debug
        else:
            log = logger.info
        log(
            f"{request.method} {safe_path} -> {response.status_code}",
            extra_data={
                "method": request.method,
                "path": safe_path,
                "status_code": response.status_code,
                "duration_seconds": round(time.monotonic() - start_time, 4),
                "client_host": request.client.host if request.client else None,
            },
        )
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Headers for an API that never serves HTML.

    ``nosniff``, ``X-Frame-Options`` and ``Referrer-Policy`` are always set.
    Admin responses under /api/bot/ are marked ``no-store``. HSTS is added
    outside DEBUG only, so plain-HTTP local runs keep working.
    """

    def __init__(self, app: FastAPI, *, debug: bool = False) -> None:
        super().__init__(app)
        self._debug = debug

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"

        if request.url.path.startswith(_NO_STORE_PREFIX):
            response.headers["Cache-Control"] = "no-store"
        if not self._debug:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


class WebhookRateLimitMiddleware(BaseHTTPMiddleware):
    """
    Sliding-window limit per client IP on the Telegram update endpoints.

    Admin paths such as /api/bot/webhook/set are not counted. Sits inside
    CorrelationIdMiddleware so a 429 still carries an id.
    """

    def __init__(
        self,
        app: FastAPI,
        *,
        max_requests: int = 100,
        window_seconds: int = 60,
        paths: Iterable[str] = TELEGRAM_UPDATE_PATHS,
    ) -> None:
        super().__init__(app)
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._paths = frozenset(paths)
        self._hits: dict[str, deque[float]] = defaultdict(deque)

    def _expire(self, ip: str, now: float) -> int:
        """Drop hits older than the window; returns how many remain"""
        hits = self._hits.get(ip)
        if hits is None:
            return 0
        cutoff = now - self._window_seconds
        while hits and hits[0] < cutoff:
            hits.popleft()
        if not hits:
            del self._hits[ip]
            return 0
        return len(hits)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path.rstrip("/") not in self._paths:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        now = time.monotonic()
        if self._expire(client_ip, now) >= self._max_requests:
            logger.warning(
                "Telegram update rate limit exceeded",
                extra_data={
                    "client_ip": client_ip,
                    "limit": self._max_requests,
                    "window_seconds": self._window_seconds,
                },
            )
            return _error_response(
                429,
                ErrorCode.RATE_LIMITED,
                "Too many requests",
                headers={"Retry-After": str(self._window_seconds)},
            )

        self._hits[client_ip].append(now)
        return await call_next(request)


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    logger.warning(
        f"Application exception: {exc.error_code.value}",
        extra_data={
            "error_code": exc.error_code.value,
            "message": exc.message,
            "details": exc.details,
            "path": _mask_path_ids(request.url.path),
        },
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers={"X-Correlation-ID": get_correlation_id()},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Full details go to the log only"""
    logger.error(
        f"Unhandled exception: {type(exc).__name__}",
        extra_data={
            "exception_type": type(exc).__name__,
            "message": str(exc),
            "path": _mask_path_ids(request.url.path),
        },
        exc_info=True,
    )
    return _error_response(500, ErrorCode.INTERNAL_ERROR, "An unexpected error occurred")


def setup_middleware(app: FastAPI) -> None:
    """Register middleware; the last one added is the outermost"""
    from app.core.config import settings

    # request order: SecurityHeaders -> CorrelationId -> RequestLogging -> RateLimit -> app
    app.add_middleware(
        WebhookRateLimitMiddleware,
        max_requests=settings.WEBHOOK_RATE_LIMIT_MAX_REQUESTS,
        window_seconds=settings.WEBHOOK_RATE_LIMIT_WINDOW_SECONDS,
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware, debug=settings.DEBUG)


def setup_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
