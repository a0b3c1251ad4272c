"""
HTTP middleware for the dashboard API.

Every request runs inside a cycle context: the caller's X-Request-ID (or a
fresh id) tags all log lines and outgoing source requests made while
serving it, including the read cycle behind a chart request.
"""
import asyncio
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from sales_engine.observability import Timer, cycle_context, get_cycle_id, get_logger

logger = get_logger(__name__)

DEFAULT_REQUEST_TIMEOUT = 60.0
# A full export pages through up to a million rows
EXPORT_REQUEST_TIMEOUT = 600.0

TIMEOUTS_BY_PATH = {
    "/api/orders/export/csv": EXPORT_REQUEST_TIMEOUT,
}

QUIET_PATHS = frozenset({"/api/health", "/health"})


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Correlation ID, access log and X-Response-Time header."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        method = request.method
        quiet = path in QUIET_PATHS

        with cycle_context(request.headers.get("X-Request-ID")) as request_id:
            if not quiet:
                logger.info(
                    f"{method} {path}",
                    extra={
                        "method": method,
                        "path": path,
                        "client_ip": request.client.host if request.client else "unknown",
                    }
                )

            timer = Timer(f"{method} {path}")
            try:
                with timer:
                    response = await call_next(request)
            except Exception as e:
                logger.error(
                    f"{method} {path} raised {type(e).__name__}",
                    extra={"method": method, "path": path,
                           "duration_ms": round(timer.elapsed_ms, 2), "error": str(e)}
                )
                raise

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{timer.elapsed_ms:.2f}ms"

        if not quiet:
            log = logger.info if response.status_code < 400 else logger.warning
            log(
                f"{method} {path} -> {response.status_code}",
                extra={"method": method, "path": path,
                       "status_code": response.status_code,
                       "duration_ms": round(timer.elapsed_ms, 2)}
            )
        return response


class RequestTimeoutMiddleware(BaseHTTPMiddleware):
    """Answers 504 when a request outlives its time limit."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if path in QUIET_PATHS:
            return await call_next(request)

        timeout = TIMEOUTS_BY_PATH.get(path, DEFAULT_REQUEST_TIMEOUT)
        try:
            return await asyncio.wait_for(call_next(request), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"{request.method} {path} timed out after {timeout}s",
                extra={"method": request.method, "path": path, "timeout": timeout}
            )
            return JSONResponse(
                status_code=504,
                content={
                    "error": "Request Timeout",
                    "detail": f"Request exceeded {timeout}s timeout",
                    "path": path,
                    "correlation_id": request.headers.get("X-Request-ID") or get_cycle_id(),
                }
            )
