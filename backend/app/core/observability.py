"""
Observability middleware and logging setup.

Every request (and every sweeper run) gets a correlation ID that is echoed
in the X-Correlation-ID header and stamped on each log record emitted while
it is being handled.
"""

import time
import uuid
import logging
from contextvars import ContextVar
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from backend.app.core.config import settings

logger = logging.getLogger("rentals.http")

CORRELATION_HEADER = "X-Correlation-ID"

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="-")


class CorrelationIdFilter(logging.Filter):
    """Copies the active correlation ID onto log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get()
        return True


def configure_logging() -> None:
    """Configure root logging once at startup."""
    handler = logging.StreamHandler()
    handler.addFilter(CorrelationIdFilter())
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [%(correlation_id)s] %(message)s"
    ))

    root = logging.getLogger()
    root.setLevel(settings.log_level.upper())
    if not any(isinstance(f, CorrelationIdFilter) for h in root.handlers for f in h.filters):
        root.addHandler(handler)


def bind_correlation_id(value: Optional[str] = None) -> str:
    """Set the correlation ID for the current task and return it."""
    value = value or str(uuid.uuid4())
    correlation_id_var.set(value)
    return value


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = bind_correlation_id(request.headers.get(CORRELATION_HEADER))
        start_time = time.perf_counter()

        response = await call_next(request)

        duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
        response.headers[CORRELATION_HEADER] = correlation_id
        response.headers["X-Process-Time"] = str(duration_ms)

        log_data = {
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": duration_ms,
            "ip": request.client.host if request.client else "unknown"
        }

        if response.status_code >= 500:
            logger.error("%s %s -> %s", request.method, request.url.path, response.status_code, extra=log_data)
        elif response.status_code >= 400:
            logger.warning("%s %s -> %s", request.method, request.url.path, response.status_code, extra=log_data)
        else:
            logger.info("%s %s -> %s (%sms)", request.method, request.url.path, response.status_code, duration_ms,
                        extra=log_data)

        return response
