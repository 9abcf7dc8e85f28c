"""
# Logging Utilities

Structured helpers layered on top of `managers.logging_manager`:

- request-scoped context variables (`request_id_context`, `user_id_context`,
  `ip_address_context`) populated by `RequestLoggingMiddleware`
- `log_application_lifecycle` for startup/shutdown milestones
- `log_error_with_context` for unexpected exceptions
- `log_security_event` for authentication outcomes
- `log_performance` decorator timing sync and async callables
"""

from contextvars import ContextVar
import functools
import inspect
import time
from typing import Any, Callable, Dict, Optional
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from community_microhelp.managers.logging_manager import get_logger

logger = get_logger()
request_logger = get_logger(prefix="[REQUEST]")
lifecycle_logger = get_logger(prefix="[LIFECYCLE]")
error_logger = get_logger(prefix="[ERROR]")
security_logger = get_logger(prefix="[SECURITY]")
perf_logger = get_logger(prefix="[PERFORMANCE]")

request_id_context: ContextVar[str] = ContextVar("request_id", default="-")
user_id_context: ContextVar[str] = ContextVar("user_id", default="-")
ip_address_context: ContextVar[str] = ContextVar("ip_address", default="-")

REQUEST_ID_HEADER = "X-Request-ID"


def _format_context(context: Optional[Dict[str, Any]]) -> str:
    if not context:
        return ""
    return " ".join(f"{key}={value}" for key, value in context.items())


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Log one line per request with method, path, status and duration.

    Assigns a request id (reusing an incoming `X-Request-ID` header when
    present), stores it in `request_id_context` and echoes it back on the
    response.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:12]
        client_ip = request.client.host if request.client else "unknown"
        request_id_context.set(request_id)
        ip_address_context.set(client_ip)

        start = time.time()
        try:
            response = await call_next(request)
        except Exception:
            duration = time.time() - start
            request_logger.error(
                "[%s] %s %s failed after %.3fs from %s",
                request_id,
                request.method,
                request.url.path,
                duration,
                client_ip,
            )
            raise

        duration = time.time() - start
        response.headers[REQUEST_ID_HEADER] = request_id
        log = request_logger.warning if response.status_code >= 500 else request_logger.info
        log(
            "[%s] %s %s -> %d in %.3fs from %s",
            request_id,
            request.method,
            request.url.path,
            response.status_code,
            duration,
            client_ip,
        )
        return response


def log_application_lifecycle(event: str, details: Optional[Dict[str, Any]] = None) -> None:
    """Log an application lifecycle milestone such as `startup_completed`."""
    lifecycle_logger.info("%s %s", event, _format_context(details))


def log_error_with_context(
    error: BaseException, context: Optional[Dict[str, Any]] = None, operation: Optional[str] = None
) -> None:
    """
    Log an exception together with the current request context.

    Args:
        error: The exception being reported.
        context: Extra key/value pairs to include.
        operation: Name of the operation that failed.
    """
    merged: Dict[str, Any] = {
        "request_id": request_id_context.get(),
        "user_id": user_id_context.get(),
        "ip": ip_address_context.get(),
    }
    if operation:
        merged["operation"] = operation
    if context:
        merged.update(context)
    error_logger.error(
        "%s: %s %s", type(error).__name__, error, _format_context(merged), exc_info=error
    )


def log_security_event(
    event_type: str,
    user_id: Optional[str] = None,
    tenant_id: Optional[str] = None,
    success: bool = True,
    details: Optional[Dict[str, Any]] = None,
) -> None:
    """Record an authentication or authorization outcome."""
    log = security_logger.info if success else security_logger.warning
    log(
        "%s user=%s tenant=%s success=%s ip=%s %s",
        event_type,
        user_id or "-",
        tenant_id or "-",
        success,
        ip_address_context.get(),
        _format_context(details),
    )


def log_performance(operation: str, threshold: float = 1.0) -> Callable:
    """
    Decorator logging how long a sync or async callable takes.

    Calls slower than `threshold` seconds are logged at WARNING, others at DEBUG.
    """

    def decorator(func: Callable) -> Callable:
        def _report(start: float) -> None:
            duration = time.time() - start
            if duration > threshold:
                perf_logger.warning("%s took %.3fs", operation, duration)
            else:
                perf_logger.debug("%s took %.3fs", operation, duration)

        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                start = time.time()
                try:
                    return await func(*args, **kwargs)
                finally:
                    _report(start)

            return async_wrapper

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            start = time.time()
            try:
                return func(*args, **kwargs)
            finally:
                _report(start)

        return sync_wrapper

    return decorator
