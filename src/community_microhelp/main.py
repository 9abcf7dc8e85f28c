"""
# Community Microhelp - Application Entry Point

Builds the FastAPI application and wires its services together.

`create_app(settings)` is the composition root: it builds the
`DatabaseManager`, `SecurityManager`, `EmailManager` and `UploadManager` for
the given settings and stores them on `app.state`, where the dependencies in
`community_microhelp.dependencies` pick them up. Nothing is a module-level
singleton, so tests build an app around their own settings and stubs.

## Lifespan

**Startup:**
1.  **Database**: connect to MongoDB (with retries) and create indexes.
2.  **Uploads**: make sure `UPLOAD_DIR` exists.

**Shutdown:**
1.  **Database**: close the Motor client.

Every phase is reported through `log_application_lifecycle` with its duration.

## Request pipeline

- `CORSMiddleware` with origins from `CORS_ORIGINS`.
- `RequestLoggingMiddleware` for per-request logs and `X-Request-ID`.
- `SlowAPIMiddleware` applying `RATE_LIMIT` per client IP (`/health` exempt).
- Prometheus request metrics exposed at `/metrics` when `METRICS_ENABLED`.

Errors are always returned as `{"error": ...}`; validation failures are 400
with a list of `{path, message, type}` issues.

## Running

```bash
uvicorn community_microhelp.main:app_factory --factory --host 0.0.0.0 --port 4000
# or
community-microhelp
```
"""

from contextlib import asynccontextmanager
import time
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CollectorRegistry
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException
import uvicorn

from community_microhelp import __version__
from community_microhelp.config import Settings, get_settings
from community_microhelp.database import DatabaseManager
from community_microhelp.managers.email_manager import EmailManager
from community_microhelp.managers.logging_manager import configure_logging, get_logger
from community_microhelp.managers.security_manager import SecurityManager
from community_microhelp.managers.upload_manager import UploadManager
from community_microhelp.routes import (
    auth_router,
    chats_router,
    events_router,
    groups_router,
    health_router,
    invitations_router,
    posts_router,
    profile_router,
    uploads_router,
)
from community_microhelp.routes.health import health_check
from community_microhelp.utils.logging_utils import (
    RequestLoggingMiddleware,
    log_application_lifecycle,
    log_error_with_context,
)

logger = get_logger()

ROUTERS_CONFIG = [
    ("auth", auth_router, "Signup, login, token refresh, password reset and email verification"),
    ("profile", profile_router, "Current user profile"),
    ("uploads", uploads_router, "Private attachment downloads"),
    ("posts", posts_router, "Posts, geo search, comments, likes, favorites and shares"),
    ("groups", groups_router, "Community groups and membership"),
    ("events", events_router, "Events and RSVPs"),
    ("invitations", invitations_router, "Single-use invitations"),
    ("chats", chats_router, "Direct and group chats"),
    ("health", health_router, "Health probe"),
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Connect to MongoDB and prepare storage before serving; disconnect afterwards.

    Raises:
        Exception: Whatever `DatabaseManager.connect` raised once its retries are
            exhausted. The server does not start without a database.
    """
    settings: Settings = app.state.settings
    db: DatabaseManager = app.state.db
    startup_start_time = time.time()

    log_application_lifecycle(
        "startup_initiated",
        {
            "app_name": "Community Microhelp API",
            "version": __version__,
            "environment": "production" if settings.is_production else "development",
            "debug_mode": settings.DEBUG,
        },
    )

    try:
        db_connect_start = time.time()
        logger.info("Initiating database connection...")
        await db.connect()
        log_application_lifecycle(
            "database_connected",
            {
                "connection_duration": f"{time.time() - db_connect_start:.3f}s",
                "database_name": settings.MONGODB_DATABASE,
                "connection_url": settings.MONGODB_URL.split("@")[-1],
            },
        )

        indexes_start = time.time()
        logger.info("Creating/verifying database indexes...")
        await db.create_indexes()
        log_application_lifecycle("database_indexes_ready", {"indexes_duration": f"{time.time() - indexes_start:.3f}s"})

        app.state.uploads.ensure_directory()
        log_application_lifecycle("uploads_ready", {"upload_dir": str(app.state.uploads.upload_dir)})
    except Exception as e:
        log_application_lifecycle(
            "startup_failed",
            {
                "error": str(e),
                "error_type": type(e).__name__,
                "startup_duration": f"{time.time() - startup_start_time:.3f}s",
            },
        )
        log_error_with_context(e, {"operation": "application_startup"})
        raise

    total_startup_duration = time.time() - startup_start_time
    log_application_lifecycle("startup_completed", {"total_startup_duration": f"{total_startup_duration:.3f}s"})
    logger.info("Application startup completed in %.3fs", total_startup_duration)

    yield

    shutdown_start_time = time.time()
    log_application_lifecycle("shutdown_initiated")
    try:
        logger.info("Disconnecting from database...")
        await db.disconnect()
    except Exception as e:
        log_error_with_context(e, {"operation": "database_disconnection"})
    log_application_lifecycle(
        "shutdown_completed", {"total_shutdown_duration": f"{time.time() - shutdown_start_time:.3f}s"}
    )


def _validation_issues(exc: RequestValidationError):
    issues = []
    for error in exc.errors():
        # drop the leading "body"/"query"/"path" marker
        location = [str(part) for part in error.get("loc", ())[1:]]
        issues.append({"path": ".".join(location), "message": error.get("msg", ""), "type": error.get("type", "")})
    return issues


def register_exception_handlers(app: FastAPI) -> None:
    """Render every error as `{"error": ...}`."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": _validation_issues(exc)})

    # sync: SlowAPIMiddleware calls this handler without awaiting it
    @app.exception_handler(RateLimitExceeded)
    def rate_limit_exception_handler(request: Request, exc: RateLimitExceeded):
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS, content={"error": f"Rate limit exceeded: {exc.detail}"}
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        log_error_with_context(exc, {"path": request.url.path, "method": request.method}, operation="request")
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"error": "Internal server error"})


def configure_metrics(app: FastAPI, limiter: Limiter) -> Instrumentator:
    """
    Instrument every templated route and expose Prometheus metrics at `/metrics`.

    Each app gets its own `CollectorRegistry`, so several apps can live in one
    process. Status codes are grouped (`2xx`, `4xx`, ...) and unmatched paths
    are not recorded.
    """
    instrumentator = Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        should_respect_env_var=False,
        should_instrument_requests_inprogress=True,
        excluded_handlers=["/metrics"],
        registry=CollectorRegistry(),
    )
    instrumentator.instrument(app).expose(app, include_in_schema=False, endpoint="/metrics")

    for route in app.routes:
        if getattr(route, "path", None) == "/metrics":
            limiter.exempt(route.endpoint)

    app.state.instrumentator = instrumentator
    log_application_lifecycle(
        "prometheus_configured",
        {
            "metrics_endpoint": "/metrics",
            "group_status_codes": True,
            "ignore_untemplated": True,
            "track_requests_in_progress": True,
        },
    )
    return instrumentator


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build a fully wired application.

    Args:
        settings: Configuration to use. Defaults to `get_settings()`.

    Returns:
        FastAPI: The application, with services on `app.state`.
    """
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL, settings.LOG_DIR)

    app = FastAPI(
        title="Community Microhelp API",
        description="Multi-tenant community API: posts with geo search, groups, events, invitations and chat.",
        version=__version__,
        debug=settings.DEBUG,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.db = DatabaseManager(settings)
    app.state.security = SecurityManager(settings)
    app.state.email = EmailManager(settings)
    app.state.uploads = UploadManager(settings)

    limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[settings.RATE_LIMIT],
        enabled=settings.RATE_LIMIT_ENABLED,
    )
    limiter.exempt(health_check)
    app.state.limiter = limiter

    register_exception_handlers(app)

    cors_origins = settings.cors_origins_list
    logger.info("Configuring CORS with origins: %s", cors_origins)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials="*" not in cors_origins,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
        max_age=3600,
    )
    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    log_application_lifecycle(
        "middleware_configured",
        {
            "middleware": ["CORSMiddleware", "SlowAPIMiddleware", "RequestLoggingMiddleware"],
            "rate_limit": settings.RATE_LIMIT if settings.RATE_LIMIT_ENABLED else "disabled",
        },
    )

    included_routers = []
    for router_name, router, description in ROUTERS_CONFIG:
        app.include_router(router)
        included_routers.append(router_name)
        logger.debug("Included %s router: %s", router_name, description)
    log_application_lifecycle("routers_configured", {"routers": included_routers})

    if settings.METRICS_ENABLED:
        configure_metrics(app, limiter)

    return app


def app_factory() -> FastAPI:
    """Factory used by `uvicorn --factory`."""
    return create_app(get_settings())


def run() -> None:
    settings = get_settings()
    uvicorn.run(
        "community_microhelp.main:app_factory",
        factory=True,
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
