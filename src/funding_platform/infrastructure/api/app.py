"""FastAPI application factory and configuration.

This module provides the application factory function for creating
and configuring the FastAPI application with its middleware, health
endpoints, error handlers and lifecycle handlers.

Long-lived components (database pool, revocation store, token service,
session policy) are built once in the lifespan handler and stored on
``app.state``; request handlers reach them through the dependencies in
``infrastructure.api.dependencies``.
"""

import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from funding_platform.core.config import Settings, get_settings
from funding_platform.core.errors import AppError, handle_error
from funding_platform.core.logging import (
    bind_correlation_id,
    bind_request_context,
    clear_context,
    configure_logging,
    get_logger,
)
from funding_platform.domain.services.session_policy import SessionPolicy
from funding_platform.infrastructure.auth import TokenService, build_revocation_store
from funding_platform.infrastructure.persistence.database import (
    DatabaseManager,
    init_database,
)

logger = get_logger(__name__)

CORRELATION_ID_HEADER = "X-Correlation-ID"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Builds the shared components at startup and closes the pool at
    shutdown.

    Args:
        app: FastAPI application instance.

    Yields:
        None: Control is yielded to the application during its lifetime.
    """
    settings: Settings = app.state.settings

    logger.info(
        "Starting Funding Platform",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
    )

    db = DatabaseManager(settings)
    try:
        await init_database(db, settings)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error("Failed to initialize database", error=str(e))
        await db.close_pool()
        raise

    store = build_revocation_store(settings, db)
    app.state.db = db
    app.state.revocation_store = store
    app.state.token_service = TokenService(store, settings)
    app.state.session_policy = SessionPolicy.from_settings(settings)
    logger.info("Revocation store ready", backend=settings.revocation_backend)

    yield

    logger.info("Shutting down Funding Platform")
    await db.close_pool()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Application settings. Defaults to the cached settings.

    Returns:
        FastAPI: Configured FastAPI application instance.
    """
    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Funding platform API",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_health_check(app)
    register_exception_handlers(app)
    register_middleware(app)

    return app


def register_health_check(app: FastAPI) -> None:
    """Register health check endpoints.

    Args:
        app: FastAPI application instance.
    """
    settings: Settings = app.state.settings

    @app.get("/health", tags=["health"])
    async def health_check():
        """Basic health check. Does not touch the database."""
        return {
            "status": "healthy",
            "service": settings.app_name,
            "version": settings.app_version,
        }

    @app.get("/ready", tags=["health"])
    async def readiness_check(request: Request):
        """Readiness check, including database connectivity."""
        db: DatabaseManager | None = getattr(request.app.state, "db", None)
        db_healthy = db is not None and await db.check_connection()

        if db_healthy:
            return {
                "status": "ready",
                "service": settings.app_name,
                "version": settings.app_version,
                "database": "connected",
            }
        return JSONResponse(
            status_code=503,
            content={
                "status": "not_ready",
                "service": settings.app_name,
                "database": "disconnected",
            },
        )

    @app.get("/live", tags=["health"])
    async def liveness_check():
        """Liveness check."""
        return {
            "status": "alive",
            "service": settings.app_name,
            "version": settings.app_version,
        }


def error_response(error: AppError, request: Request, debug: bool = False) -> JSONResponse:
    """Build the JSON error envelope for an application error.

    Non-operational errors hide their message unless ``debug`` is set.
    """
    body = error.to_dict()
    if not error.is_operational and not debug:
        body = {"code": error.code, "message": "An unexpected error occurred"}

    headers = {"WWW-Authenticate": "Bearer"} if error.status_code == 401 else None
    return JSONResponse(
        status_code=error.status_code,
        content={"success": False, "error": body},
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register global exception handlers.

    Args:
        app: FastAPI application instance.
    """
    settings: Settings = app.state.settings

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "Request failed",
            code=exc.code,
            message=exc.message,
            status=exc.status_code,
            path=request.url.path,
            method=request.method,
        )
        return error_response(exc, request, settings.debug)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle uncaught exceptions."""
        # Runs outside the request middleware, whose logging context is already cleared.
        correlation_id = getattr(request.state, "correlation_id", None)
        error = handle_error(exc)
        logger.error(
            "Unhandled exception",
            correlation_id=correlation_id,
            code=error.code,
            message=error.message,
            status=error.status_code,
            path=request.url.path,
            method=request.method,
            exc_type=type(exc).__name__,
        )
        response = error_response(error, request, settings.debug)
        if correlation_id:
            response.headers[CORRELATION_ID_HEADER] = correlation_id
        return response


def register_middleware(app: FastAPI) -> None:
    """Register custom middleware.

    Args:
        app: FastAPI application instance.
    """

    @app.middleware("http")
    async def logging_middleware(request: Request, call_next):
        """Log every request and propagate a correlation ID."""
        correlation_id = request.headers.get(
            CORRELATION_ID_HEADER, f"cid_{uuid.uuid4().hex[:12]}"
        )
        request.state.correlation_id = correlation_id
        bind_correlation_id(correlation_id)
        bind_request_context(path=request.url.path, method=request.method)

        logger.info("Request started")
        try:
            response = await call_next(request)
            logger.info("Request completed", status_code=response.status_code)
            response.headers[CORRELATION_ID_HEADER] = correlation_id
            return response
        finally:
            clear_context()
