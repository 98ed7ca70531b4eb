"""
Main FastAPI application entry point for the tenantgate platform.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from tenantgate.platform import __version__
from tenantgate.platform.auth.exceptions import AuthorizationDenied
from tenantgate.platform.billing.exceptions import BillingError
from tenantgate.platform.billing.router import router as billing_router
from tenantgate.platform.db import check_database_health, dispose_async_engine
from tenantgate.platform.logging import setup_logging
from tenantgate.platform.settings import get_settings
from tenantgate.platform.workspace.router import router as workspace_router

API_PREFIX = "/api/v1"


def authorization_denied_handler(request: Request, exc: Exception) -> JSONResponse:
    """Coarse 401/403 response; the exact reason was already logged by the pipeline."""
    if not isinstance(exc, AuthorizationDenied):
        raise exc
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=exc.headers)


def billing_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Render billing errors with their status code and error code."""
    if not isinstance(exc, BillingError):
        raise exc
    logger = structlog.get_logger(__name__)
    logger.warning(
        "billing.request.failed",
        path=request.url.path,
        error_code=exc.error_code,
        status_code=exc.status_code,
        error=exc.message,
    )
    headers = {"Retry-After": "30"} if exc.retryable else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Manage application lifecycle events."""
    logger = structlog.get_logger(__name__)
    settings = get_settings()
    logger.info(
        "service.startup.complete",
        service=settings.app_name,
        version=settings.app_version,
        environment=settings.environment.value,
    )
    try:
        yield
    finally:
        await dispose_async_engine()
        logger.info("service.shutdown.complete", service=settings.app_name)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    setup_logging()
    settings = get_settings()
    logger = structlog.get_logger(__name__)

    app = FastAPI(
        title="Tenantgate Platform",
        description="Multi-tenant authorization, subscription lifecycle and usage accounting",
        version=__version__,
        lifespan=lifespan,
        debug=settings.debug,
    )

    app.add_exception_handler(AuthorizationDenied, authorization_denied_handler)
    app.add_exception_handler(BillingError, billing_error_handler)
    logger.info("exception_handlers.registered")

    app.include_router(billing_router, prefix=API_PREFIX)
    app.include_router(workspace_router, prefix=API_PREFIX)

    # Health check endpoint (public - no auth required)
    @app.get("/health")
    async def health_check() -> dict[str, Any]:
        """Health check endpoint for monitoring."""
        return {
            "status": "healthy",
            "version": settings.app_version,
            "environment": settings.environment.value,
        }

    # Readiness check endpoint (public - no auth required)
    @app.get("/health/ready")
    async def readiness_check() -> JSONResponse:
        """Readiness check: the database must answer."""
        database_ok = await check_database_health()
        return JSONResponse(
            status_code=200 if database_ok else 503,
            content={
                "status": "ready" if database_ok else "not ready",
                "database": database_ok,
                "timestamp": datetime.now(UTC).isoformat(),
            },
        )

    return app


app = create_app()
