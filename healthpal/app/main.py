"""
FastAPI Application Entry Point.

This is the main application file for the HealthPal Backend.
`create_app` wires the persistence gateway, Redis and the outbound adapters
onto app.state; nothing is opened at import time.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError

from healthpal.app.core.config import Settings, settings as default_settings
from healthpal.app.api.v1.router import router as api_v1_router
from healthpal.app.core.observability import ObservabilityMiddleware, configure_logging
from healthpal.app.core.redis_client import create_redis, ping_redis
from healthpal.app.db.session import Database
from healthpal.app.services.notifier import build_notifier
from healthpal.app.services.payment_gateway import build_payment_gateway
from healthpal.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from healthpal.app.models.user import User  # noqa: F401
from healthpal.app.models.audit_log import AuditLog  # noqa: F401
from healthpal.app.models.sponsorship import Sponsorship  # noqa: F401
from healthpal.app.models.transaction import Transaction  # noqa: F401
from healthpal.app.models.consultation import Consultation  # noqa: F401
from healthpal.app.models.call import Call  # noqa: F401
from healthpal.app.models.notification import Notification  # noqa: F401
from healthpal.app.models.dlq import DeadLetterQueue  # noqa: F401

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Creates database tables on startup.
    2. Disposes the engine and closes Redis on shutdown.
    """
    await app.state.db.create_all()
    logger.info("Database ready (%s)", "sqlite" if app.state.db.is_sqlite else "postgresql")
    yield
    await app.state.db.dispose()
    await app.state.redis.aclose()
    logger.info("Shutdown complete")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or default_settings
    configure_logging(settings.debug)

    app = FastAPI(
        title=settings.app_name,
        version=settings.api_version,
        debug=settings.debug,
        description="Medical sponsorship ledger and consultation API",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.db = Database.from_settings(settings)
    app.state.redis = create_redis(settings)
    app.state.notifier = build_notifier(settings)
    app.state.payment_gateway = build_payment_gateway(settings)

    app.add_middleware(ObservabilityMiddleware)

    # Register global exception handlers
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    @app.get("/health", tags=["Health"])
    async def health_check(request: Request):
        """
        Health check endpoint.

        Returns:
            dict: Status and application information
        """
        redis_ok = await ping_redis(request.app.state.redis)
        return {
            "status": "healthy",
            "app_name": settings.app_name,
            "version": settings.api_version,
            "redis": "up" if redis_ok else "down",
        }

    @app.get("/", tags=["Root"])
    async def root():
        """
        Root endpoint.

        Returns:
            dict: Welcome message and API documentation links
        """
        return {
            "message": "Welcome to HealthPal API",
            "docs": "/docs",
            "health": "/health",
        }

    # Include API v1 router
    app.include_router(api_v1_router, prefix=f"/{settings.api_version}")

    return app


app = create_app()
