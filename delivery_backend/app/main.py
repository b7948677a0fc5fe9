"""
FastAPI Application Entry Point.

This is the main application file for the Delivery Lifecycle Backend.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from delivery_backend.app.core.config import settings
from delivery_backend.app.api.v1.router import router as api_v1_router
from delivery_backend.app.core.jwt import create_actor_token
from delivery_backend.app.core.observability import ObservabilityMiddleware, setup_logging
from delivery_backend.app.db.session import engine, Base
from delivery_backend.app.domain.delivery.events import event_publisher
from delivery_backend.app.models.enums import UserRole
from delivery_backend.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from delivery_backend.app.models.delivery import Delivery
from delivery_backend.app.models.delivery_stop import DeliveryStop
from delivery_backend.app.models.delivery_tracking import DeliveryTracking

setup_logging(settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Creates database tables on startup.
    2. Waits for in-flight event publications on shutdown.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("%s %s started", settings.app_name, settings.api_version)
    yield
    await event_publisher.drain()
    await engine.dispose()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Delivery lifecycle service: quotes, claiming, proof of delivery and tracking",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status and application information
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint.

    Returns:
        dict: Welcome message and API documentation links
    """
    return {
        "message": "Welcome to Delivery Lifecycle Backend API",
        "docs": "/docs",
        "health": "/health",
    }


# Local validation only
@app.post("/auth/test-token", tags=["Authentication"])
async def generate_test_token(user_id: int = 1, role: UserRole = UserRole.SENDER):
    """
    Generate a test JWT token for a sender, driver or admin.

    Only available when enable_test_tokens is set.
    """
    if not settings.enable_test_tokens:
        raise HTTPException(status_code=404, detail="Not Found")

    token = create_actor_token(user_id, role)
    return {
        "access_token": token,
        "token_type": "bearer",
        "user_id": user_id,
        "role": role.value,
    }
