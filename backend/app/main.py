"""
FastAPI Application Entry Point.

This is the main application file for the Vehicle Rental Backend.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import IntegrityError
from backend.app.core.config import settings
from backend.app.core.observability import ObservabilityMiddleware, configure_logging
from backend.app.api.v1.router import router as api_v1_router
from backend.app.db.session import engine, Base
from backend.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    integrity_exception_handler,
    generic_exception_handler
)
from backend.app.services.lifecycle_sweeper import lifecycle_sweeper

# Import models to ensure they are registered with Base
from backend.app.models.user import User
from backend.app.models.vehicle import Vehicle
from backend.app.models.vehicle_unit import VehicleUnit
from backend.app.models.rental import Rental
from backend.app.models.payment import Payment
from backend.app.models.audit_log import AuditLog
from backend.app.models.dlq import DeadLetterQueue

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Creates database tables on startup.
    2. Starts the rental lifecycle sweeper and stops it on shutdown.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    if settings.sweeper_enabled:
        lifecycle_sweeper.start()

    yield

    await lifecycle_sweeper.stop()
    await engine.dispose()
    logger.info("Shutdown complete")


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Unit-level vehicle rental reservations, payments and approvals",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(IntegrityError, integrity_exception_handler)
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
        "message": "Welcome to Vehicle Rental Backend API",
        "docs": "/docs",
        "health": "/health",
    }
