"""
Main API application module for DICOM Triage.

This module creates and configures the FastAPI application with its router,
middleware and exception handlers.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dicom_triage import __version__
from dicom_triage.api.exception_handlers import setup_exception_handlers
from dicom_triage.api.routers import exceptions
from dicom_triage.settings import settings
from dicom_triage.utils.db_manager import db_manager
from dicom_triage.utils.logger import logger


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:  # noqa: ARG001
    """
    Application lifespan context manager.

    Creates database tables on startup and disposes the engine on shutdown.
    """
    await db_manager.create_db_and_tables_async()
    logger.info("Database initialized with async support")
    logger.info("Application startup complete")

    try:
        yield
    finally:
        await db_manager.close()
        logger.info("Application shutdown")


def create_app(root_path: str = "/") -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        root_path: The root path for the application

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title="DICOM Triage",
        description="Triage and bulk remediation of failed DICOM processing",
        version=__version__,
        debug=settings.debug,
        lifespan=lifespan,
        root_path=root_path,
    )

    # Configure CORS
    origins = ["http://localhost", "http://localhost:8080", "*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    setup_exception_handlers(app)

    app.include_router(exceptions.router, prefix="/api/exceptions", tags=["Exceptions"])

    return app


# Create default application instance
app = create_app(root_path=settings.root_url)
