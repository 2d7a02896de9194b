"""
Database manager for DICOM Triage.

This module provides a centralized database connection manager
that avoids global state and creates engines lazily.
"""

import json
from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel

from .. import models  # noqa: F401  (registers tables on SQLModel.metadata)
from ..exceptions.domain import ConfigurationError
from ..settings import DatabaseDriver, settings
from ..utils.logger import logger


def _pydantic_json_serializer(obj: Any) -> str:
    """JSON serializer that handles Pydantic/SQLModel objects in JSON columns."""

    def default(o: Any) -> Any:
        if hasattr(o, "model_dump"):
            return o.model_dump(mode="json")
        raise TypeError(f"Object of type {type(o).__name__} is not JSON serializable")

    return json.dumps(obj, default=default)


class DatabaseManager:
    """
    Manages database connections and sessions without global state.

    The engine and session factory are created on first use, so importing
    the module never opens a connection.
    """

    def __init__(self) -> None:
        """Initialize the database manager with empty connections."""
        self._async_engine: AsyncEngine | None = None
        self._async_session_factory: async_sessionmaker[AsyncSession] | None = None

    def _get_async_database_url(self) -> str:
        """Convert database URL to async version."""
        match settings.database_driver:
            case DatabaseDriver.SQLITE:
                return f"sqlite+aiosqlite:///{settings.database_name}.db"
            case DatabaseDriver.POSTGRESQL:
                return settings.database_url.replace("postgresql+psycopg2", "postgresql+asyncpg")
            case DatabaseDriver.POSTGRESQL_ASYNC:
                return settings.database_url
            case _:
                raise ConfigurationError(f"Async not supported for {settings.database_driver}")

    def _create_async_engine(self) -> AsyncEngine:
        """Create and configure the asynchronous database engine."""
        async_url = self._get_async_database_url()

        if settings.database_driver == DatabaseDriver.SQLITE:
            engine = create_async_engine(
                async_url,
                connect_args={"check_same_thread": False, "timeout": 30},
                echo=settings.debug,
                json_serializer=_pydantic_json_serializer,
            )
        else:
            # Bulk actions open one session per record update, up to the concurrency bound
            engine = create_async_engine(
                async_url,
                echo=settings.debug,
                pool_size=max(settings.bulk_action_max_concurrency, 5),
                max_overflow=5,
                pool_pre_ping=True,
                json_serializer=_pydantic_json_serializer,
            )

        logger.info(f"Async database engine created: {settings.database_driver.value}")
        return engine

    @property
    def async_engine(self) -> AsyncEngine:
        """Get or create the asynchronous database engine."""
        if self._async_engine is None:
            self._async_engine = self._create_async_engine()
        return self._async_engine

    @property
    def async_session_factory(self) -> async_sessionmaker[AsyncSession]:
        """Get or create the async session factory."""
        if self._async_session_factory is None:
            self._async_session_factory = async_sessionmaker(
                self.async_engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )
        return self._async_session_factory

    async def create_db_and_tables_async(self) -> None:
        """Create database tables asynchronously."""
        logger.info("Creating database tables (async)...")
        async with self.async_engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        logger.info("Database tables created (async)")

    async def close(self) -> None:
        """Close all database connections."""
        if self._async_engine:
            await self._async_engine.dispose()
            self._async_engine = None
            self._async_session_factory = None
            logger.info("Async database engine disposed")

    def __repr__(self) -> str:
        """String representation of the DatabaseManager."""
        return (
            f"<DatabaseManager("
            f"driver={settings.database_driver.value}, "
            f"async_initialized={self._async_engine is not None}"
            f")>"
        )


# Create a singleton instance
db_manager = DatabaseManager()
