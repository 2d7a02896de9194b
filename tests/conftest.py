"""Global test configuration: real SQLite database, record store and API client."""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel

# Import all models to ensure metadata is populated
from dicom_triage import models  # noqa: F401
from dicom_triage.api.app import app
from dicom_triage.api.dependencies import get_record_store
from dicom_triage.services.record_store import ExceptionRecordStore


@pytest_asyncio.fixture
async def test_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine]:
    """Create test database engine.

    A file database is used so that concurrent sessions opened by bulk
    actions all see the same tables.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def test_session(session_factory) -> AsyncGenerator[AsyncSession]:
    """Create test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def record_store(session_factory) -> ExceptionRecordStore:
    """SQL-backed record store over the test database."""
    return ExceptionRecordStore(session_factory)


@pytest_asyncio.fixture
async def client(record_store) -> AsyncGenerator[AsyncClient]:
    """Create test API client."""
    app.dependency_overrides[get_record_store] = lambda: record_store

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
