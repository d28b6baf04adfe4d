"""Shared pytest fixtures for all test suites."""

import os
import uuid
from collections.abc import AsyncGenerator, Iterator
from pathlib import Path

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy import Engine, create_engine, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import Session
from sqlalchemy.pool import NullPool

from backend.app.adapters.object_store import InMemoryObjectStore
from backend.app.api.auth import DEFAULT_TENANT_ID
from backend.app.config import Settings
from backend.app.db.engine import create_session_factory
from backend.app.db.models import Base, Tenant
from backend.app.main import app
from backend.app.services import Services, build_services, get_services
from tests.fakes import TENANT_ID, KeywordEmbedder, ScriptedLLMClient, sqlite_url


@pytest_asyncio.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """Create file-backed SQLite async engine with all tables.

    A file (not :memory:) so every NullPool connection sees the same data.
    """
    engine = create_async_engine(
        sqlite_url(tmp_path / "test.db"),
        poolclass=NullPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def tenant_id(session_factory: async_sessionmaker[AsyncSession]) -> uuid.UUID:
    """Seed the test tenant and return its id."""
    async with session_factory() as session:
        session.add(
            Tenant(
                tenant_id=TENANT_ID,
                name="Test Consultant",
                slug="test-consultant",
                language="pt",
                persona="You are the course assistant.",
            )
        )
        await session.commit()
    return TENANT_ID


@pytest_asyncio.fixture
async def postgres_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create async engine for PostgreSQL integration tests.

    Requires DATABASE_URL to point at PostgreSQL with the pgvector extension
    available. Tests using this fixture should be marked with
    @pytest.mark.postgres.
    """
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        pytest.skip("DATABASE_URL not set - skipping postgres test")

    if not database_url.startswith(("postgresql://", "postgresql+asyncpg://")):
        pytest.skip(f"DATABASE_URL is not PostgreSQL: {database_url}")

    if database_url.startswith("postgresql://"):
        database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)

    engine = create_async_engine(database_url, poolclass=NullPool, echo=False)

    async with engine.begin() as conn:
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def api_database(tmp_path: Path) -> Iterator[Engine]:
    """Sync engine over a file SQLite database with tables and the stub-auth tenant.

    Route tests run the app on the TestClient's own event loop, so setup goes
    through a plain sync engine.
    """
    engine = create_engine(sqlite_url(tmp_path / "api.db", driver="pysqlite"))
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        session.add(
            Tenant(
                tenant_id=DEFAULT_TENANT_ID,
                name="Dev Consultant",
                slug="dev-consultant",
                language="pt",
            )
        )
        session.commit()

    yield engine

    engine.dispose()


@pytest.fixture
def api_services(api_database: Engine) -> Iterator[Services]:
    """Services over the API database, installed as the app's dependency override.

    Workers are not started; tests drive processing explicitly.
    """
    async_engine = create_async_engine(
        api_database.url.set(drivername="sqlite+aiosqlite"), poolclass=NullPool
    )
    services = build_services(
        Settings(use_mock_ai=True),
        engine=async_engine,
        object_store=InMemoryObjectStore(),
        embedder=KeywordEmbedder(),
        llm_client=ScriptedLLMClient(),
    )
    app.dependency_overrides[get_services] = lambda: services

    yield services

    app.dependency_overrides.clear()


@pytest.fixture
def client(api_services: Services) -> TestClient:
    """Test client wired to ``api_services``."""
    return TestClient(app)
