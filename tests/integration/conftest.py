"""Integration test fixtures using testcontainers.

Provides a real PostgreSQL container so the SQL credential store is
exercised against the database it runs on in production. Without a
container runtime every test here is skipped.
"""

import os

# Rootless Podman exposes a Docker-compatible socket per user
_podman_socket = f"/run/user/{os.getuid()}/podman/podman.sock"
if (
    not os.environ.get("DOCKER_HOST")
    and not os.path.exists("/var/run/docker.sock")
    and os.path.exists(_podman_socket)
):
    os.environ["DOCKER_HOST"] = f"unix://{_podman_socket}"
    os.environ.setdefault("TESTCONTAINERS_RYUK_DISABLED", "true")

from collections.abc import AsyncGenerator, Generator
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

import keygate.storage.entities  # noqa: F401  register models with Base.metadata
from keygate.auth.credentials import SqlCredentialStore
from keygate.storage.models import Base

try:
    from testcontainers.postgres import PostgresContainer

    TESTCONTAINERS_AVAILABLE = True
except ImportError:
    TESTCONTAINERS_AVAILABLE = False
    PostgresContainer = None  # type: ignore


# =============================================================================
# POSTGRESQL CONTAINER
# =============================================================================


@pytest.fixture(scope="session")
def postgres_container() -> Generator[Any, None, None]:
    """Start one PostgreSQL container shared by every integration test."""
    if not TESTCONTAINERS_AVAILABLE:
        pytest.skip("testcontainers not installed")

    try:
        with PostgresContainer(
            image="postgres:16-alpine",
            username="test",
            password="test",
            dbname="keygate_test",
        ) as postgres:
            yield postgres
    except Exception as e:
        pytest.skip(f"Docker/Podman not available: {e}")


@pytest.fixture(scope="session")
def postgres_url(postgres_container: PostgresContainer) -> str:
    """Get async connection URL for the PostgreSQL container."""
    # testcontainers gives us a sync URL, convert to async
    sync_url = postgres_container.get_connection_url()
    async_url = sync_url.replace("postgresql://", "postgresql+asyncpg://")
    return async_url.replace("psycopg2", "asyncpg")


@pytest_asyncio.fixture(scope="session", loop_scope="session")
async def integration_engine(postgres_url: str) -> AsyncGenerator[Any, None]:
    """Create async engine connected to the test container."""
    engine = create_async_engine(postgres_url, echo=False, pool_pre_ping=True)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(loop_scope="session")
async def clean_tables(integration_engine: Any) -> AsyncGenerator[None, None]:
    """Empty every table before and after the test.

    The credential store commits its own transactions, so tests cannot
    rely on a rolled-back outer transaction for isolation.
    """
    async with integration_engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            await conn.execute(table.delete())

    yield

    async with integration_engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            await conn.execute(table.delete())


@pytest.fixture
def sql_store(integration_engine: Any, clean_tables: None, clock) -> SqlCredentialStore:
    """SqlCredentialStore bound to the container database."""
    factory = async_sessionmaker(integration_engine, expire_on_commit=False)
    return SqlCredentialStore(session_factory=factory, clock=clock)


# =============================================================================
# MARKERS
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register integration test markers."""
    config.addinivalue_line(
        "markers",
        "integration: Integration tests requiring real services",
    )
    config.addinivalue_line(
        "markers",
        "requires_postgres: Tests requiring PostgreSQL container",
    )
