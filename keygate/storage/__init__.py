"""Credential database: engine and sessions.

Users and their WebAuthn credentials are the only durable state keygate
owns. The engine and session factory are created on first use from
settings and shared by every SqlCredentialStore in the process.

The singletons sit behind one RLock because building the session factory
builds the engine while the lock is held.
"""

import threading
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from keygate.settings import Settings, get_settings

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None
_init_lock = threading.RLock()


def get_engine(settings: Settings | None = None) -> AsyncEngine:
    """Return the shared engine, creating it from settings on first call."""
    global _engine

    if _engine is None:
        with _init_lock:
            if _engine is None:
                settings = settings or get_settings()
                _engine = create_async_engine(
                    str(settings.database_url),
                    pool_size=settings.database_pool_size,
                    max_overflow=settings.database_max_overflow,
                    pool_timeout=settings.database_pool_timeout,
                    pool_recycle=settings.database_pool_recycle,
                    pool_pre_ping=True,
                    echo=settings.debug,
                )

    return _engine


def get_session_factory(settings: Settings | None = None) -> async_sessionmaker[AsyncSession]:
    """Return the shared session factory.

    Sessions do not expire objects on commit: the credential store converts
    rows to records after its transaction has committed.
    """
    global _session_factory

    if _session_factory is None:
        with _init_lock:
            if _session_factory is None:
                _session_factory = async_sessionmaker(
                    bind=get_engine(settings),
                    class_=AsyncSession,
                    expire_on_commit=False,
                    autoflush=False,
                )

    return _session_factory


@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """One session for ad-hoc queries such as the readiness probe."""
    session = get_session_factory()()
    try:
        yield session
    finally:
        await session.close()


async def init_db() -> None:
    """Fail fast at startup if the credential database is unreachable."""
    async with get_engine().connect() as conn:
        await conn.execute(text("SELECT 1"))


async def create_tables() -> None:
    """Create the users and webauthn_credential tables (development only)."""
    import keygate.storage.entities  # noqa: F401
    from keygate.storage.models import Base

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose of the pool; the next get_engine() call starts a new one."""
    global _engine, _session_factory

    with _init_lock:
        engine, _engine, _session_factory = _engine, None, None
    if engine is not None:
        await engine.dispose()


__all__ = [
    "close_db",
    "create_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_db",
]
