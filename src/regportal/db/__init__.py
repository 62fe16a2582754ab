"""Async engine and session factory for the session store.

The engine is created lazily from ``REGPORTAL_DATABASE__*`` settings the
first time a session is requested, and disposed with close_engine().
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None

_SYNC_SCHEMES = ("postgresql://", "postgres://")


def async_database_url(url: str) -> str:
    """Point a plain PostgreSQL URL at the psycopg async driver."""
    for scheme in _SYNC_SCHEMES:
        if url.startswith(scheme):
            return "postgresql+psycopg://" + url[len(scheme) :]
    return url


def _session_maker() -> async_sessionmaker[AsyncSession]:
    global _engine, _session_factory

    if _session_factory is None:
        from regportal.core.settings import get_settings

        db = get_settings().database
        _engine = create_async_engine(
            async_database_url(str(db.url)),
            pool_size=db.pool_size,
            max_overflow=db.max_overflow,
            pool_timeout=db.pool_timeout,
            pool_pre_ping=True,
            echo=db.echo,
        )
        _session_factory = async_sessionmaker(bind=_engine, expire_on_commit=False)
    return _session_factory


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session; rolled back on error and always closed. Callers commit."""
    session = _session_maker()()
    try:
        yield session
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def close_engine() -> None:
    """Dispose the engine (application or worker shutdown)."""
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
