"""Ledger engine and session handling.

The real-time monitor and the snapshot pass share one engine per process.
Every unit of work opens its own session through ``get_db()``.
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from depowatch.config import get_settings
from depowatch.ledger.models import Base

logger = logging.getLogger(__name__)

# Seconds SQLite waits on a locked database before failing a write
SQLITE_BUSY_TIMEOUT = 30

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def async_database_url(url: str) -> str:
    """Force the aiosqlite driver onto plain SQLite URLs."""
    if url.startswith("sqlite:///"):
        return url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    return url


def _prepare_sqlite_file(url: str) -> None:
    path = url.split(":///", 1)[-1]
    if path and path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)


def get_engine() -> AsyncEngine:
    """Get or create the process-wide ledger engine."""
    global _engine
    if _engine is None:
        settings = get_settings()
        url = async_database_url(settings.database_url)

        connect_args = {}
        if url.startswith("sqlite"):
            _prepare_sqlite_file(url)
            connect_args["timeout"] = SQLITE_BUSY_TIMEOUT

        _engine = create_async_engine(
            url,
            echo=settings.debug and not settings.is_production,
            connect_args=connect_args,
        )
        logger.debug(f"Ledger engine created for {url.split('://', 1)[0]}")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the session factory bound to the ledger engine."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


@asynccontextmanager
async def get_db(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> AsyncGenerator[AsyncSession, None]:
    """Open one ledger transaction.

    Commits when the block exits normally, rolls back and re-raises otherwise.
    """
    factory = session_factory or get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create any missing ledger tables."""
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Ledger ready ({', '.join(sorted(Base.metadata.tables))})")


async def close_db() -> None:
    """Dispose of the engine so the next ``get_engine()`` starts fresh."""
    global _engine, _session_factory
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_factory = None
