"""Database engine and schema setup.

Rate-limit windows and history live in ~/.site-quality/data.db unless
DATABASE_URL names another SQLAlchemy async URL (e.g.
postgresql+asyncpg://...), which lets several instances share limits and
history. SQLite connections run in WAL mode so history reads do not block
rate-limit writes.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = os.path.expanduser("~/.site-quality")

SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA synchronous=NORMAL",
    "PRAGMA busy_timeout=5000",
)


def get_data_dir() -> Path:
    """DATA_DIR or ~/.site-quality, created on first use."""
    path = Path(os.environ.get("DATA_DIR", DEFAULT_DATA_DIR))
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_db_url() -> str:
    """DATABASE_URL if set, otherwise the local SQLite file."""
    return os.environ.get("DATABASE_URL") or f"sqlite+aiosqlite:///{get_data_dir() / 'data.db'}"


def _apply_sqlite_pragmas(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    for pragma in SQLITE_PRAGMAS:
        cursor.execute(pragma)
    cursor.close()


def create_engine_for(url: str) -> AsyncEngine:
    engine = create_async_engine(url, echo=False)
    if url.startswith("sqlite"):
        event.listen(engine.sync_engine, "connect", _apply_sqlite_pragmas)
    return engine


_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_engine(url: Optional[str] = None) -> AsyncEngine:
    """Process-wide engine, built from ``url`` or get_db_url() on first call."""
    global _engine
    if _engine is None:
        _engine = create_engine_for(url or get_db_url())
    return _engine


def get_session_factory(url: Optional[str] = None) -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(get_engine(url), expire_on_commit=False)
    return _session_factory


async def init_db(url: Optional[str] = None) -> async_sessionmaker[AsyncSession]:
    """Create missing tables and return the shared session factory."""
    from .sqlmodels import Base

    engine = get_engine(url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database ready at %s", engine.url.render_as_string(hide_password=True))
    return get_session_factory()


async def close_db():
    """Dispose of the engine so the next init_db starts fresh."""
    global _engine, _session_factory
    engine, _engine, _session_factory = _engine, None, None
    if engine is not None:
        await engine.dispose()
