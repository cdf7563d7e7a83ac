"""Database connection and session management with async support.

Each process builds one :class:`Database` handle from its configured URL and
passes it to the queue, store and status components. No engine is held in
module state, so tests can run several independent databases side by side.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .models import Base

# Default database URL (SQLite for development)
DEFAULT_ASYNC_DATABASE_URL = "sqlite+aiosqlite:///./data/weatherb.db"


def _ensure_sqlite_dir(database_url: str) -> None:
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite" or not url.database or url.database == ":memory:":
        return
    Path(url.database).parent.mkdir(parents=True, exist_ok=True)


class Database:
    """Owned async engine plus session factory for one database URL."""

    def __init__(self, database_url: str = DEFAULT_ASYNC_DATABASE_URL) -> None:
        self.database_url = database_url
        _ensure_sqlite_dir(database_url)
        connect_args = {}
        if make_url(database_url).get_backend_name() == "sqlite":
            # Concurrent writers from several processes wait instead of failing.
            connect_args["timeout"] = 30
        self.engine: AsyncEngine = create_async_engine(
            database_url,
            echo=False,
            pool_pre_ping=True,
            connect_args=connect_args,
        )
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get an async database session as a context manager."""
        session = self.session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def init(self) -> None:
        """Create all tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        """Dispose of pooled connections."""
        await self.engine.dispose()


async def open_database(database_url: str = DEFAULT_ASYNC_DATABASE_URL) -> Database:
    """Build a :class:`Database` and make sure its tables exist."""
    db = Database(database_url)
    await db.init()
    return db
