"""Database handle with an explicit open/close lifecycle."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from visionboard.models.base import Base

logger = logging.getLogger(__name__)


class Database:
    """Owns the process-wide connection pool.

    Opened once by the application lifespan (or a Celery task) and closed at
    shutdown. Every logical operation borrows one session for its duration.
    """

    def __init__(self, url: str, *, echo: bool = False, pool_size: int = 5) -> None:
        self._url = url
        self._echo = echo
        self._pool_size = pool_size
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database is not open")
        return self._engine

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    def open(self) -> "Database":
        if self._engine is not None:
            return self
        kwargs: dict = {"echo": self._echo, "pool_pre_ping": True}
        if self._url.startswith("postgresql"):
            kwargs.update(pool_size=self._pool_size, max_overflow=10)
        self._engine = create_async_engine(self._url, **kwargs)
        self._session_factory = async_sessionmaker(self._engine, expire_on_commit=False)
        logger.info("Database pool opened (dialect=%s)", self._engine.dialect.name)
        return self

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            logger.info("Database pool closed")
        self._engine = None
        self._session_factory = None

    async def create_schema(self) -> None:
        """Create any missing tables (dev/test; production uses Alembic)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            raise RuntimeError("Database is not open")
        return self._session_factory

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session that commits on success and rolls back on error."""
        async with self.session_factory()() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise


def upsert(session: AsyncSession, model):
    """Return a dialect-specific INSERT supporting ``on_conflict_do_update``."""
    if session.get_bind().dialect.name == "postgresql":
        return pg_insert(model)
    return sqlite_insert(model)
