"""
Async database access for Amparo.

Database wraps one async SQLAlchemy engine and its session factory. Every
repository operation opens its own short-lived session; multi-step writes
use ``transaction()`` so they commit or roll back as a unit.

Engine configuration:
- PostgreSQL (asyncpg): pooled connections with pre-ping and recycling
- SQLite (aiosqlite): NullPool for files, StaticPool for ``:memory:``;
  foreign keys are switched on per connection so ON DELETE CASCADE holds

Usage:
    db = Database(settings.database_url)
    await db.create_all()

    async with db.transaction() as session:
        session.add(user)
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool, StaticPool

from amparo.lib.exceptions import DatabaseError
from amparo.models import Base

logger = logging.getLogger(__name__)


def _build_engine(url: str, echo: bool) -> AsyncEngine:
    if url.startswith("sqlite"):
        in_memory = ":memory:" in url or url.rstrip("/").endswith("sqlite+aiosqlite:")
        engine = create_async_engine(
            url,
            echo=echo,
            poolclass=StaticPool if in_memory else NullPool,
            connect_args={"check_same_thread": False},
        )

        @event.listens_for(engine.sync_engine, "connect")
        def _enable_foreign_keys(dbapi_connection: Any, _record: Any) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return create_async_engine(
        url,
        echo=echo,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_recycle=300,
    )


class Database:
    """Owns the engine and hands out sessions."""

    def __init__(self, url: str, echo: bool = False) -> None:
        self.url = url
        self.engine = _build_engine(url, echo)
        self._sessionmaker = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Read-mostly session. Callers commit explicitly if they write."""
        async with self._sessionmaker() as session:
            yield session

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """
        Session inside a transaction: commits on success, rolls back on any error.

        SQLAlchemy errors are re-raised as DatabaseError; other exceptions
        (including domain errors raised by the caller) propagate unchanged.
        """
        async with self._sessionmaker() as session:
            try:
                async with session.begin():
                    yield session
            except SQLAlchemyError as e:
                logger.error("database transaction rolled back", extra={"error": type(e).__name__})
                raise DatabaseError("database transaction failed") from e

    async def create_all(self) -> None:
        """Create every registered table (development and tests)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def ping(self) -> bool:
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            return False

    async def dispose(self) -> None:
        await self.engine.dispose()
