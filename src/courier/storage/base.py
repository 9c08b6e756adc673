"""Base storage class and helpers.

Contains engine lifecycle, schema creation, and the transaction helper used
by every storage mixin.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from courier.exceptions import StorageError

from .tables import Base

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./courier.db"


class StorageBase:
    """Base class for Courier storage with initialization and helpers.

    Provides:
    - Engine and session factory lifecycle
    - Table creation
    - A serialized transaction helper

    SQLite has a single writer, so transactions are serialized with an
    asyncio lock. The lock only ever wraps local database work.
    """

    def __init__(self, database_url: str | None = None, echo: bool = False) -> None:
        """Initialize storage.

        Args:
            database_url: SQLAlchemy async URL. Defaults to a local SQLite file.
            echo: Log emitted SQL.
        """
        self._url = database_url or DEFAULT_DATABASE_URL
        self._echo = echo
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None
        self._lock = asyncio.Lock()

    @property
    def engine(self) -> AsyncEngine:
        """Get the engine, raising if not initialized."""
        if self._engine is None:
            raise StorageError("Storage not initialized. Call initialize() first.")
        return self._engine

    async def initialize(self) -> None:
        """Create the engine and ensure tables exist."""
        engine_kwargs: dict[str, Any] = {"echo": self._echo}
        if ":memory:" in self._url:
            # One shared connection, otherwise every connection sees an empty database
            engine_kwargs["poolclass"] = StaticPool
            engine_kwargs["connect_args"] = {"check_same_thread": False}
        self._engine = create_async_engine(self._url, **engine_kwargs)
        self._session_factory = async_sessionmaker(
            self._engine, class_=AsyncSession, expire_on_commit=False
        )
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        """Dispose of the engine."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None

    async def __aenter__(self) -> StorageBase:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Open a session inside a transaction.

        Commits on normal exit, rolls back if the block raises.
        """
        if self._session_factory is None:
            raise StorageError("Storage not initialized. Call initialize() first.")
        async with self._lock:
            async with self._session_factory() as session:
                async with session.begin():
                    yield session
