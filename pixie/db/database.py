"""
Process-wide database connection manager.

One `Database` per process (see `Database.get_instance`). It owns the async
engine, hands out sessions, runs bounded transactions and tracks its own
connection state so that concurrent `connect()` calls never race.
"""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, ClassVar, TypeVar

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from .models import Base

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./pixie.db"
CONNECT_TIMEOUT_SECONDS = 5
TRANSACTION_TIMEOUT_SECONDS = 5
TRANSACTION_MAX_WAIT_SECONDS = 5


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def _engine_options(url: str) -> dict[str, Any]:
    if url.startswith("sqlite"):
        # In-memory databases live inside a single connection
        if ":memory:" in url or url.rstrip("/").endswith("sqlite+aiosqlite:"):
            return {"poolclass": StaticPool}
        return {}
    return {
        "pool_pre_ping": True,
        "pool_recycle": 300,
        "pool_timeout": TRANSACTION_MAX_WAIT_SECONDS,
    }


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    _instance: ClassVar["Database | None"] = None

    def __init__(self, url: str = DEFAULT_DATABASE_URL, echo: bool = False):
        self.url = url
        self.engine = create_async_engine(url, echo=echo, **_engine_options(url))
        self.session_maker = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
            tx_engine = self.engine
        else:
            tx_engine = self.engine.execution_options(isolation_level="READ COMMITTED")
        self._tx_session_maker = async_sessionmaker(
            tx_engine, class_=AsyncSession, expire_on_commit=False
        )

        self._state = ConnectionState.DISCONNECTED

    @classmethod
    def get_instance(cls, url: str | None = None) -> "Database":
        if cls._instance is None:
            cls._instance = cls(url or os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL)
        return cls._instance

    # ── Lifecycle ────────────────────────────────────────────────────────────

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def status(self) -> dict[str, bool]:
        return {
            "is_connected": self._state is ConnectionState.CONNECTED,
            "is_connecting": self._state is ConnectionState.CONNECTING,
        }

    async def _ping(self) -> None:
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def connect(self) -> bool:
        if self._state is ConnectionState.CONNECTING:
            logger.warning("Database connection already in progress")
            return False
        if self._state is ConnectionState.CONNECTED:
            logger.warning("Database already connected")
            return True

        self._state = ConnectionState.CONNECTING
        try:
            await asyncio.wait_for(self._ping(), timeout=CONNECT_TIMEOUT_SECONDS)
        except Exception as e:
            logger.error("Failed to connect to the database: %s", e or type(e).__name__)
            self._state = ConnectionState.DISCONNECTED
            return False

        self._state = ConnectionState.CONNECTED
        logger.info("Database connection is active")
        return True

    async def disconnect(self) -> bool:
        if self._state is not ConnectionState.CONNECTED:
            logger.warning("Database already disconnected")
            return True
        try:
            await self.engine.dispose()
        except Exception as e:
            logger.error("Failed to disconnect from the database: %s", e)
            return False
        self._state = ConnectionState.DISCONNECTED
        logger.info("Database connection has been closed")
        return True

    async def create_tables(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    # ── Sessions / transactions ─────────────────────────────────────────────

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        async with self.session_maker() as session:
            yield session

    async def transaction(self, fn: Callable[[AsyncSession], Awaitable[T]]) -> T:
        """
        Run `fn(session)` inside one transaction.

        Commits when `fn` returns, rolls back when it raises or exceeds
        TRANSACTION_TIMEOUT_SECONDS.
        """

        async def _run() -> T:
            async with self._tx_session_maker() as session:
                async with session.begin():
                    return await fn(session)

        try:
            return await asyncio.wait_for(_run(), timeout=TRANSACTION_TIMEOUT_SECONDS)
        except Exception as e:
            logger.error("Transaction failed: %s", e or type(e).__name__)
            raise
