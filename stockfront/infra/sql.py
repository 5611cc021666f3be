from __future__ import annotations
import asyncio
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Tuple

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine,
)

_DRIVERS = (
    ("sqlite://", "sqlite+aiosqlite://"),
    ("postgresql://", "postgresql+asyncpg://"),
    ("postgres://", "postgresql+asyncpg://"),
)

_SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL;",
    "PRAGMA busy_timeout=5000;",
    "PRAGMA synchronous=NORMAL;",
)


def async_url(url: str) -> str:
    for plain, driver in _DRIVERS:
        if url.startswith(plain):
            return driver + url[len(plain):]
    return url


@dataclass
class Database:
    """Session factory behind a gate.

    The gate is a semaphore sized to the connection pool: at most that many
    transactions are open at once, the rest queue here instead of timing out
    inside the pool. Every store opens one short transaction per operation,
    so concurrent checkouts never share a session.
    """
    sessions: async_sessionmaker
    gate: asyncio.Semaphore

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        async with self.gate:
            async with self.sessions() as session:
                async with session.begin():
                    yield session


def _pool_options(url: str) -> Tuple[Dict[str, Any], int]:
    if not url.startswith("postgresql+asyncpg://"):
        return {}, int(os.getenv("DB_GATE_LIMIT", "10"))
    pool_size = int(os.getenv("DB_POOL_SIZE", "10"))
    opts = dict(
        pool_size=pool_size,
        max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "10")),
        pool_timeout=int(os.getenv("DB_POOL_TIMEOUT", "30")),
    )
    return opts, int(os.getenv("DB_GATE_LIMIT", str(pool_size)))


def make_async_engine(database_url: str) -> Tuple[AsyncEngine, Database]:
    url = async_url(database_url)
    opts, gate_limit = _pool_options(url)
    engine = create_async_engine(url, pool_pre_ping=True, **opts)

    if url.startswith("sqlite+aiosqlite://"):
        @event.listens_for(engine.sync_engine, "connect")
        def _sqlite_pragmas(dbapi_connection, _):
            cur = dbapi_connection.cursor()
            for pragma in _SQLITE_PRAGMAS:
                cur.execute(pragma)
            cur.close()

    sessions = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    return engine, Database(sessions, asyncio.Semaphore(max(1, gate_limit)))
