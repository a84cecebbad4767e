"""SQLite connection pool (WAL mode) and bounded transactional units of work."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import re
import sqlite3
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, TypeVar

import aiosqlite

from fleet_energy.config.schema import DBConfig
from fleet_energy.db.migrations import run_migrations
from fleet_energy.db.models import parse_partition_name
from fleet_energy.errors import MissingPartitionError, TransientStorageError, WriteError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_pool: ConnectionPool | None = None

_MISSING_TABLE = re.compile(r"no such table: (?:main\.)?(\w+)")
_TRANSIENT_MARKERS = (
    "database is locked",
    "database table is locked",
    "database is busy",
    "disk i/o error",
    "unable to open database",
    "closed database",
)


def translate_error(exc: BaseException, write: bool = True) -> BaseException:
    """Map a storage-layer exception onto the error taxonomy.

    Returns ``exc`` unchanged when it has no mapping.
    """
    if isinstance(exc, asyncio.TimeoutError):
        return TransientStorageError("Storage operation timed out")
    if isinstance(exc, sqlite3.Error):
        message = str(exc)
        match = _MISSING_TABLE.search(message)
        if match:
            parsed = parse_partition_name(match.group(1))
            if parsed is not None:
                device_class, day = parsed
                if write:
                    return MissingPartitionError(device_class.value, day)
                # Retired between pruning and scanning; a retry prunes again
                return TransientStorageError(message)
        if any(marker in message.lower() for marker in _TRANSIENT_MARKERS):
            return TransientStorageError(message)
        if write:
            return WriteError(message)
    return exc


class ConnectionPool:
    """Fixed-size pool of aiosqlite connections to one WAL database.

    Every connection runs in autocommit mode; units of work open their own
    ``BEGIN IMMEDIATE`` transaction. Acquiring waits at most
    ``acquire_timeout`` seconds and then fails with TransientStorageError
    instead of opening more connections.
    """

    def __init__(
        self,
        db_path: str | Path,
        size: int = 8,
        acquire_timeout: float = 5.0,
        busy_timeout_ms: int = 5000,
    ) -> None:
        self._path = str(db_path)
        if self._path == ":memory:" and size != 1:
            # Each connection would see its own private database
            logger.warning("In-memory database requested; pool size forced to 1")
            size = 1
        self.size = size
        self._acquire_timeout = acquire_timeout
        self._busy_timeout_ms = busy_timeout_ms
        self._idle: asyncio.Queue[aiosqlite.Connection] = asyncio.Queue()
        self._connections: list[aiosqlite.Connection] = []
        self._closed = True

    @property
    def path(self) -> str:
        return self._path

    @property
    def is_open(self) -> bool:
        return not self._closed

    @property
    def in_use(self) -> int:
        return len(self._connections) - self._idle.qsize()

    async def open(self) -> None:
        """Open every connection and bring the schema up to date."""
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        for _ in range(self.size):
            self._connections.append(await self._connect())
        await run_migrations(self._connections[0])
        for conn in self._connections:
            self._idle.put_nowait(conn)
        self._closed = False
        logger.info(
            "Database pool opened at %s (%d connections, WAL mode)", self._path, self.size,
        )

    async def _connect(self) -> aiosqlite.Connection:
        conn = await aiosqlite.connect(self._path, isolation_level=None)
        await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA synchronous=NORMAL")
        await conn.execute("PRAGMA foreign_keys=ON")
        await conn.execute(f"PRAGMA busy_timeout={int(self._busy_timeout_ms)}")
        conn.row_factory = aiosqlite.Row
        return conn

    @contextlib.asynccontextmanager
    async def acquire(self) -> AsyncIterator[aiosqlite.Connection]:
        """Borrow a connection, waiting a bounded time when all are in use."""
        if self._closed:
            raise TransientStorageError("Database pool is not open")
        try:
            conn = await asyncio.wait_for(self._idle.get(), timeout=self._acquire_timeout)
        except asyncio.TimeoutError:
            raise TransientStorageError(
                f"Connection pool exhausted ({self.size} in use after "
                f"{self._acquire_timeout:.1f}s)"
            ) from None
        try:
            yield conn
        finally:
            self._idle.put_nowait(conn)

    async def run_in_transaction(
        self,
        work: Callable[[aiosqlite.Connection], Awaitable[T]],
        timeout: float | None = None,
    ) -> T:
        """Run ``work`` inside one transaction; commit on success, roll back otherwise.

        ``timeout`` bounds the transaction body. On timeout the whole unit is
        rolled back and TransientStorageError raised. Storage errors are
        translated (see ``translate_error``).
        """
        async with self.acquire() as conn:
            try:
                result = await asyncio.wait_for(self._begin_and_run(conn, work), timeout)
                await conn.execute("COMMIT")
                return result
            except BaseException as exc:
                await self._rollback(conn)
                translated = translate_error(exc) if isinstance(exc, Exception) else exc
                if translated is exc:
                    raise
                raise translated from exc

    async def run_query(
        self,
        work: Callable[[aiosqlite.Connection], Awaitable[T]],
        timeout: float | None = None,
    ) -> T:
        """Run read-only ``work`` on a pooled connection, bounded by ``timeout``."""
        async with self.acquire() as conn:
            try:
                return await asyncio.wait_for(work(conn), timeout)
            except Exception as exc:
                translated = translate_error(exc, write=False)
                if translated is exc:
                    raise
                raise translated from exc

    @staticmethod
    async def _begin_and_run(
        conn: aiosqlite.Connection,
        work: Callable[[aiosqlite.Connection], Awaitable[T]],
    ) -> T:
        await conn.execute("BEGIN IMMEDIATE")
        return await work(conn)

    @staticmethod
    async def _rollback(conn: aiosqlite.Connection) -> None:
        # Queued behind any statement still running for a timed-out unit of
        # work; fails harmlessly when BEGIN never ran.
        with contextlib.suppress(sqlite3.Error, ValueError):
            await conn.execute("ROLLBACK")

    async def ping(self) -> bool:
        """Return True when a pooled connection answers a trivial query."""

        async def _select_one(conn: aiosqlite.Connection) -> bool:
            async with conn.execute("SELECT 1") as cursor:
                row = await cursor.fetchone()
            return row is not None and row[0] == 1

        try:
            return await self.run_query(_select_one, timeout=self._acquire_timeout)
        except (TransientStorageError, sqlite3.Error):
            logger.warning("Database ping failed", exc_info=True)
            return False

    async def checkpoint_wal(self) -> None:
        """Checkpoint the WAL file to keep it from growing unbounded."""
        try:
            async with self.acquire() as conn:
                await conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
            logger.debug("WAL checkpoint completed")
        except (TransientStorageError, sqlite3.Error):
            logger.warning("WAL checkpoint failed", exc_info=True)

    async def close(self) -> None:
        """Close every connection. Connections still borrowed are closed too."""
        if self._closed and not self._connections:
            return
        self._closed = True
        for conn in self._connections:
            with contextlib.suppress(sqlite3.Error):
                await conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
            await conn.close()
        self._connections.clear()
        self._idle = asyncio.Queue()
        logger.info("Database pool closed")


async def init_pool(config: DBConfig) -> ConnectionPool:
    """Create, open and register the process-wide connection pool."""
    global _pool
    pool = ConnectionPool(
        config.path,
        size=config.pool_size,
        acquire_timeout=config.pool_acquire_timeout_seconds,
        busy_timeout_ms=config.busy_timeout_ms,
    )
    await pool.open()
    _pool = pool
    return pool


async def close_pool() -> None:
    """Close the process-wide connection pool."""
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None
