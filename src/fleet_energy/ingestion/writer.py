"""Dual-path writer: latest-state upsert plus append-only history, atomically.

Every reading lands in both the current-status table of its device class and
that class' history partition for the reading's UTC day, inside a single
transaction. Batches are split into fixed-size chunks; each chunk is its own
transaction, applied strictly in order.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Sequence

import aiosqlite

from fleet_energy.db.engine import ConnectionPool
from fleet_energy.db.repository import TelemetryRepository
from fleet_energy.errors import BatchWriteError
from fleet_energy.logging.context import batch_context, reading_context
from fleet_energy.telemetry.readings import DeviceClass, DeviceReading

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1000


@dataclass(frozen=True)
class WriteAck:
    device_class: DeviceClass
    device_id: str
    duration_ms: int


@dataclass(frozen=True)
class BatchAck:
    accepted: int
    chunks: int
    duration_ms: int


def chunked(readings: Sequence[DeviceReading], size: int) -> list[Sequence[DeviceReading]]:
    """Split ``readings`` into consecutive chunks of at most ``size``."""
    if size < 1:
        raise ValueError("chunk size must be positive")
    return [readings[i:i + size] for i in range(0, len(readings), size)]


class DualPathWriter:
    """Applies readings to the state store and the history store together.

    No application-level locking: concurrent writers to the same device
    serialize on the storage engine's single-row upsert, and the last
    transaction to commit wins.
    """

    def __init__(
        self,
        pool: ConnectionPool,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        transaction_timeout: float | None = None,
        repository_factory: Callable[[aiosqlite.Connection], TelemetryRepository] = TelemetryRepository,
    ) -> None:
        if chunk_size < 1:
            raise ValueError("chunk size must be positive")
        self._pool = pool
        self._chunk_size = chunk_size
        self._timeout = transaction_timeout
        self._repository_factory = repository_factory

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    async def apply_reading(self, reading: DeviceReading) -> WriteAck:
        """Upsert the device's status row and append its history row atomically."""
        device_class = reading.device_class
        start = time.monotonic()

        async def _work(conn: aiosqlite.Connection) -> None:
            repo = self._repository_factory(conn)
            await repo.upsert_status(device_class, [reading])
            await repo.insert_history(device_class, [reading])

        with reading_context(reading):
            try:
                await self._pool.run_in_transaction(_work, timeout=self._timeout)
            except Exception as e:
                logger.error(
                    "Failed to ingest %s reading for %s after %dms: %s",
                    device_class.value, reading.device_id, _elapsed_ms(start), e,
                )
                raise

            duration = _elapsed_ms(start)
            logger.debug(
                "%s %s ingested in %dms", device_class.value, reading.device_id, duration,
            )
        return WriteAck(device_class=device_class, device_id=reading.device_id, duration_ms=duration)

    async def apply_batch(self, readings: Sequence[DeviceReading]) -> BatchAck:
        """Apply readings chunk by chunk, each chunk in its own transaction.

        Raises BatchWriteError on the first failing chunk; the chunks before
        it stay committed and the rest are not attempted.
        """
        start = time.monotonic()
        chunks = chunked(readings, self._chunk_size)
        committed = 0
        with batch_context(len(readings), self._chunk_size):
            for index, chunk in enumerate(chunks):
                try:
                    await self._pool.run_in_transaction(
                        lambda conn, chunk=chunk: self._apply_chunk(conn, chunk),
                        timeout=self._timeout,
                    )
                except Exception as e:
                    logger.error(
                        "Batch chunk %d/%d failed after %dms (%d readings committed): %s",
                        index + 1, len(chunks), _elapsed_ms(start), committed, e,
                    )
                    raise BatchWriteError(
                        chunks_committed=index,
                        readings_committed=committed,
                        failed_chunk=index,
                        total_chunks=len(chunks),
                        cause=e,
                    ) from e
                committed += len(chunk)
                logger.debug("Processed chunk %d/%d (%d readings)", index + 1, len(chunks), len(chunk))

        duration = _elapsed_ms(start)
        logger.info(
            "Batch ingested %d readings in %d chunk(s) in %dms",
            len(readings), len(chunks), duration,
        )
        return BatchAck(accepted=len(readings), chunks=len(chunks), duration_ms=duration)

    async def _apply_chunk(
        self, conn: aiosqlite.Connection, chunk: Sequence[DeviceReading],
    ) -> None:
        """Bulk upsert then bulk insert, per device class present in the chunk."""
        by_class: dict[DeviceClass, list[DeviceReading]] = defaultdict(list)
        for reading in chunk:
            by_class[reading.device_class].append(reading)

        repo = self._repository_factory(conn)
        for device_class, rows in by_class.items():
            await repo.upsert_status(device_class, rows)
        for device_class, rows in by_class.items():
            await repo.insert_history(device_class, rows)


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
