"""Error taxonomy for ingestion and analytics."""

from __future__ import annotations

from datetime import date


class FleetEnergyError(Exception):
    """Base class for all fleet energy errors."""


class ReadingValidationError(FleetEnergyError):
    """External payload could not be turned into a reading. Never retried."""


class NotFoundError(FleetEnergyError):
    """No rows matched the request. A normal outcome, not a fault."""


class WriteError(FleetEnergyError):
    """A write did not commit."""


class TransientStorageError(WriteError):
    """Storage busy, unavailable or timed out. Safe to retry with backoff.

    Prefer retrying only when the transaction is known to have failed: a
    retried history insert after an ambiguous commit can duplicate a row.
    """


class MissingPartitionError(WriteError):
    """No history partition exists for the target day.

    Fatal for that write until the partition is provisioned.
    """

    def __init__(self, device_class: str, day: date, message: str = "") -> None:
        self.device_class = device_class
        self.day = day
        super().__init__(
            message or f"No {device_class} history partition for {day.isoformat()}"
        )


class BatchWriteError(WriteError):
    """A chunk of a batch failed. Earlier chunks stay committed."""

    def __init__(
        self,
        chunks_committed: int,
        readings_committed: int,
        failed_chunk: int,
        total_chunks: int,
        cause: Exception,
    ) -> None:
        self.chunks_committed = chunks_committed
        self.readings_committed = readings_committed
        self.failed_chunk = failed_chunk
        self.total_chunks = total_chunks
        self.cause = cause
        super().__init__(
            f"Batch chunk {failed_chunk + 1}/{total_chunks} failed after "
            f"{chunks_committed} committed chunk(s): {cause}"
        )

    @property
    def retryable(self) -> bool:
        return isinstance(self.cause, TransientStorageError)


class QueryWindowError(FleetEnergyError):
    """An analytics window spans more partitions than one query can union."""

    def __init__(self, partitions: int, limit: int) -> None:
        self.partitions = partitions
        self.limit = limit
        super().__init__(f"Window spans {partitions} partitions (max {limit})")
