"""Log context enrichment for writes: which device or batch a log line belongs to."""

from __future__ import annotations

import contextlib
from typing import Iterator

import structlog

from fleet_energy.telemetry.readings import DeviceReading


def bind_context(**kwargs: object) -> None:
    """Bind key-value pairs to the current logging context (task-local)."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear the current logging context."""
    structlog.contextvars.clear_contextvars()


@contextlib.contextmanager
def reading_context(reading: DeviceReading) -> Iterator[None]:
    """Tag log lines inside the block with the reading's device class and id."""
    with structlog.contextvars.bound_contextvars(
        device_class=reading.device_class.value, device_id=reading.device_id,
    ):
        yield


@contextlib.contextmanager
def batch_context(batch_size: int, chunk_size: int) -> Iterator[None]:
    """Tag log lines inside the block with the batch and chunk sizes."""
    with structlog.contextvars.bound_contextvars(batch_size=batch_size, chunk_size=chunk_size):
        yield
