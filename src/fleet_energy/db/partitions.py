"""History partition lifecycle: provision ahead of need, retire past retention.

Each device class' history is split into one table per UTC day, named from
the date alone (``meter_telemetry_history_2026_02_09``). Retiring renames the
day's tables to ``archived_<name>``: they drop out of ingestion and analytics
but keep their rows until an operator exports or drops them.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Iterable

import aiosqlite

from fleet_energy.db.engine import ConnectionPool
from fleet_energy.db.models import (
    LAYOUTS,
    device_time_index,
    history_partition_ddl,
    parse_partition_name,
    partition_name,
    time_index,
)
from fleet_energy.errors import MissingPartitionError, WriteError
from fleet_energy.telemetry.readings import DeviceClass

logger = logging.getLogger(__name__)

ARCHIVE_PREFIX = "archived_"


class PartitionResult(str, Enum):
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"
    DETACHED = "detached"


def days_between(start: datetime, end: datetime) -> list[date]:
    """Every UTC day intersecting the inclusive window ``[start, end]``."""
    first = start.astimezone(timezone.utc).date()
    last = end.astimezone(timezone.utc).date()
    if last < first:
        return []
    return [first + timedelta(days=i) for i in range((last - first).days + 1)]


async def existing_tables(conn: aiosqlite.Connection, names: Iterable[str]) -> set[str]:
    """Subset of ``names`` that exist as tables (lookup by name, no scan)."""
    names = list(names)
    if not names:
        return set()
    placeholders = ", ".join("?" * len(names))
    async with conn.execute(
        f"SELECT name FROM sqlite_master WHERE type = 'table' AND name IN ({placeholders})",
        names,
    ) as cursor:
        rows = await cursor.fetchall()
    return {r[0] for r in rows}


async def live_partitions(
    conn: aiosqlite.Connection,
    device_class: DeviceClass,
    start: datetime,
    end: datetime,
) -> list[str]:
    """Names of existing partitions intersecting ``[start, end]``, oldest first."""
    candidates = [partition_name(device_class, d) for d in days_between(start, end)]
    present = await existing_tables(conn, candidates)
    return [name for name in candidates if name in present]


class PartitionManager:
    """Creates and retires daily history partitions for both device classes.

    Triggered by an external schedule (see ``main.Application``) or the CLI.
    """

    def __init__(self, pool: ConnectionPool, timeout: float | None = None) -> None:
        self._pool = pool
        self._timeout = timeout

    async def ensure_partition(self, day: date) -> PartitionResult:
        """Create the day's partition for every device class if missing."""

        async def _work(conn: aiosqlite.Connection) -> PartitionResult:
            names = {dc: partition_name(dc, day) for dc in DeviceClass}
            present = await existing_tables(conn, names.values())
            if len(present) == len(names):
                return PartitionResult.ALREADY_EXISTS
            for dc, name in names.items():
                for statement in history_partition_ddl(LAYOUTS[dc], name, day):
                    await conn.execute(statement)
            return PartitionResult.CREATED

        result = await self._pool.run_in_transaction(_work, timeout=self._timeout)
        if result is PartitionResult.CREATED:
            logger.info("Created history partitions for %s", day.isoformat())
        return result

    async def retire_partition(self, day: date) -> PartitionResult:
        """Detach the day's partitions from the live set.

        Raises MissingPartitionError when no live partition exists for the day.
        """

        async def _work(conn: aiosqlite.Connection) -> PartitionResult:
            names = [partition_name(dc, day) for dc in DeviceClass]
            present = await existing_tables(conn, names)
            if not present:
                raise MissingPartitionError(
                    "any", day, f"No live history partition for {day.isoformat()}",
                )
            archived = await existing_tables(conn, (ARCHIVE_PREFIX + n for n in present))
            if archived:
                raise WriteError(
                    f"Archive table already exists for {day.isoformat()}: {sorted(archived)}"
                )
            for name in names:
                if name in present:
                    # Index names are global; free them for a re-created partition
                    await conn.execute(f"DROP INDEX IF EXISTS {device_time_index(name)}")
                    await conn.execute(f"DROP INDEX IF EXISTS {time_index(name)}")
                    await conn.execute(f"ALTER TABLE {name} RENAME TO {ARCHIVE_PREFIX}{name}")
            return PartitionResult.DETACHED

        result = await self._pool.run_in_transaction(_work, timeout=self._timeout)
        logger.info("Retired history partitions for %s", day.isoformat())
        return result

    async def ensure_ahead(
        self, days_ahead: int, today: date | None = None,
    ) -> dict[date, PartitionResult]:
        """Provision today's partition plus the next ``days_ahead`` days."""
        today = today or datetime.now(timezone.utc).date()
        results: dict[date, PartitionResult] = {}
        for offset in range(days_ahead + 1):
            day = today + timedelta(days=offset)
            results[day] = await self.ensure_partition(day)
        created = sum(1 for r in results.values() if r is PartitionResult.CREATED)
        logger.info(
            "Partition provisioning: %d created, %d already present (through %s)",
            created, len(results) - created, (today + timedelta(days=days_ahead)).isoformat(),
        )
        return results

    async def retire_older_than(
        self, retention_days: int, today: date | None = None,
    ) -> list[date]:
        """Retire every live partition older than the retention horizon."""
        today = today or datetime.now(timezone.utc).date()
        horizon = today - timedelta(days=retention_days)
        days = {d for dc in DeviceClass for d in await self.list_partitions(dc) if d < horizon}
        retired = []
        for day in sorted(days):
            await self.retire_partition(day)
            retired.append(day)
        if retired:
            logger.info(
                "Retired %d partition day(s) older than %s", len(retired), horizon.isoformat(),
            )
        return retired

    async def list_partitions(self, device_class: DeviceClass) -> list[date]:
        """Dates of the live partitions for a device class, oldest first."""
        prefix = LAYOUTS[device_class].history_prefix + "_"

        async def _work(conn: aiosqlite.Connection) -> list[date]:
            async with conn.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table' AND substr(name, 1, ?) = ?",
                (len(prefix), prefix),
            ) as cursor:
                rows = await cursor.fetchall()
            days = []
            for row in rows:
                parsed = parse_partition_name(row[0])
                if parsed is not None:
                    days.append(parsed[1])
            return sorted(days)

        return await self._pool.run_query(_work, timeout=self._timeout)
