"""Data access for the current-status tables and the history partitions."""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime, timezone
from typing import Any, Sequence

import aiosqlite

from fleet_energy.db.models import (
    LAYOUTS,
    TableLayout,
    partition_day,
    partition_name,
    to_db_timestamp,
)
from fleet_energy.db.partitions import live_partitions
from fleet_energy.telemetry.readings import DataQuality, DeviceClass, DeviceReading

logger = logging.getLogger(__name__)


def _now() -> str:
    return to_db_timestamp(datetime.now(timezone.utc))


def _field_values(layout: TableLayout, reading: DeviceReading) -> tuple[Any, ...]:
    return tuple(getattr(reading, f) for f in layout.fields)


def _placeholders(width: int, rows: int) -> str:
    row = "(" + ", ".join("?" * width) + ")"
    return ", ".join([row] * rows)


class TelemetryRepository:
    """SQL for one connection. Writers call it inside a unit of work."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self.db = db

    # ── Current status ──────────────────────────────────────

    async def upsert_status(
        self, device_class: DeviceClass, readings: Sequence[DeviceReading],
    ) -> int:
        """Insert or overwrite the status row of every device in one statement.

        Within ``readings`` the last reading per device id wins. There is no
        timestamp guard: whichever transaction commits last sets the row.
        Returns the number of distinct devices written.
        """
        if not readings:
            return 0
        layout = LAYOUTS[device_class]
        latest: dict[str, DeviceReading] = {}
        for reading in readings:
            latest.pop(reading.device_id, None)
            latest[reading.device_id] = reading

        now = _now()
        params: list[Any] = []
        for reading in latest.values():
            params.extend((
                reading.device_id,
                *_field_values(layout, reading),
                to_db_timestamp(reading.timestamp),
                DataQuality.VALID.value,
                now,
                now,
            ))
        width = len(layout.fields) + 5
        updates = ", ".join(
            f"{col} = excluded.{col}"
            for col in (*layout.fields, "last_update_timestamp", "status", "updated_at")
        )
        await self.db.execute(
            f"""INSERT INTO {layout.status_table}
                (device_id, {layout.field_list}, last_update_timestamp, status,
                 created_at, updated_at)
                VALUES {_placeholders(width, len(latest))}
                ON CONFLICT(device_id) DO UPDATE SET {updates}""",
            params,
        )
        return len(latest)

    async def get_status(self, device_class: DeviceClass, device_id: str) -> dict[str, Any] | None:
        layout = LAYOUTS[device_class]
        async with self.db.execute(
            f"SELECT * FROM {layout.status_table} WHERE device_id = ?",
            (device_id,),
        ) as cursor:
            row = await cursor.fetchone()
            return dict(row) if row else None

    async def count_statuses(self, device_class: DeviceClass) -> int:
        layout = LAYOUTS[device_class]
        async with self.db.execute(f"SELECT COUNT(*) FROM {layout.status_table}") as cursor:
            row = await cursor.fetchone()
            return row[0]  # type: ignore[index]

    # ── History ─────────────────────────────────────────────

    async def insert_history(
        self, device_class: DeviceClass, readings: Sequence[DeviceReading],
    ) -> int:
        """Append one history row per reading, one statement per touched partition.

        A missing partition surfaces as ``no such table`` and is translated to
        MissingPartitionError by the unit of work.
        """
        if not readings:
            return 0
        layout = LAYOUTS[device_class]
        by_day: dict[date, list[DeviceReading]] = defaultdict(list)
        for reading in readings:
            by_day[partition_day(reading.timestamp)].append(reading)

        now = _now()
        width = len(layout.fields) + 4
        for day, rows in sorted(by_day.items()):
            params: list[Any] = []
            for reading in rows:
                params.extend((
                    reading.device_id,
                    *_field_values(layout, reading),
                    to_db_timestamp(reading.timestamp),
                    DataQuality.VALID.value,
                    now,
                ))
            await self.db.execute(
                f"""INSERT INTO {partition_name(device_class, day)}
                    (device_id, {layout.field_list}, timestamp, status, created_at)
                    VALUES {_placeholders(width, len(rows))}""",
                params,
            )
        return len(readings)

    async def count_history(
        self,
        device_class: DeviceClass,
        start: datetime,
        end: datetime,
        device_id: str | None = None,
    ) -> int:
        """Number of history rows in ``[start, end]``, optionally for one device."""
        names = await live_partitions(self.db, device_class, start, end)
        total = 0
        for name in names:
            query = f"SELECT COUNT(*) FROM {name} WHERE timestamp >= ? AND timestamp <= ?"
            params: list[Any] = [to_db_timestamp(start), to_db_timestamp(end)]
            if device_id is not None:
                query += " AND device_id = ?"
                params.append(device_id)
            async with self.db.execute(query, params) as cursor:
                row = await cursor.fetchone()
                total += row[0]  # type: ignore[index]
        return total
