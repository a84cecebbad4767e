"""Time-windowed aggregation over partitioned history.

Only the daily partitions intersecting the window are read. Inside each
partition the ``(device_id, timestamp)`` index serves per-device queries and
the ``timestamp`` index serves fleet-wide ones; ``INDEXED BY`` pins those
access paths so a query can never silently fall back to a full scan. Count,
sums and averages come from a single aggregate over a ``UNION ALL`` of the
pruned partitions.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

import aiosqlite

from fleet_energy.db.engine import ConnectionPool
from fleet_energy.db.models import (
    LAYOUTS,
    device_time_index,
    from_db_timestamp,
    time_index,
    to_db_timestamp,
)
from fleet_energy.db.partitions import live_partitions
from fleet_energy.errors import NotFoundError, QueryWindowError
from fleet_energy.telemetry.readings import DeviceClass

logger = logging.getLogger(__name__)

# SQLite caps the number of terms in one compound SELECT at 500
MAX_WINDOW_PARTITIONS = 500

_AGGREGATES: dict[DeviceClass, str] = {
    DeviceClass.METER: (
        "SUM(ac_energy_kwh) AS energy_sum, AVG(ac_energy_kwh) AS energy_avg, "
        "AVG(voltage) AS voltage_avg"
    ),
    DeviceClass.VEHICLE: (
        "SUM(dc_energy_kwh) AS energy_sum, AVG(dc_energy_kwh) AS energy_avg, "
        "AVG(state_of_charge) AS soc_avg, MIN(state_of_charge) AS soc_min, "
        "MAX(state_of_charge) AS soc_max, AVG(battery_temp_c) AS battery_temp_avg"
    ),
}


@dataclass(frozen=True)
class TimeWindowAggregate:
    """Aggregates of one device (or the whole class when ``device_id`` is None)."""

    device_class: DeviceClass
    device_id: str | None
    window_start: datetime
    window_end: datetime
    reading_count: int
    energy_kwh_sum: float
    energy_kwh_avg: float
    first_reading_at: datetime
    last_reading_at: datetime
    voltage_avg: float | None = None
    soc_avg: float | None = None
    soc_min: float | None = None
    soc_max: float | None = None
    battery_temp_avg: float | None = None  # None when no reading carried a temperature


@dataclass(frozen=True)
class DailySummary:
    """Per-day rollup of one vehicle's history."""

    day: date
    reading_count: int
    dc_energy_kwh_sum: float
    battery_temp_avg: float | None
    soc_min: float
    soc_max: float
    soc_avg: float


def build_window_query(
    device_class: DeviceClass,
    partitions: list[str],
    device_id: str | None,
    window_start: datetime,
    window_end: datetime,
    select: str,
    group_by: str = "",
) -> tuple[str, list[Any]]:
    """Compose ``SELECT <select> FROM (<pruned partitions>) [GROUP BY ...]``."""
    if not partitions:
        raise ValueError("no partitions to query")
    if len(partitions) > MAX_WINDOW_PARTITIONS:
        raise QueryWindowError(len(partitions), MAX_WINDOW_PARTITIONS)
    layout = LAYOUTS[device_class]
    columns = f"{layout.field_list}, timestamp"
    lo, hi = to_db_timestamp(window_start), to_db_timestamp(window_end)

    parts: list[str] = []
    params: list[Any] = []
    for name in partitions:
        if device_id is None:
            parts.append(
                f"SELECT {columns} FROM {name} INDEXED BY {time_index(name)} "
                "WHERE timestamp >= ? AND timestamp <= ?"
            )
            params.extend((lo, hi))
        else:
            parts.append(
                f"SELECT {columns} FROM {name} INDEXED BY {device_time_index(name)} "
                "WHERE device_id = ? AND timestamp >= ? AND timestamp <= ?"
            )
            params.extend((device_id, lo, hi))

    sql = f"SELECT {select} FROM ({' UNION ALL '.join(parts)})"
    if group_by:
        sql += f" GROUP BY {group_by} ORDER BY {group_by}"
    return sql, params


class WindowAggregator:
    """Answers aggregate queries over ``[window_start, window_end]`` (inclusive)."""

    def __init__(self, pool: ConnectionPool, query_timeout: float | None = None) -> None:
        self._pool = pool
        self._timeout = query_timeout

    async def aggregate(
        self,
        device_class: DeviceClass,
        device_id: str | None,
        window_start: datetime,
        window_end: datetime,
    ) -> TimeWindowAggregate:
        """Aggregate one device's (or the whole class') readings in the window.

        Raises NotFoundError when no reading falls inside the window and
        QueryWindowError when it spans more than MAX_WINDOW_PARTITIONS days.
        """
        start = time.monotonic()
        select = (
            f"COUNT(*) AS reading_count, {_AGGREGATES[device_class]}, "
            "MIN(timestamp) AS first_ts, MAX(timestamp) AS last_ts"
        )

        async def _work(conn: aiosqlite.Connection) -> tuple[dict[str, Any] | None, int]:
            partitions = await live_partitions(conn, device_class, window_start, window_end)
            if not partitions:
                return None, 0
            sql, params = build_window_query(
                device_class, partitions, device_id, window_start, window_end, select,
            )
            async with conn.execute(sql, params) as cursor:
                row = await cursor.fetchone()
            return (dict(row) if row else None), len(partitions)

        row, touched = await self._pool.run_query(_work, timeout=self._timeout)
        if row is None or not row["reading_count"]:
            target = device_id or f"any {device_class.value}"
            raise NotFoundError(
                f"No {device_class.value} telemetry for {target} between "
                f"{window_start.isoformat()} and {window_end.isoformat()}"
            )

        logger.debug(
            "Aggregated %d %s readings for %s over %d partition(s) in %dms",
            row["reading_count"], device_class.value, device_id or "fleet",
            touched, int((time.monotonic() - start) * 1000),
        )
        return TimeWindowAggregate(
            device_class=device_class,
            device_id=device_id,
            window_start=window_start,
            window_end=window_end,
            reading_count=row["reading_count"],
            energy_kwh_sum=row["energy_sum"],
            energy_kwh_avg=row["energy_avg"],
            first_reading_at=from_db_timestamp(row["first_ts"]),
            last_reading_at=from_db_timestamp(row["last_ts"]),
            voltage_avg=row.get("voltage_avg"),
            soc_avg=row.get("soc_avg"),
            soc_min=row.get("soc_min"),
            soc_max=row.get("soc_max"),
            battery_temp_avg=row.get("battery_temp_avg"),
        )

    async def daily_summary(
        self,
        vehicle_id: str,
        window_start: datetime,
        window_end: datetime,
    ) -> list[DailySummary]:
        """Per-UTC-day rollup for one vehicle; empty when there is no data."""
        select = (
            "substr(timestamp, 1, 10) AS day, COUNT(*) AS reading_count, "
            "SUM(dc_energy_kwh) AS dc_sum, AVG(battery_temp_c) AS temp_avg, "
            "MIN(state_of_charge) AS soc_min, MAX(state_of_charge) AS soc_max, "
            "AVG(state_of_charge) AS soc_avg"
        )

        async def _work(conn: aiosqlite.Connection) -> list[dict[str, Any]]:
            partitions = await live_partitions(
                conn, DeviceClass.VEHICLE, window_start, window_end,
            )
            if not partitions:
                return []
            sql, params = build_window_query(
                DeviceClass.VEHICLE, partitions, vehicle_id,
                window_start, window_end, select, group_by="day",
            )
            async with conn.execute(sql, params) as cursor:
                return [dict(r) for r in await cursor.fetchall()]

        rows = await self._pool.run_query(_work, timeout=self._timeout)
        return [
            DailySummary(
                day=date.fromisoformat(r["day"]),
                reading_count=r["reading_count"],
                dc_energy_kwh_sum=r["dc_sum"],
                battery_temp_avg=r["temp_avg"],
                soc_min=r["soc_min"],
                soc_max=r["soc_max"],
                soc_avg=r["soc_avg"],
            )
            for r in rows
        ]

    async def explain(
        self,
        device_class: DeviceClass,
        device_id: str | None,
        window_start: datetime,
        window_end: datetime,
    ) -> list[str]:
        """Query plan of ``aggregate`` for the same arguments, one line per step."""

        async def _work(conn: aiosqlite.Connection) -> list[str]:
            partitions = await live_partitions(conn, device_class, window_start, window_end)
            if not partitions:
                return []
            sql, params = build_window_query(
                device_class, partitions, device_id, window_start, window_end,
                f"COUNT(*), {_AGGREGATES[device_class]}",
            )
            async with conn.execute(f"EXPLAIN QUERY PLAN {sql}", params) as cursor:
                return [r["detail"] for r in await cursor.fetchall()]

        return await self._pool.run_query(_work, timeout=self._timeout)
