"""SQL table definitions: current-status tables and daily history partitions."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone

from fleet_energy.telemetry.readings import DeviceClass

SCHEMA_VERSION = 1


@dataclass(frozen=True)
class TableLayout:
    """Physical layout shared by a device class' status table and history partitions."""

    device_class: DeviceClass
    status_table: str
    history_prefix: str
    fields: tuple[str, ...]  # Reading attributes stored in both stores, in column order

    @property
    def field_list(self) -> str:
        return ", ".join(self.fields)


LAYOUTS: dict[DeviceClass, TableLayout] = {
    DeviceClass.METER: TableLayout(
        device_class=DeviceClass.METER,
        status_table="current_meter_status",
        history_prefix="meter_telemetry_history",
        fields=("ac_energy_kwh", "voltage"),
    ),
    DeviceClass.VEHICLE: TableLayout(
        device_class=DeviceClass.VEHICLE,
        status_table="current_vehicle_status",
        history_prefix="vehicle_telemetry_history",
        fields=("state_of_charge", "dc_energy_kwh", "battery_temp_c"),
    ),
}

# Column definitions per reading attribute (status and history use the same)
_FIELD_COLUMNS: dict[str, str] = {
    "ac_energy_kwh": "ac_energy_kwh   REAL NOT NULL CHECK (ac_energy_kwh >= 0)",
    "voltage": "voltage         REAL NOT NULL CHECK (voltage >= 0)",
    "state_of_charge": "state_of_charge REAL NOT NULL CHECK (state_of_charge >= 0 AND state_of_charge <= 100)",
    "dc_energy_kwh": "dc_energy_kwh   REAL NOT NULL CHECK (dc_energy_kwh >= 0)",
    "battery_temp_c": "battery_temp_c  REAL",
}


def to_db_timestamp(value: datetime) -> str:
    """Fixed-width UTC ISO text, so string order equals time order."""
    if value.tzinfo is None:
        raise ValueError("Timestamps must be timezone-aware")
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value)


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """Half-open UTC range ``[day 00:00, day+1 00:00)`` covered by one partition."""
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def partition_name(device_class: DeviceClass, day: date) -> str:
    """Deterministic history partition name, e.g. ``meter_telemetry_history_2026_02_09``."""
    return f"{LAYOUTS[device_class].history_prefix}_{day:%Y_%m_%d}"


def partition_day(value: datetime) -> date:
    """The UTC day whose partition holds a reading taken at ``value``."""
    return value.astimezone(timezone.utc).date()


def parse_partition_name(name: str) -> tuple[DeviceClass, date] | None:
    """Inverse of ``partition_name``; None for any other table name."""
    for layout in LAYOUTS.values():
        prefix = layout.history_prefix + "_"
        if name.startswith(prefix):
            try:
                return layout.device_class, datetime.strptime(name[len(prefix):], "%Y_%m_%d").date()
            except ValueError:
                return None
    return None


def _status_table_ddl(layout: TableLayout) -> list[str]:
    columns = ",\n        ".join(_FIELD_COLUMNS[f] for f in layout.fields)
    return [
        f"""
    CREATE TABLE IF NOT EXISTS {layout.status_table} (
        device_id             TEXT PRIMARY KEY,
        {columns},
        last_update_timestamp TEXT NOT NULL,
        status                TEXT NOT NULL DEFAULT 'valid',
        created_at            TEXT NOT NULL,
        updated_at            TEXT NOT NULL
    )
    """,
        f"""CREATE INDEX IF NOT EXISTS idx_{layout.status_table}_last_update
       ON {layout.status_table}(last_update_timestamp)""",
    ]


def history_partition_ddl(layout: TableLayout, name: str, day: date) -> list[str]:
    """DDL for one daily history partition and its two access paths.

    The CHECK on ``timestamp`` mirrors the partition's range bound.
    """
    lo, hi = (to_db_timestamp(t) for t in day_bounds(day))
    columns = ",\n        ".join(_FIELD_COLUMNS[f] for f in layout.fields)
    return [
        f"""
    CREATE TABLE IF NOT EXISTS {name} (
        id          INTEGER PRIMARY KEY AUTOINCREMENT,
        device_id   TEXT NOT NULL,
        {columns},
        timestamp   TEXT NOT NULL CHECK (timestamp >= '{lo}' AND timestamp < '{hi}'),
        status      TEXT NOT NULL DEFAULT 'valid',
        created_at  TEXT NOT NULL
    )
    """,
        f"CREATE INDEX IF NOT EXISTS {device_time_index(name)} ON {name}(device_id, timestamp)",
        f"CREATE INDEX IF NOT EXISTS {time_index(name)} ON {name}(timestamp)",
    ]


def device_time_index(partition: str) -> str:
    return f"idx_{partition}_device_time"


def time_index(partition: str) -> str:
    return f"idx_{partition}_time"


# Schema version tracking first so migrations can record progress
TABLES = [
    """
    CREATE TABLE IF NOT EXISTS schema_version (
        id      INTEGER PRIMARY KEY CHECK (id = 1),
        version INTEGER NOT NULL
    )
    """,
    *_status_table_ddl(LAYOUTS[DeviceClass.METER]),
    *_status_table_ddl(LAYOUTS[DeviceClass.VEHICLE]),
    "CREATE INDEX IF NOT EXISTS idx_current_vehicle_status_soc ON current_vehicle_status(state_of_charge)",
]
