"""Shared test fixtures for Fleet Energy."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import AsyncGenerator, Callable

import pytest
import pytest_asyncio

from fleet_energy.analytics.aggregator import WindowAggregator
from fleet_energy.config.manager import ConfigManager
from fleet_energy.config.schema import AppConfig
from fleet_energy.db.engine import ConnectionPool
from fleet_energy.db.partitions import PartitionManager
from fleet_energy.ingestion.writer import DualPathWriter
from fleet_energy.telemetry.readings import MeterReading, VehicleReading

# Fixed clock for storage tests: partitions exist for DAY-1, DAY and DAY+1
DAY = date(2026, 2, 9)
NOON = datetime(2026, 2, 9, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def day() -> date:
    return DAY


@pytest.fixture
def noon() -> datetime:
    return NOON


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    """Provide a default test configuration on a temp database."""
    return AppConfig(db={"path": str(tmp_path / "test.db")})


@pytest.fixture
def config_manager(tmp_path: Path) -> ConfigManager:
    """Provide a config manager with test paths."""
    defaults = tmp_path / "config.defaults.yaml"
    defaults.write_text(f"db:\n  path: '{tmp_path / 'test.db'}'\n")
    user = tmp_path / "config.yaml"
    mgr = ConfigManager(defaults_path=defaults, user_path=user)
    mgr.load()
    return mgr


@pytest_asyncio.fixture
async def pool(tmp_path: Path) -> AsyncGenerator[ConnectionPool, None]:
    """Provide a fresh pooled database for each test."""
    pool = ConnectionPool(tmp_path / "test.db", size=4, acquire_timeout=2.0)
    await pool.open()
    yield pool
    await pool.close()


@pytest_asyncio.fixture
async def partitions(pool: ConnectionPool) -> PartitionManager:
    """Partition manager with history partitions for DAY-1, DAY and DAY+1."""
    manager = PartitionManager(pool)
    for offset in (-1, 0, 1):
        await manager.ensure_partition(DAY + timedelta(days=offset))
    return manager


@pytest_asyncio.fixture
async def writer(pool: ConnectionPool, partitions: PartitionManager) -> DualPathWriter:
    return DualPathWriter(pool, chunk_size=1000)


@pytest_asyncio.fixture
async def aggregator(pool: ConnectionPool, partitions: PartitionManager) -> WindowAggregator:
    return WindowAggregator(pool)


@pytest.fixture
def make_meter() -> Callable[..., MeterReading]:
    def _make(
        device_id: str = "METER_001",
        kwh: float = 10.0,
        voltage: float = 230.0,
        at: datetime = NOON,
    ) -> MeterReading:
        return MeterReading(device_id=device_id, ac_energy_kwh=kwh, voltage=voltage, timestamp=at)

    return _make


@pytest.fixture
def make_vehicle() -> Callable[..., VehicleReading]:
    def _make(
        device_id: str = "VEHICLE_001",
        kwh: float = 8.5,
        soc: float = 80.0,
        temp: float | None = 25.0,
        at: datetime = NOON,
    ) -> VehicleReading:
        return VehicleReading(
            device_id=device_id,
            state_of_charge=soc,
            dc_energy_kwh=kwh,
            battery_temp_c=temp,
            timestamp=at,
        )

    return _make
