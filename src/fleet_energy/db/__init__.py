"""Database engine, partitions and repository for Fleet Energy."""

from fleet_energy.db.engine import ConnectionPool, close_pool, init_pool
from fleet_energy.db.partitions import PartitionManager, PartitionResult
from fleet_energy.db.repository import TelemetryRepository

__all__ = [
    "ConnectionPool",
    "PartitionManager",
    "PartitionResult",
    "TelemetryRepository",
    "close_pool",
    "init_pool",
]
