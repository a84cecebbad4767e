"""Telemetry ingestion."""

from fleet_energy.ingestion.writer import BatchAck, DualPathWriter, WriteAck

__all__ = ["BatchAck", "DualPathWriter", "WriteAck"]
