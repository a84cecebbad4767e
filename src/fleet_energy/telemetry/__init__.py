"""Telemetry reading models."""

from fleet_energy.telemetry.readings import (
    DataQuality,
    DeviceClass,
    DeviceReading,
    MeterReading,
    VehicleReading,
    parse_reading,
)

__all__ = [
    "DataQuality",
    "DeviceClass",
    "DeviceReading",
    "MeterReading",
    "VehicleReading",
    "parse_reading",
]
