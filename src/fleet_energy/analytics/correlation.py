"""Vehicle-to-meter correlation: which meter supplied a vehicle's charge."""

from __future__ import annotations

from typing import Mapping, Protocol


class MeterCorrelation(Protocol):
    def meter_for(self, vehicle_id: str) -> str | None:
        """Meter that charged ``vehicle_id``, or None when unknown."""
        ...


class NoCorrelation:
    """Knows no mapping; every vehicle falls back to the unmapped scope."""

    def meter_for(self, vehicle_id: str) -> str | None:
        return None


class StaticCorrelation:
    """Fixed vehicle -> meter mapping, typically from ``analytics.vehicle_meters``."""

    def __init__(self, mapping: Mapping[str, str]) -> None:
        self._mapping = dict(mapping)

    def meter_for(self, vehicle_id: str) -> str | None:
        return self._mapping.get(vehicle_id)
