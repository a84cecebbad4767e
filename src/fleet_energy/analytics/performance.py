"""Vehicle performance reports: vehicle and meter aggregates plus classification."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Literal

from fleet_energy.analytics.aggregator import TimeWindowAggregate, WindowAggregator
from fleet_energy.analytics.classifier import (
    DEFAULT_THRESHOLDS,
    HealthTier,
    TierThresholds,
    classify,
)
from fleet_energy.analytics.correlation import MeterCorrelation, NoCorrelation
from fleet_energy.errors import NotFoundError
from fleet_energy.telemetry.readings import DeviceClass

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_HOURS = 24

RATIO_DECIMALS = 4
ENERGY_DECIMALS = 3
TEMP_DECIMALS = 2

MeterScope = Literal["meter", "fleet", "none"]


@dataclass(frozen=True)
class PerformanceReport:
    vehicle_id: str
    window_start: datetime
    window_end: datetime
    period_start: datetime  # First vehicle reading in the window
    period_end: datetime  # Last vehicle reading in the window
    total_kwh_consumed_ac: float
    total_kwh_delivered_dc: float
    efficiency_ratio: float
    avg_battery_temp: float
    reading_count: int
    health_status: HealthTier
    meter_scope: MeterScope
    meter_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "vehicleId": self.vehicle_id,
            "windowStart": self.window_start.isoformat(),
            "windowEnd": self.window_end.isoformat(),
            "periodStart": self.period_start.isoformat(),
            "periodEnd": self.period_end.isoformat(),
            "totalKwhConsumedAc": self.total_kwh_consumed_ac,
            "totalKwhDeliveredDc": self.total_kwh_delivered_dc,
            "efficiencyRatio": self.efficiency_ratio,
            "avgBatteryTemp": self.avg_battery_temp,
            "readingCount": self.reading_count,
            "healthStatus": self.health_status.value,
            "meterScope": self.meter_scope,
            "meterId": self.meter_id,
        }


def assemble_report(
    vehicle: TimeWindowAggregate,
    meter: TimeWindowAggregate | None,
    thresholds: TierThresholds = DEFAULT_THRESHOLDS,
    meter_scope: MeterScope = "meter",
    meter_id: str | None = None,
) -> PerformanceReport:
    """Build the report from aggregates. A missing meter aggregate means zero source energy.

    Classification uses the unrounded ratio; rounding applies to the report only.
    """
    if vehicle.device_id is None:
        raise ValueError("vehicle aggregate must be for a single vehicle")
    source = meter.energy_kwh_sum if meter is not None else 0.0
    delivered = vehicle.energy_kwh_sum
    ratio, tier = classify(source, delivered, thresholds)
    return PerformanceReport(
        vehicle_id=vehicle.device_id,
        window_start=vehicle.window_start,
        window_end=vehicle.window_end,
        period_start=vehicle.first_reading_at,
        period_end=vehicle.last_reading_at,
        total_kwh_consumed_ac=round(source, ENERGY_DECIMALS),
        total_kwh_delivered_dc=round(delivered, ENERGY_DECIMALS),
        efficiency_ratio=round(ratio, RATIO_DECIMALS),
        avg_battery_temp=round(vehicle.battery_temp_avg or 0.0, TEMP_DECIMALS),
        reading_count=vehicle.reading_count,
        health_status=tier,
        meter_scope=meter_scope,
        meter_id=meter_id,
    )


class PerformanceService:
    """Answers ``get_performance`` for one vehicle over a trailing window.

    The source meter is resolved in order: explicit ``meter_id``, the injected
    correlation, then ``unmapped_meter_scope`` (``fleet`` sums every meter in
    the window, ``none`` reports zero source energy).
    """

    def __init__(
        self,
        aggregator: WindowAggregator,
        correlation: MeterCorrelation | None = None,
        thresholds: TierThresholds = DEFAULT_THRESHOLDS,
        unmapped_meter_scope: Literal["fleet", "none"] = "fleet",
        default_window_hours: int = DEFAULT_WINDOW_HOURS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._aggregator = aggregator
        self._correlation = correlation or NoCorrelation()
        self._thresholds = thresholds
        self._unmapped_scope = unmapped_meter_scope
        self._default_window_hours = default_window_hours
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def window(self, window_hours: int | None = None, now: datetime | None = None) -> tuple[datetime, datetime]:
        """The inclusive window ``[now - window_hours, now]``."""
        hours = self._default_window_hours if window_hours is None else window_hours
        if hours <= 0:
            raise ValueError("window_hours must be positive")
        end = now or self._clock()
        if end.tzinfo is None:
            raise ValueError("now must be timezone-aware")
        return end - timedelta(hours=hours), end

    def resolve_meter(self, vehicle_id: str, meter_id: str | None = None) -> tuple[MeterScope, str | None]:
        if meter_id:
            return "meter", meter_id
        correlated = self._correlation.meter_for(vehicle_id)
        if correlated:
            return "meter", correlated
        return self._unmapped_scope, None

    async def get_performance(
        self,
        vehicle_id: str,
        window_hours: int | None = None,
        meter_id: str | None = None,
        now: datetime | None = None,
    ) -> PerformanceReport:
        """Efficiency report for ``vehicle_id``.

        Raises NotFoundError when the vehicle has no history in the window. A
        meter with no history is not an error: source energy is 0 and the
        report classifies as critical.
        """
        start = time.monotonic()
        window_start, window_end = self.window(window_hours, now)

        vehicle = await self._aggregator.aggregate(
            DeviceClass.VEHICLE, vehicle_id, window_start, window_end,
        )

        scope, resolved_meter = self.resolve_meter(vehicle_id, meter_id)
        meter: TimeWindowAggregate | None = None
        if scope == "fleet":
            logger.warning(
                "No meter mapped to vehicle %s; using fleet-wide meter energy as source",
                vehicle_id,
            )
        if scope != "none":
            try:
                meter = await self._aggregator.aggregate(
                    DeviceClass.METER, resolved_meter, window_start, window_end,
                )
            except NotFoundError:
                logger.info(
                    "No meter telemetry (%s) for vehicle %s in window; source energy is 0",
                    resolved_meter or "fleet", vehicle_id,
                )

        report = assemble_report(
            vehicle, meter, self._thresholds, meter_scope=scope, meter_id=resolved_meter,
        )
        logger.info(
            "Performance for %s: ratio=%.4f status=%s readings=%d (%dms)",
            vehicle_id, report.efficiency_ratio, report.health_status.value,
            report.reading_count, int((time.monotonic() - start) * 1000),
        )
        return report
