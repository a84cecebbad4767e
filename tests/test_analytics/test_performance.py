"""Tests for performance report assembly."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from fleet_energy.analytics.aggregator import TimeWindowAggregate, WindowAggregator
from fleet_energy.analytics.classifier import HealthTier
from fleet_energy.analytics.correlation import NoCorrelation, StaticCorrelation
from fleet_energy.analytics.performance import PerformanceService, assemble_report
from fleet_energy.errors import NotFoundError
from fleet_energy.telemetry.readings import DeviceClass

T = datetime(2026, 2, 9, 12, 0, tzinfo=timezone.utc)


def _aggregate(device_class: DeviceClass, device_id: str | None, energy: float, **kw) -> TimeWindowAggregate:
    return TimeWindowAggregate(
        device_class=device_class,
        device_id=device_id,
        window_start=T - timedelta(hours=24),
        window_end=T,
        reading_count=kw.pop("reading_count", 1),
        energy_kwh_sum=energy,
        energy_kwh_avg=energy,
        first_reading_at=T - timedelta(hours=2),
        last_reading_at=T - timedelta(hours=1),
        **kw,
    )


class TestAssembleReport:
    def test_rounding_happens_on_report(self) -> None:
        vehicle = _aggregate(DeviceClass.VEHICLE, "VEHICLE_001", 10.123456, battery_temp_avg=24.98765)
        meter = _aggregate(DeviceClass.METER, "METER_001", 11.987654)
        report = assemble_report(vehicle, meter)

        assert report.total_kwh_delivered_dc == 10.123
        assert report.total_kwh_consumed_ac == 11.988
        assert report.efficiency_ratio == round(10.123456 / 11.987654, 4)
        assert report.avg_battery_temp == 24.99

    def test_missing_meter_is_zero_source(self) -> None:
        vehicle = _aggregate(DeviceClass.VEHICLE, "VEHICLE_001", 50.0)
        report = assemble_report(vehicle, None, meter_scope="none")
        assert report.total_kwh_consumed_ac == 0.0
        assert report.efficiency_ratio == 0.0
        assert report.health_status is HealthTier.CRITICAL

    def test_no_temperatures_reports_zero(self) -> None:
        vehicle = _aggregate(DeviceClass.VEHICLE, "VEHICLE_001", 50.0, battery_temp_avg=None)
        assert assemble_report(vehicle, None).avg_battery_temp == 0.0

    def test_period_comes_from_vehicle_readings(self) -> None:
        vehicle = _aggregate(DeviceClass.VEHICLE, "VEHICLE_001", 50.0)
        report = assemble_report(vehicle, None)
        assert report.period_start == T - timedelta(hours=2)
        assert report.period_end == T - timedelta(hours=1)
        assert report.window_start == T - timedelta(hours=24)

    def test_rejects_fleet_vehicle_aggregate(self) -> None:
        with pytest.raises(ValueError):
            assemble_report(_aggregate(DeviceClass.VEHICLE, None, 1.0), None)

    def test_to_dict_uses_camel_case(self) -> None:
        vehicle = _aggregate(DeviceClass.VEHICLE, "VEHICLE_001", 106.638, battery_temp_avg=25.5)
        meter = _aggregate(DeviceClass.METER, "METER_001", 125.456)
        data = assemble_report(vehicle, meter, meter_id="METER_001").to_dict()
        assert data["vehicleId"] == "VEHICLE_001"
        assert data["totalKwhConsumedAc"] == 125.456
        assert data["totalKwhDeliveredDc"] == 106.638
        assert data["efficiencyRatio"] == 0.85
        assert data["healthStatus"] == "healthy"
        assert data["readingCount"] == 1
        assert data["periodStart"] == "2026-02-09T10:00:00+00:00"
        assert data["meterScope"] == "meter"
        assert data["meterId"] == "METER_001"


class TestMeterResolution:
    def test_hint_beats_correlation(self) -> None:
        service = PerformanceService(AsyncMock(), correlation=StaticCorrelation({"V1": "M2"}))
        assert service.resolve_meter("V1", "M9") == ("meter", "M9")
        assert service.resolve_meter("V1") == ("meter", "M2")

    def test_unmapped_uses_scope(self) -> None:
        assert PerformanceService(AsyncMock()).resolve_meter("V1") == ("fleet", None)
        service = PerformanceService(AsyncMock(), NoCorrelation(), unmapped_meter_scope="none")
        assert service.resolve_meter("V1") == ("none", None)

    def test_window(self) -> None:
        service = PerformanceService(AsyncMock(), default_window_hours=6)
        assert service.window(now=T) == (T - timedelta(hours=6), T)
        assert service.window(48, now=T) == (T - timedelta(hours=48), T)
        with pytest.raises(ValueError):
            service.window(0, now=T)
        with pytest.raises(ValueError):
            service.window(now=datetime(2026, 2, 9, 12))

    def test_clock_sets_default_now(self) -> None:
        service = PerformanceService(AsyncMock(), clock=lambda: T)
        assert service.window() == (T - timedelta(hours=24), T)


@pytest.mark.asyncio
class TestGetPerformance:
    async def test_healthy_scenario(self, writer, aggregator: WindowAggregator, make_meter, make_vehicle, noon) -> None:
        await writer.apply_reading(make_meter(kwh=125.456, at=noon - timedelta(hours=1)))
        await writer.apply_reading(make_vehicle(kwh=106.638, soc=80.0, temp=25.5, at=noon - timedelta(hours=1)))

        service = PerformanceService(aggregator)
        report = await service.get_performance("VEHICLE_001", meter_id="METER_001", now=noon)

        assert report.efficiency_ratio == 0.85
        assert report.health_status is HealthTier.HEALTHY
        assert report.reading_count == 1
        assert report.total_kwh_consumed_ac == 125.456
        assert report.total_kwh_delivered_dc == 106.638
        assert report.avg_battery_temp == 25.5
        assert report.window_start == noon - timedelta(hours=24)
        assert report.window_end == noon
        assert report.meter_scope == "meter"

    async def test_vehicle_without_history_is_not_found(self, aggregator: WindowAggregator, make_meter, writer, noon) -> None:
        await writer.apply_reading(make_meter(at=noon - timedelta(hours=1)))
        with pytest.raises(NotFoundError):
            await PerformanceService(aggregator).get_performance("VEHICLE_404", now=noon)

    async def test_meter_without_history_is_critical(
        self, writer, aggregator: WindowAggregator, make_vehicle, noon,
    ) -> None:
        await writer.apply_reading(make_vehicle(kwh=40.0, at=noon - timedelta(hours=1)))
        report = await PerformanceService(aggregator).get_performance(
            "VEHICLE_001", meter_id="METER_404", now=noon,
        )
        assert report.total_kwh_consumed_ac == 0.0
        assert report.efficiency_ratio == 0.0
        assert report.health_status is HealthTier.CRITICAL
        assert report.total_kwh_delivered_dc == 40.0

    async def test_fleet_scope_sums_all_meters_and_warns(
        self, writer, aggregator: WindowAggregator, make_meter, make_vehicle, noon, caplog,
    ) -> None:
        await writer.apply_batch([
            make_meter(device_id="METER_001", kwh=60.0, at=noon - timedelta(hours=3)),
            make_meter(device_id="METER_002", kwh=65.456, at=noon - timedelta(hours=2)),
            make_vehicle(kwh=106.638, at=noon - timedelta(hours=1)),
        ])
        with caplog.at_level(logging.WARNING, logger="fleet_energy.analytics.performance"):
            report = await PerformanceService(aggregator).get_performance("VEHICLE_001", now=noon)

        assert report.meter_scope == "fleet"
        assert report.meter_id is None
        assert report.total_kwh_consumed_ac == 125.456
        assert report.health_status is HealthTier.HEALTHY
        assert any("fleet-wide" in r.getMessage() for r in caplog.records)

    async def test_correlation_picks_meter(
        self, writer, aggregator: WindowAggregator, make_meter, make_vehicle, noon,
    ) -> None:
        await writer.apply_batch([
            make_meter(device_id="METER_001", kwh=1000.0, at=noon - timedelta(hours=2)),
            make_meter(device_id="METER_002", kwh=100.0, at=noon - timedelta(hours=2)),
            make_vehicle(kwh=80.0, at=noon - timedelta(hours=1)),
        ])
        service = PerformanceService(aggregator, correlation=StaticCorrelation({"VEHICLE_001": "METER_002"}))
        report = await service.get_performance("VEHICLE_001", now=noon)
        assert report.meter_id == "METER_002"
        assert report.efficiency_ratio == 0.8
        assert report.health_status is HealthTier.DEGRADED

    async def test_none_scope_skips_meter_query(self, noon) -> None:
        aggregator = AsyncMock(spec=WindowAggregator)
        aggregator.aggregate.return_value = _aggregate(DeviceClass.VEHICLE, "VEHICLE_001", 30.0)
        service = PerformanceService(aggregator, unmapped_meter_scope="none")

        report = await service.get_performance("VEHICLE_001", now=noon)
        assert aggregator.aggregate.await_count == 1
        assert report.meter_scope == "none"
        assert report.health_status is HealthTier.CRITICAL

    async def test_rows_outside_window_are_ignored(
        self, writer, aggregator: WindowAggregator, make_meter, make_vehicle, noon,
    ) -> None:
        await writer.apply_batch([
            make_meter(kwh=125.456, at=noon - timedelta(hours=1)),
            make_vehicle(kwh=106.638, at=noon - timedelta(hours=1)),
            make_meter(kwh=500.0, at=noon - timedelta(hours=25)),
            make_vehicle(kwh=500.0, at=noon + timedelta(hours=1)),
            make_vehicle(kwh=500.0, at=noon - timedelta(hours=24, seconds=1)),
        ])
        report = await PerformanceService(aggregator).get_performance(
            "VEHICLE_001", meter_id="METER_001", now=noon,
        )
        assert report.reading_count == 1
        assert report.efficiency_ratio == 0.85

    async def test_custom_window(self, writer, aggregator: WindowAggregator, make_vehicle, noon) -> None:
        await writer.apply_batch([
            make_vehicle(kwh=1.0, at=noon - timedelta(minutes=30)),
            make_vehicle(kwh=1.0, at=noon - timedelta(hours=3)),
        ])
        service = PerformanceService(aggregator, unmapped_meter_scope="none")
        assert (await service.get_performance("VEHICLE_001", window_hours=1, now=noon)).reading_count == 1
        assert (await service.get_performance("VEHICLE_001", window_hours=4, now=noon)).reading_count == 2
