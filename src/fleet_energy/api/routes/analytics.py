"""Performance analytics endpoints."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Query, Request

from fleet_energy.analytics.performance import PerformanceService
from fleet_energy.telemetry.readings import DeviceClass

router = APIRouter(tags=["analytics"])
logger = logging.getLogger(__name__)


def _service(request: Request) -> PerformanceService:
    return request.app.state.performance


@router.get("/performance/{vehicle_id}")
async def get_performance(
    request: Request,
    vehicle_id: str,
    meter_id: str | None = Query(None, alias="meterId", min_length=1),
    window_hours: int | None = Query(None, alias="windowHours", ge=1, le=24 * 366),
) -> dict:
    """Charging efficiency of a vehicle over the trailing window (24h by default)."""
    logger.info("Fetching performance for vehicle %s", vehicle_id)
    report = await _service(request).get_performance(
        vehicle_id, window_hours=window_hours, meter_id=meter_id,
    )
    return report.to_dict()


@router.get("/performance/{vehicle_id}/explain")
async def explain_performance(
    request: Request,
    vehicle_id: str,
    window_hours: int | None = Query(None, alias="windowHours", ge=1, le=24 * 366),
) -> dict:
    """Query plan of the vehicle aggregate, to verify partition pruning and index use."""
    window_start, window_end = _service(request).window(window_hours)
    plan = await request.app.state.aggregator.explain(
        DeviceClass.VEHICLE, vehicle_id, window_start, window_end,
    )
    return {
        "vehicleId": vehicle_id,
        "windowStart": window_start.isoformat(),
        "windowEnd": window_end.isoformat(),
        "plan": plan,
    }


@router.get("/daily/{vehicle_id}")
async def daily_summary(
    request: Request,
    vehicle_id: str,
    days: int = Query(7, ge=1, le=366),
) -> dict:
    """Per-day rollup of a vehicle's charging, most recent ``days`` UTC days."""
    now = datetime.now(timezone.utc)
    start = datetime.combine(now.date() - timedelta(days=days - 1), datetime.min.time(), tzinfo=timezone.utc)
    rows = await request.app.state.aggregator.daily_summary(vehicle_id, start, now)
    return {
        "vehicleId": vehicle_id,
        "days": [
            {
                "day": r.day.isoformat(),
                "readingCount": r.reading_count,
                "totalKwhDeliveredDc": round(r.dc_energy_kwh_sum, 3),
                "avgBatteryTemp": round(r.battery_temp_avg, 2) if r.battery_temp_avg is not None else None,
                "minSoc": r.soc_min,
                "maxSoc": r.soc_max,
                "avgSoc": round(r.soc_avg, 2),
            }
            for r in rows
        ],
    }
