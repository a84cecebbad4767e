"""Current device status and history partition endpoints."""

from __future__ import annotations

import logging
from datetime import date

from fastapi import APIRouter, Request

from fleet_energy.db.partitions import PartitionManager
from fleet_energy.db.repository import TelemetryRepository
from fleet_energy.errors import NotFoundError
from fleet_energy.telemetry.readings import DeviceClass

router = APIRouter()
logger = logging.getLogger(__name__)


# ── Current status ───────────────────────────────────

async def _status(request: Request, device_class: DeviceClass, device_id: str) -> dict:
    pool = request.app.state.pool
    row = await pool.run_query(
        lambda conn: TelemetryRepository(conn).get_status(device_class, device_id),
        timeout=request.app.state.config.db.query_timeout_seconds,
    )
    if row is None:
        raise NotFoundError(f"No {device_class.value} with id {device_id}")
    return row


@router.get("/status/meter/{meter_id}", tags=["status"])
async def meter_status(request: Request, meter_id: str) -> dict:
    return await _status(request, DeviceClass.METER, meter_id)


@router.get("/status/vehicle/{vehicle_id}", tags=["status"])
async def vehicle_status(request: Request, vehicle_id: str) -> dict:
    return await _status(request, DeviceClass.VEHICLE, vehicle_id)


# ── Partitions ───────────────────────────────────────

def _partitions(request: Request) -> PartitionManager:
    return request.app.state.partitions


@router.get("/partitions", tags=["partitions"])
async def list_partitions(request: Request) -> dict:
    manager = _partitions(request)
    return {
        dc.value: [d.isoformat() for d in await manager.list_partitions(dc)]
        for dc in DeviceClass
    }


@router.post("/partitions/{day}", tags=["partitions"])
async def ensure_partition(request: Request, day: date) -> dict:
    result = await _partitions(request).ensure_partition(day)
    return {"day": day.isoformat(), "result": result.value}


@router.delete("/partitions/{day}", tags=["partitions"])
async def retire_partition(request: Request, day: date) -> dict:
    logger.info("Retiring partitions for %s on request", day.isoformat())
    result = await _partitions(request).retire_partition(day)
    return {"day": day.isoformat(), "result": result.value}
