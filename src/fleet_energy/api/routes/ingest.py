"""Telemetry ingestion endpoints."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, HTTPException, Request
from pydantic import BaseModel, Field

from fleet_energy.errors import ReadingValidationError
from fleet_energy.ingestion.writer import DualPathWriter
from fleet_energy.telemetry.readings import DeviceClass, DeviceReading, parse_reading

router = APIRouter(tags=["ingestion"])
logger = logging.getLogger(__name__)


# ── Request models ───────────────────────────────────

class ReadingBatch(BaseModel):
    # Items are validated by parse_reading so errors name the failing index
    readings: list[dict[str, Any]] = Field(min_length=1)


# ── Helpers ──────────────────────────────────────────

def _writer(request: Request) -> DualPathWriter:
    return request.app.state.writer


def _parse_batch(device_class: DeviceClass, payloads: list[dict[str, Any]]) -> list[DeviceReading]:
    readings = []
    for i, payload in enumerate(payloads):
        try:
            readings.append(parse_reading(device_class, payload))
        except ReadingValidationError as e:
            raise ReadingValidationError(f"readings[{i}]: {e}") from e
    return readings


async def _ingest_single(request: Request, device_class: DeviceClass, payload: dict[str, Any]) -> dict:
    await _writer(request).apply_reading(parse_reading(device_class, payload))
    return {"status": "accepted"}


async def _ingest_batch(request: Request, device_class: DeviceClass, body: ReadingBatch) -> dict:
    cap = request.app.state.config.ingestion.max_batch_size
    if len(body.readings) > cap:
        raise HTTPException(422, f"Batch of {len(body.readings)} readings exceeds the limit of {cap}")
    logger.info("Ingesting batch of %d %s readings", len(body.readings), device_class.value)
    ack = await _writer(request).apply_batch(_parse_batch(device_class, body.readings))
    return {"status": "accepted", "count": ack.accepted, "chunks": ack.chunks}


# ── Single readings ──────────────────────────────────

@router.post("/meter", status_code=202)
async def ingest_meter(request: Request, payload: dict[str, Any] = Body(...)) -> dict:
    return await _ingest_single(request, DeviceClass.METER, payload)


@router.post("/vehicle", status_code=202)
async def ingest_vehicle(request: Request, payload: dict[str, Any] = Body(...)) -> dict:
    return await _ingest_single(request, DeviceClass.VEHICLE, payload)


# ── Batches ──────────────────────────────────────────

@router.post("/meter/batch", status_code=202)
async def ingest_meter_batch(request: Request, body: ReadingBatch) -> dict:
    return await _ingest_batch(request, DeviceClass.METER, body)


@router.post("/vehicle/batch", status_code=202)
async def ingest_vehicle_batch(request: Request, body: ReadingBatch) -> dict:
    return await _ingest_batch(request, DeviceClass.VEHICLE, body)
