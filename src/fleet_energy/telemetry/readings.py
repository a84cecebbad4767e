"""Device reading models shared by ingestion and storage."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, ValidationError, field_validator

from fleet_energy.errors import ReadingValidationError


class DeviceClass(str, Enum):
    """The two independent device populations."""

    METER = "meter"
    VEHICLE = "vehicle"


class DataQuality(str, Enum):
    """Quality tag stored with every row. Only VALID is set by ingestion."""

    VALID = "valid"
    ANOMALY = "anomaly"
    MISSING = "missing"


class _Reading(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    device_id: str = Field(..., min_length=1, max_length=50)
    timestamp: AwareDatetime

    @field_validator("timestamp")
    @classmethod
    def _to_utc(cls, v: datetime) -> datetime:
        return v.astimezone(timezone.utc)


class MeterReading(_Reading):
    """Grid-side smart meter reading."""

    device_id: str = Field(..., min_length=1, max_length=50, alias="meterId")
    ac_energy_kwh: float = Field(..., ge=0, alias="kwhConsumedAc")
    voltage: float = Field(..., ge=0)

    @property
    def device_class(self) -> DeviceClass:
        return DeviceClass.METER


class VehicleReading(_Reading):
    """Vehicle-side charger reading."""

    device_id: str = Field(..., min_length=1, max_length=50, alias="vehicleId")
    state_of_charge: float = Field(..., ge=0, le=100, alias="soc")
    dc_energy_kwh: float = Field(..., ge=0, alias="kwhDeliveredDc")
    battery_temp_c: float | None = Field(None, alias="batteryTemp")

    @property
    def device_class(self) -> DeviceClass:
        return DeviceClass.VEHICLE


DeviceReading = Union[MeterReading, VehicleReading]

_MODELS: dict[DeviceClass, type[_Reading]] = {
    DeviceClass.METER: MeterReading,
    DeviceClass.VEHICLE: VehicleReading,
}


def parse_reading(device_class: DeviceClass | str, payload: dict[str, Any]) -> DeviceReading:
    """Build a reading from an external payload (camelCase or snake_case keys).

    Raises ReadingValidationError when the payload is malformed.
    """
    model = _MODELS[DeviceClass(device_class)]
    try:
        return model.model_validate(payload)  # type: ignore[return-value]
    except ValidationError as e:
        raise ReadingValidationError(str(e)) from e
