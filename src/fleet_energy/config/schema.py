"""Pydantic configuration models for all system settings."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, model_validator


class DBConfig(BaseModel):
    path: str = "fleet_energy.db"
    pool_size: int = Field(8, ge=1)
    pool_acquire_timeout_seconds: float = Field(5.0, gt=0)  # Backpressure bound
    busy_timeout_ms: int = Field(5000, ge=0)
    transaction_timeout_seconds: float = Field(10.0, gt=0)
    query_timeout_seconds: float = Field(30.0, gt=0)


class IngestionConfig(BaseModel):
    chunk_size: int = Field(1000, ge=1, le=4000)  # Keeps one bulk statement under SQLite's variable limit
    max_batch_size: int = Field(1000, ge=1)  # Per-request cap at the API boundary


class PartitionsConfig(BaseModel):
    days_ahead: int = Field(7, ge=0)
    retention_days: int = Field(90, ge=1)
    maintenance_interval_seconds: int = Field(3600, ge=1)
    create_on_startup: bool = True


class AnalyticsConfig(BaseModel):
    """Efficiency analytics settings.

    ``unmapped_meter_scope`` decides the source energy when a vehicle has no
    meter hint and no correlation entry: ``fleet`` sums every meter in the
    window, ``none`` reports zero source energy.
    """

    window_hours: int = Field(24, ge=1)
    healthy_threshold: float = Field(0.85, ge=0.0, le=1.0)
    degraded_threshold: float = Field(0.75, ge=0.0, le=1.0)
    unmapped_meter_scope: Literal["fleet", "none"] = "fleet"
    vehicle_meters: dict[str, str] = Field(default_factory=dict)  # vehicle_id -> meter_id

    @model_validator(mode="after")
    def _check_thresholds(self) -> "AnalyticsConfig":
        if self.degraded_threshold > self.healthy_threshold:
            raise ValueError("degraded_threshold must not exceed healthy_threshold")
        return self


class APIConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 3000


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "json"
    file: str = ""


class AppConfig(BaseModel):
    """Root configuration model containing all system settings."""

    db: DBConfig = DBConfig()
    ingestion: IngestionConfig = IngestionConfig()
    partitions: PartitionsConfig = PartitionsConfig()
    analytics: AnalyticsConfig = AnalyticsConfig()
    api: APIConfig = APIConfig()
    logging: LoggingConfig = LoggingConfig()
