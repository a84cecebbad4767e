"""FastAPI application factory for the Fleet Energy HTTP API."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from fleet_energy.analytics.aggregator import WindowAggregator
from fleet_energy.analytics.classifier import TierThresholds
from fleet_energy.analytics.correlation import StaticCorrelation
from fleet_energy.analytics.performance import PerformanceService
from fleet_energy.config.schema import AppConfig
from fleet_energy.db.engine import ConnectionPool
from fleet_energy.db.partitions import PartitionManager
from fleet_energy.errors import (
    BatchWriteError,
    MissingPartitionError,
    NotFoundError,
    QueryWindowError,
    ReadingValidationError,
    TransientStorageError,
    WriteError,
)
from fleet_energy.ingestion.writer import DualPathWriter

logger = logging.getLogger(__name__)


def create_app(config: AppConfig, pool: ConnectionPool) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Fleet Energy",
        description="Fleet telemetry ingestion and charging efficiency analytics",
        version="0.1.0",
    )

    aggregator = WindowAggregator(pool, query_timeout=config.db.query_timeout_seconds)

    # Store shared services in app state for access in routes
    app.state.config = config
    app.state.pool = pool
    app.state.writer = DualPathWriter(
        pool,
        chunk_size=config.ingestion.chunk_size,
        transaction_timeout=config.db.transaction_timeout_seconds,
    )
    app.state.aggregator = aggregator
    app.state.performance = PerformanceService(
        aggregator,
        correlation=StaticCorrelation(config.analytics.vehicle_meters),
        thresholds=TierThresholds(
            healthy=config.analytics.healthy_threshold,
            degraded=config.analytics.degraded_threshold,
        ),
        unmapped_meter_scope=config.analytics.unmapped_meter_scope,
        default_window_hours=config.analytics.window_hours,
    )
    app.state.partitions = PartitionManager(
        pool, timeout=config.db.transaction_timeout_seconds,
    )

    _register_error_handlers(app)

    from fleet_energy.api.routes.analytics import router as analytics_router
    from fleet_energy.api.routes.health import router as health_router
    from fleet_energy.api.routes.ingest import router as ingest_router
    from fleet_energy.api.routes.status import router as status_router

    app.include_router(health_router)
    app.include_router(ingest_router, prefix="/v1/ingest")
    app.include_router(analytics_router, prefix="/v1/analytics")
    app.include_router(status_router, prefix="/v1")

    return app


def _error(status_code: int, exc: Exception, **extra) -> JSONResponse:
    return JSONResponse(
        {"status": "error", "error": type(exc).__name__, "message": str(exc), **extra},
        status_code=status_code,
    )


def _register_error_handlers(app: FastAPI) -> None:
    # Handlers are matched on the exception's MRO, most specific first

    @app.exception_handler(NotFoundError)
    async def not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return _error(404, exc)

    @app.exception_handler(ReadingValidationError)
    async def invalid_reading(request: Request, exc: ReadingValidationError) -> JSONResponse:
        return _error(422, exc)

    @app.exception_handler(QueryWindowError)
    async def window_too_wide(request: Request, exc: QueryWindowError) -> JSONResponse:
        return _error(422, exc, partitions=exc.partitions, limit=exc.limit)

    @app.exception_handler(MissingPartitionError)
    async def missing_partition(request: Request, exc: MissingPartitionError) -> JSONResponse:
        return _error(409, exc, device_class=exc.device_class, day=exc.day.isoformat())

    @app.exception_handler(TransientStorageError)
    async def transient(request: Request, exc: TransientStorageError) -> JSONResponse:
        return _error(503, exc)

    @app.exception_handler(BatchWriteError)
    async def batch_failed(request: Request, exc: BatchWriteError) -> JSONResponse:
        if isinstance(exc.cause, MissingPartitionError):
            status_code = 409
        elif exc.retryable:
            status_code = 503
        else:
            status_code = 500
        return _error(
            status_code, exc,
            chunks_committed=exc.chunks_committed,
            readings_committed=exc.readings_committed,
            failed_chunk=exc.failed_chunk,
            total_chunks=exc.total_chunks,
            retryable=exc.retryable,
        )

    @app.exception_handler(WriteError)
    async def write_failed(request: Request, exc: WriteError) -> JSONResponse:
        logger.error("Write failed on %s %s: %s", request.method, request.url.path, exc)
        return _error(500, exc)
