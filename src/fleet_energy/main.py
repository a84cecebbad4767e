"""Fleet Energy entry point and lifecycle orchestrator.

Startup sequence:
  config → logging → SQLite pool (migrations) → partition provisioning →
  partition maintenance loop → HTTP API
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import os
import signal
import sys
from pathlib import Path

from fleet_energy.config.manager import ConfigManager
from fleet_energy.config.schema import AppConfig
from fleet_energy.db.engine import ConnectionPool, close_pool, init_pool
from fleet_energy.db.partitions import PartitionManager, PartitionResult
from fleet_energy.logging.structured import setup_logging

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


class Application:
    """Main application lifecycle manager.

    Owns the connection pool, the partition maintenance loop and the API
    server, and tears them down in reverse order.
    """

    def __init__(self, config: AppConfig) -> None:
        self.config = config
        self._running = False
        self._tasks: list[asyncio.Task] = []
        self._stop_event = asyncio.Event()
        self._pool: ConnectionPool | None = None
        self._partitions: PartitionManager | None = None
        self._server = None

    async def start(self, serve: bool = True) -> None:
        """Start all components in dependency order.

        With ``serve`` the call blocks until the API server exits.
        """
        logger.info("Starting Fleet Energy v%s", VERSION)
        self._running = True
        self._stop_event.clear()

        # ── 1. Database ──────────────────────────────────────
        self._pool = await init_pool(self.config.db)
        self._partitions = PartitionManager(
            self._pool, timeout=self.config.db.transaction_timeout_seconds,
        )

        # ── 2. Partitions ────────────────────────────────────
        if self.config.partitions.create_on_startup:
            await self.run_maintenance()

        self._tasks.append(asyncio.create_task(self._maintenance_loop()))

        if not serve:
            return

        # ── 3. HTTP API ──────────────────────────────────────
        from fleet_energy.api.app import create_app

        app = create_app(self.config, self._pool)
        app.state.application = self

        import uvicorn

        uvi_config = uvicorn.Config(
            app,
            host=self.config.api.host,
            port=self.config.api.port,
            log_level="warning",
        )
        server = uvicorn.Server(uvi_config)
        # Keep process signal handling in main() so Ctrl+C behaviour is predictable.
        server.install_signal_handlers = lambda: None
        self._server = server

        logger.info("API available at http://%s:%d", self.config.api.host, self.config.api.port)

        # Server.serve() blocks until shutdown
        await server.serve()

    async def stop(self) -> None:
        """Gracefully stop all components in reverse order."""
        if not self._running:
            return

        logger.info("Shutting down Fleet Energy")
        self._running = False
        self._stop_event.set()

        # Tell uvicorn to exit its serve() loop.
        if self._server is not None:
            self._server.should_exit = True

        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        await close_pool()
        self._pool = None
        self._partitions = None
        self._server = None
        logger.info("Shutdown complete")

    async def run_maintenance(self) -> None:
        """Provision partitions ahead, retire those past retention, checkpoint the WAL."""
        if self._partitions is None or self._pool is None:
            raise RuntimeError("Application not started")
        cfg = self.config.partitions
        await self._partitions.ensure_ahead(cfg.days_ahead)
        await self._partitions.retire_older_than(cfg.retention_days)
        await self._pool.checkpoint_wal()

    async def _maintenance_loop(self) -> None:
        """Run partition maintenance every ``maintenance_interval_seconds``."""
        interval = self.config.partitions.maintenance_interval_seconds
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                break
            except asyncio.TimeoutError:
                pass
            try:
                await self.run_maintenance()
            except Exception:
                # Retried on the next tick; ingestion keeps running meanwhile
                logger.exception("Partition maintenance failed")


# ── Command line ──────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="fleet-energy", description="Fleet energy ingestion engine")
    parser.add_argument("--defaults", type=Path, default=Path("config.defaults.yaml"),
                        help="Default configuration file")
    parser.add_argument("--config", type=Path, default=Path("config.yaml"),
                        help="User configuration overrides")
    parser.add_argument("--db", dest="db_path", default=None, help="Database file (overrides db.path)")
    parser.add_argument("--port", type=int, default=None, help="API port (overrides api.port)")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("serve", help="Run the HTTP API and partition maintenance (default)")

    ensure = sub.add_parser("ensure-partitions", help="Provision history partitions ahead")
    ensure.add_argument("--days", type=int, default=None,
                        help="Days ahead of today (default: partitions.days_ahead)")

    retire = sub.add_parser("retire-partitions", help="Retire partitions past retention")
    retire.add_argument("--retention-days", type=int, default=None,
                        help="Retention horizon in days (default: partitions.retention_days)")
    return parser


async def ensure_partitions(config: AppConfig, days: int | None = None) -> int:
    """Provision today plus ``days`` ahead; returns the number of days newly created."""
    pool = await init_pool(config.db)
    try:
        manager = PartitionManager(pool, timeout=config.db.transaction_timeout_seconds)
        results = await manager.ensure_ahead(config.partitions.days_ahead if days is None else days)
        return sum(1 for r in results.values() if r is PartitionResult.CREATED)
    finally:
        await close_pool()


async def retire_partitions(config: AppConfig, retention_days: int | None = None) -> int:
    """Retire partitions older than the horizon; returns the number of days retired."""
    pool = await init_pool(config.db)
    try:
        manager = PartitionManager(pool, timeout=config.db.transaction_timeout_seconds)
        retention = config.partitions.retention_days if retention_days is None else retention_days
        return len(await manager.retire_older_than(retention))
    finally:
        await close_pool()


def main(argv: list[str] | None = None) -> None:
    """Entry point for the application."""
    args = build_parser().parse_args(argv)

    overrides: dict = {}
    if args.db_path:
        overrides["db"] = {"path": args.db_path}
    if args.port is not None:
        overrides["api"] = {"port": args.port}

    config = ConfigManager(args.defaults, args.config).load(overrides)

    setup_logging(
        level=config.logging.level,
        fmt=config.logging.format,
        log_file=config.logging.file,
    )

    if args.command == "ensure-partitions":
        created = asyncio.run(ensure_partitions(config, args.days))
        print(f"{created} partition day(s) created")
        return
    if args.command == "retire-partitions":
        retired = asyncio.run(retire_partitions(config, args.retention_days))
        print(f"{retired} partition day(s) retired")
        return

    app = Application(config)
    stop_requested = False
    signal_count = 0

    async def _run() -> None:
        try:
            await app.start()
        finally:
            if app._running:
                with contextlib.suppress(Exception):
                    await app.stop()

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def _request_stop() -> None:
        nonlocal stop_requested, signal_count
        signal_count += 1
        if signal_count >= 2:
            os._exit(130)
        if stop_requested or loop.is_closed():
            return
        stop_requested = True
        loop.call_soon_threadsafe(lambda: asyncio.create_task(app.stop()))

    if sys.platform != "win32":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, _request_stop)
    else:
        signal.signal(signal.SIGINT, lambda *_: _request_stop())
        if hasattr(signal, "SIGTERM"):
            signal.signal(signal.SIGTERM, lambda *_: _request_stop())

    try:
        loop.run_until_complete(_run())
    except KeyboardInterrupt:
        _request_stop()
        with contextlib.suppress(Exception):
            loop.run_until_complete(app.stop())
    finally:
        pending = [task for task in asyncio.all_tasks(loop) if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            with contextlib.suppress(Exception):
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        loop.close()


if __name__ == "__main__":
    main()
