"""Database schema migrations."""

from __future__ import annotations

import logging

import aiosqlite

from fleet_energy.db.models import SCHEMA_VERSION, TABLES

logger = logging.getLogger(__name__)

# Version -> statements upgrading from the previous version.
# Version 1 is the base schema; history partitions are created at runtime.
MIGRATIONS: dict[int, list[str]] = {
    1: TABLES,
}


async def run_migrations(db: aiosqlite.Connection) -> int:
    """Apply pending migrations in order. Returns the resulting schema version."""
    current = await get_schema_version(db)
    if current >= SCHEMA_VERSION:
        logger.debug("Database schema is up to date (version %d)", current)
        return current

    logger.info("Migrating database from version %d to %d", current, SCHEMA_VERSION)
    await db.execute("BEGIN IMMEDIATE")
    try:
        for version in range(current + 1, SCHEMA_VERSION + 1):
            for statement in MIGRATIONS[version]:
                await db.execute(statement)
            logger.info("Applied schema migration v%d", version)
        await db.execute(
            "INSERT OR REPLACE INTO schema_version (id, version) VALUES (1, ?)",
            (SCHEMA_VERSION,),
        )
        await db.execute("COMMIT")
    except Exception:
        await db.execute("ROLLBACK")
        raise
    return SCHEMA_VERSION


async def get_schema_version(db: aiosqlite.Connection) -> int:
    """Get current schema version, returns 0 if table doesn't exist."""
    try:
        async with db.execute("SELECT version FROM schema_version WHERE id = 1") as cursor:
            row = await cursor.fetchone()
            return row[0] if row else 0
    except aiosqlite.OperationalError:
        return 0
