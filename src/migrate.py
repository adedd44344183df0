"""
Schema migrations for the record store.

SQL files named ``NNN_description.sql`` under ``migrations/`` are applied in
version order, each in its own transaction. The checksum of every applied file
is recorded so an edited migration is detected instead of silently skipped.
Concurrent provisioner processes serialise on a PostgreSQL advisory lock.
"""

import hashlib
import logging
import re
from pathlib import Path
from typing import Dict, List, NamedTuple

import asyncpg

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

MIGRATION_PATTERN = re.compile(r"^(\d{3})_.+\.sql$")

# Arbitrary but fixed key for pg_advisory_lock
MIGRATION_LOCK_KEY = 0x62636C61


class Migration(NamedTuple):
    """A migration file on disk."""

    version: str
    filename: str
    path: Path

    @property
    def sql(self) -> str:
        return self.path.read_text(encoding="utf-8")

    @property
    def checksum(self) -> str:
        return hashlib.sha256(self.path.read_bytes()).hexdigest()


class MigrationChecksumError(RuntimeError):
    """An already-applied migration file was modified on disk."""


async def ensure_migration_table(conn: asyncpg.Connection) -> None:
    """Create the schema_migrations tracking table if it doesn't exist."""
    await conn.execute("""
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version VARCHAR(16) PRIMARY KEY,
            filename VARCHAR(255) NOT NULL,
            checksum VARCHAR(64) NOT NULL,
            applied_at TIMESTAMP NOT NULL DEFAULT NOW()
        )
        """)


def discover_migrations() -> List[Migration]:
    """
    Find migration files, sorted by version.

    Raises:
        FileNotFoundError: If the migrations directory doesn't exist.
    """
    if not MIGRATIONS_DIR.is_dir():
        raise FileNotFoundError(f"Migrations directory not found: {MIGRATIONS_DIR}")

    found = []
    for entry in MIGRATIONS_DIR.iterdir():
        match = MIGRATION_PATTERN.match(entry.name)
        if match and entry.is_file():
            found.append(Migration(match.group(1), entry.name, entry))
    return sorted(found, key=lambda m: m.version)


async def get_applied_checksums(conn: asyncpg.Connection) -> Dict[str, str]:
    """Map of applied migration version to recorded checksum."""
    rows = await conn.fetch("SELECT version, checksum FROM schema_migrations")
    return {row["version"]: row["checksum"] for row in rows}


def verify_checksums(migrations: List[Migration], applied: Dict[str, str]) -> None:
    """
    Check that applied migrations were not edited after being applied.

    Raises:
        MigrationChecksumError: On the first mismatch.
    """
    for migration in migrations:
        recorded = applied.get(migration.version)
        if recorded is not None and recorded != migration.checksum:
            raise MigrationChecksumError(
                f"Migration {migration.filename} changed after it was applied"
            )


async def apply_migration(conn: asyncpg.Connection, migration: Migration) -> None:
    """Apply one migration and record it, atomically."""
    async with conn.transaction():
        await conn.execute(migration.sql)
        await conn.execute(
            "INSERT INTO schema_migrations (version, filename, checksum) "
            "VALUES ($1, $2, $3)",
            migration.version,
            migration.filename,
            migration.checksum,
        )
    logger.info(f"Applied migration {migration.filename}")


async def run_migrations(pool: asyncpg.Pool) -> int:
    """
    Apply all pending migrations in order.

    Args:
        pool: A connected asyncpg pool.

    Returns:
        Number of migrations applied.

    Raises:
        FileNotFoundError: If the migrations directory is missing.
        MigrationChecksumError: If an applied migration was edited.
        asyncpg.PostgresError: If a migration fails (it is rolled back;
            earlier migrations stay applied).
    """
    migrations = discover_migrations()

    async with pool.acquire() as conn:
        await conn.execute("SELECT pg_advisory_lock($1)", MIGRATION_LOCK_KEY)
        try:
            await ensure_migration_table(conn)
            applied = await get_applied_checksums(conn)
            verify_checksums(migrations, applied)

            pending = [m for m in migrations if m.version not in applied]
            if not pending:
                logger.info("Database schema is up to date")
                return 0

            logger.info(f"Applying {len(pending)} pending migration(s)")
            for migration in pending:
                await apply_migration(conn, migration)
            return len(pending)
        finally:
            await conn.execute("SELECT pg_advisory_unlock($1)", MIGRATION_LOCK_KEY)
