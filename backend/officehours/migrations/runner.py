"""Plain SQL migrations, applied once each and recorded in a tracking table."""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path

import asyncpg

logger = logging.getLogger(__name__)

VERSIONS_DIR = Path(__file__).resolve().parent / "versions"


@dataclass(frozen=True)
class Migration:
    version: str
    path: Path

    @property
    def sql(self) -> str:
        return self.path.read_text(encoding="utf-8")

    @property
    def checksum(self) -> str:
        return hashlib.sha256(self.path.read_bytes()).hexdigest()


class MigrationRunner:
    """Runs ``versions/NNN_description.sql`` in filename order.

    Every applied file is stored with its checksum; editing a file after it
    ran only produces a warning, ship a new version instead.
    """

    TRACKING_TABLE = "schema_migrations"

    def __init__(self, pool: asyncpg.Pool, versions_dir: Path | None = None) -> None:
        self.pool = pool
        self.versions_dir = versions_dir or VERSIONS_DIR

    def discover(self) -> list[Migration]:
        return [Migration(path.stem, path) for path in sorted(self.versions_dir.glob("*.sql"))]

    async def ensure_table(self) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.TRACKING_TABLE} (
                    version    TEXT PRIMARY KEY,
                    checksum   TEXT NOT NULL,
                    applied_at TIMESTAMPTZ DEFAULT NOW()
                )
                """
            )

    async def get_applied(self) -> dict[str, str]:
        """Applied version -> checksum."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT version, checksum FROM {self.TRACKING_TABLE}"  # noqa: S608
            )
        return {row["version"]: row["checksum"] for row in rows}

    async def run_pending(self) -> list[str]:
        """Apply every migration not yet recorded. Returns the new versions."""
        await self.ensure_table()
        applied = await self.get_applied()

        pending = []
        for migration in self.discover():
            recorded = applied.get(migration.version)
            if recorded is None:
                pending.append(migration)
            elif recorded != migration.checksum:
                logger.warning(f"Migration {migration.version} changed after it was applied")

        for migration in pending:
            await self._apply(migration)

        if pending:
            logger.info(f"[green]Applied {len(pending)} migration(s)[/green]")
        else:
            logger.info("Schema is up to date")
        return [m.version for m in pending]

    async def _apply(self, migration: Migration) -> None:
        logger.info(f"Applying migration {migration.version}")
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(migration.sql)
                await conn.execute(
                    f"INSERT INTO {self.TRACKING_TABLE} (version, checksum) VALUES ($1, $2)",
                    migration.version,
                    migration.checksum,
                )
