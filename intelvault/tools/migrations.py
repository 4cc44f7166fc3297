"""MigrationRunner — versioned schema setup for the intelvault tables.

``PgClient.connect`` hands one pooled connection to :meth:`MigrationRunner.apply`.
The runner creates ``schema_migrations`` on first use and runs ``schema.sql``
only for versions not yet recorded there, so a repeat connect costs one
small read.

    - ``schema.sql`` plus the version rows go in one transaction.
    - Existing columns are never dropped or altered.
    - ``reset()`` drops every intelvault table; throwaway databases only.

Usage::

    async with pool.acquire() as conn:
        result = await MigrationRunner().apply(conn)
    # result.applied → versions applied by this call ([] when already current)
    # result.current → newest recorded version
    # result.error   → None unless the migration failed
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import structlog

logger = structlog.get_logger().bind(component="migrations")

SCHEMA_PATH = Path(__file__).parent / "schema.sql"

# Application order; append when schema.sql gains something existing databases need
SCHEMA_VERSIONS: tuple[str, ...] = ("1",)

# Drop order for reset(): dependents first
OWNED_TABLES: tuple[str, ...] = (
    "snapshot_diffs",
    "snapshots",
    "artifact_cache",
    "artifacts",
    "runs",
    "schema_migrations",
)

_TRACKING_DDL = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    version     TEXT        PRIMARY KEY,
    applied_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
)
"""


@dataclass
class MigrationResult:
    applied: list[str] = field(default_factory=list)
    current: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class MigrationRunner:
    """Records and applies schema versions.

    Args:
        dsn: asyncpg connection string, used only by ``reset``.  Defaults to
             ``settings.postgres_url``.
    """

    def __init__(self, dsn: str | None = None) -> None:
        self._dsn = dsn

    @property
    def dsn(self) -> str:
        if self._dsn is None:
            from intelvault.config import settings
            self._dsn = settings.postgres_url
        return self._dsn

    async def apply(self, conn) -> MigrationResult:
        """Bring the database behind *conn* up to the newest schema version."""
        try:
            await conn.execute(_TRACKING_DDL)
            recorded = {row["version"] for row in await conn.fetch("SELECT version FROM schema_migrations")}
            pending = [v for v in SCHEMA_VERSIONS if v not in recorded]
            if pending:
                ddl = SCHEMA_PATH.read_text(encoding="utf-8")
                async with conn.transaction():
                    await conn.execute(ddl)
                    await conn.executemany(
                        "INSERT INTO schema_migrations (version) VALUES ($1) ON CONFLICT DO NOTHING",
                        [(v,) for v in pending],
                    )
        except Exception as exc:
            logger.error("schema_migration_failed", error=str(exc))
            return MigrationResult(error=str(exc))

        if pending:
            logger.info("schema_migrated", versions=pending)
        else:
            logger.debug("schema_current", version=SCHEMA_VERSIONS[-1])
        return MigrationResult(applied=pending, current=SCHEMA_VERSIONS[-1])

    async def reset(self) -> bool:
        """Drop every intelvault table, then re-apply the schema.  Returns False on failure."""
        conn = await self._connect()
        if conn is None:
            logger.error("schema_reset_no_pg")
            return False
        try:
            await conn.execute(f"DROP TABLE IF EXISTS {', '.join(OWNED_TABLES)} CASCADE")
            logger.warning("schema_reset", tables=list(OWNED_TABLES))
            return (await self.apply(conn)).ok
        except Exception as exc:
            logger.error("schema_reset_failed", error=str(exc))
            return False
        finally:
            await conn.close()

    async def _connect(self):
        try:
            import asyncpg  # type: ignore
            return await asyncpg.connect(self.dsn)
        except Exception as exc:
            logger.warning("migration_connect_failed", error=str(exc))
            return None
