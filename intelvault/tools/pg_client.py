"""PostgreSQL client for snapshots, diffs, artifacts and the live cache.

Database:  intelvault
Host:      localhost:5432
Connection string: postgresql://postgres@localhost:5432/intelvault
                   or set POSTGRES_URL in .env

Schema is owned by ``intelvault/tools/schema.sql``.  ``connect()`` runs it
through :class:`intelvault.tools.migrations.MigrationRunner`, which records
applied versions in ``schema_migrations``, so a fresh database works out of
the box and an up-to-date one is left alone.

Graceful degradation:
    - If Postgres is unreachable: log warning, return None/[]/False for all
      reads/writes.  Resolver reads then fall through to REBUILD_REQUIRED and
      snapshot creation returns None.
    - NEVER raises an exception that crashes the caller.
"""

from __future__ import annotations

import re

import structlog

from intelvault.tools.migrations import MigrationRunner

logger = structlog.get_logger().bind(component="pg_client")


class PgClient:
    """Async PostgreSQL client using asyncpg.

    Usage:
        pg = PgClient()
        await pg.connect()   # creates pool + ensures schema
        rows = await pg.fetch("SELECT ...", arg1, arg2)
        await pg.close()

    All methods are safe to call even when Postgres is unavailable —
    they return None / [] and log a warning instead of raising.
    """

    def __init__(self, dsn: str | None = None, *, ensure_schema: bool = True) -> None:
        if dsn is None:
            from intelvault.config import settings
            dsn = settings.postgres_url
        self.dsn = dsn
        self._pool = None
        self._ensure_schema_on_connect = ensure_schema
        self.available = False   # True once pool is live

    # ── Lifecycle ─────────────────────────────────────────────────────────

    async def connect(self) -> bool:
        """Create connection pool and ensure schema exists.

        Returns True if connected successfully, False if Postgres unavailable.
        Safe to call multiple times (idempotent).
        """
        if self._pool is not None:
            return self.available

        try:
            import asyncpg  # type: ignore
            self._pool = await asyncpg.create_pool(
                dsn=self.dsn,
                min_size=1,
                max_size=5,
                command_timeout=10,
            )
            self.available = True
            logger.info("pg_connected", dsn=self._redacted_dsn())
        except Exception as exc:
            logger.warning(
                "pg_unavailable",
                error=str(exc),
                hint="Snapshots and artifact reads are disabled until Postgres is reachable.",
            )
            self._pool = None
            self.available = False
            return False

        if self._ensure_schema_on_connect:
            await self._ensure_schema()
        return True

    async def close(self) -> None:
        """Gracefully close the connection pool."""
        if self._pool:
            try:
                await self._pool.close()
            except Exception as exc:
                logger.debug("pg_close_error", error=str(exc))
            self._pool = None
            self.available = False

    # ── Core query methods ─────────────────────────────────────────────────

    async def execute(self, query: str, *args: object) -> bool:
        """Run a DML query (INSERT / UPDATE / DELETE).

        Returns True on success, False if unavailable or error.
        """
        if not self.available or self._pool is None:
            return False
        try:
            async with self._pool.acquire() as conn:
                await conn.execute(query, *args)
            return True
        except Exception as exc:
            logger.warning("pg_execute_error", error=str(exc), query=query[:80])
            return False

    async def fetch(self, query: str, *args: object) -> list[dict]:
        """Fetch multiple rows. Returns [] if unavailable."""
        if not self.available or self._pool is None:
            return []
        try:
            async with self._pool.acquire() as conn:
                rows = await conn.fetch(query, *args)
            return [dict(r) for r in rows]
        except Exception as exc:
            logger.warning("pg_fetch_error", error=str(exc), query=query[:80])
            return []

    async def fetchrow(self, query: str, *args: object) -> dict | None:
        """Fetch a single row. Returns None if unavailable or not found."""
        if not self.available or self._pool is None:
            return None
        try:
            async with self._pool.acquire() as conn:
                row = await conn.fetchrow(query, *args)
            return dict(row) if row else None
        except Exception as exc:
            logger.warning("pg_fetchrow_error", error=str(exc), query=query[:80])
            return None

    async def fetchval(self, query: str, *args: object) -> object:
        """Fetch a single scalar value. Returns None if unavailable."""
        if not self.available or self._pool is None:
            return None
        try:
            async with self._pool.acquire() as conn:
                return await conn.fetchval(query, *args)
        except Exception as exc:
            logger.warning("pg_fetchval_error", error=str(exc), query=query[:80])
            return None

    # ── Schema management ──────────────────────────────────────────────────

    async def _ensure_schema(self) -> None:
        """Apply pending schema versions on one pooled connection."""
        if not self.available or self._pool is None:
            return
        try:
            async with self._pool.acquire() as conn:
                result = await MigrationRunner(self.dsn).apply(conn)
        except Exception as exc:
            logger.warning("pg_schema_error", error=str(exc))
            return
        if result.ok:
            logger.info("pg_schema_ready", version=result.current, applied=result.applied)

    def _redacted_dsn(self) -> str:
        """Log-safe DSN (hides password if present)."""
        return re.sub(r":([^@/]+)@", ":***@", self.dsn)
