"""RunStore — minimal registry of pipeline runs (``runs`` table).

The orchestration layer owns runs; intelvault only needs to read their
status, mode and stored refresh configuration, and to record new ones in
tests and worker bootstrap code.
"""

from __future__ import annotations

import json
from typing import Any, Mapping

import structlog

from intelvault.models.runs import Run, RunStatus

logger = structlog.get_logger().bind(component="runs")


class RunStore:
    """CRUD for the ``runs`` table.  Accepts an injected ``PgClient``."""

    def __init__(self, pg) -> None:
        self._pg = pg

    async def register(self, run: Run) -> int | None:
        """Insert a run and return its id (None if Postgres unavailable)."""
        run_id = await self._pg.fetchval(
            """
            INSERT INTO runs (entity_id, target_entity_id, status, mode,
                              refresh_config, tokens_used, cost,
                              started_at, completed_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            RETURNING id
            """,
            run.entity_id, run.target_entity_id, run.status.value, run.mode,
            run.refresh_config, run.tokens_used, run.cost,
            run.started_at, run.completed_at,
        )
        if run_id is not None:
            logger.info("run_registered", run_id=run_id, entity_id=run.entity_id, mode=run.mode)
        return run_id

    async def get(self, run_id: int) -> Run | None:
        row = await self._pg.fetchrow("SELECT * FROM runs WHERE id = $1", run_id)
        return Run.from_row(row) if row else None

    async def set_status(self, run_id: int, status: RunStatus) -> bool:
        """Move a run to *status*, stamping started_at / completed_at."""
        ok = await self._pg.execute(
            """
            UPDATE runs
               SET status       = $2,
                   started_at   = CASE WHEN $2 = 'running' THEN COALESCE(started_at, NOW())
                                       ELSE started_at END,
                   completed_at = CASE WHEN $2 IN ('completed', 'failed') THEN NOW()
                                       ELSE completed_at END
             WHERE id = $1
            """,
            run_id, status.value,
        )
        if ok:
            logger.info("run_status_updated", run_id=run_id, status=status.value)
        return ok

    async def set_refresh_config(
        self, run_id: int, config: Mapping[str, Any] | str | None,
    ) -> bool:
        """Store the run's refresh flags as JSON text (None clears them)."""
        raw = config if config is None or isinstance(config, str) else json.dumps(dict(config))
        return await self._pg.execute(
            "UPDATE runs SET refresh_config = $2 WHERE id = $1", run_id, raw,
        )
