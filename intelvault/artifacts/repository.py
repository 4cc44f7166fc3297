"""ArtifactRepository — physical artifact blobs and the live cache.

Two tables:
    artifacts       — one row per ``(run_id, phase, artifact_type)``; a run may
                      hold several types describing the same logical artifact
    artifact_cache  — current-generation document per ``(run_id, logical_type)``

Reads hand back raw rows (``body_json`` is TEXT and may not parse); parsing
and shape handling belong to the resolver.
"""

from __future__ import annotations

import json
from typing import Any

import structlog

from intelvault.models.artifacts import ArtifactRow, CacheRow

logger = structlog.get_logger().bind(component="artifact_repository")

_ARTIFACT_COLUMNS = "id, run_id, phase, artifact_type, body_json, created_at"


def _to_body(data: Any) -> str:
    return data if isinstance(data, str) else json.dumps(data, default=str)


class ArtifactRepository:
    """Read/write access to ``artifacts`` and ``artifact_cache``.  Accepts an injected ``PgClient``."""

    def __init__(self, pg) -> None:
        self._pg = pg

    # ── Artifact blobs ────────────────────────────────────────────────────

    async def save_artifact(self, run_id: int, phase: str, artifact_type: str, data: Any) -> bool:
        """Store an artifact, replacing any previous row of the same type for this run/phase."""
        body = _to_body(data)
        ok = await self._pg.execute(
            """
            WITH replaced AS (
                DELETE FROM artifacts
                WHERE run_id = $1 AND phase = $2 AND artifact_type = $3
            )
            INSERT INTO artifacts (run_id, phase, artifact_type, body_json)
            VALUES ($1, $2, $3, $4)
            """,
            run_id, phase, artifact_type, body,
        )
        if ok:
            logger.info(
                "artifact_saved",
                run_id=run_id,
                phase=phase,
                artifact_type=artifact_type,
                size_bytes=len(body.encode("utf-8")),
            )
        return ok

    async def get_artifact(self, run_id: int, phase: str, artifact_type: str) -> ArtifactRow | None:
        """Newest row for ``(run_id, phase, artifact_type)``."""
        row = await self._pg.fetchrow(
            f"""
            SELECT {_ARTIFACT_COLUMNS} FROM artifacts
            WHERE run_id = $1 AND phase = $2 AND artifact_type = $3
            ORDER BY created_at DESC, id DESC
            LIMIT 1
            """,
            run_id, phase, artifact_type,
        )
        return ArtifactRow.from_row(row) if row else None

    async def find_by_type(self, run_id: int, artifact_type: str) -> ArtifactRow | None:
        """Newest row of *artifact_type* for the run, in any phase."""
        row = await self._pg.fetchrow(
            f"""
            SELECT {_ARTIFACT_COLUMNS} FROM artifacts
            WHERE run_id = $1 AND artifact_type = $2
            ORDER BY created_at DESC, id DESC
            LIMIT 1
            """,
            run_id, artifact_type,
        )
        return ArtifactRow.from_row(row) if row else None

    async def artifacts_for_run(self, run_id: int) -> list[ArtifactRow]:
        rows = await self._pg.fetch(
            f"""
            SELECT {_ARTIFACT_COLUMNS} FROM artifacts
            WHERE run_id = $1
            ORDER BY phase, artifact_type, created_at
            """,
            run_id,
        )
        return [ArtifactRow.from_row(r) for r in rows]

    async def artifact_stats(self, run_id: int) -> dict[str, Any]:
        """Row and byte counts per phase for one run."""
        rows = await self._pg.fetch(
            """
            SELECT phase,
                   COUNT(*)                                   AS artifacts,
                   COALESCE(SUM(OCTET_LENGTH(body_json)), 0)  AS size_bytes
            FROM artifacts
            WHERE run_id = $1
            GROUP BY phase
            ORDER BY phase
            """,
            run_id,
        )
        by_phase = {r["phase"]: {"artifacts": int(r["artifacts"]), "size_bytes": int(r["size_bytes"])}
                    for r in rows}
        return {
            "run_id": run_id,
            "total_artifacts": sum(p["artifacts"] for p in by_phase.values()),
            "total_size_bytes": sum(p["size_bytes"] for p in by_phase.values()),
            "phases": by_phase,
        }

    async def delete_artifacts_for_run(self, run_id: int) -> bool:
        ok = await self._pg.execute("DELETE FROM artifacts WHERE run_id = $1", run_id)
        if ok:
            logger.info("artifacts_deleted", run_id=run_id)
        return ok

    # ── Live cache ────────────────────────────────────────────────────────

    async def put_cache(self, run_id: int, logical_type: str, document: Any) -> bool:
        """Write the current-generation document for ``(run_id, logical_type)``."""
        body = _to_body(document)
        ok = await self._pg.execute(
            """
            INSERT INTO artifact_cache (run_id, logical_type, body_json)
            VALUES ($1, $2, $3)
            ON CONFLICT (run_id, logical_type) DO UPDATE
                SET body_json  = EXCLUDED.body_json,
                    created_at = NOW()
            """,
            run_id, logical_type, body,
        )
        if ok:
            logger.info("cache_written", run_id=run_id, logical_type=logical_type,
                        size_bytes=len(body.encode("utf-8")))
        return ok

    async def get_cache_row(self, run_id: int, logical_type: str) -> CacheRow | None:
        row = await self._pg.fetchrow(
            """
            SELECT run_id, logical_type, body_json, created_at
            FROM artifact_cache
            WHERE run_id = $1 AND logical_type = $2
            """,
            run_id, logical_type,
        )
        return CacheRow.from_row(row) if row else None

    async def clear_cache(self, run_id: int, logical_type: str | None = None) -> bool:
        """Drop the run's cache rows (one logical type, or all of them)."""
        if logical_type is None:
            ok = await self._pg.execute("DELETE FROM artifact_cache WHERE run_id = $1", run_id)
        else:
            ok = await self._pg.execute(
                "DELETE FROM artifact_cache WHERE run_id = $1 AND logical_type = $2",
                run_id, logical_type,
            )
        if ok:
            logger.info("cache_cleared", run_id=run_id, logical_type=logical_type)
        return ok
