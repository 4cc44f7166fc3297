"""DiffStore — memo table for snapshot diffs (``snapshot_diffs``).

A diff is a pure function of its ``(from, to)`` pair, so writes are upserts:
recomputing a diff replaces the stored body instead of adding a row.
"""

from __future__ import annotations

import structlog
from pydantic import ValidationError

from intelvault.models.diffs import SnapshotDiff

logger = structlog.get_logger().bind(component="diff_store")


class DiffStore:
    """Upsert / lookup for memoized diffs.  Accepts an injected ``PgClient``."""

    def __init__(self, pg) -> None:
        self._pg = pg

    async def save(self, diff: SnapshotDiff) -> bool:
        ok = await self._pg.execute(
            """
            INSERT INTO snapshot_diffs (from_snapshot_id, to_snapshot_id, body_json)
            VALUES ($1, $2, $3)
            ON CONFLICT (from_snapshot_id, to_snapshot_id) DO UPDATE
                SET body_json  = EXCLUDED.body_json,
                    created_at = NOW()
            """,
            diff.from_snapshot_id, diff.to_snapshot_id, diff.canonical_json(),
        )
        if ok:
            logger.debug(
                "diff_stored",
                from_snapshot_id=diff.from_snapshot_id,
                to_snapshot_id=diff.to_snapshot_id,
            )
        return ok

    async def get(self, from_snapshot_id: int, to_snapshot_id: int) -> SnapshotDiff | None:
        """Stored diff for the pair; None when missing or unreadable."""
        body = await self._pg.fetchval(
            """
            SELECT body_json FROM snapshot_diffs
            WHERE from_snapshot_id = $1 AND to_snapshot_id = $2
            """,
            from_snapshot_id, to_snapshot_id,
        )
        if body is None:
            return None
        try:
            return SnapshotDiff.model_validate_json(body)
        except ValidationError as exc:
            # Recomputable, so an unreadable memo row is just a miss
            logger.warning(
                "diff_body_malformed",
                from_snapshot_id=from_snapshot_id,
                to_snapshot_id=to_snapshot_id,
                error=str(exc)[:200],
            )
            return None
