"""VersioningService — snapshots plus their audit diffs.

Run completion calls ``create_snapshot``; the new snapshot is diffed against
the entity's previous one either inline or in a background task
(``defer_diff=True``).  Reading entry points are ``get_history``,
``get_diff`` and ``get_or_create_diff``.

Not-found never raises: a missing snapshot yields None.  Only calls that can
never be valid (self-diff, wrong order, mixed entities) raise
``InvariantViolation``.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Iterable, Mapping

import structlog

from intelvault.errors import InvariantViolation
from intelvault.models.diffs import SnapshotDiff
from intelvault.models.runs import Run, SubtaskResult
from intelvault.models.snapshots import ReuseCandidate, SnapshotSummary
from intelvault.versioning.diff_store import DiffStore
from intelvault.versioning.snapshot_store import SnapshotStore
from intelvault.versioning.tree_diff import count_field_changes, diff_snapshots

logger = structlog.get_logger().bind(component="versioning")


class VersioningService:
    """Snapshot + diff façade.

    Args:
        pg:             PgClient shared by the default stores.
        snapshot_store: Inject a store (tests); defaults to ``SnapshotStore(pg)``.
        diff_store:     Inject a store (tests); defaults to ``DiffStore(pg)``.
        defer_diff:     Compute diffs in a background task.  Defaults to
                        ``settings.defer_diff_computation``.
    """

    def __init__(
        self,
        pg=None,
        *,
        snapshot_store: SnapshotStore | None = None,
        diff_store: DiffStore | None = None,
        defer_diff: bool | None = None,
    ) -> None:
        if defer_diff is None:
            from intelvault.config import settings
            defer_diff = settings.defer_diff_computation
        self._snapshots = snapshot_store or SnapshotStore(pg)
        self._diffs = diff_store or DiffStore(pg)
        self._defer_diff = defer_diff
        self._pending: set[asyncio.Task] = set()

    # ── Write path ────────────────────────────────────────────────────────

    async def create_snapshot(
        self,
        run: Run,
        results: Mapping[str, SubtaskResult | Mapping[str, Any]],
        sources: Mapping[str, Any] | list[Any] | None = None,
        entity_meta: Mapping[str, Any] | None = None,
        *,
        defer_diff: bool | None = None,
    ) -> int | None:
        """Persist a snapshot for *run* and diff it against the previous one.

        Returns the new snapshot id, or None if it could not be stored.
        Diff failures are logged and never affect the returned id.
        """
        snapshot_id = await self._snapshots.create(run, results, sources, entity_meta)
        if snapshot_id is None:
            return None

        previous = await self._snapshots.previous_snapshot(run.entity_id, snapshot_id)
        if previous is None:
            logger.info("snapshot_first_for_entity", entity_id=run.entity_id, snapshot_id=snapshot_id)
            return snapshot_id

        defer = self._defer_diff if defer_diff is None else defer_diff
        if defer:
            task = asyncio.create_task(self._diff_after_snapshot(previous.id, snapshot_id))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            logger.debug("diff_deferred", from_snapshot_id=previous.id, to_snapshot_id=snapshot_id)
        else:
            await self._diff_after_snapshot(previous.id, snapshot_id)
        return snapshot_id

    async def _diff_after_snapshot(self, from_id: int, to_id: int) -> None:
        try:
            await self.get_or_create_diff(from_id, to_id)
        except Exception as exc:
            logger.warning(
                "snapshot_diff_failed",
                from_snapshot_id=from_id,
                to_snapshot_id=to_id,
                error=str(exc),
            )

    async def drain(self) -> None:
        """Wait for every deferred diff started by this service."""
        if self._pending:
            await asyncio.gather(*list(self._pending))

    # ── Diffs ─────────────────────────────────────────────────────────────

    async def compute_diff(self, from_id: int, to_id: int) -> SnapshotDiff | None:
        """Diff two stored snapshots without touching the memo table."""
        if from_id == to_id:
            raise InvariantViolation(f"cannot diff snapshot {from_id} against itself")

        old = await self._snapshots.get_snapshot(from_id)
        new = await self._snapshots.get_snapshot(to_id)
        if old is None or new is None:
            logger.info(
                "diff_snapshot_missing",
                from_snapshot_id=from_id,
                to_snapshot_id=to_id,
                missing=[i for i, s in ((from_id, old), (to_id, new)) if s is None],
            )
            return None

        started = time.perf_counter()
        diff = diff_snapshots(old, new)
        logger.info(
            "diff_computed",
            entity_id=diff.entity_id,
            from_snapshot_id=from_id,
            to_snapshot_id=to_id,
            subtasks_changed=len(diff.subtask_diffs),
            field_changes=count_field_changes(diff),
            citations_added=len(diff.citations.added),
            citations_removed=len(diff.citations.removed),
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        return diff

    async def get_or_create_diff(self, from_id: int, to_id: int) -> SnapshotDiff | None:
        """Memoized ``compute_diff``: stored body if present, else compute + upsert."""
        if from_id == to_id:
            raise InvariantViolation(f"cannot diff snapshot {from_id} against itself")

        cached = await self._diffs.get(from_id, to_id)
        if cached is not None:
            return cached

        diff = await self.compute_diff(from_id, to_id)
        if diff is not None:
            await self._diffs.save(diff)
        return diff

    async def get_diff(
        self, snapshot_id: int, previous_snapshot_id: int | None = None,
    ) -> SnapshotDiff | None:
        """Diff *snapshot_id* against *previous_snapshot_id*.

        When no previous id is given the entity's preceding snapshot is used;
        the first snapshot of an entity has no diff (None).
        """
        if previous_snapshot_id is None:
            snapshot = await self._snapshots.get_snapshot(snapshot_id)
            if snapshot is None:
                return None
            previous = await self._snapshots.previous_snapshot(snapshot.entity_id, snapshot_id)
            if previous is None:
                return None
            previous_snapshot_id = previous.id
        return await self.get_or_create_diff(previous_snapshot_id, snapshot_id)

    # ── Reads ─────────────────────────────────────────────────────────────

    async def get_history(self, entity_id: int, limit: int = 50) -> list[SnapshotSummary]:
        return await self._snapshots.history(entity_id, limit)

    async def get_reusable_snapshot(
        self, entity_id: int, max_age_seconds: int | None = None,
    ) -> int | None:
        return await self._snapshots.get_reusable_snapshot(entity_id, max_age_seconds)

    async def find_reusable_run(
        self,
        entity_id: int,
        target_entity_id: int | None = None,
        *,
        required_subtasks: Iterable[str] | None = None,
        max_age_seconds: int | None = None,
    ) -> ReuseCandidate | None:
        return await self._snapshots.find_reusable_run(
            entity_id,
            target_entity_id,
            required_subtasks=required_subtasks,
            max_age_seconds=max_age_seconds,
        )
