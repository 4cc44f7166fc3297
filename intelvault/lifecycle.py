"""ArtifactLifecycle — the one object the report layer talks to.

Wires the stores, resolver, evaluator and rebuild coordinator around one
PgClient and one RedisClient:

    lifecycle = ArtifactLifecycle()
    await lifecycle.connect()

    reuse = await lifecycle.find_reusable_run(entity_id, target_id)   # run start
    plan = await lifecycle.get_refresh_plan(run_id)
    await lifecycle.create_snapshot(run, results)              # run completion
    result = await lifecycle.resolve_artifact(run_id, "synthesis_bundle")   # read time
    if result.status is ResolveStatus.REBUILD_REQUIRED:
        document = await lifecycle.rebuild(run_id, producer)

    await lifecycle.close()
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping

import structlog

from intelvault.artifacts.rebuild import Producer, RebuildClaim, RebuildCoordinator
from intelvault.artifacts.repository import ArtifactRepository
from intelvault.artifacts.resolver import ArtifactResolver
from intelvault.artifacts.tiers import SYNTHESIS_BUNDLE
from intelvault.models.artifacts import ResolveResult, ResolveStatus
from intelvault.models.diffs import SnapshotDiff
from intelvault.models.refresh import RefreshPlan
from intelvault.models.runs import Run, SubtaskResult
from intelvault.models.snapshots import ReuseCandidate, SnapshotSummary
from intelvault.refresh.evaluator import RefreshStrategyEvaluator
from intelvault.runs import RunStore
from intelvault.versioning.service import VersioningService

logger = structlog.get_logger().bind(component="lifecycle")


class ArtifactLifecycle:
    """Facade over versioning, refresh decisions, resolution and rebuilds.

    Every collaborator can be injected; anything left as None is built from
    ``pg`` / ``redis`` (which themselves default to settings).
    """

    def __init__(
        self,
        pg=None,
        redis=None,
        *,
        runs=None,
        repository=None,
        versioning: VersioningService | None = None,
        coordinator: RebuildCoordinator | None = None,
    ) -> None:
        if pg is None and (runs is None or repository is None or versioning is None):
            from intelvault.tools.pg_client import PgClient
            pg = PgClient()
        self._pg = pg
        self.runs = runs or RunStore(pg)
        self.repository = repository or ArtifactRepository(pg)
        self.versioning = versioning or VersioningService(pg)
        self.evaluator = RefreshStrategyEvaluator(self.runs)
        self.resolver = ArtifactResolver(self.repository)
        self.coordinator = coordinator or RebuildCoordinator(self.repository, redis)

    async def connect(self) -> bool:
        """Open the Postgres pool.  False means reads will degrade to not-found."""
        if self._pg is None:
            return True
        return await self._pg.connect()

    async def close(self) -> None:
        if self._pg is not None:
            await self._pg.close()

    # ── Refresh decisions ─────────────────────────────────────────────────

    async def get_refresh_plan(self, run_id: int) -> RefreshPlan:
        return await self.evaluator.get_refresh_plan(run_id)

    async def should_regenerate(self, run_id: int, resource: str) -> bool:
        return await self.evaluator.should_regenerate(run_id, resource)

    async def should_regenerate_synthesis(self, run_id: int) -> bool:
        return await self.evaluator.should_regenerate_synthesis(run_id)

    # ── Versioning ────────────────────────────────────────────────────────

    async def create_snapshot(
        self,
        run: Run,
        results: Mapping[str, SubtaskResult | Mapping[str, Any]],
        sources: Mapping[str, Any] | list[Any] | None = None,
        entity_meta: Mapping[str, Any] | None = None,
        *,
        defer_diff: bool | None = None,
    ) -> int | None:
        return await self.versioning.create_snapshot(
            run, results, sources, entity_meta, defer_diff=defer_diff,
        )

    async def get_history(self, entity_id: int, limit: int = 50) -> list[SnapshotSummary]:
        return await self.versioning.get_history(entity_id, limit)

    async def get_diff(
        self, snapshot_id: int, previous_snapshot_id: int | None = None,
    ) -> SnapshotDiff | None:
        return await self.versioning.get_diff(snapshot_id, previous_snapshot_id)

    async def get_reusable_snapshot(
        self, entity_id: int, max_age_seconds: int | None = None,
    ) -> int | None:
        return await self.versioning.get_reusable_snapshot(entity_id, max_age_seconds)

    async def find_reusable_run(
        self,
        entity_id: int,
        target_entity_id: int | None = None,
        *,
        required_subtasks: Iterable[str] | None = None,
        max_age_seconds: int | None = None,
    ) -> ReuseCandidate | None:
        """Recent complete snapshot a new run of the same pair may reuse, or None."""
        return await self.versioning.find_reusable_run(
            entity_id,
            target_entity_id,
            required_subtasks=required_subtasks,
            max_age_seconds=max_age_seconds,
        )

    # ── Artifacts ─────────────────────────────────────────────────────────

    async def resolve_artifact(self, run_id: int, logical_type: str) -> ResolveResult:
        return await self.resolver.resolve_artifact(run_id, logical_type)

    async def claim_rebuild(self, run_id: int) -> RebuildClaim:
        return await self.coordinator.claim_rebuild(run_id)

    async def release_rebuild(
        self,
        claim: RebuildClaim,
        success: bool,
        document: Mapping[str, Any] | None = None,
        logical_type: str = SYNTHESIS_BUNDLE,
    ) -> bool:
        return await self.coordinator.release_rebuild(claim, success, document, logical_type)

    async def force_release(self, run_id: int) -> None:
        await self.coordinator.force_release(run_id)

    async def rebuild(
        self, run_id: int, producer: Producer, logical_type: str = SYNTHESIS_BUNDLE,
    ) -> dict[str, Any] | None:
        return await self.coordinator.rebuild(run_id, producer, logical_type)

    async def resolve_or_rebuild(
        self,
        run_id: int,
        producer: Producer,
        logical_type: str = SYNTHESIS_BUNDLE,
        wait_timeout: float | None = None,
    ) -> ResolveResult:
        """Resolve; on REBUILD_REQUIRED rebuild (or wait for whoever is rebuilding) and resolve again.

        Raises:
            RebuildFailedError: this caller ran the producer and it failed.
        """
        result = await self.resolve_artifact(run_id, logical_type)
        if result.status is not ResolveStatus.REBUILD_REQUIRED:
            return result

        document = await self.rebuild(run_id, producer, logical_type)
        if document is None:
            logger.info("rebuild_in_progress_elsewhere", run_id=run_id, logical_type=logical_type)
            await self.coordinator.wait_for_rebuild(run_id, wait_timeout, logical_type)
        return await self.resolve_artifact(run_id, logical_type)
