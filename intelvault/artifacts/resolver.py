"""ArtifactResolver — pick the authoritative representation of an artifact.

Walks the tier chain for ``(run_id, logical_type)`` in priority order:

    live_cache            → status HIT
    older artifact blobs  → status FALLBACK (tier name says which)
    nothing usable        → status REBUILD_REQUIRED, with every attempt

Read-only: a fallback document is returned to the caller but never written
back into the live cache.

Usage:
    resolver = ArtifactResolver(ArtifactRepository(pg))
    result = await resolver.resolve_artifact(42, "synthesis_bundle")
    if result.status is ResolveStatus.REBUILD_REQUIRED:
        ...
"""

from __future__ import annotations

import time

import structlog

from intelvault.artifacts.tiers import build_chain, canonical_logical_type
from intelvault.models.artifacts import ResolveResult, ResolveStatus, TierAttempt
from intelvault.utils import run_context

logger = structlog.get_logger().bind(component="resolver")


class ArtifactResolver:
    """Fallback-chain lookup over an ``ArtifactRepository``."""

    def __init__(self, repo) -> None:
        self._repo = repo

    async def resolve_artifact(self, run_id: int, logical_type: str) -> ResolveResult:
        logical_type = canonical_logical_type(logical_type)
        started = time.perf_counter()
        attempts: list[TierAttempt] = []

        with run_context(run_id, logical_type=logical_type):
            for tier in build_chain(self._repo, logical_type):
                lookup = await tier.lookup(run_id, logical_type)
                attempts.append(lookup.attempt)
                if lookup.document is None:
                    continue

                logger.info(
                    "artifact_resolved",
                    status=tier.status.value,
                    tier=tier.name,
                    applied_rules=lookup.applied_rules,
                    tiers_tried=len(attempts),
                    duration_ms=round((time.perf_counter() - started) * 1000, 1),
                )
                return ResolveResult(
                    run_id=run_id,
                    logical_type=logical_type,
                    status=tier.status,
                    document=lookup.document,
                    tier=tier.name,
                    attempts=attempts,
                    applied_rules=lookup.applied_rules,
                    created_at=lookup.created_at,
                )

            logger.warning(
                "artifact_rebuild_required",
                attempts=[f"{a.tier}:{a.outcome.value}" for a in attempts],
            )
        return ResolveResult(
            run_id=run_id,
            logical_type=logical_type,
            status=ResolveStatus.REBUILD_REQUIRED,
            attempts=attempts,
        )
