"""RebuildCoordinator — at most one concurrent rebuild per run.

Claim protocol (Redis):

    SET intelvault:rebuild:{run_id} <token> NX EX <ttl>    → RebuildClaim (GRANTED / BUSY)
    ... caller runs the expensive synthesis ...
    success → write artifact_cache row, then delete the key if it still holds <token>
    failure → delete the key if it still holds <token>, write nothing

The token travels with the caller in its ``RebuildClaim``; the coordinator
keeps no per-run state, so one instance can be shared by many workers.

The TTL turns a crashed worker's claim into an abandoned one that the next
caller may take over.  Losers are expected to poll (``wait_for_rebuild``)
rather than start a second rebuild.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping

import structlog

from intelvault.artifacts.tiers import SYNTHESIS_BUNDLE, canonical_logical_type, parse_body
from intelvault.errors import RebuildFailedError

logger = structlog.get_logger().bind(component="rebuild")

KEY_PREFIX = "intelvault:rebuild"

Producer = Callable[[int], Awaitable[Mapping[str, Any]]]


class ClaimOutcome(str, Enum):
    GRANTED = "granted"
    BUSY = "busy"


@dataclass(frozen=True)
class RebuildClaim:
    """Handle for one claim attempt; hand it back to ``release_rebuild``.

    Only a granted claim carries a token, and only that token can remove
    the Redis key, so a worker whose claim expired can never release the
    claim a later worker now holds.
    """

    run_id: int
    outcome: ClaimOutcome
    token: str | None = None

    @property
    def granted(self) -> bool:
        return self.outcome is ClaimOutcome.GRANTED


class RebuildCoordinator:
    """Claim / release of per-run rebuild slots.

    Args:
        repo:          ArtifactRepository used to publish rebuilt documents.
        redis:         RedisClient (defaults to one built from settings).
        claim_ttl:     Seconds before a claim is considered abandoned.
        poll_interval: Sleep between checks in ``wait_for_rebuild``.
    """

    def __init__(
        self,
        repo,
        redis=None,
        *,
        claim_ttl: int | None = None,
        poll_interval: float | None = None,
    ) -> None:
        if claim_ttl is None or poll_interval is None:
            from intelvault.config import settings
            claim_ttl = settings.rebuild_claim_ttl_seconds if claim_ttl is None else claim_ttl
            poll_interval = (
                settings.rebuild_poll_interval_seconds if poll_interval is None else poll_interval
            )
        if redis is None:
            from intelvault.tools.redis_client import RedisClient
            redis = RedisClient()
        self._repo = repo
        self._redis = redis
        self._claim_ttl = claim_ttl
        self._poll_interval = poll_interval

    @staticmethod
    def claim_key(run_id: int) -> str:
        return f"{KEY_PREFIX}:{run_id}"

    # ── Claim / release ───────────────────────────────────────────────────

    async def claim_rebuild(self, run_id: int) -> RebuildClaim:
        token = uuid.uuid4().hex
        if await self._redis.set_if_absent(self.claim_key(run_id), token, self._claim_ttl):
            logger.info("rebuild_claimed", run_id=run_id, ttl=self._claim_ttl)
            return RebuildClaim(run_id, ClaimOutcome.GRANTED, token)
        logger.info("rebuild_busy", run_id=run_id)
        return RebuildClaim(run_id, ClaimOutcome.BUSY)

    async def is_rebuilding(self, run_id: int) -> bool:
        return await self._redis.get(self.claim_key(run_id)) is not None

    async def release_rebuild(
        self,
        claim: RebuildClaim,
        success: bool,
        document: Mapping[str, Any] | None = None,
        logical_type: str = SYNTHESIS_BUNDLE,
    ) -> bool:
        """Release *claim*, publishing *document* first on success.

        Returns True when a live-cache row was written.  Only a non-empty
        document is ever published, so a failed or hollow rebuild leaves the
        run in REBUILD_REQUIRED.  A claim that was never granted publishes
        nothing and leaves the key alone.
        """
        run_id = claim.run_id
        logical_type = canonical_logical_type(logical_type)
        if not claim.granted:
            logger.warning("rebuild_release_without_claim", run_id=run_id, logical_type=logical_type)
            return False

        published = False
        if success:
            if isinstance(document, Mapping) and document:
                published = await self._repo.put_cache(run_id, logical_type, dict(document))
                if not published:
                    logger.warning("rebuild_publish_failed", run_id=run_id, logical_type=logical_type)
            else:
                logger.warning("rebuild_success_without_document", run_id=run_id,
                               logical_type=logical_type)

        if not await self._redis.delete_if_equals(self.claim_key(run_id), claim.token):
            # Our claim expired; someone else may hold the slot now
            logger.warning("rebuild_claim_lost", run_id=run_id)

        logger.info(
            "rebuild_released",
            run_id=run_id,
            logical_type=logical_type,
            success=success,
            published=published,
        )
        return published

    async def force_release(self, run_id: int) -> None:
        """Drop whatever claim is held on *run_id*, whoever holds it.

        For operators clearing a slot by hand; workers release through their
        own ``RebuildClaim``.
        """
        await self._redis.delete(self.claim_key(run_id))
        logger.warning("rebuild_claim_forced", run_id=run_id)

    # ── Whole protocol ────────────────────────────────────────────────────

    async def rebuild(
        self,
        run_id: int,
        producer: Producer,
        logical_type: str = SYNTHESIS_BUNDLE,
    ) -> dict[str, Any] | None:
        """Claim, run *producer*, publish, release.

        Returns the published document, or None when another worker holds the
        claim.

        Raises:
            RebuildFailedError: the producer raised or returned nothing.  The
                claim is released and no cache row is written.
        """
        logical_type = canonical_logical_type(logical_type)
        claim = await self.claim_rebuild(run_id)
        if not claim.granted:
            return None

        started = time.perf_counter()
        try:
            document = await producer(run_id)
        except asyncio.CancelledError:
            await self.release_rebuild(claim, False, logical_type=logical_type)
            raise
        except Exception as exc:
            await self.release_rebuild(claim, False, logical_type=logical_type)
            missing = list(getattr(exc, "missing", None) or [])
            logger.error(
                "rebuild_failed",
                run_id=run_id,
                logical_type=logical_type,
                error=str(exc),
                missing_dependencies=missing,
            )
            raise RebuildFailedError(
                run_id,
                logical_type,
                f"rebuild of {logical_type} for run {run_id} failed: {exc}",
                missing_dependencies=missing,
                context={"error_type": type(exc).__name__},
            ) from exc

        if not isinstance(document, Mapping) or not document:
            await self.release_rebuild(claim, False, logical_type=logical_type)
            raise RebuildFailedError(
                run_id, logical_type, f"rebuild of {logical_type} for run {run_id} produced no document",
            )

        document = dict(document)
        await self.release_rebuild(claim, True, document, logical_type)
        logger.info(
            "rebuild_complete",
            run_id=run_id,
            logical_type=logical_type,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        return document

    async def wait_for_rebuild(
        self,
        run_id: int,
        timeout: float | None = None,
        logical_type: str = SYNTHESIS_BUNDLE,
    ) -> bool:
        """Poll until the live cache holds the artifact or the claim disappears.

        Returns True if a usable live-cache row exists when polling stops.
        """
        logical_type = canonical_logical_type(logical_type)
        timeout = self._claim_ttl if timeout is None else timeout
        deadline = time.monotonic() + timeout

        while True:
            if await self._cache_ready(run_id, logical_type):
                return True
            if not await self.is_rebuilding(run_id):
                # Claim released (or expired) between the two checks
                return await self._cache_ready(run_id, logical_type)
            if time.monotonic() >= deadline:
                logger.warning("rebuild_wait_timeout", run_id=run_id, timeout=timeout)
                return False
            await asyncio.sleep(self._poll_interval)

    async def _cache_ready(self, run_id: int, logical_type: str) -> bool:
        row = await self._repo.get_cache_row(run_id, logical_type)
        if row is None:
            return False
        document, _, _ = parse_body(row.body_json)
        return document is not None
