"""Resolver tiers — one link of the artifact fallback chain each.

A tier fetches at most one stored body, checks that it is a non-empty JSON
object, optionally converts it from an older shape, and normalizes it.  A
tier that finds nothing usable reports *why* (``absent``, ``malformed`` or
``empty``) and the resolver moves on to the next link.

Chains per logical type live in ``FALLBACK_CHAINS``; supporting a new
producer schema revision means adding one entry there.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Callable, Mapping

import structlog

from intelvault.artifacts.normalizer import convert_legacy_record, normalize
from intelvault.models.artifacts import ResolveStatus, TierAttempt, TierOutcome

logger = structlog.get_logger().bind(component="resolver_tiers")

SYNTHESIS_BUNDLE = "synthesis_bundle"
SYNTHESIS_INPUTS = "synthesis_inputs"

# Physical artifact names callers still ask for by their old name
LOGICAL_ALIASES = MappingProxyType({
    "final_bundle": SYNTHESIS_BUNDLE,
    "normalized_inputs_v16": SYNTHESIS_INPUTS,
})

Converter = Callable[[Mapping[str, Any]], dict[str, Any]]


def canonical_logical_type(name: str) -> str:
    return LOGICAL_ALIASES.get(name, name)


def parse_body(body: str | None) -> tuple[dict[str, Any] | None, TierOutcome, str]:
    """Decode a stored body.  Only a non-empty JSON object counts as usable."""
    if body is None:
        return None, TierOutcome.EMPTY, "row has no body"
    if not body.strip():
        return None, TierOutcome.EMPTY, "body is blank"
    try:
        decoded = json.loads(body)
    except ValueError as exc:
        return None, TierOutcome.MALFORMED, f"invalid JSON: {exc}"
    if not isinstance(decoded, dict):
        return None, TierOutcome.MALFORMED, f"expected JSON object, got {type(decoded).__name__}"
    if not decoded:
        return None, TierOutcome.EMPTY, "empty JSON object"
    return decoded, TierOutcome.HIT, ""


@dataclass
class TierLookup:
    """What one tier produced for one request."""

    attempt: TierAttempt
    document: dict[str, Any] | None = None
    applied_rules: list[str] = field(default_factory=list)
    created_at: datetime | None = None


class ResolverTier(ABC):
    """Base class for one link of the chain.

    Subclasses set ``name`` and implement ``fetch``; ``lookup`` wraps it with
    parsing, conversion, normalization and logging.
    """

    name: str = "base"
    status: ResolveStatus = ResolveStatus.FALLBACK

    def __init__(self, repo, converter: Converter | None = None) -> None:
        self._repo = repo
        self._converter = converter

    @abstractmethod
    async def fetch(self, run_id: int, logical_type: str) -> tuple[str | None, datetime | None] | None:
        """Return ``(body_json, created_at)`` for the candidate row, or None."""
        ...

    async def lookup(self, run_id: int, logical_type: str) -> TierLookup:
        row = await self.fetch(run_id, logical_type)
        if row is None:
            return TierLookup(TierAttempt(tier=self.name, outcome=TierOutcome.ABSENT, detail="no row"))

        body, created_at = row
        decoded, outcome, detail = parse_body(body)
        if decoded is None:
            logger.warning(
                "artifact_tier_skipped",
                run_id=run_id,
                logical_type=logical_type,
                tier=self.name,
                outcome=outcome.value,
                detail=detail[:200],
            )
            return TierLookup(TierAttempt(tier=self.name, outcome=outcome, detail=detail))

        rules: list[str] = []
        if self._converter is not None:
            decoded = self._converter(decoded)
            rules.append("legacy_record")
        document, applied = normalize(decoded)
        return TierLookup(
            TierAttempt(tier=self.name, outcome=TierOutcome.HIT),
            document=document,
            applied_rules=rules + applied,
            created_at=created_at,
        )


class LiveCacheTier(ResolverTier):
    """Current-generation cache row for ``(run_id, logical_type)``."""

    name = "live_cache"
    status = ResolveStatus.HIT

    async def fetch(self, run_id: int, logical_type: str):
        row = await self._repo.get_cache_row(run_id, logical_type)
        return (row.body_json, row.created_at) if row else None


class ArtifactBlobTier(ResolverTier):
    """An older physical artifact at a fixed ``(phase, artifact_type)``."""

    def __init__(self, repo, phase: str, artifact_type: str, converter: Converter | None = None) -> None:
        super().__init__(repo, converter)
        self.phase = phase
        self.artifact_type = artifact_type
        self.name = f"{phase}/{artifact_type}"

    async def fetch(self, run_id: int, logical_type: str):
        row = await self._repo.get_artifact(run_id, self.phase, self.artifact_type)
        return (row.body_json, row.created_at) if row else None


class AnyPhaseArtifactTier(ResolverTier):
    """Newest artifact whose type equals the logical type, in any phase."""

    def __init__(self, repo, artifact_type: str) -> None:
        super().__init__(repo)
        self.artifact_type = artifact_type
        self.name = f"*/{artifact_type}"

    async def fetch(self, run_id: int, logical_type: str):
        row = await self._repo.find_by_type(run_id, self.artifact_type)
        return (row.body_json, row.created_at) if row else None


# (phase, artifact_type, converter) in priority order, after the live cache
FALLBACK_CHAINS: Mapping[str, tuple[tuple[str, str, Converter | None], ...]] = MappingProxyType({
    SYNTHESIS_BUNDLE: (
        ("synthesis", "final_bundle", None),
        ("synthesis", "synthesis_record", convert_legacy_record),
    ),
    SYNTHESIS_INPUTS: (
        ("citation_normalization", "normalized_inputs_v16", None),
        ("nb_orchestration", "normalized_inputs", None),
    ),
})


def build_chain(repo, logical_type: str) -> list[ResolverTier]:
    """Ordered tiers for *logical_type*; the live cache always comes first."""
    chain: list[ResolverTier] = [LiveCacheTier(repo)]
    links = FALLBACK_CHAINS.get(logical_type)
    if links is None:
        chain.append(AnyPhaseArtifactTier(repo, logical_type))
        return chain
    for phase, artifact_type, converter in links:
        chain.append(ArtifactBlobTier(repo, phase, artifact_type, converter))
    return chain
