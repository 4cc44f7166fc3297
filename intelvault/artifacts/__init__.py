"""Artifact resolution: fallback chain over schema revisions, plus rebuild claims."""

from intelvault.artifacts.rebuild import ClaimOutcome, RebuildClaim, RebuildCoordinator
from intelvault.artifacts.repository import ArtifactRepository
from intelvault.artifacts.resolver import ArtifactResolver
from intelvault.artifacts.tiers import SYNTHESIS_BUNDLE, SYNTHESIS_INPUTS

__all__ = [
    "ArtifactRepository",
    "ArtifactResolver",
    "ClaimOutcome",
    "RebuildClaim",
    "RebuildCoordinator",
    "SYNTHESIS_BUNDLE",
    "SYNTHESIS_INPUTS",
]
