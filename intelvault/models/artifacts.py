"""Artifact models — stored rows and resolver outcomes.

ArtifactRow  — one physical artifact blob (``artifacts`` table).  Several rows
               with different ``artifact_type`` may describe the same logical
               artifact, because the producer's schema changed over time.
CacheRow     — the current-generation live cache entry (``artifact_cache``).
ResolveResult — what the resolver hands back to the report layer.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ArtifactRow(BaseModel):
    id: int = 0
    run_id: int
    phase: str
    artifact_type: str
    body_json: str | None = None
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )

    @classmethod
    def from_row(cls, row: dict) -> "ArtifactRow":
        return cls(
            id=row.get("id", 0),
            run_id=row["run_id"],
            phase=row.get("phase") or "",
            artifact_type=row.get("artifact_type") or "",
            body_json=row.get("body_json"),
            created_at=row.get("created_at") or datetime.now(timezone.utc),
        )


class CacheRow(BaseModel):
    run_id: int
    logical_type: str
    body_json: str | None = None
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )

    @classmethod
    def from_row(cls, row: dict) -> "CacheRow":
        return cls(
            run_id=row["run_id"],
            logical_type=row.get("logical_type") or "",
            body_json=row.get("body_json"),
            created_at=row.get("created_at") or datetime.now(timezone.utc),
        )


class ResolveStatus(str, Enum):
    HIT = "HIT"
    FALLBACK = "FALLBACK"
    REBUILD_REQUIRED = "REBUILD_REQUIRED"


class TierOutcome(str, Enum):
    HIT = "hit"
    ABSENT = "absent"
    MALFORMED = "malformed"
    EMPTY = "empty"


class TierAttempt(BaseModel):
    """Diagnostic record of one tier the resolver tried."""

    tier: str
    outcome: TierOutcome
    detail: str = ""


class ResolveResult(BaseModel):
    """Outcome of ``resolve_artifact``.

    ``document`` is only set for HIT / FALLBACK and is always a fully
    normalized dict.  ``attempts`` lists every tier tried, in order.
    """

    run_id: int
    logical_type: str
    status: ResolveStatus
    document: dict[str, Any] | None = None
    tier: str | None = None
    attempts: list[TierAttempt] = Field(default_factory=list)
    applied_rules: list[str] = Field(default_factory=list)
    created_at: datetime | None = None

    @property
    def found(self) -> bool:
        return self.status != ResolveStatus.REBUILD_REQUIRED

    @property
    def tried_tiers(self) -> list[str]:
        return [a.tier for a in self.attempts]
