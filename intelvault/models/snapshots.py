"""Snapshot models — immutable point-in-time captures of a completed run.

Snapshot        — one row of the ``snapshots`` table with its decoded body.
SnapshotSummary — one entry of an entity's version history.
ReuseCandidate  — a recent complete snapshot offered for reuse by a new run.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field


class Snapshot(BaseModel):
    """Immutable JSON capture of a run's sub-task outputs.

    The ``body`` dict always carries the top-level keys ``entity_id``,
    ``run_id``, ``timestamp``, ``subtask_results``, ``citations``, ``sources``
    and ``metadata``.  Ordering between snapshots uses ``id`` (SERIAL).
    """

    id: int
    entity_id: int
    run_id: int
    body: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )

    @classmethod
    def from_row(cls, row: dict) -> "Snapshot":
        """Construct from an asyncpg record dict (``body_json`` is TEXT)."""
        raw = row.get("body_json") or "{}"
        try:
            body = json.loads(raw) if isinstance(raw, str) else dict(raw)
        except (TypeError, ValueError):
            body = {}
        if not isinstance(body, dict):
            body = {}
        return cls(
            id=row["id"],
            entity_id=row["entity_id"],
            run_id=row["run_id"],
            body=body,
            created_at=row.get("created_at") or datetime.now(timezone.utc),
        )

    @property
    def subtask_results(self) -> dict[str, Any]:
        results = self.body.get("subtask_results")
        return results if isinstance(results, dict) else {}

    @property
    def subtask_codes(self) -> list[str]:
        return sorted(self.subtask_results)


class SnapshotSummary(BaseModel):
    """One line of ``get_history`` output (newest first)."""

    snapshot_id: int
    run_id: int
    created_at: datetime
    mode: str | None = None
    status: str | None = None
    duration_seconds: float | None = None

    @classmethod
    def from_row(cls, row: dict) -> "SnapshotSummary":
        started = row.get("started_at")
        completed = row.get("completed_at")
        duration = (completed - started).total_seconds() if started and completed else None
        return cls(
            snapshot_id=row["id"],
            run_id=row["run_id"],
            created_at=row["created_at"],
            mode=row.get("mode"),
            status=row.get("status"),
            duration_seconds=duration,
        )


class ReuseCandidate(BaseModel):
    """A recent, complete snapshot a new run for the same entity pair may reuse."""

    snapshot_id: int
    run_id: int
    entity_id: int
    target_entity_id: int | None = None
    created_at: datetime
    age_seconds: int = 0
    subtask_codes: list[str] = Field(default_factory=list)

    @property
    def age_days(self) -> int:
        return self.age_seconds // 86400
