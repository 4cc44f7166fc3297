"""Run and SubtaskResult — what the producing pipeline hands to intelvault.

Run           — one pipeline execution against an entity (optionally a
                source + target pair).  Stored in the ``runs`` table.
SubtaskResult — one completed sub-task (research notebook) of a run, as
                delivered by the producer when a snapshot is taken.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class Run(BaseModel):
    """One pipeline execution.

    ``refresh_config`` is kept as the raw JSON text the run was created with;
    the refresh evaluator parses it (and tolerates garbage).
    """

    id: int = Field(default=0, description="Auto-assigned Postgres SERIAL id.")
    entity_id: int
    target_entity_id: int | None = None
    status: RunStatus = RunStatus.PENDING
    mode: str = "full"
    refresh_config: str | None = None
    tokens_used: int = 0
    cost: float = 0.0
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict) -> "Run":
        """Construct from an asyncpg record dict."""
        return cls(
            id=row.get("id", 0),
            entity_id=row["entity_id"],
            target_entity_id=row.get("target_entity_id"),
            status=row.get("status") or RunStatus.PENDING,
            mode=row.get("mode") or "full",
            refresh_config=row.get("refresh_config"),
            tokens_used=row.get("tokens_used") or 0,
            cost=float(row.get("cost") or 0.0),
            created_at=row.get("created_at") or datetime.now(timezone.utc),
            started_at=row.get("started_at"),
            completed_at=row.get("completed_at"),
        )

    @property
    def is_completed(self) -> bool:
        return self.status == RunStatus.COMPLETED

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()


class SubtaskResult(BaseModel):
    """Output of one sub-task, captured as-is into a snapshot.

    ``payload`` is ``Any``: producers occasionally emit text that
    is not valid JSON and it must still be captured.
    """

    payload: Any = None
    citations: list[Any] = Field(default_factory=list)
    status: str = "completed"
    cost: float = 0.0
    tokens_used: int = 0
    duration_ms: int = 0
