"""Diff models — structural comparison between two snapshots of one entity.

A SnapshotDiff is a memoized pure function of ``(from_snapshot_id,
to_snapshot_id)``: it carries no wall-clock field, so recomputing it always
serialises to the same bytes.
"""

from __future__ import annotations

import json
from typing import Any, Literal

from pydantic import BaseModel, Field


class CitationDelta(BaseModel):
    """Identity-keyed citation changes (order of appearance preserved)."""

    added: list[Any] = Field(default_factory=list)
    removed: list[Any] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.added and not self.removed


class SubtaskDiff(BaseModel):
    """Changes for one sub-task code.

    ``added`` / ``removed`` map dot-paths to values, ``changed`` maps dot-paths
    to ``{"from": old, "to": new}``.
    """

    subtask_code: str
    change: Literal["added", "removed", "compared"] = "compared"
    added: dict[str, Any] = Field(default_factory=dict)
    changed: dict[str, dict[str, Any]] = Field(default_factory=dict)
    removed: dict[str, Any] = Field(default_factory=dict)
    citations: CitationDelta = Field(default_factory=CitationDelta)

    @property
    def is_empty(self) -> bool:
        return (
            self.change == "compared"
            and not self.added
            and not self.changed
            and not self.removed
            and self.citations.is_empty
        )

    @property
    def field_change_count(self) -> int:
        return (
            len(self.added) + len(self.changed) + len(self.removed)
            + len(self.citations.added) + len(self.citations.removed)
        )


class SnapshotDiff(BaseModel):
    """Full diff between two snapshots; ``subtask_diffs`` sorted by code."""

    from_snapshot_id: int
    to_snapshot_id: int
    entity_id: int
    subtask_diffs: list[SubtaskDiff] = Field(default_factory=list)
    citations: CitationDelta = Field(default_factory=CitationDelta)

    @property
    def is_empty(self) -> bool:
        return not self.subtask_diffs

    def canonical_json(self) -> str:
        """Stable serialisation used for storage and equality checks."""
        return json.dumps(self.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))
