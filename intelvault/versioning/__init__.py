"""Snapshot & diff engine: immutable run snapshots and their structural diffs."""

from intelvault.versioning.diff_store import DiffStore
from intelvault.versioning.service import VersioningService
from intelvault.versioning.snapshot_store import SnapshotStore
from intelvault.versioning.tree_diff import (
    citation_identity,
    count_field_changes,
    diff_snapshots,
    format_diff_display,
)

__all__ = [
    "DiffStore",
    "SnapshotStore",
    "VersioningService",
    "citation_identity",
    "count_field_changes",
    "diff_snapshots",
    "format_diff_display",
]
