"""Structural diff between two snapshots of one entity.

Pure functions only: no I/O, no clock.  ``diff_snapshots`` is therefore a
deterministic function of the two snapshot bodies, which is what lets the
result be memoized in ``snapshot_diffs``.

Payload trees are walked as three kinds of value:

    Map           → recurse key by key (dot-separated paths)
    IdentifiedSet → lists under ``citations`` / ``sources``; compared by
                    citation identity, order ignored
    Scalar        → anything else, including lists of records, compared as
                    one unit with JSON-strict equality (``1`` != ``1.0`` != ``true``)

Usage:
    from intelvault.versioning.tree_diff import diff_snapshots, format_diff_display
    diff = diff_snapshots(older, newer)
    print(format_diff_display(diff))
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, Iterable, Mapping

from intelvault.errors import InvariantViolation
from intelvault.models.diffs import CitationDelta, SnapshotDiff, SubtaskDiff
from intelvault.models.snapshots import Snapshot

# Payload keys whose list values are identity-keyed sets
CITATION_KEYS = frozenset({"citations", "sources"})

# Path used when a payload is not a map (e.g. a verbatim string)
ROOT_PATH = "$"

# Fields tried, in order, for a citation's stable identity
_IDENTITY_FIELDS = ("source_id", "id", "url")


# ── Value helpers ─────────────────────────────────────────────────────────────

def canonical_json(value: Any) -> str:
    """Key-sorted compact JSON; the basis for equality and hashing."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def json_equal(a: Any, b: Any) -> bool:
    """JSON-strict equality: ``1 == True`` and ``1 == 1.0`` are both False here."""
    return canonical_json(a) == canonical_json(b)


def citation_identity(citation: Any) -> str:
    """Stable identity for one citation.

    ``source_id`` → ``id`` → ``url`` for records, the string itself for
    bare-string citations, and a sha1 of the canonical JSON otherwise.
    """
    if isinstance(citation, Mapping):
        for field in _IDENTITY_FIELDS:
            value = citation.get(field)
            if value is not None and value != "":
                return str(value)
    elif isinstance(citation, str):
        return citation
    return hashlib.sha1(canonical_json(citation).encode("utf-8")).hexdigest()


def citation_items(value: Any) -> list[Any]:
    """Flatten a citation container (list, id→citation map or None) to items."""
    if value is None:
        return []
    if isinstance(value, Mapping):
        return list(value.values())
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def identity_list(value: Any) -> list[str]:
    """Ordered, de-duplicated identities of a citation container."""
    seen: dict[str, None] = {}
    for item in citation_items(value):
        seen.setdefault(citation_identity(item), None)
    return list(seen)


def diff_citations(old: Any, new: Any) -> CitationDelta:
    """Identity-set difference; matching identities are never reported."""
    old_ids = identity_list(old)
    new_ids = identity_list(new)
    old_set, new_set = set(old_ids), set(new_ids)
    return CitationDelta(
        added=[i for i in new_ids if i not in old_set],
        removed=[i for i in old_ids if i not in new_set],
    )


def _is_identified_set(value: Any) -> bool:
    # Keyed maps under citation keys (e.g. counters) are walked like any map
    return isinstance(value, (list, tuple))


# ── Tree walk ─────────────────────────────────────────────────────────────────

def diff_tree(old: Any, new: Any) -> tuple[dict[str, Any], dict[str, dict[str, Any]], dict[str, Any]]:
    """Walk two payload trees and return ``(added, changed, removed)`` by dot-path."""
    added: dict[str, Any] = {}
    changed: dict[str, dict[str, Any]] = {}
    removed: dict[str, Any] = {}
    _walk(old, new, "", added, changed, removed)
    return added, changed, removed


def _walk(
    old: Any,
    new: Any,
    path: str,
    added: dict[str, Any],
    changed: dict[str, dict[str, Any]],
    removed: dict[str, Any],
) -> None:
    if isinstance(old, Mapping) and isinstance(new, Mapping):
        for key in sorted({str(k) for k in old} | {str(k) for k in new}):
            child = f"{path}.{key}" if path else key
            in_old, in_new = key in old, key in new
            if not in_new:
                removed[child] = old[key]
            elif not in_old:
                added[child] = new[key]
            elif (
                key in CITATION_KEYS
                and _is_identified_set(old[key])
                and _is_identified_set(new[key])
            ):
                old_ids, new_ids = identity_list(old[key]), identity_list(new[key])
                if set(old_ids) != set(new_ids):
                    changed[child] = {"from": old_ids, "to": new_ids}
            else:
                _walk(old[key], new[key], child, added, changed, removed)
        return

    if not json_equal(old, new):
        changed[path or ROOT_PATH] = {"from": old, "to": new}


# ── Sub-task and snapshot diffs ───────────────────────────────────────────────

def _split_record(record: Any) -> tuple[Any, Any]:
    """Return ``(payload, citations)`` for a stored sub-task record."""
    if isinstance(record, Mapping) and "payload" in record:
        return record.get("payload"), record.get("citations")
    # Records written before sub-task results were wrapped
    return record, None


def diff_subtask(code: str, old_record: Any, new_record: Any) -> SubtaskDiff:
    """Diff one sub-task; either record may be None (added / removed)."""
    if old_record is None:
        payload, citations = _split_record(new_record)
        return SubtaskDiff(
            subtask_code=code,
            change="added",
            added={ROOT_PATH: payload},
            citations=CitationDelta(added=identity_list(citations)),
        )
    if new_record is None:
        payload, citations = _split_record(old_record)
        return SubtaskDiff(
            subtask_code=code,
            change="removed",
            removed={ROOT_PATH: payload},
            citations=CitationDelta(removed=identity_list(citations)),
        )

    old_payload, old_citations = _split_record(old_record)
    new_payload, new_citations = _split_record(new_record)
    added, changed, removed = diff_tree(old_payload, new_payload)
    return SubtaskDiff(
        subtask_code=code,
        change="compared",
        added=added,
        changed=changed,
        removed=removed,
        citations=diff_citations(old_citations, new_citations),
    )


def _aggregate(deltas: Iterable[CitationDelta]) -> CitationDelta:
    added: dict[str, None] = {}
    removed: dict[str, None] = {}
    for delta in deltas:
        for ident in delta.added:
            added.setdefault(ident, None)
        for ident in delta.removed:
            removed.setdefault(ident, None)
    return CitationDelta(added=list(added), removed=list(removed))


def diff_snapshots(old: Snapshot, new: Snapshot) -> SnapshotDiff:
    """Diff two snapshots of the same entity, ``old`` strictly before ``new``.

    Raises:
        InvariantViolation: self-diff, wrong order, or different entities.
    """
    if old.id == new.id:
        raise InvariantViolation(f"cannot diff snapshot {old.id} against itself")
    if old.entity_id != new.entity_id:
        raise InvariantViolation(
            f"snapshots {old.id} and {new.id} belong to different entities "
            f"({old.entity_id} != {new.entity_id})"
        )
    if old.id > new.id:
        raise InvariantViolation(f"snapshot {old.id} does not precede snapshot {new.id}")

    old_results = old.subtask_results
    new_results = new.subtask_results
    subtask_diffs: list[SubtaskDiff] = []
    for code in sorted(set(old_results) | set(new_results)):
        record = diff_subtask(code, old_results.get(code), new_results.get(code))
        if not record.is_empty:
            subtask_diffs.append(record)

    return SnapshotDiff(
        from_snapshot_id=old.id,
        to_snapshot_id=new.id,
        entity_id=new.entity_id,
        subtask_diffs=subtask_diffs,
        citations=_aggregate(d.citations for d in subtask_diffs),
    )


# ── Reporting ─────────────────────────────────────────────────────────────────

def count_field_changes(diff: SnapshotDiff) -> int:
    """Total number of path-level and citation-level changes."""
    return sum(d.field_change_count for d in diff.subtask_diffs)


def _short(value: Any, limit: int = 80) -> str:
    text = value if isinstance(value, str) else canonical_json(value)
    return text if len(text) <= limit else text[: limit - 3] + "..."


def format_diff_display(diff: SnapshotDiff) -> str:
    """Plain-text rendering for operators and log tails."""
    lines = [
        f"Snapshot {diff.from_snapshot_id} → {diff.to_snapshot_id} "
        f"(entity {diff.entity_id}): {count_field_changes(diff)} change(s)"
    ]
    if diff.is_empty:
        lines.append("  no changes")
        return "\n".join(lines)

    for sub in diff.subtask_diffs:
        lines.append(f"[{sub.subtask_code}] {sub.change}")
        # Whole-payload entries of added/removed sub-tasks are too large to print
        if sub.change == "compared":
            for path, value in sub.added.items():
                lines.append(f"  + {path}: {_short(value)}")
            for path, value in sub.removed.items():
                lines.append(f"  - {path}: {_short(value)}")
            for path, change in sub.changed.items():
                lines.append(f"  ~ {path}: {_short(change['from'])} → {_short(change['to'])}")
        for ident in sub.citations.added:
            lines.append(f"  + citation {ident}")
        for ident in sub.citations.removed:
            lines.append(f"  - citation {ident}")

    lines.append(
        f"Citations: +{len(diff.citations.added)} / -{len(diff.citations.removed)}"
    )
    return "\n".join(lines)
