"""SnapshotStore — append-only persistence of immutable run snapshots.

Every ``create`` inserts a new ``snapshots`` row; nothing here ever issues an
UPDATE against that table.  Bodies are stored as JSON text.

Graceful degradation:
    - If Postgres is unreachable, ``create`` returns None and reads return
      None / [] (PgClient never raises).
    - Malformed sub-task fields (null or JSON-text citations, null counters)
      are normalised or defaulted; they never block a snapshot.
"""

from __future__ import annotations

import json
import time
from typing import Any, Iterable, Mapping

import structlog
from pydantic import ValidationError

from intelvault.models.runs import Run, SubtaskResult
from intelvault.models.snapshots import ReuseCandidate, Snapshot, SnapshotSummary
from intelvault.utils.clock import cutoff, epoch_seconds, now_utc
from intelvault.versioning.tree_diff import canonical_json, citation_identity, citation_items

logger = structlog.get_logger().bind(component="snapshot_store")

_SNAPSHOT_COLUMNS = "id, entity_id, run_id, body_json, created_at"

# SubtaskResult fields that fall back to their defaults when sent as null
_DEFAULTED_FIELDS = ("status", "cost", "tokens_used", "duration_ms")


# ── Body assembly (pure) ──────────────────────────────────────────────────────

def capture_payload(payload: Any) -> Any:
    """Decode JSON text holding an object or array; keep anything else verbatim.

    Text such as ``"42"`` or ``"null"`` stays text.  Bytes that are not valid
    UTF-8 are decoded with ``surrogateescape``, so the original bytes can be
    recovered with ``text.encode("utf-8", "surrogateescape")``.
    """
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8", errors="surrogateescape")
    if isinstance(payload, str):
        try:
            decoded = json.loads(payload)
        except ValueError:
            return payload
        return decoded if isinstance(decoded, (dict, list)) else payload
    return payload


def normalize_citations(value: Any) -> list[Any]:
    """Citations as a list: accepts None, JSON text, id→citation maps and lists."""
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="surrogateescape")
    if isinstance(value, str):
        if not value.strip():
            return []
        try:
            value = json.loads(value)
        except ValueError:
            # A bare URL or source label
            return [value]
    return citation_items(value)


def _coerce_result(code: str, result: SubtaskResult | Mapping[str, Any]) -> SubtaskResult:
    if isinstance(result, SubtaskResult):
        return result
    if not isinstance(result, Mapping):
        raise TypeError(f"sub-task {code!r}: expected SubtaskResult or mapping, got {type(result).__name__}")

    if "payload" not in result:
        # Bare payload dict from older producers
        return SubtaskResult(payload=dict(result), citations=normalize_citations(result.get("citations")))

    fields = {
        k: v for k, v in result.items()
        if not (k in _DEFAULTED_FIELDS and v is None)
    }
    fields["citations"] = normalize_citations(result.get("citations"))
    try:
        return SubtaskResult.model_validate(fields)
    except ValidationError as e:
        logger.warning(
            "subtask_result_defaulted",
            subtask_code=code,
            fields=sorted({str(err["loc"][0]) for err in e.errors() if err["loc"]}),
        )
        return SubtaskResult(payload=fields["payload"], citations=fields["citations"])


def incomplete_subtasks(results: Mapping[str, Any], required: Iterable[str] = ()) -> list[str]:
    """Codes that keep a snapshot's sub-task set from counting as complete.

    Reports every required code that is absent and every recorded sub-task
    whose status is not ``completed``.  Unwrapped legacy records carry no
    status and count as completed.
    """
    problems = {code for code in required if code not in results}
    for code, record in results.items():
        if isinstance(record, Mapping) and "payload" in record:
            if record.get("status", "completed") != "completed":
                problems.add(code)
    return sorted(problems)


def build_snapshot_body(
    run: Run,
    results: Mapping[str, SubtaskResult | Mapping[str, Any]],
    sources: Mapping[str, Any] | list[Any] | None = None,
    entity_meta: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Assemble the snapshot document for *run*.

    Every sub-task in *results* is represented; ``citations`` indexes every
    citation of every sub-task by identity (first occurrence wins).
    """
    meta = dict(entity_meta or {})
    subtask_results: dict[str, Any] = {}
    citation_index: dict[str, Any] = {}

    for code in sorted(results):
        result = _coerce_result(code, results[code])
        subtask_results[code] = {
            "payload": capture_payload(result.payload),
            "citations": list(result.citations),
            "status": result.status,
            "cost": result.cost,
            "tokens_used": result.tokens_used,
            "duration_ms": result.duration_ms,
        }
        for citation in result.citations:
            citation_index.setdefault(citation_identity(citation), citation)

    if isinstance(sources, Mapping):
        source_index = {str(k): v for k, v in sources.items()}
    else:
        source_index = {citation_identity(s): s for s in citation_items(sources)}

    return {
        "entity_id": run.entity_id,
        "run_id": run.id,
        "timestamp": epoch_seconds(),
        "run_mode": run.mode,
        "subtask_results": subtask_results,
        "citations": citation_index,
        "sources": source_index,
        "metadata": {
            "entity_name": meta.get("entity_name") or meta.get("name"),
            "ticker": meta.get("ticker"),
            "run_status": run.status.value,
            "tokens_used": run.tokens_used,
            "cost": run.cost,
            "target_entity_id": run.target_entity_id,
        },
    }


# ── Store ─────────────────────────────────────────────────────────────────────

class SnapshotStore:
    """Append-only access to the ``snapshots`` table.  Accepts an injected ``PgClient``."""

    def __init__(self, pg) -> None:
        self._pg = pg

    async def create(
        self,
        run: Run,
        results: Mapping[str, SubtaskResult | Mapping[str, Any]],
        sources: Mapping[str, Any] | list[Any] | None = None,
        entity_meta: Mapping[str, Any] | None = None,
    ) -> int | None:
        """Insert a new snapshot for *run*.  Returns its id, or None if not persisted."""
        started = time.perf_counter()
        body = build_snapshot_body(run, results, sources, entity_meta)
        body_json = canonical_json(body)

        snapshot_id = await self._pg.fetchval(
            """
            INSERT INTO snapshots (entity_id, run_id, body_json)
            VALUES ($1, $2, $3)
            RETURNING id
            """,
            run.entity_id, run.id, body_json,
        )
        if snapshot_id is None:
            logger.warning("snapshot_not_persisted", run_id=run.id, entity_id=run.entity_id)
            return None

        logger.info(
            "snapshot_created",
            snapshot_id=snapshot_id,
            run_id=run.id,
            entity_id=run.entity_id,
            subtasks=len(body["subtask_results"]),
            citations=len(body["citations"]),
            size_bytes=len(body_json.encode("utf-8")),
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        return snapshot_id

    async def get_snapshot(self, snapshot_id: int) -> Snapshot | None:
        row = await self._pg.fetchrow(
            f"SELECT {_SNAPSHOT_COLUMNS} FROM snapshots WHERE id = $1", snapshot_id,
        )
        return Snapshot.from_row(row) if row else None

    async def previous_snapshot(self, entity_id: int, before_id: int) -> Snapshot | None:
        """The entity's newest snapshot strictly older than *before_id*."""
        row = await self._pg.fetchrow(
            f"""
            SELECT {_SNAPSHOT_COLUMNS} FROM snapshots
            WHERE entity_id = $1 AND id < $2
            ORDER BY id DESC
            LIMIT 1
            """,
            entity_id, before_id,
        )
        return Snapshot.from_row(row) if row else None

    async def list_for_entity(self, entity_id: int, limit: int = 50) -> list[Snapshot]:
        """Snapshots of one entity, newest first."""
        rows = await self._pg.fetch(
            f"""
            SELECT {_SNAPSHOT_COLUMNS} FROM snapshots
            WHERE entity_id = $1
            ORDER BY id DESC
            LIMIT $2
            """,
            entity_id, limit,
        )
        return [Snapshot.from_row(r) for r in rows]

    async def history(self, entity_id: int, limit: int = 50) -> list[SnapshotSummary]:
        """Version history joined with run metadata, newest first."""
        rows = await self._pg.fetch(
            """
            SELECT s.id, s.run_id, s.created_at,
                   r.mode, r.status, r.started_at, r.completed_at
            FROM snapshots s
            LEFT JOIN runs r ON r.id = s.run_id
            WHERE s.entity_id = $1
            ORDER BY s.id DESC
            LIMIT $2
            """,
            entity_id, limit,
        )
        return [SnapshotSummary.from_row(r) for r in rows]

    async def get_reusable_snapshot(
        self, entity_id: int, max_age_seconds: int | None = None,
    ) -> int | None:
        """Newest snapshot of a completed run younger than *max_age_seconds*."""
        if max_age_seconds is None:
            from intelvault.config import settings
            max_age_seconds = settings.snapshot_reuse_max_age_seconds

        snapshot_id = await self._pg.fetchval(
            """
            SELECT s.id
            FROM snapshots s
            JOIN runs r ON r.id = s.run_id
            WHERE s.entity_id = $1
              AND r.status = 'completed'
              AND s.created_at >= $2
            ORDER BY s.id DESC
            LIMIT 1
            """,
            entity_id, cutoff(max_age_seconds),
        )
        logger.debug(
            "reusable_snapshot_lookup",
            entity_id=entity_id,
            max_age_seconds=max_age_seconds,
            snapshot_id=snapshot_id,
        )
        return snapshot_id

    async def find_reusable_run(
        self,
        entity_id: int,
        target_entity_id: int | None = None,
        *,
        required_subtasks: Iterable[str] | None = None,
        max_age_seconds: int | None = None,
    ) -> ReuseCandidate | None:
        """Reuse check for a new run of the (entity, target) pair.

        Looks only at the pair's newest snapshot of a completed run inside the
        freshness window.  If that snapshot's sub-task set is incomplete
        (a required code missing, or any sub-task not completed) nothing is
        offered and the caller regenerates in full.
        """
        from intelvault.config import settings
        if max_age_seconds is None:
            max_age_seconds = settings.snapshot_reuse_max_age_seconds
        if required_subtasks is None:
            required_subtasks = settings.reuse_required_subtasks

        log = logger.bind(entity_id=entity_id, target_entity_id=target_entity_id)
        row = await self._pg.fetchrow(
            """
            SELECT s.id, s.entity_id, s.run_id, s.body_json, s.created_at
            FROM snapshots s
            JOIN runs r ON r.id = s.run_id
            WHERE s.entity_id = $1
              AND r.target_entity_id IS NOT DISTINCT FROM $2
              AND r.status = 'completed'
              AND s.created_at >= $3
            ORDER BY s.id DESC
            LIMIT 1
            """,
            entity_id, target_entity_id, cutoff(max_age_seconds),
        )
        if row is None:
            log.info("reuse_check", outcome="no_snapshot_found", max_age_seconds=max_age_seconds)
            return None

        snapshot = Snapshot.from_row(row)
        results = snapshot.subtask_results
        incomplete = incomplete_subtasks(results, required_subtasks)
        if not results or incomplete:
            log.info(
                "reuse_check",
                outcome="incomplete_subtask_set",
                snapshot_id=snapshot.id,
                run_id=snapshot.run_id,
                subtasks=len(results),
                incomplete=incomplete,
            )
            return None

        age_seconds = max(0, int((now_utc() - snapshot.created_at).total_seconds()))
        log.info(
            "reuse_check",
            outcome="reusable",
            snapshot_id=snapshot.id,
            run_id=snapshot.run_id,
            age_seconds=age_seconds,
        )
        return ReuseCandidate(
            snapshot_id=snapshot.id,
            run_id=snapshot.run_id,
            entity_id=snapshot.entity_id,
            target_entity_id=target_entity_id,
            created_at=snapshot.created_at,
            age_seconds=age_seconds,
            subtask_codes=snapshot.subtask_codes,
        )
