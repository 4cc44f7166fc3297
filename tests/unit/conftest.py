"""Unit-test conftest — in-memory stores, shared fixtures and builders.

The fakes mirror the public methods of the Postgres-backed stores so the
services under test cannot tell the difference.  All fixtures here are
available to every test under tests/unit/ without import.
"""

from __future__ import annotations

import itertools
import json
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from intelvault.models.artifacts import ArtifactRow, CacheRow
from intelvault.models.diffs import SnapshotDiff
from intelvault.models.runs import Run, RunStatus
from intelvault.models.snapshots import ReuseCandidate, Snapshot, SnapshotSummary
from intelvault.tools.redis_client import RedisClient
from intelvault.versioning.snapshot_store import build_snapshot_body, incomplete_subtasks


# ─────────────────────────────────────────────────────────────────────────────
# In-memory stores
# ─────────────────────────────────────────────────────────────────────────────

class FakeRunStore:
    """Dict-backed stand-in for RunStore."""

    def __init__(self) -> None:
        self.runs: dict[int, Run] = {}
        self._ids = itertools.count(1)

    async def register(self, run: Run) -> int:
        run_id = run.id or next(self._ids)
        self.runs[run_id] = run.model_copy(update={"id": run_id})
        return run_id

    async def get(self, run_id: int) -> Run | None:
        return self.runs.get(run_id)

    async def set_status(self, run_id: int, status: RunStatus) -> bool:
        if run_id not in self.runs:
            return False
        self.runs[run_id] = self.runs[run_id].model_copy(update={"status": status})
        return True

    async def set_refresh_config(self, run_id: int, config) -> bool:
        if run_id not in self.runs:
            return False
        raw = config if config is None or isinstance(config, str) else json.dumps(dict(config))
        self.runs[run_id] = self.runs[run_id].model_copy(update={"refresh_config": raw})
        return True


class FakeSnapshotStore:
    """List-backed stand-in for SnapshotStore (append-only, like the real one)."""

    def __init__(self, runs: FakeRunStore | None = None) -> None:
        self.rows: list[Snapshot] = []
        self.runs = runs
        self._ids = itertools.count(1)

    async def create(self, run, results, sources=None, entity_meta=None) -> int:
        body = build_snapshot_body(run, results, sources, entity_meta)
        snapshot_id = next(self._ids)
        # Round-trip through JSON text like the TEXT column does
        self.rows.append(Snapshot(
            id=snapshot_id,
            entity_id=run.entity_id,
            run_id=run.id,
            body=json.loads(json.dumps(body)),
        ))
        return snapshot_id

    async def get_snapshot(self, snapshot_id: int) -> Snapshot | None:
        return next((s for s in self.rows if s.id == snapshot_id), None)

    async def previous_snapshot(self, entity_id: int, before_id: int) -> Snapshot | None:
        older = [s for s in self.rows if s.entity_id == entity_id and s.id < before_id]
        return max(older, key=lambda s: s.id) if older else None

    async def list_for_entity(self, entity_id: int, limit: int = 50) -> list[Snapshot]:
        mine = [s for s in self.rows if s.entity_id == entity_id]
        return sorted(mine, key=lambda s: s.id, reverse=True)[:limit]

    async def history(self, entity_id: int, limit: int = 50) -> list[SnapshotSummary]:
        summaries = []
        for snap in await self.list_for_entity(entity_id, limit):
            run = self.runs.runs.get(snap.run_id) if self.runs else None
            summaries.append(SnapshotSummary(
                snapshot_id=snap.id,
                run_id=snap.run_id,
                created_at=snap.created_at,
                mode=run.mode if run else None,
                status=run.status.value if run else None,
                duration_seconds=run.duration_seconds if run else None,
            ))
        return summaries

    async def get_reusable_snapshot(self, entity_id: int, max_age_seconds: int | None = None):
        limit = datetime.now(timezone.utc) - timedelta(seconds=max_age_seconds or 2592000)
        for snap in await self.list_for_entity(entity_id):
            run = self.runs.runs.get(snap.run_id) if self.runs else None
            if run and run.is_completed and snap.created_at >= limit:
                return snap.id
        return None

    async def find_reusable_run(
        self, entity_id, target_entity_id=None, *, required_subtasks=None, max_age_seconds=None,
    ) -> ReuseCandidate | None:
        limit = datetime.now(timezone.utc) - timedelta(seconds=max_age_seconds or 2592000)
        for snap in await self.list_for_entity(entity_id):
            run = self.runs.runs.get(snap.run_id) if self.runs else None
            if not run or not run.is_completed or run.target_entity_id != target_entity_id:
                continue
            if snap.created_at < limit:
                return None
            results = snap.subtask_results
            if not results or incomplete_subtasks(results, required_subtasks or ()):
                return None
            return ReuseCandidate(
                snapshot_id=snap.id,
                run_id=snap.run_id,
                entity_id=entity_id,
                target_entity_id=target_entity_id,
                created_at=snap.created_at,
                subtask_codes=snap.subtask_codes,
            )
        return None


class FakeDiffStore:
    """Dict-backed stand-in for DiffStore; counts writes for memo assertions."""

    def __init__(self) -> None:
        self.bodies: dict[tuple[int, int], str] = {}
        self.saves = 0

    async def save(self, diff: SnapshotDiff) -> bool:
        self.bodies[(diff.from_snapshot_id, diff.to_snapshot_id)] = diff.canonical_json()
        self.saves += 1
        return True

    async def get(self, from_id: int, to_id: int) -> SnapshotDiff | None:
        body = self.bodies.get((from_id, to_id))
        return SnapshotDiff.model_validate_json(body) if body else None


class FakeArtifactRepo:
    """Stand-in for ArtifactRepository.  Bodies are stored as raw text."""

    def __init__(self) -> None:
        self.artifacts: list[ArtifactRow] = []
        self.cache: dict[tuple[int, str], CacheRow] = {}
        self.cache_writes = 0
        self._ids = itertools.count(1)

    @staticmethod
    def _text(data: Any) -> str | None:
        return data if data is None or isinstance(data, str) else json.dumps(data)

    async def save_artifact(self, run_id, phase, artifact_type, data) -> bool:
        self.artifacts = [
            a for a in self.artifacts
            if (a.run_id, a.phase, a.artifact_type) != (run_id, phase, artifact_type)
        ]
        self.artifacts.append(ArtifactRow(
            id=next(self._ids), run_id=run_id, phase=phase,
            artifact_type=artifact_type, body_json=self._text(data),
        ))
        return True

    async def get_artifact(self, run_id, phase, artifact_type) -> ArtifactRow | None:
        rows = [a for a in self.artifacts
                if (a.run_id, a.phase, a.artifact_type) == (run_id, phase, artifact_type)]
        return rows[-1] if rows else None

    async def find_by_type(self, run_id, artifact_type) -> ArtifactRow | None:
        rows = [a for a in self.artifacts
                if a.run_id == run_id and a.artifact_type == artifact_type]
        return rows[-1] if rows else None

    async def put_cache(self, run_id, logical_type, document) -> bool:
        self.cache[(run_id, logical_type)] = CacheRow(
            run_id=run_id, logical_type=logical_type, body_json=self._text(document),
        )
        self.cache_writes += 1
        return True

    async def get_cache_row(self, run_id, logical_type) -> CacheRow | None:
        return self.cache.get((run_id, logical_type))

    async def clear_cache(self, run_id, logical_type=None) -> bool:
        for key in list(self.cache):
            if key[0] == run_id and logical_type in (None, key[1]):
                del self.cache[key]
        return True


# ─────────────────────────────────────────────────────────────────────────────
# Builders
# ─────────────────────────────────────────────────────────────────────────────

def citation(n: int, domain: str = "example.com") -> dict:
    return {"id": f"c{n}", "url": f"https://{domain}/doc/{n}", "snippet": f"snippet {n}"}


def citations(start: int, count: int, domain: str = "example.com") -> list[dict]:
    return [citation(n, domain) for n in range(start, start + count)]


# ─────────────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def run_store():
    return FakeRunStore()


@pytest.fixture
def snapshot_store(run_store):
    return FakeSnapshotStore(run_store)


@pytest.fixture
def diff_store():
    return FakeDiffStore()


@pytest.fixture
def artifact_repo():
    return FakeArtifactRepo()


@pytest.fixture
def fallback_redis():
    """RedisClient pinned to its in-process dict (never dials a server)."""
    client = RedisClient(url="redis://unused:0/0")
    client._use_fallback = True
    return client


@pytest.fixture
def make_run():
    """Factory: ``make_run(run_id, entity_id=..., **fields)`` → Run."""
    def _make(run_id: int, entity_id: int = 7, **fields) -> Run:
        fields.setdefault("status", RunStatus.COMPLETED)
        return Run(id=run_id, entity_id=entity_id, **fields)
    return _make


@pytest.fixture
def cite():
    """Factory: ``cite(start, count)`` → list of citation records."""
    return citations


@pytest.fixture
def run17_results():
    """Five sub-task results with differently sized citation sets."""
    return {
        "NB1": {"payload": {"summary": "market overview", "score": 0.8},
                "citations": citations(1, 8), "status": "completed", "cost": 0.12},
        "NB2": {"payload": {"summary": "financials", "revenue": {"2023": 10, "2024": 12}},
                "citations": citations(101, 6), "status": "completed", "cost": 0.10},
        "NB3": {"payload": {"summary": "leadership"},
                "citations": citations(201, 4), "status": "completed", "cost": 0.05},
        "NB4": {"payload": {"summary": "risks", "flags": ["supply", "fx"]},
                "citations": citations(301, 3), "status": "completed", "cost": 0.04},
        "NB5": {"payload": {"summary": "strategy"},
                "citations": citations(401, 12) + citations(501, 8) + citations(601, 5) + citations(701, 4),
                "status": "completed", "cost": 0.30},
    }
