"""End-to-end lifecycle against real Postgres + Redis."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from intelvault.artifacts.tiers import SYNTHESIS_BUNDLE
from intelvault.lifecycle import ArtifactLifecycle
from intelvault.models.artifacts import ResolveStatus
from intelvault.models.runs import Run, RunStatus
from intelvault.versioning.service import VersioningService


@pytest.fixture
def lifecycle(pg, redis):
    return ArtifactLifecycle(pg, redis, versioning=VersioningService(pg, defer_diff=False))


@pytest.mark.integration
@pytest.mark.asyncio
async def test_snapshot_diff_round_trip(lifecycle):
    runs = []
    for payload in ({"rating": "hold"}, {"rating": "buy"}):
        run = Run(entity_id=501, status=RunStatus.COMPLETED, refresh_config='{"refresh_source": true}')
        run.id = await lifecycle.runs.register(run)
        runs.append(run)
        await lifecycle.create_snapshot(run, {"NB1": {"payload": payload, "citations": []}})

    history = await lifecycle.get_history(501)
    assert [h.run_id for h in history] == [runs[1].id, runs[0].id]

    diff = await lifecycle.get_diff(history[0].snapshot_id)
    assert diff.subtask_diffs[0].changed == {"rating": {"from": "hold", "to": "buy"}}
    assert await lifecycle.get_reusable_snapshot(501) == history[0].snapshot_id
    assert (await lifecycle.get_refresh_plan(runs[0].id)).refresh_synthesis is True


@pytest.mark.integration
@pytest.mark.asyncio
async def test_resolve_fallback_then_rebuild(lifecycle):
    run_id = await lifecycle.runs.register(Run(entity_id=502, status=RunStatus.COMPLETED))
    await lifecycle.repository.save_artifact(run_id, "synthesis", "synthesis_record", "{not json")

    assert (await lifecycle.resolve_artifact(run_id, SYNTHESIS_BUNDLE)).status is ResolveStatus.REBUILD_REQUIRED

    result = await lifecycle.resolve_or_rebuild(run_id, AsyncMock(return_value={"html": "<p>ok</p>"}))
    assert result.status is ResolveStatus.HIT
    assert result.tier == "live_cache"
    assert not await lifecycle.coordinator.is_rebuilding(run_id)
