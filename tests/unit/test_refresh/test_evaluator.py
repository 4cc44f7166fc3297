"""Unit tests for the Refresh Strategy Evaluator."""

from __future__ import annotations

import itertools

import pytest
from pydantic import ValidationError

from intelvault.models.refresh import RefreshConfig, RefreshPlan
from intelvault.refresh.evaluator import RefreshStrategyEvaluator, evaluate, parse_refresh_config

FLAGS = ("force_nb_refresh", "force_synthesis_refresh", "refresh_source", "refresh_target")


# ─────────────────────────────────────────────────────────────────────────────
# 1. evaluate(): the pure policy
# ─────────────────────────────────────────────────────────────────────────────

class TestEvaluate:
    def test_none_is_full_reuse(self):
        assert evaluate(None) == RefreshPlan(refresh_source=False, refresh_target=False,
                                             refresh_synthesis=False)

    def test_all_false_is_full_reuse(self):
        plan = evaluate({flag: False for flag in FLAGS})
        assert plan.is_full_reuse

    def test_force_nb_refresh_forces_everything(self):
        plan = evaluate(RefreshConfig(force_nb_refresh=True, force_synthesis_refresh=False))
        assert (plan.refresh_source, plan.refresh_target, plan.refresh_synthesis) == (True, True, True)

    def test_source_only_pulls_synthesis(self):
        plan = evaluate({"refresh_source": True})
        assert (plan.refresh_source, plan.refresh_target, plan.refresh_synthesis) == (True, False, True)

    def test_target_only_pulls_synthesis(self):
        plan = evaluate({"refresh_target": True})
        assert (plan.refresh_source, plan.refresh_target, plan.refresh_synthesis) == (False, True, True)

    def test_synthesis_only(self):
        plan = evaluate({"force_synthesis_refresh": True})
        assert (plan.refresh_source, plan.refresh_target, plan.refresh_synthesis) == (False, False, True)

    @pytest.mark.parametrize("values", list(itertools.product([False, True], repeat=4)))
    def test_dependency_invariant_for_every_config(self, values):
        plan = evaluate(dict(zip(FLAGS, values)))
        if plan.refresh_source or plan.refresh_target:
            assert plan.refresh_synthesis

    def test_plan_rejects_stale_synthesis(self):
        with pytest.raises(ValidationError):
            RefreshPlan(refresh_source=True, refresh_synthesis=False)

    def test_json_text_accepted(self):
        assert evaluate('{"refresh_target": true}').refresh_target is True

    def test_unknown_keys_ignored(self):
        assert evaluate({"legacy_flag": True}).is_full_reuse


# ─────────────────────────────────────────────────────────────────────────────
# 2. parse_refresh_config(): tolerant decoding of stored configs
# ─────────────────────────────────────────────────────────────────────────────

class TestParseRefreshConfig:
    def test_invalid_json_falls_back_to_default(self):
        assert parse_refresh_config("{not json") == RefreshConfig()

    def test_non_object_falls_back_to_default(self):
        assert parse_refresh_config("[true, true]") == RefreshConfig()

    def test_blank_text_is_default(self):
        assert parse_refresh_config("   ") == RefreshConfig()

    def test_unusable_flag_value_falls_back(self):
        assert parse_refresh_config({"refresh_source": {"nested": 1}}) == RefreshConfig()

    def test_string_booleans_coerced(self):
        assert parse_refresh_config({"refresh_source": "true"}).refresh_source is True


# ─────────────────────────────────────────────────────────────────────────────
# 3. Per-run queries
# ─────────────────────────────────────────────────────────────────────────────

class TestRefreshStrategyEvaluator:
    @pytest.mark.asyncio
    async def test_each_decision_queryable(self, run_store, make_run):
        await run_store.register(make_run(5, refresh_config='{"refresh_source": true}'))
        evaluator = RefreshStrategyEvaluator(run_store)
        assert await evaluator.should_regenerate(5, "source") is True
        assert await evaluator.should_regenerate(5, "target") is False
        assert await evaluator.should_regenerate_synthesis(5) is True

    @pytest.mark.asyncio
    async def test_get_refresh_plan_force_all(self, run_store, make_run):
        await run_store.register(make_run(6, refresh_config='{"force_nb_refresh": 1}'))
        plan = await RefreshStrategyEvaluator(run_store).get_refresh_plan(6)
        assert plan == RefreshPlan(refresh_source=True, refresh_target=True, refresh_synthesis=True)

    @pytest.mark.asyncio
    async def test_no_config_is_full_reuse(self, run_store, make_run):
        await run_store.register(make_run(7))
        assert (await RefreshStrategyEvaluator(run_store).get_refresh_plan(7)).is_full_reuse

    @pytest.mark.asyncio
    async def test_garbage_config_is_full_reuse(self, run_store, make_run):
        await run_store.register(make_run(8, refresh_config="}{"))
        assert (await RefreshStrategyEvaluator(run_store).get_refresh_plan(8)).is_full_reuse

    @pytest.mark.asyncio
    async def test_unknown_run_is_full_reuse(self, run_store):
        assert (await RefreshStrategyEvaluator(run_store).get_refresh_plan(404)).is_full_reuse

    @pytest.mark.asyncio
    async def test_unknown_resource_is_programmer_error(self, run_store):
        with pytest.raises(ValueError, match="unknown sub-resource"):
            await RefreshStrategyEvaluator(run_store).should_regenerate(1, "synthesis")

    @pytest.mark.asyncio
    async def test_config_updates_are_seen(self, run_store, make_run):
        await run_store.register(make_run(9))
        evaluator = RefreshStrategyEvaluator(run_store)
        assert await evaluator.should_regenerate(9, "target") is False
        await run_store.set_refresh_config(9, {"refresh_target": True})
        assert await evaluator.should_regenerate(9, "target") is True
