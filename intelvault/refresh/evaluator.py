"""Refresh Strategy Evaluator — which sub-resources a run must regenerate.

``evaluate`` is the whole policy and is pure:

    config absent / all flags false  → (source=False, target=False, synthesis=False)
    force_nb_refresh                 → (True, True, True)
    otherwise                        → source/target copied,
                                       synthesis = own flag OR source OR target

``RefreshStrategyEvaluator`` loads a run's stored ``refresh_config`` and
answers each decision separately for the orchestration layer.

Usage:
    evaluator = RefreshStrategyEvaluator(RunStore(pg))
    if await evaluator.should_regenerate(run_id, "source"):
        ...
"""

from __future__ import annotations

import json
from typing import Any, Mapping

import structlog
from pydantic import ValidationError

from intelvault.models.refresh import RefreshConfig, RefreshPlan

logger = structlog.get_logger().bind(component="refresh")

SUB_RESOURCES = ("source", "target")


def parse_refresh_config(raw: RefreshConfig | Mapping[str, Any] | str | None) -> RefreshConfig:
    """Turn a stored refresh config into a RefreshConfig.

    Invalid JSON, a non-object document or unusable flag values all fall back
    to the default (all flags false).
    """
    if raw is None:
        return RefreshConfig()
    if isinstance(raw, RefreshConfig):
        return raw

    data: Any = raw
    if isinstance(raw, (str, bytes)):
        if not raw.strip():
            return RefreshConfig()
        try:
            data = json.loads(raw)
        except ValueError as exc:
            logger.warning("refresh_config_invalid_json", error=str(exc))
            return RefreshConfig()

    if not isinstance(data, Mapping):
        logger.warning("refresh_config_not_object", type=type(data).__name__)
        return RefreshConfig()
    try:
        return RefreshConfig.model_validate(dict(data))
    except ValidationError as exc:
        logger.warning("refresh_config_invalid_flags", error=str(exc)[:200])
        return RefreshConfig()


def evaluate(config: RefreshConfig | Mapping[str, Any] | str | None) -> RefreshPlan:
    """Map refresh intents to a dependency-consistent plan.  Total and side-effect free."""
    cfg = parse_refresh_config(config)
    if cfg.force_nb_refresh:
        return RefreshPlan(refresh_source=True, refresh_target=True, refresh_synthesis=True)
    return RefreshPlan(
        refresh_source=cfg.refresh_source,
        refresh_target=cfg.refresh_target,
        refresh_synthesis=(
            cfg.force_synthesis_refresh or cfg.refresh_source or cfg.refresh_target
        ),
    )


class RefreshStrategyEvaluator:
    """Per-run refresh decisions backed by the ``runs`` table.

    Args:
        runs: a ``RunStore`` (anything with ``async get(run_id) -> Run | None``).
    """

    def __init__(self, runs) -> None:
        self._runs = runs

    async def get_refresh_plan(self, run_id: int) -> RefreshPlan:
        run = await self._runs.get(run_id)
        if run is None:
            logger.warning("refresh_run_not_found", run_id=run_id)
            return RefreshPlan()

        plan = evaluate(run.refresh_config)
        logger.info(
            "refresh_plan_evaluated",
            run_id=run_id,
            refresh_source=plan.refresh_source,
            refresh_target=plan.refresh_target,
            refresh_synthesis=plan.refresh_synthesis,
        )
        return plan

    async def should_regenerate(self, run_id: int, resource: str) -> bool:
        """Whether the ``"source"`` or ``"target"`` research must be regenerated."""
        if resource not in SUB_RESOURCES:
            raise ValueError(
                f"unknown sub-resource {resource!r}; expected one of {', '.join(SUB_RESOURCES)}"
            )
        plan = await self.get_refresh_plan(run_id)
        decision = plan.refresh_source if resource == "source" else plan.refresh_target
        logger.debug("refresh_decision", run_id=run_id, resource=resource, regenerate=decision)
        return decision

    async def should_regenerate_synthesis(self, run_id: int) -> bool:
        plan = await self.get_refresh_plan(run_id)
        logger.debug("refresh_decision", run_id=run_id, resource="synthesis",
                     regenerate=plan.refresh_synthesis)
        return plan.refresh_synthesis
