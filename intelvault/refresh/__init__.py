"""Refresh strategy: explicit regeneration flags → dependency-consistent plan."""

from intelvault.refresh.evaluator import RefreshStrategyEvaluator, evaluate, parse_refresh_config

__all__ = ["RefreshStrategyEvaluator", "evaluate", "parse_refresh_config"]
