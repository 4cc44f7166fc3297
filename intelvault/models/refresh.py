"""RefreshConfig and RefreshPlan — explicit regeneration intents for a run.

RefreshConfig — flags the run was created with (all default False; unknown
                keys from older run rows are ignored).
RefreshPlan   — the evaluated decision.  Synthesis is always refreshed when
                either research side is, so a report is never built from a
                stale synthesis over regenerated inputs.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, model_validator


class RefreshConfig(BaseModel):
    """Per-run refresh intents."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    force_nb_refresh: bool = False
    """Force every research sub-resource (source and target)."""

    force_synthesis_refresh: bool = False
    refresh_source: bool = False
    refresh_target: bool = False

    @property
    def any_set(self) -> bool:
        return (
            self.force_nb_refresh
            or self.force_synthesis_refresh
            or self.refresh_source
            or self.refresh_target
        )


class RefreshPlan(BaseModel):
    """Which sub-resources must be regenerated for a run."""

    model_config = ConfigDict(frozen=True)

    refresh_source: bool = False
    refresh_target: bool = False
    refresh_synthesis: bool = False

    @model_validator(mode="after")
    def _synthesis_follows_inputs(self) -> "RefreshPlan":
        if (self.refresh_source or self.refresh_target) and not self.refresh_synthesis:
            raise ValueError("refresh_synthesis must be true when source or target is refreshed")
        return self

    @property
    def is_full_reuse(self) -> bool:
        return not (self.refresh_source or self.refresh_target or self.refresh_synthesis)
