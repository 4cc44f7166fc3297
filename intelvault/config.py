"""intelvault configuration — loaded from .env via pydantic-settings."""

from pydantic_settings import BaseSettings
from pydantic import Field


class IntelVaultSettings(BaseSettings):
    """All intelvault configuration. Reads from .env file and environment variables."""

    # --- PostgreSQL (snapshots, diffs, artifacts, live cache) ---
    postgres_url: str = Field(
        default="postgresql://localhost:5432/intelvault",
        description="PostgreSQL connection string",
    )

    # --- Redis (rebuild claims) ---
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL for rebuild claim slots",
    )

    # --- Logging ---
    log_level: str = Field(default="INFO", description="Log level")
    log_format: str = Field(
        default="console",
        description="Log format: 'console' for dev, 'json' for production",
    )

    # --- Reuse & freshness ---
    snapshot_reuse_max_age_seconds: int = Field(
        default=30 * 24 * 3600,
        description="Max age of a snapshot returned by get_reusable_snapshot",
    )
    reuse_required_subtasks: list[str] = Field(
        default_factory=list,
        description=(
            "Sub-task codes a snapshot must hold, all completed, before a new run may reuse it "
            "(JSON list in the environment; empty means every recorded sub-task must be completed)"
        ),
    )

    # --- Rebuild coordination ---
    rebuild_claim_ttl_seconds: int = Field(
        default=900,
        description="Seconds before a stalled rebuild claim may be reclaimed",
    )
    rebuild_poll_interval_seconds: float = Field(
        default=2.0,
        description="Poll cadence for callers waiting on someone else's rebuild",
    )

    # --- Versioning ---
    defer_diff_computation: bool = Field(
        default=False,
        description="Compute the audit diff in a background task after snapshot insert",
    )

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


# Singleton — import this everywhere
settings = IntelVaultSettings()
