"""Structured logging configuration using structlog.

Every intelvault module logs through ``structlog.get_logger().bind(component=...)``.
Per-run context (``run_id``, ``logical_type``) is attached with
:func:`run_context` so resolver tiers and rebuild steps don't have to repeat it.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

import structlog
from intelvault.config import settings

_LEVELS = {"debug": 10, "info": 20, "warning": 30, "warn": 30, "error": 40, "critical": 50}


def setup_logging(log_level: str | None = None, log_format: str | None = None) -> None:
    """Configure structlog for intelvault.

    Uses console renderer for development, JSON for production.  Arguments
    override the values from settings (handy in tests and worker entrypoints).
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    fmt = (log_format or settings.log_format).lower()
    if fmt == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer(sort_keys=True)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    level = _LEVELS.get((log_level or settings.log_level).lower(), 20)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


@contextmanager
def run_context(run_id: int | None = None, **extra: object) -> Iterator[None]:
    """Bind ``run_id`` (and any extra fields) to every log line in the block."""
    fields = {k: v for k, v in {"run_id": run_id, **extra}.items() if v is not None}
    with structlog.contextvars.bound_contextvars(**fields):
        yield
