"""Centralised wall-clock helpers — single source of truth for 'now'.

Snapshot timestamps and reuse cut-offs read the clock through here, so tests
patch one function instead of chasing datetime calls.

Usage:
    from intelvault.utils.clock import now_utc, epoch_seconds, cutoff
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone


def now_utc() -> datetime:
    """Return the current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def epoch_seconds() -> int:
    """Current UNIX time in whole seconds (the snapshot ``timestamp`` field)."""
    return int(now_utc().timestamp())


def cutoff(max_age_seconds: int) -> datetime:
    """Oldest creation time still considered fresh for *max_age_seconds*."""
    return now_utc() - timedelta(seconds=max_age_seconds)
