"""intelvault exception types.

Only caller bugs and failed regenerations raise.  Missing rows, malformed
bodies and unreachable infrastructure are reported as ``None`` / sentinel
results instead (see the resolver and stores).
"""

from __future__ import annotations

from typing import Any


class InvariantViolation(ValueError):
    """A call that can never be valid, e.g. diffing a snapshot with itself."""


class MissingDependencyError(RuntimeError):
    """Raised by a rebuild producer when upstream sub-resources are absent.

    Args:
        missing: Names of the sub-resources that were required but not found
                 (e.g. ``["source_research", "synthesis_inputs"]``).
    """

    def __init__(self, missing: list[str], message: str = "") -> None:
        self.missing = list(missing)
        super().__init__(message or f"missing dependencies: {', '.join(self.missing)}")


class RebuildFailedError(RuntimeError):
    """A claimed rebuild raised.  The claim has already been released.

    The original exception is chained as ``__cause__``.
    """

    def __init__(
        self,
        run_id: int,
        logical_type: str,
        message: str,
        missing_dependencies: list[str] | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        self.run_id = run_id
        self.logical_type = logical_type
        self.missing_dependencies = list(missing_dependencies or [])
        self.context = dict(context or {})
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Structured form for logging / API error payloads."""
        return {
            "run_id": self.run_id,
            "logical_type": self.logical_type,
            "message": str(self),
            "missing_dependencies": self.missing_dependencies,
            "context": self.context,
            "cause": repr(self.__cause__) if self.__cause__ else None,
        }
