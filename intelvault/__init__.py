"""intelvault — lifecycle of LLM-derived research artifacts.

Architecture:
    versioning  — immutable run snapshots + memoized structural diffs
    refresh     — refresh flags → dependency-consistent RefreshPlan
    artifacts   — fallback-chain resolver over producer schema revisions,
                  rebuild claims
    lifecycle   — ArtifactLifecycle, the façade the report layer uses

Storage: Postgres (asyncpg) for snapshots, diffs, artifacts and the live
cache; Redis for rebuild claims.  Both degrade gracefully when unreachable.
"""

__version__ = "0.1.0"
