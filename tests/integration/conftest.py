"""Integration-test conftest — skip guards and real-infra fixtures.

Integration tests require:
    INTELVAULT_TEST_INTEGRATION=1   (set in shell before running)
    Redis on localhost:6379
    Postgres reachable at POSTGRES_URL (a throwaway database: tests reset it)

Run with:
    INTELVAULT_TEST_INTEGRATION=1 pytest tests/integration/ -v
"""

from __future__ import annotations

import os

import pytest

from intelvault.tools.migrations import MigrationRunner
from intelvault.tools.pg_client import PgClient
from intelvault.tools.redis_client import RedisClient

pytestmark = pytest.mark.skipif(
    not os.getenv("INTELVAULT_TEST_INTEGRATION"),
    reason="Set INTELVAULT_TEST_INTEGRATION=1 to run integration tests",
)


@pytest.fixture
async def pg():
    runner = MigrationRunner()
    if not await runner.reset():
        pytest.skip("Postgres unavailable")
    client = PgClient(ensure_schema=False)
    await client.connect()
    yield client
    await client.close()


@pytest.fixture
async def redis():
    client = RedisClient()
    yield client
    await client.close()
