"""Redis client for rebuild claims.

Tries to connect to Redis on first use. If Redis is unavailable,
falls back to an in-process dict so a single worker still gets
at-most-one-rebuild semantics.  The fallback gives no cross-process
exclusion; multi-worker deployments need a real Redis.
"""

from __future__ import annotations

import time

import structlog

logger = structlog.get_logger().bind(component="redis_client")

# TTL default: 15 minutes
DEFAULT_TTL = 900

# Delete KEYS[1] only while it still holds ARGV[1].
_DELETE_IF_EQUALS = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


class RedisClient:
    """Async Redis client with in-process dict fallback.

    Priority:
        1. Real Redis via redis-py (if installed + server up)
        2. In-process dict with manual TTL (always works)
    """

    def __init__(self, url: str | None = None) -> None:
        if url is None:
            from intelvault.config import settings
            url = settings.redis_url
        self.url = url
        self._redis = None          # redis.asyncio client (lazy)
        self._fallback: dict[str, tuple[str, float]] = {}  # key → (value, expire_at)
        self._use_fallback = False  # set True once Redis is confirmed unavailable

    async def _get_redis(self):
        """Lazy connect to Redis. Sets _use_fallback if unavailable."""
        if self._use_fallback:
            return None
        if self._redis is not None:
            return self._redis
        try:
            import redis.asyncio as aioredis  # type: ignore
            client = aioredis.from_url(self.url, decode_responses=True)
            await client.ping()
            self._redis = client
            logger.info("redis_connected", url=self.url)
            return self._redis
        except Exception as e:
            logger.warning("redis_unavailable_using_fallback", error=str(e))
            self._use_fallback = True
            return None

    # ── Fallback helpers ──────────────────────────────────────────────────

    def _fallback_get(self, key: str) -> str | None:
        entry = self._fallback.get(key)
        if entry is None:
            return None
        value, expire_at = entry
        if expire_at and time.time() > expire_at:
            del self._fallback[key]
            return None
        return value

    def _fallback_set(self, key: str, value: str, ttl: int) -> None:
        expire_at = time.time() + ttl if ttl else 0.0
        self._fallback[key] = (value, expire_at)

    # ── Plain reads and deletes ─────────────────────────────────────────────────────────────────────────────────────────────

    async def get(self, key: str) -> str | None:
        """Retrieve value by key. Returns None if missing or expired."""
        r = await self._get_redis()
        if r:
            try:
                return await r.get(key)
            except Exception as e:
                logger.warning("redis_get_error", key=key, error=str(e))
        return self._fallback_get(key)

    async def delete(self, key: str) -> None:
        """Delete a key."""
        r = await self._get_redis()
        if r:
            try:
                await r.delete(key)
                return
            except Exception as e:
                logger.warning("redis_delete_error", key=key, error=str(e))
        self._fallback.pop(key, None)

    # ── Atomic claim primitives ───────────────────────────────────────────

    async def set_if_absent(self, key: str, value: str, ttl: int = DEFAULT_TTL) -> bool:
        """Atomically store key→value only if key is not already live.

        Returns True when this caller now owns the key.  A Redis error is
        reported as False so a flaky connection never produces two owners.
        """
        r = await self._get_redis()
        if r:
            try:
                return bool(await r.set(key, value, nx=True, ex=ttl or None))
            except Exception as e:
                logger.warning("redis_set_nx_error", key=key, error=str(e))
                return False

        # Single event loop: get-then-set has no await in between.
        if self._fallback_get(key) is not None:
            return False
        self._fallback_set(key, value, ttl)
        return True

    async def delete_if_equals(self, key: str, value: str) -> bool:
        """Delete key only while it still holds ``value``.  Returns True if deleted."""
        r = await self._get_redis()
        if r:
            try:
                return bool(await r.eval(_DELETE_IF_EQUALS, 1, key, value))
            except Exception as e:
                logger.warning("redis_delete_if_equals_error", key=key, error=str(e))
                return False

        if self._fallback_get(key) != value:
            return False
        self._fallback.pop(key, None)
        return True

    async def close(self) -> None:
        if self._redis:
            await self._redis.aclose()
            self._redis = None
