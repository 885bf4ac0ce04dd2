"""
Redis async connection pool and the cross-instance curation lease.

Uses redis.asyncio with an explicit ConnectionPool. The lease lets several
API instances share one featured list without two of them curating at once:
SET NX PX acquires it, a compare-and-delete script releases it, and the TTL
frees it if the holder dies mid-run.
"""

import logging
import os
import uuid
from typing import Optional

import redis.asyncio as aioredis
from redis.asyncio.connection import ConnectionPool

logger = logging.getLogger(__name__)

_redis_pool: ConnectionPool | None = None
_redis_client: aioredis.Redis | None = None

ENV_PREFIX: str = os.getenv("REDIS_ENV", "unknown_env")


def get_redis_client() -> aioredis.Redis:
    """Return the shared async Redis client backed by a connection pool."""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() at startup.")
    return _redis_client


def redis_key(*parts: str) -> str:
    """Build an environment-prefixed Redis key from one or more parts."""
    return f"{ENV_PREFIX}:{':'.join(parts)}"


async def init_redis(
    host: str = os.getenv("REDIS_HOST", "redis"),
    port: int = int(os.getenv("REDIS_PORT", "6379")),
    max_connections: int = 10,
) -> None:
    """Call once at application startup (e.g. FastAPI lifespan)."""
    global _redis_pool, _redis_client
    _redis_pool = ConnectionPool(
        host=host,
        port=port,
        max_connections=max_connections,
        decode_responses=True,  # Lease values are plain string tokens
    )
    _redis_client = aioredis.Redis(connection_pool=_redis_pool)
    await _redis_client.ping()  # Fail fast if Redis is unreachable at startup


async def close_redis() -> None:
    """Call at application shutdown."""
    global _redis_pool, _redis_client
    if _redis_client:
        await _redis_client.aclose()
    if _redis_pool:
        await _redis_pool.aclose()
    _redis_client = None
    _redis_pool = None


async def check_redis() -> str:
    """Ping Redis and return 'ok' or an error message string."""
    try:
        client = get_redis_client()
        await client.ping()
        return "ok"
    except Exception as e:
        return str(e)


# ---------------------------------------------------------------------------
# Curation lease
# ---------------------------------------------------------------------------

_CURATION_LEASE_KEY = "curation:upcoming:lease"

# Delete the key only if this holder still owns it.
_RELEASE_SCRIPT = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
end
return 0
"""


class RedisCurationLease:
    """
    TTL'd mutual-exclusion lease for curation runs across processes.

    One instance is reused across runs; each successful acquire() mints a
    fresh owner token so a late release() can never drop someone else's lease.
    """

    def __init__(
        self,
        ttl_seconds: int = int(os.getenv("CURATION_LOCK_TTL_SECONDS", "600")),
        client: Optional[aioredis.Redis] = None,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._client = client
        self._token: Optional[str] = None

    @property
    def key(self) -> str:
        return redis_key(_CURATION_LEASE_KEY)

    def _redis(self) -> aioredis.Redis:
        return self._client if self._client is not None else get_redis_client()

    async def acquire(self) -> bool:
        """Try to take the lease without waiting. Returns False if another holder has it."""
        token = uuid.uuid4().hex
        acquired = await self._redis().set(self.key, token, nx=True, px=self.ttl_seconds * 1000)
        if not acquired:
            logger.warning("Curation lease '%s' is held by another instance", self.key)
            return False
        self._token = token
        return True

    async def release(self) -> None:
        """Release the lease if this instance still holds it."""
        if self._token is None:
            return
        token, self._token = self._token, None
        released = await self._redis().eval(_RELEASE_SCRIPT, 1, self.key, token)
        if not released:
            logger.warning("Curation lease '%s' expired before release", self.key)
