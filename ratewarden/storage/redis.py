"""Redis storage engine for limits shared by several processes.

Counters are incremented server side by a cached Lua script, token bucket
state is stored as JSON text and rewritten inside WATCH/MULTI
transactions, and penalties are plain keys with a millisecond expiry.

Redis key layout (prefixes come from the rule):
- ``<key prefix>:<entity>``          counter (fixed window) or JSON state (token bucket)
- ``<penalty prefix>:<entity>``      penalty marker, value "1"
"""

import json
import math
from typing import Any, Optional

import redis.asyncio as aioredis
from redis.exceptions import NoScriptError, WatchError

from ratewarden.core.config import settings
from ratewarden.core.logging import get_logger
from ratewarden.models import TokenBucketState
from ratewarden.storage.base import StorageEngine, Updater
from ratewarden.storage.redis_lua import ATOMIC_INCREMENT_SCRIPT

logger = get_logger(__name__)


def _as_px(ttl_ms: float) -> int:
    """Redis PX/PEXPIRE only accept positive integers."""
    return max(1, int(math.ceil(ttl_ms)))


class RedisStore(StorageEngine):
    """Storage engine backed by Redis.

    The client must be a ``redis.asyncio`` client (or anything exposing
    ``script_load``, ``evalsha``, ``get``, ``set``, ``exists`` and ``delete``
    with the same signatures). Network timeouts are the client's business;
    this class adds no retries except the script cache reload described in
    :meth:`increment`.

    Example:
        >>> store = RedisStore(redis_url="redis://localhost:6379/0")
        >>> await store.increment("RATEWARDEN:42", ttl_ms=1000)
        1
    """

    def __init__(
        self,
        redis_client: Optional[Any] = None,
        redis_url: Optional[str] = None,
    ) -> None:
        """Initialize the Redis store.

        Args:
            redis_client: Optional Redis client instance. Left open on close().
            redis_url: Redis connection URL, used when no client is given.
                Defaults to ``settings.redis_url``.
        """
        self._redis = redis_client
        self._owns_client = redis_client is None
        self._redis_url = redis_url or settings.redis_url
        self._script_sha: Optional[str] = None

    def _get_redis(self) -> Any:
        """Get or create the Redis client."""
        if self._redis is None:
            self._redis = aioredis.from_url(self._redis_url)
        return self._redis

    async def _load_script(self) -> str:
        redis = self._get_redis()
        self._script_sha = await redis.script_load(ATOMIC_INCREMENT_SCRIPT)
        return self._script_sha

    @staticmethod
    def _decode_state(raw: Any) -> Optional[TokenBucketState]:
        if not raw:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode()
        return TokenBucketState.from_dict(json.loads(raw))

    async def get(self, key: str) -> Optional[TokenBucketState]:
        return self._decode_state(await self._get_redis().get(key))

    async def set(self, key: str, state: TokenBucketState, ttl_ms: int) -> None:
        await self._get_redis().set(key, json.dumps(state.to_dict()), px=_as_px(ttl_ms))

    async def update(self, key: str, fn: Updater, ttl_ms: int) -> Any:
        """Optimistic read-modify-write using WATCH/MULTI.

        If another client writes ``key`` between the read and EXEC, the
        transaction is dropped by the server and ``fn`` runs again on the
        fresh state.
        """
        async with self._get_redis().pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    new_state, result = fn(self._decode_state(await pipe.get(key)))
                    pipe.multi()
                    pipe.set(key, json.dumps(new_state.to_dict()), px=_as_px(ttl_ms))
                    await pipe.execute()
                    return result
                except WatchError:
                    logger.debug(f"Concurrent write on {key}, retrying update")

    async def delete(self, key: str) -> None:
        await self._get_redis().delete(key)

    async def increment(self, key: str, ttl_ms: int) -> int:
        """Atomically increment ``key`` via the cached Lua script.

        If Redis lost its script cache (restart, ``SCRIPT FLUSH``, failover)
        the server answers NOSCRIPT; the script is loaded again and the call
        retried once. Any other error propagates.
        """
        redis = self._get_redis()
        sha = self._script_sha or await self._load_script()
        try:
            result = await redis.evalsha(sha, 1, key, _as_px(ttl_ms))
        except NoScriptError:
            logger.info("Redis script cache miss, reloading increment script")
            sha = await self._load_script()
            result = await redis.evalsha(sha, 1, key, _as_px(ttl_ms))
        return int(result)

    async def set_penalty(self, key: str, ttl_ms: int) -> None:
        await self._get_redis().set(key, "1", px=_as_px(ttl_ms))

    async def check_penalty(self, key: str) -> bool:
        return await self._get_redis().exists(key) == 1

    async def close(self) -> None:
        """Close the Redis connection if this store created it."""
        if self._redis is not None and self._owns_client:
            # Use aclose() for proper async cleanup in redis-py 5.0+
            await self._redis.aclose()
            self._redis = None
