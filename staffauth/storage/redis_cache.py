from __future__ import annotations

import contextlib
import hashlib
from typing import Dict, Iterator, List

import redis.asyncio as aioredis
from redis import Redis
from redis.exceptions import RedisError

from staffauth.storage.errors import StorageUnavailable

REVOKED_PREFIX = "auth:revoked:"
STREAM_MAXLEN = 10000


@contextlib.contextmanager
def _translate_errors() -> Iterator[None]:
    try:
        yield
    except RedisError as exc:
        raise StorageUnavailable(str(exc), backend="redis", cause=exc) from exc


def revoked_key(token: str) -> str:
    """Key under which a revoked token is recorded.

    Tokens are hashed so raw credentials never sit in Redis and key length
    stays fixed regardless of claim size.
    """
    return REVOKED_PREFIX + hashlib.sha256(token.encode()).hexdigest()


class RedisCache:
    """Thin Redis wrapper for the token denylist and event streams."""

    DEFAULT_OPERATION_TIMEOUT = 5.0

    def __init__(self, redis_url: str, *, socket_timeout: float = DEFAULT_OPERATION_TIMEOUT):
        self.redis_url = redis_url
        self.socket_timeout = socket_timeout
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        """Assert Redis connectivity before enabling dependent features."""
        # A short-lived sync client keeps the async client off temporary loops
        sync_client = Redis.from_url(
            self.redis_url,
            decode_responses=True,
            socket_timeout=self.socket_timeout,
            socket_connect_timeout=self.socket_timeout,
        )
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def mark_revoked(self, token: str, ttl_seconds: int) -> None:
        """Record ``token`` as revoked for ``ttl_seconds``.

        Non-positive TTLs write nothing: such a token has already expired.
        """
        if ttl_seconds <= 0:
            return
        with _translate_errors():
            await self.client.set(revoked_key(token), "1", ex=ttl_seconds)

    async def is_revoked(self, token: str) -> bool:
        with _translate_errors():
            return bool(await self.client.exists(revoked_key(token)))

    async def clear_revoked(self) -> int:
        """Drop every revocation entry. Maintenance only."""
        deleted = 0
        with _translate_errors():
            batch: List[str] = []
            async for key in self.client.scan_iter(match=f"{REVOKED_PREFIX}*", count=500):
                batch.append(key)
                if len(batch) >= 500:
                    deleted += await self.client.delete(*batch)
                    batch = []
            if batch:
                deleted += await self.client.delete(*batch)
        return deleted

    async def count_revoked(self) -> int:
        count = 0
        with _translate_errors():
            async for _ in self.client.scan_iter(match=f"{REVOKED_PREFIX}*", count=500):
                count += 1
        return count

    async def append_to_stream(self, stream: str, fields: Dict[str, str]) -> str:
        with _translate_errors():
            return await self.client.xadd(
                stream, fields, maxlen=STREAM_MAXLEN, approximate=True
            )

    async def close(self) -> None:
        """Close Redis connection pool. Call when shutting down or resetting runtime."""
        await self.client.aclose()
        await self.client.connection_pool.disconnect()


class SyncRedisCache:
    """Synchronous Redis wrapper for use in tests.

    Uses a synchronous Redis client internally to avoid event loop binding
    issues in pytest, but exposes async methods so they can be awaited
    uniformly like RedisCache.
    """

    DEFAULT_OPERATION_TIMEOUT = 5.0

    def __init__(self, redis_url: str, *, socket_timeout: float = DEFAULT_OPERATION_TIMEOUT):
        self.redis_url = redis_url
        self.client = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        """Assert Redis connectivity."""
        self.client.ping()

    async def mark_revoked(self, token: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            return
        with _translate_errors():
            self.client.set(revoked_key(token), "1", ex=ttl_seconds)

    async def is_revoked(self, token: str) -> bool:
        with _translate_errors():
            return bool(self.client.exists(revoked_key(token)))

    async def clear_revoked(self) -> int:
        with _translate_errors():
            keys: List[str] = list(self.client.scan_iter(match=f"{REVOKED_PREFIX}*", count=500))
            return self.client.delete(*keys) if keys else 0

    async def count_revoked(self) -> int:
        with _translate_errors():
            return sum(1 for _ in self.client.scan_iter(match=f"{REVOKED_PREFIX}*", count=500))

    async def append_to_stream(self, stream: str, fields: Dict[str, str]) -> str:
        with _translate_errors():
            return self.client.xadd(stream, fields, maxlen=STREAM_MAXLEN, approximate=True)

    async def close(self) -> None:
        """Close Redis connection."""
        self.client.close()
