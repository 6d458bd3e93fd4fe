"""
Async Redis client for short-lived workflow state (boundary reply windows).

Commands raise RedisUnavailableError when Redis cannot be reached; callers
decide whether that fails open or closed. Only `ping` swallows the error,
for the readiness check.
"""

from collections.abc import Awaitable, Callable
from typing import Any

import redis.asyncio as redis

from inbox_agent.config import settings
from inbox_agent.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

MAX_CONNECTIONS = 20


class RedisUnavailableError(RuntimeError):
    """Raised when a command could not be executed against Redis."""


class FastRedisClient:
    def __init__(self, url: str | None = None):
        self.url = url or settings.REDIS_URL
        self.client: redis.Redis | None = None

    async def initialize(self) -> None:
        if self.client is not None:
            return

        client = redis.Redis.from_url(
            self.url,
            max_connections=MAX_CONNECTIONS,
            retry_on_timeout=True,
            socket_connect_timeout=10,
            socket_timeout=10,
            health_check_interval=30,
            decode_responses=True,
        )
        try:
            await client.ping()
        except redis.RedisError as e:
            await client.aclose()
            logger.error("Redis unreachable", error=str(e))
            raise RuntimeError("Redis initialization failed") from e

        self.client = client
        logger.info("Redis client ready", max_connections=MAX_CONNECTIONS)

    async def close(self) -> None:
        if self.client is None:
            return
        client, self.client = self.client, None
        await client.aclose()
        logger.info("Redis client closed")

    async def _call(
        self, command: str, key: str, action: Callable[[redis.Redis], Awaitable[Any]]
    ) -> Any:
        try:
            if self.client is None:
                await self.initialize()
            return await action(self.client)
        except (RuntimeError, redis.RedisError) as e:
            logger.error("Redis command failed", command=command, key=key[:40], error=str(e))
            raise RedisUnavailableError(f"Redis {command} failed: {e}") from e

    async def ping(self) -> bool:
        try:
            return bool(await self._call("PING", "", lambda c: c.ping()))
        except RedisUnavailableError:
            return False

    async def get(self, key: str) -> str | None:
        return await self._call("GET", key, lambda c: c.get(key)) or None

    async def set_if_absent(self, key: str, value: str, ttl_s: int) -> bool:
        """SET NX with a TTL; False when the key already exists."""
        acquired = await self._call(
            "SET NX", key, lambda c: c.set(key, value, ex=ttl_s, nx=True)
        )
        return bool(acquired)

    async def delete(self, key: str) -> bool:
        return bool(await self._call("DEL", key, lambda c: c.delete(key)))


fast_redis = FastRedisClient()
