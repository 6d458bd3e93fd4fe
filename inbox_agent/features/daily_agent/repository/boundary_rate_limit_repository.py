"""
Boundary reply rate limiting in Redis.

One entry per (account, sender) pair, stored as JSON with a TTL equal to the
window so expired entries disappear on their own. The entry is claimed with
SET NX before a reply is sent, so two concurrent runs cannot both reply to the
same sender. Store errors and malformed entries raise RateLimitStoreError;
callers treat that as "rate limited" and send nothing.
"""

import json
from datetime import UTC, datetime, timedelta

from inbox_agent.features.daily_agent.domain.models import BoundaryRateLimitEntry
from inbox_agent.infrastructure.observability.logging import get_logger
from inbox_agent.services.infrastructure.redis_client import RedisUnavailableError, fast_redis

logger = get_logger(__name__)

BOUNDARY_RATE_LIMIT_WINDOW = timedelta(days=7)
KEY_PREFIX = "boundary_rate_limit:"


class RateLimitStoreError(Exception):
    """The rate-limit state for a sender pair could not be read or written."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


def sender_pair_key(account_id: str, sender_id: str) -> str:
    return f"{account_id}_{sender_id}"


class BoundaryRateLimitRepository:
    def __init__(self, redis_client=None, window: timedelta = BOUNDARY_RATE_LIMIT_WINDOW):
        self.redis = redis_client or fast_redis
        self.window = window

    async def get(self, pair_key: str) -> BoundaryRateLimitEntry | None:
        try:
            raw = await self.redis.get(KEY_PREFIX + pair_key)
        except RedisUnavailableError as e:
            raise RateLimitStoreError(str(e), operation="get") from e
        if not raw:
            return None

        try:
            data = json.loads(raw)
            return BoundaryRateLimitEntry(
                sender_pair_key=data["sender_pair_key"],
                last_sent_at=datetime.fromisoformat(data["last_sent_at"]),
                expires_at=datetime.fromisoformat(data["expires_at"]),
            )
        except (ValueError, KeyError, TypeError) as e:
            raise RateLimitStoreError(
                f"Malformed rate limit entry for {pair_key}: {e}",
                operation="get",
                recoverable=False,
            ) from e

    async def is_rate_limited(self, pair_key: str, now: datetime | None = None) -> bool:
        entry = await self.get(pair_key)
        if entry is None:
            return False
        return entry.expires_at > (now or datetime.now(UTC))

    async def try_claim(
        self, pair_key: str, now: datetime | None = None
    ) -> BoundaryRateLimitEntry | None:
        """Start the window for a pair; None if another run already holds it."""
        sent_at = now or datetime.now(UTC)
        entry = BoundaryRateLimitEntry(
            sender_pair_key=pair_key,
            last_sent_at=sent_at,
            expires_at=sent_at + self.window,
        )
        payload = json.dumps(
            {
                "sender_pair_key": entry.sender_pair_key,
                "last_sent_at": entry.last_sent_at.isoformat(),
                "expires_at": entry.expires_at.isoformat(),
            }
        )

        try:
            acquired = await self.redis.set_if_absent(
                KEY_PREFIX + pair_key, payload, int(self.window.total_seconds())
            )
        except RedisUnavailableError as e:
            raise RateLimitStoreError(str(e), operation="claim") from e
        return entry if acquired else None

    async def release(self, pair_key: str) -> None:
        """Drop a claim whose reply was never sent."""
        try:
            await self.redis.delete(KEY_PREFIX + pair_key)
        except RedisUnavailableError as e:
            # The claim stays until its TTL; the sender just gets no reply this window
            logger.warning(
                "Failed to release boundary rate limit claim", key=pair_key, error=str(e)
            )
