"""
Redis resend counter store - Implements ResendCounterStore protocol.

Each window is one integer key whose TTL is the window itself. The
key is created with `SET NX EX` so the first hit opens the window and
later hits only `INCR`; Redis expiry closes it. Window boundaries
follow the Redis server clock, `now` only anchors `reset_at`.
"""

import logging
from datetime import datetime, timedelta

import redis
from redis.exceptions import RedisError

from src.domain.exceptions import StoreUnavailable
from src.domain.ports import WindowCounter

logger = logging.getLogger(__name__)


class RedisResendCounterStore:
    """
    Fixed-window counters shared across instances through Redis.

    Uses structural subtyping - no explicit inheritance from Protocol.
    """

    def __init__(self, client: redis.Redis, prefix: str = "verification") -> None:
        self._client = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, redis_url: str) -> "RedisResendCounterStore":
        client = redis.Redis.from_url(redis_url, decode_responses=True)
        logger.info("Resend counters stored in Redis at %s", redis_url.split("@")[-1])
        return cls(client)

    def get(self, key: str, now: datetime) -> WindowCounter | None:
        try:
            pipe = self._client.pipeline()
            pipe.get(self._key(key))
            pipe.pttl(self._key(key))
            value, ttl_ms = pipe.execute()
        except RedisError as e:
            logger.error(f"Redis read failed for resend counter: {e}")
            raise StoreUnavailable(str(e)) from e

        if value is None or ttl_ms is None or ttl_ms <= 0:
            return None
        return WindowCounter(count=int(value), reset_at=now + timedelta(milliseconds=ttl_ms))

    def increment(self, key: str, window_seconds: int, now: datetime) -> WindowCounter:
        try:
            pipe = self._client.pipeline()
            pipe.set(self._key(key), 0, ex=window_seconds, nx=True)
            pipe.incr(self._key(key))
            pipe.pttl(self._key(key))
            _, count, ttl_ms = pipe.execute()
        except RedisError as e:
            logger.error(f"Redis write failed for resend counter: {e}")
            raise StoreUnavailable(str(e)) from e

        if ttl_ms is None or ttl_ms <= 0:
            ttl_ms = window_seconds * 1000
        return WindowCounter(count=int(count), reset_at=now + timedelta(milliseconds=ttl_ms))

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"
