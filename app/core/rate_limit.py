from __future__ import annotations

import logging
import threading
from time import monotonic
from typing import Dict, Tuple

from app.config import REDIS_URL

logger = logging.getLogger("book_downloads.rate_limit")


class RateLimiter:
    """Fixed window rate limiter per client, shared through Redis when configured."""

    def __init__(self, limit: int, window_seconds: int = 60) -> None:
        self.limit = max(limit, 1)
        self.window_seconds = window_seconds
        self._clients: Dict[str, Tuple[int, float]] = {}
        self._lock = threading.Lock()
        self._redis = self._connect_redis()

    def _connect_redis(self):
        if not REDIS_URL:
            return None
        try:
            import redis

            client = redis.from_url(REDIS_URL)
            client.ping()
            return client
        except Exception as exc:
            logger.warning("event=rate_limit_redis_unavailable error=%s", exc)
            return None

    @property
    def use_redis(self) -> bool:
        return self._redis is not None

    def hit(self, key: str) -> Tuple[bool, int]:
        """
        Register a hit for the given key.
        Returns (allowed, retry_after_seconds).
        """
        if self._redis is not None:
            import redis

            try:
                return self._hit_redis(key)
            except redis.RedisError as exc:
                logger.warning("event=rate_limit_redis_error error=%s", exc)
        return self._hit_memory(key)

    def _hit_redis(self, key: str) -> Tuple[bool, int]:
        redis_key = f"rate_limit:{key}"
        pipe = self._redis.pipeline()
        pipe.incr(redis_key)
        pipe.expire(redis_key, self.window_seconds, nx=True)
        pipe.ttl(redis_key)
        count, _, ttl = pipe.execute()
        retry_after = int(ttl) if ttl and ttl > 0 else self.window_seconds
        if int(count) > self.limit:
            return False, retry_after
        return True, retry_after

    def _hit_memory(self, key: str) -> Tuple[bool, int]:
        now = monotonic()
        with self._lock:
            count, reset_at = self._clients.get(key, (0, now + self.window_seconds))
            if now > reset_at:
                count = 0
                reset_at = now + self.window_seconds
            if count >= self.limit:
                retry_after = max(0, int(reset_at - now))
                return False, retry_after or 1

            self._clients[key] = (count + 1, reset_at)
            retry_after = max(0, int(reset_at - now))
            return True, retry_after
