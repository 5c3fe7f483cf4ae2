"""Fixed-window rate limiting backed by Redis, with an in-process fallback."""

import logging
import threading
import time
from typing import Optional

import redis

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    ``check(key, limit, window_seconds) -> (allowed, retry_after)``.

    With a Redis client every process shares one counter per window
    (``INCR`` + ``EXPIRE``). Without one, or when Redis errors, a per-process
    sliding window is used instead.
    """

    def __init__(self, redis_client: Optional[redis.Redis] = None, enabled: bool = True):
        self.redis_client = redis_client
        self.enabled = enabled
        self._lock = threading.Lock()
        self._windows: dict[str, list[float]] = {}

    @classmethod
    def from_url(cls, url: Optional[str], enabled: bool = True) -> "RateLimiter":
        if not enabled or not url:
            return cls(enabled=enabled)
        try:
            client = redis.Redis.from_url(
                url,
                decode_responses=True,
                socket_connect_timeout=0.75,
                socket_timeout=0.75,
                health_check_interval=30,
            )
            client.ping()
        except redis.RedisError as e:
            logger.warning(f"Rate limiter falling back to in-memory windows: {e}")
            return cls(enabled=enabled)
        return cls(redis_client=client, enabled=enabled)

    def check(self, key: str, limit: int, window_seconds: int) -> tuple[bool, int]:
        if not self.enabled:
            return True, 0
        window = max(1, int(window_seconds))
        limit = max(1, int(limit))

        if self.redis_client is not None:
            now_sec = int(time.time())
            counter_key = f"rl:v1:{key}:{now_sec // window}"
            try:
                current = int(self.redis_client.incr(counter_key))
                if current == 1:
                    self.redis_client.expire(counter_key, window + 1)
                if current <= limit:
                    return True, 0
                return False, max(1, window - (now_sec % window))
            except redis.RedisError as e:
                logger.warning(f"Rate limit check in Redis failed for {key}: {e}")

        return self._check_memory(key, limit, window)

    def _check_memory(self, key: str, limit: int, window: int) -> tuple[bool, int]:
        now = time.time()
        start = now - window
        with self._lock:
            bucket = [ts for ts in self._windows.get(key, []) if ts >= start]
            if len(bucket) >= limit:
                self._windows[key] = bucket
                return False, int(max(1, window - (now - min(bucket))))
            bucket.append(now)
            self._windows[key] = bucket
        return True, 0

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()
