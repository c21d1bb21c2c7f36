"""Fixed-window attempt throttling for sign-up, verification and sign-in."""

from __future__ import annotations

import logging
import time
from threading import Lock
from typing import Callable, Protocol

import redis
from redis import Redis

logger = logging.getLogger(__name__)


class Throttle(Protocol):
    def allow(self, key: str) -> bool: ...


class MemoryThrottle:
    """Thread-safe per-process counter that resets every ``window_seconds``."""

    def __init__(
        self,
        max_attempts: int,
        window_seconds: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_attempts = max_attempts
        self._window = window_seconds
        self._clock = clock
        self._windows: dict[str, tuple[int, int]] = {}
        self._lock = Lock()

    def allow(self, key: str) -> bool:
        window = int(self._clock() // self._window)
        with self._lock:
            current_window, count = self._windows.get(key, (window, 0))
            if current_window != window:
                count = 0
            if count >= self._max_attempts:
                return False
            self._windows[key] = (window, count + 1)
            return True


class RedisThrottle:
    """Counter shared across workers, one Redis key per window."""

    def __init__(
        self,
        client: Redis,
        *,
        max_attempts: int,
        window_seconds: int,
        key_prefix: str = "throttle",
    ) -> None:
        self._client = client
        self._max_attempts = max_attempts
        self._window_seconds = window_seconds
        self._key_prefix = key_prefix

    def allow(self, key: str) -> bool:
        window = int(time.time() // self._window_seconds)
        redis_key = f"{self._key_prefix}:{key}:{window}"
        pipe = self._client.pipeline()
        pipe.incr(redis_key)
        pipe.expire(redis_key, self._window_seconds)
        try:
            count, _ = pipe.execute()
        except redis.RedisError as exc:
            # fail open: an unreachable counter must not lock everyone out of sign-in
            logger.warning("redis throttle unavailable, allowing %s: %s", key, exc)
            return True
        return int(count) <= self._max_attempts


def build_throttle(
    *,
    backend: str,
    redis_url: str,
    max_attempts: int,
    window_seconds: int,
) -> Throttle:
    """Instantiate the configured backend, falling back to memory when Redis is unreachable."""
    if backend == "redis" and redis_url:
        try:
            client = redis.from_url(redis_url)
            client.ping()
        except redis.RedisError as exc:
            logger.warning("redis throttle unavailable, falling back to in-memory: %s", exc)
        else:
            logger.info("throttle configured for redis backend")
            return RedisThrottle(client, max_attempts=max_attempts, window_seconds=window_seconds)

    logger.info("throttle using in-memory backend")
    return MemoryThrottle(max_attempts=max_attempts, window_seconds=window_seconds)
