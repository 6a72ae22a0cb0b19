"""
docvault Redis Window Store — Shared sliding-window counters for rate limiting.

Each requester key maps to one sorted set in Redis: members are hits,
scored by their timestamp. Keys expire after one window, so the data is
ephemeral and losing it only resets the windows.

The store never raises. While Redis is unreachable (or the circuit
breaker is open) ``window_hit`` reports ``(-1, None)`` and the rate
limiter decides in process instead.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Optional, Tuple

logger = logging.getLogger("docvault.engine.cache")

WINDOW_PREFIX = "docvault:rate:"


class RedisWindowStore:
    """
    Sliding-window hit counter with a circuit breaker.

    ``failure_threshold`` failures within ``failure_window`` seconds open
    the circuit; after the window passes, the next call reconnects.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        prefix: str = WINDOW_PREFIX,
        failure_threshold: int = 5,
        failure_window: int = 30,
    ):
        self._redis_url = redis_url
        self._prefix = prefix
        self._client = None
        self._available = False

        self._failure_count = 0
        self._failure_threshold = failure_threshold
        self._failure_window = failure_window
        self._first_failure_time = 0.0
        self._circuit_open = False

    def connect(self) -> bool:
        """Open the connection and ping it. Returns False when unreachable."""
        try:
            import redis
            client = redis.Redis.from_url(
                self._redis_url,
                decode_responses=True,
                socket_timeout=2,
                socket_connect_timeout=2,
            )
            client.ping()
        except Exception as e:
            logger.warning(f"Redis window store unavailable at {self._redis_url}: {e}")
            self._available = False
            return False
        self.use_client(client)
        logger.info(f"Redis window store connected ({self._prefix})")
        return True

    def use_client(self, client) -> None:
        """Attach an already-built client (tests pass a MagicMock)."""
        self._client = client
        self._available = True
        self._circuit_open = False
        self._failure_count = 0

    # ── Circuit breaker ──

    def _usable(self) -> bool:
        if self._circuit_open:
            if time.time() - self._first_failure_time <= self._failure_window:
                return False
            logger.info("Redis circuit breaker half-open, reconnecting")
            self._circuit_open = False
            self._failure_count = 0
            return self.connect()
        return self._available

    def _record_failure(self, error: Exception) -> None:
        now = time.time()
        if self._failure_count == 0:
            self._first_failure_time = now
        self._failure_count += 1
        logger.debug(f"Redis window operation failed ({self._failure_count}): {error}")

        elapsed = now - self._first_failure_time
        if self._failure_count >= self._failure_threshold and elapsed <= self._failure_window:
            self._circuit_open = True
            logger.error(
                f"Redis circuit breaker OPEN: {self._failure_count} failures in {elapsed:.1f}s"
            )

    # ── Windows ──

    def window_hit(
        self,
        key: str,
        window_seconds: int,
        now: Optional[float] = None,
    ) -> Tuple[int, Optional[float]]:
        """
        Record one hit for ``key`` and count the hits inside the window.

        Returns:
            (count including this hit, timestamp of the oldest hit still in
            the window), or (-1, None) when the store cannot answer.
        """
        if not self._usable():
            return -1, None
        now = time.time() if now is None else now
        full_key = f"{self._prefix}{key}"
        try:
            pipe = self._client.pipeline()
            pipe.zremrangebyscore(full_key, 0, now - window_seconds)
            pipe.zadd(full_key, {f"{now}:{uuid.uuid4().hex[:8]}": now})
            pipe.zcard(full_key)
            pipe.zrange(full_key, 0, 0, withscores=True)
            pipe.expire(full_key, window_seconds)
            results = pipe.execute()
        except Exception as e:
            self._record_failure(e)
            return -1, None

        oldest = results[3][0][1] if results[3] else None
        return int(results[2]), oldest

    # ── Health & Management ──

    def ping(self) -> bool:
        if self._client is None:
            return False
        try:
            return bool(self._client.ping())
        except Exception:
            return False

    def close(self) -> None:
        if self._client is not None:
            try:
                self._client.close()
            except Exception as e:
                logger.debug(f"Redis close failed: {e}")
            self._client = None
        self._available = False
        self._circuit_open = False
        self._failure_count = 0

    @property
    def is_available(self) -> bool:
        return self._available and not self._circuit_open

    @property
    def is_circuit_open(self) -> bool:
        return self._circuit_open


def create_window_store(redis_url: str) -> RedisWindowStore:
    """Build the rate-limit window store and try to connect once."""
    store = RedisWindowStore(redis_url=redis_url)
    store.connect()
    return store
