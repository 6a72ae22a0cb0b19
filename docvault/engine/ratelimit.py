"""
docvault Rate Limiting — Sliding-window caps keyed by requester.

Two buckets:
    sensitive  — login, registration, password change (default 5 / 15 min)
    general    — every other operation (default 100 / 15 min)

The limiter is an explicit component handed to the executor. The Redis
implementation shares windows across processes; the in-memory one keeps
them per process and is what tests use.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional

from docvault.engine.cache import RedisWindowStore
from docvault.engine.errors import ThrottledError

logger = logging.getLogger("docvault.engine.ratelimit")

SENSITIVE = "sensitive"
GENERAL = "general"


@dataclass(frozen=True)
class RateLimitRule:
    max_requests: int
    window_seconds: int


@dataclass
class RateLimitDecision:
    allowed: bool
    count: int
    limit: int
    retry_after: int = 0


class RateLimiter:
    """Base limiter: subclasses implement ``_hit``."""

    def __init__(self, rules: Dict[str, RateLimitRule]):
        self._rules = dict(rules)

    def rule_for(self, bucket: str) -> RateLimitRule:
        return self._rules.get(bucket) or self._rules[GENERAL]

    def hit(self, bucket: str, requester: str) -> RateLimitDecision:
        """Record one request for ``requester`` in ``bucket`` and decide."""
        rule = self.rule_for(bucket)
        return self._hit(f"{bucket}:{requester}", rule)

    def check(self, bucket: str, requester: str) -> None:
        """Record a request and raise ThrottledError when over the cap."""
        decision = self.hit(bucket, requester)
        if not decision.allowed:
            raise ThrottledError(
                "Too many requests, please try again later",
                bucket=bucket,
                retry_after=decision.retry_after,
            )

    def _hit(self, key: str, rule: RateLimitRule) -> RateLimitDecision:
        raise NotImplementedError

    def reset(self) -> None:
        """Forget all windows."""


class InMemoryRateLimiter(RateLimiter):
    """Per-process sliding window using a deque of hit timestamps per key."""

    def __init__(
        self,
        rules: Dict[str, RateLimitRule],
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(rules)
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    def _hit(self, key: str, rule: RateLimitRule) -> RateLimitDecision:
        now = self._clock()
        with self._lock:
            window = self._hits[key]
            while window and window[0] <= now - rule.window_seconds:
                window.popleft()
            if len(window) >= rule.max_requests:
                retry_after = math.ceil(window[0] + rule.window_seconds - now)
                return RateLimitDecision(False, len(window) + 1, rule.max_requests, max(retry_after, 1))
            window.append(now)
            return RateLimitDecision(True, len(window), rule.max_requests)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()


class RedisRateLimiter(RateLimiter):
    """
    Sliding window backed by Redis sorted sets.

    If Redis is unavailable the decision is delegated to a per-process
    fallback limiter, so limits still apply while the circuit is open.
    """

    def __init__(
        self,
        store: RedisWindowStore,
        rules: Dict[str, RateLimitRule],
        fallback: Optional[RateLimiter] = None,
    ):
        super().__init__(rules)
        self._store = store
        self._fallback = fallback or InMemoryRateLimiter(rules)

    def _hit(self, key: str, rule: RateLimitRule) -> RateLimitDecision:
        if not self._store.is_available:
            return self._fallback._hit(key, rule)

        now = time.time()
        count, oldest = self._store.window_hit(key, rule.window_seconds, now=now)
        if count < 0:
            logger.debug(f"Rate limit store unavailable, using fallback for {key}")
            return self._fallback._hit(key, rule)

        if count > rule.max_requests:
            retry_after = rule.window_seconds
            if oldest is not None:
                retry_after = math.ceil(oldest + rule.window_seconds - now)
            return RateLimitDecision(False, count, rule.max_requests, max(retry_after, 1))
        return RateLimitDecision(True, count, rule.max_requests)

    def reset(self) -> None:
        self._fallback.reset()


def rules_from_config(rate_limits) -> Dict[str, RateLimitRule]:
    """Build the bucket table from a RateLimitConfig model."""
    return {
        SENSITIVE: RateLimitRule(
            rate_limits.sensitive.max_requests, rate_limits.sensitive.window_seconds
        ),
        GENERAL: RateLimitRule(
            rate_limits.general.max_requests, rate_limits.general.window_seconds
        ),
    }
