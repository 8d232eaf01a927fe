"""Sliding-window rate limiting and per-IP brute-force lockout.

Both keep their state in a `KeyValueStore` and read time from an injectable
clock (seconds, float) so tests can move time forward deterministically.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import math
import time
from typing import Any, Dict, List, Optional

from .kv_store import Clock, KeyValueStore

logger = logging.getLogger("goldmarket.security")


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int = 0


class RateLimiter:
    """Per-identifier sliding window.

    Each identifier owns a list of request timestamps pruned on every hit.
    Reaching `max_requests` inside the window blocks the identifier for one
    full window; requests during the block are rejected without being counted.
    """

    def __init__(
        self,
        store: KeyValueStore,
        scope: str,
        window_seconds: float,
        max_requests: int,
        clock: Clock = time.time,
    ):
        self.store = store
        self.scope = scope
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self._clock = clock

    def _key(self, identifier: str) -> str:
        return f"ratelimit:{self.scope}:{identifier}"

    def hit(self, identifier: str) -> RateDecision:
        now = self._clock()
        key = self._key(identifier)
        state: Dict[str, Any] = self.store.get(key) or {"requests": [], "blocked_until": None}

        blocked_until = state.get("blocked_until")
        if blocked_until is not None and blocked_until > now:
            return RateDecision(False, self.max_requests, 0, math.ceil(blocked_until - now))

        requests: List[float] = [t for t in state["requests"] if now - t < self.window_seconds]
        if len(requests) >= self.max_requests:
            state = {"requests": requests, "blocked_until": now + self.window_seconds}
            self.store.set(key, state, ttl_seconds=self.window_seconds)
            logger.warning(
                "RATE_LIMIT_EXCEEDED",
                extra={"context": {"scope": self.scope, "ip": identifier, "count": len(requests)}},
            )
            return RateDecision(False, self.max_requests, 0, math.ceil(self.window_seconds))

        requests.append(now)
        self.store.set(
            key, {"requests": requests, "blocked_until": None}, ttl_seconds=self.window_seconds
        )
        return RateDecision(True, self.max_requests, max(0, self.max_requests - len(requests)))

    def reset(self, identifier: str) -> None:
        self.store.delete(self._key(identifier))


class BruteForceGuard:
    """Failed-login counter per client identifier with timed lockout."""

    def __init__(self, store: KeyValueStore, clock: Clock = time.time):
        self.store = store
        self._clock = clock

    @staticmethod
    def _key(identifier: str) -> str:
        return f"login:{identifier}"

    def locked_for(self, identifier: str, max_attempts: int) -> Optional[int]:
        """Remaining lock seconds, or None when the identifier may try again.

        An expired lock is cleared here, restarting the count from zero.
        """
        key = self._key(identifier)
        attempts = self.store.get(key)
        if not attempts:
            return None
        now = self._clock()
        locked_until = attempts.get("locked_until")
        if attempts["count"] >= max_attempts and locked_until and locked_until > now:
            return math.ceil(locked_until - now)
        if locked_until and locked_until <= now:
            self.store.delete(key)
        return None

    def register_failure(self, identifier: str, max_attempts: int, lockout_seconds: int) -> int:
        key = self._key(identifier)
        attempts = self.store.get(key) or {"count": 0, "locked_until": None}
        count = attempts["count"] + 1
        locked_until = attempts.get("locked_until")
        if count >= max_attempts:
            locked_until = self._clock() + lockout_seconds
            logger.warning(
                "ACCOUNT_LOCKED",
                extra={"context": {"ip": identifier, "attempts": count}},
            )
        self.store.set(key, {"count": count, "locked_until": locked_until})
        return count

    def reset(self, identifier: str) -> None:
        self.store.delete(self._key(identifier))
