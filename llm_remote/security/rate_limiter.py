"""Security layer — Per-identity sliding window rate limiter.

In-memory limiter keyed by principal id.  Each identity keeps the
timestamps of its admitted requests inside the trailing window; older
timestamps are dropped lazily on the next check.  Refused requests are
not recorded, so a client hammering the bot does not extend its own
wait.

Usage::

    limiter = RateLimiter(limit_per_minute=10)
    decision = limiter.check(user_id)
    if not decision.allowed:
        reply(f"Slow down, retry in {decision.wait_seconds}s")

    limiter.check_or_raise(user_id)   # raises RateLimitExceededError
"""

from __future__ import annotations

import math
import time
from typing import Callable

from llm_remote.exceptions import RateLimitExceededError
from llm_remote.logging import get_logger
from llm_remote.security.models import RateDecision

log = get_logger(__name__)

_WINDOW_SECONDS = 60.0


class RateLimiter:
    """Sliding-window admission control, one bucket per identity."""

    def __init__(
        self,
        limit_per_minute: int,
        *,
        window_seconds: float = _WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if limit_per_minute < 1:
            raise ValueError("limit_per_minute must be >= 1")
        self._limit = limit_per_minute
        self._window = window_seconds
        self._clock = clock
        self._timestamps: dict[int, list[float]] = {}

    @property
    def limit(self) -> int:
        return self._limit

    def __len__(self) -> int:
        """Number of identities with requests inside the window at last look."""
        return len(self._timestamps)

    def check(self, identity: int) -> RateDecision:
        """Admit and record one request, or refuse with the wait time."""
        now = self._clock()
        timestamps = self._prune(identity, now)

        if len(timestamps) >= self._limit:
            oldest = timestamps[0]
            wait = max(1, math.ceil(self._window - (now - oldest)))
            log.debug("rate_limited", identity=identity, wait_seconds=wait)
            return RateDecision(allowed=False, wait_seconds=wait)

        timestamps.append(now)
        self._timestamps[identity] = timestamps
        return RateDecision(allowed=True, remaining=self._limit - len(timestamps))

    def check_or_raise(self, identity: int) -> int:
        """Check and record; raise :class:`RateLimitExceededError` if refused.

        Returns the number of requests remaining in the window.
        """
        decision = self.check(identity)
        if not decision.allowed:
            raise RateLimitExceededError(
                identity=identity,
                limit=self._limit,
                wait_seconds=decision.wait_seconds,
            )
        return decision.remaining

    def get_count(self, identity: int) -> int:
        """Requests recorded for *identity* inside the current window."""
        return len(self._prune(identity, self._clock()))

    def reset(self, identity: int | None = None) -> None:
        """Reset rate limit state.

        If *identity* is provided, only that bucket is reset.
        Otherwise all buckets are cleared.
        """
        if identity is None:
            self._timestamps.clear()
        else:
            self._timestamps.pop(identity, None)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _prune(self, identity: int, now: float) -> list[float]:
        kept = [t for t in self._timestamps.get(identity, ()) if now - t < self._window]
        if kept:
            self._timestamps[identity] = kept
        else:
            self._timestamps.pop(identity, None)
        return kept
