"""Sliding-window rate limiter keyed by user."""

from __future__ import annotations

import math
import time
from collections import deque
from collections.abc import Callable, Hashable

from safeguard.core.exceptions import RateLimited
from safeguard.core.locks import KeyedLocks


class SlidingWindowLimiter:
    """Allow at most ``limit`` hits per ``window_seconds`` for each key.

    ``hit`` checks and records under the key's lock, so two concurrent
    callers can never both take the last slot.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        # keys with no hits left in the window are dropped
        self._hits: dict[Hashable, deque[float]] = {}
        self._locks = KeyedLocks()

    def _prune(self, hits: deque[float], now: float) -> None:
        cutoff = now - self.window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()

    def hit(self, key: Hashable) -> int:
        """Record one hit. Returns remaining slots; raises ``RateLimited`` when full."""
        self.purge()
        with self._locks.for_key(key):
            now = self._clock()
            hits = self._hits.setdefault(key, deque())
            self._prune(hits, now)
            if len(hits) >= self.limit:
                retry_after = max(1, math.ceil(hits[0] + self.window_seconds - now))
                raise RateLimited(
                    f"Too many SOS triggers. Limit is {self.limit} per {int(self.window_seconds)} seconds.",
                    retry_after=retry_after,
                )
            hits.append(now)
            return self.limit - len(hits)

    def remaining(self, key: Hashable) -> int:
        with self._locks.for_key(key):
            hits = self._hits.get(key)
            if hits is None:
                return self.limit
            self._prune(hits, self._clock())
            if not hits:
                del self._hits[key]
            return self.limit - len(hits)

    def purge(self) -> int:
        """Forget keys whose hits have all left the window. Returns how many."""
        now = self._clock()
        dropped = 0
        for key in list(self._hits):
            with self._locks.for_key(key):
                hits = self._hits.get(key)
                if hits is None:
                    continue
                self._prune(hits, now)
                if not hits:
                    del self._hits[key]
                    dropped += 1
        return dropped

    def reset(self, key: Hashable) -> None:
        with self._locks.for_key(key):
            self._hits.pop(key, None)
