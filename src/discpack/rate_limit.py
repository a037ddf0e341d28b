"""Per-token sliding-window request limiting."""

from __future__ import annotations

import threading
import time
from typing import Callable, Dict, List


class SlidingWindowRateLimiter:
    """Allow at most ``limit`` calls per token inside a trailing ``window``.

    State lives in process memory only and is lost on restart. Each call drops
    the token's timestamps that fell out of the window, so idle tokens shrink
    on their next access; :meth:`prune` clears tokens that never come back.
    """

    def __init__(
        self,
        *,
        limit: int,
        window: float,
        clock: Callable[[], float] | None = None,
    ) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if window <= 0:
            raise ValueError("window must be positive")

        self._limit = int(limit)
        self._window = float(window)
        self._clock = clock or time.monotonic
        self._requests: Dict[str, List[float]] = {}
        self._lock = threading.Lock()

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def window(self) -> float:
        return self._window

    def check(self, token: str) -> bool:
        """Record a call for ``token`` and return ``True`` when it is allowed."""

        with self._lock:
            now = self._clock()
            recent = [
                timestamp
                for timestamp in self._requests.get(token, [])
                if now - timestamp < self._window
            ]

            if len(recent) >= self._limit:
                self._requests[token] = recent
                return False

            recent.append(now)
            self._requests[token] = recent
            return True

    def prune(self) -> int:
        """Forget tokens with no calls left in the window; return how many."""

        with self._lock:
            now = self._clock()
            stale = [
                token
                for token, timestamps in self._requests.items()
                if all(now - timestamp >= self._window for timestamp in timestamps)
            ]
            for token in stale:
                del self._requests[token]
            return len(stale)

    def reset(self, token: str) -> None:
        with self._lock:
            self._requests.pop(token, None)

    def tracked_tokens(self) -> List[str]:
        with self._lock:
            return sorted(self._requests)


__all__ = ["SlidingWindowRateLimiter"]
