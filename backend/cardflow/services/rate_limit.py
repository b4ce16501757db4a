from __future__ import annotations

import threading
import time
from collections import deque
from typing import Callable, Deque, Dict

from cardflow.core import config


class SlidingWindowLimiter:
    """
    Per-key sliding window: at most `limit` hits in any `window_seconds`.
    Process-local, like the in-memory stores; a multi-worker deploy gets one
    window per worker.
    """

    def __init__(
        self,
        limit: int = config.SESSION_CREATE_LIMIT,
        window_seconds: float = config.SESSION_CREATE_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._last_sweep = clock()
        self._lock = threading.RLock()

    def _prune(self, key: str, now: float) -> Deque[float]:
        hits = self._hits.get(key)
        if hits is None:
            return deque()
        while hits and now - hits[0] >= self.window_seconds:
            hits.popleft()
        if not hits:
            del self._hits[key]
        return hits

    def _sweep(self, now: float) -> None:
        # drop keys whose whole window has expired, at most once per window
        if now - self._last_sweep < self.window_seconds:
            return
        self._last_sweep = now
        for key in list(self._hits):
            self._prune(key, now)

    def hit(self, key: str) -> bool:
        """Record one hit for `key`. False means the caller is over the limit."""
        now = self._clock()
        with self._lock:
            self._sweep(now)
            hits = self._prune(key, now)
            if len(hits) >= self.limit:
                return False
            hits.append(now)
            self._hits[key] = hits
            return True

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._hits)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
