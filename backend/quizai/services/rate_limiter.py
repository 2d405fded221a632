# quizai/services/rate_limiter.py
"""
Fixed 60-second window limiter per client address.

Guards the endpoints that spend money on image generation. State lives in
process memory and resets on restart; it is a cost guard, not a security
boundary.
"""
import logging
import math
import threading
import time
from typing import Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60
DEFAULT_LIMIT_PER_MIN = 10
PRUNE_EVERY = 100


class WindowRateLimiter:
    def __init__(self, limit_per_min: int = DEFAULT_LIMIT_PER_MIN,
                 clock: Optional[Callable[[], float]] = None):
        if limit_per_min <= 0:
            raise ValueError("limit_per_min must be > 0")
        self.limit_per_min = limit_per_min
        self._clock = clock or time.monotonic
        # address -> (count, window_start)
        self._windows: Dict[str, Tuple[int, float]] = {}
        self._checks = 0
        self._lock = threading.Lock()

    def check(self, address: str) -> bool:
        """Count one request; ``False`` when the address is over its limit."""
        now = self._clock()
        with self._lock:
            self._checks += 1
            if self._checks % PRUNE_EVERY == 0:
                self._prune(now)

            count, start = self._windows.get(address, (0, now))
            if count == 0 or now - start >= WINDOW_SECONDS:
                self._windows[address] = (1, now)
                return True
            if count >= self.limit_per_min:
                logger.info("[RateLimit] %s 분당 요청 한도 초과 (%s)", address, self.limit_per_min)
                return False
            self._windows[address] = (count + 1, start)
            return True

    def retry_after_seconds(self, address: str) -> int:
        with self._lock:
            entry = self._windows.get(address)
        if entry is None:
            return 0
        elapsed = self._clock() - entry[1]
        return max(0, math.ceil(WINDOW_SECONDS - elapsed))

    def prune_expired(self) -> int:
        with self._lock:
            return self._prune(self._clock())

    def _prune(self, now: float) -> int:
        stale = [a for a, (_, start) in self._windows.items() if now - start >= WINDOW_SECONDS]
        for address in stale:
            del self._windows[address]
        return len(stale)

    def __len__(self) -> int:
        return len(self._windows)
