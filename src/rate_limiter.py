from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import Callable


class SlidingWindowRateLimiter:
    """
    Allows at most `max_requests` calls in any `window_ms` span.

    Rejected calls are not recorded, so a burst of refusals does not extend the wait.
    """

    def __init__(
        self,
        max_requests: int,
        window_ms: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_s = window_ms / 1000.0
        self._clock = clock
        self._calls: deque[float] = deque()
        self._lock = asyncio.Lock()

    async def try_acquire(self) -> bool:
        async with self._lock:
            now = self._clock()
            while self._calls and now - self._calls[0] >= self.window_s:
                self._calls.popleft()
            if len(self._calls) >= self.max_requests:
                return False
            self._calls.append(now)
            return True

    def retry_after_s(self) -> float:
        if not self._calls:
            return 0.0
        return max(0.0, self.window_s - (self._clock() - self._calls[0]))
