"""
Sliding-window rate limiter for calls to the document-understanding service.
"""

import asyncio
import logging
import threading
import time
from collections import deque
from datetime import datetime, timezone
from typing import Awaitable, Callable

from statement_extractor.config import RATE_LIMIT_PER_MINUTE
from statement_extractor.errors import RateLimitWait

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60.0


class RateLimiter:
    """
    Allow at most ``requests_per_minute`` calls to start in any trailing
    60-second window.

    The window is pruned lazily.  Prune, check and record happen under one
    lock with no suspension in between, so concurrent waiters cannot both
    claim the last free slot.
    """

    def __init__(
        self,
        requests_per_minute: int | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.requests_per_minute = requests_per_minute or RATE_LIMIT_PER_MINUTE
        self._clock = clock
        self._sleep = sleep
        self._window: deque[float] = deque()
        self._lock = threading.Lock()

    def _prune(self, now: float) -> None:
        while self._window and now - self._window[0] >= WINDOW_SECONDS:
            self._window.popleft()

    def _acquire(self) -> None:
        """Record a call if a slot is free, else raise ``RateLimitWait``."""
        with self._lock:
            now = self._clock()
            self._prune(now)
            if len(self._window) >= self.requests_per_minute:
                raise RateLimitWait(WINDOW_SECONDS - (now - self._window[0]))
            self._window.append(now)

    async def throttle(self) -> None:
        """Block until a call slot is available, then claim it."""
        while True:
            try:
                self._acquire()
                return
            except RateLimitWait as wait:
                logger.info(
                    "Rate limit reached. Waiting %dms...", int(wait.wait_seconds * 1000)
                )
                await self._sleep(max(wait.wait_seconds, 0.0))

    def get_stats(self) -> dict:
        with self._lock:
            now = self._clock()
            self._prune(now)
            current = len(self._window)
            oldest = self._window[0] if self._window else None

        next_reset = oldest + WINDOW_SECONDS if oldest is not None else now
        return {
            "requests_per_minute": self.requests_per_minute,
            "current_requests": current,
            "available_requests": max(self.requests_per_minute - current, 0),
            "next_reset": datetime.fromtimestamp(next_reset, tz=timezone.utc).isoformat(),
        }


rate_limiter = RateLimiter()
