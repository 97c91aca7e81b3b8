"""
Sliding-window rate limiter.

At most ``max_requests`` admissions are allowed within any rolling
``interval``. Callers over the limit wait until the oldest admission leaves the
window.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from datetime import datetime, timedelta
from typing import Any, Callable, Deque, Dict, Optional

from ..config.models import RateLimitConfig

logger = logging.getLogger(__name__)

# Added to the computed wait so the oldest entry has expired when we re-check
WAIT_BUFFER = 0.1


class RateLimiter:
    """Rate limiter using a sliding window of admission timestamps."""

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize rate limiter with configuration.

        Args:
            config: Window size and admission count
            clock: Monotonic time source in seconds
        """
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._requests: Deque[float] = deque()
        self._total_admitted = 0
        self._total_waits = 0
        self._total_wait_time = 0.0

    def _prune(self, now: float) -> None:
        cutoff = now - self.config.interval
        while self._requests and self._requests[0] <= cutoff:
            self._requests.popleft()

    async def check_limit(self) -> None:
        """
        Wait until a request may be sent, then record it.

        Blocks while the window already holds ``max_requests`` admissions.
        The sleep is sized so the oldest admission has expired on the
        following check.
        """
        while True:
            now = self._clock()
            self._prune(now)

            if len(self._requests) < self.config.max_requests:
                self._requests.append(now)
                self._total_admitted += 1
                return

            wait_time = self._requests[0] + self.config.interval - now + WAIT_BUFFER
            self._total_waits += 1
            self._total_wait_time += wait_time
            logger.debug(f"Rate limit reached, waiting {wait_time:.2f}s")
            await asyncio.sleep(wait_time)

    def remaining_requests(self) -> int:
        """Admissions still available in the current window."""
        self._prune(self._clock())
        return max(0, self.config.max_requests - len(self._requests))

    def reset_time(self) -> Optional[datetime]:
        """
        Wall-clock time at which the oldest admission leaves the window.

        Returns:
            ``None`` when the window is empty
        """
        now = self._clock()
        self._prune(now)
        if not self._requests:
            return None
        remaining = self._requests[0] + self.config.interval - now
        return datetime.now() + timedelta(seconds=remaining)

    def reset(self) -> None:
        """Forget every admission."""
        self._requests.clear()

    def get_stats(self) -> Dict[str, Any]:
        """Get rate limiter statistics."""
        return {
            "max_requests": self.config.max_requests,
            "interval": self.config.interval,
            "in_window": len(self._requests),
            "remaining": self.remaining_requests(),
            "total_admitted": self._total_admitted,
            "total_waits": self._total_waits,
            "total_wait_time": self._total_wait_time,
        }
