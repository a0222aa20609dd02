#!/usr/bin/env python3
"""
Rate Limit Tracker Module
Thread-safe tracking of the API quota with cooldowns until the quota resets.
"""

import time
import threading
import logging
from typing import Callable, Dict, Optional

from wa_checker.config import MAX_RATE_LIMIT_PAUSE, RATE_LIMIT_COOLDOWN
from wa_checker.core.models import RateLimitInfo

logger = logging.getLogger(__name__)


class RateLimitTracker:
    """Tracks the latest quota snapshot and pauses dispatch while it is exhausted."""

    def __init__(self, threshold: int = 0, default_cooldown: float = RATE_LIMIT_COOLDOWN,
                 clock: Callable[[], float] = time.time):
        self.threshold = threshold
        self.default_cooldown = default_cooldown
        self.clock = clock
        self.lock = threading.Lock()
        self.latest: Optional[RateLimitInfo] = None
        self.cooldown_until = 0.0
        self.limit_hits = 0

    def observe(self, info: Optional[RateLimitInfo]) -> bool:
        """Record a quota snapshot. Returns True if dispatch must pause."""
        if info is None:
            return False
        with self.lock:
            self.latest = info
            if not info.is_exhausted(self.threshold):
                return False
            self._set_cooldown(info.reset)
            return True

    def report_limited(self, info: Optional[RateLimitInfo] = None):
        """Report a rate-limit error response (e.g. HTTP 429)."""
        with self.lock:
            if info is not None:
                self.latest = info
            now = self.clock()
            reset = info.reset if info is not None and info.reset > now else now + self.default_cooldown
            self._set_cooldown(reset)

    def _set_cooldown(self, reset: float):
        now = self.clock()
        reset = min(float(reset), now + MAX_RATE_LIMIT_PAUSE)
        if reset > self.cooldown_until:
            self.cooldown_until = reset
            self.limit_hits += 1
            if reset > now:
                logger.warning(f"Rate limit reached, pausing for {reset - now:.0f}s")

    def is_limited(self) -> bool:
        with self.lock:
            return self.clock() < self.cooldown_until

    def seconds_until_reset(self) -> float:
        with self.lock:
            return max(0.0, self.cooldown_until - self.clock())

    def wait_if_limited(self, stop_event: threading.Event, poll_interval: float = 1.0) -> bool:
        """Block while the quota is exhausted.

        Returns False if stop_event was set during the wait, True once dispatch may continue.
        """
        while True:
            if stop_event.is_set():
                return False
            remaining = self.seconds_until_reset()
            if remaining <= 0:
                return True
            if stop_event.wait(min(remaining, poll_interval)):
                return False

    def get_status(self) -> Dict:
        with self.lock:
            return {
                'limited': self.clock() < self.cooldown_until,
                'cooldown_until': self.cooldown_until,
                'limit_hits': self.limit_hits,
                'remaining': self.latest.remaining if self.latest else None,
                'limit': self.latest.limit if self.latest else None,
            }
