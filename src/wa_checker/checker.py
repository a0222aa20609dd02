#!/usr/bin/env python3
"""
WhatsApp Checker Module
Checks a single number through a lookup client, retrying transient API errors.
"""

import logging
import threading
from typing import Optional

from wa_checker.core.adapters import is_rate_limit_error, to_lookup_result
from wa_checker.core.models import API_ERROR, CheckSettings, LookupResponse, LookupResult
from wa_checker.core.rate_limiter import RateLimitTracker

logger = logging.getLogger(__name__)


def retry_delay_for(attempt: int, base_delay: float, policy: str = 'fixed') -> float:
    """Delay before retry number `attempt` (1-based)."""
    base_delay = max(0.0, float(base_delay))
    if policy == 'linear':
        return base_delay * attempt
    if policy == 'exponential':
        return base_delay * (2 ** (attempt - 1))
    return base_delay


class WhatsAppChecker:
    """Checks one number at a time; shared by all workers of a run."""

    def __init__(self, client, max_retries: int = 3, retry_delay: float = 1.0, retry_backoff: str = 'fixed',
                 rate_limiter: Optional[RateLimitTracker] = None, throw_on_limit: bool = False):
        self.client = client
        self.max_retries = max(0, max_retries)
        self.retry_delay = retry_delay
        self.retry_backoff = retry_backoff
        self.rate_limiter = rate_limiter
        self.throw_on_limit = throw_on_limit

    @classmethod
    def from_settings(cls, client, settings: CheckSettings,
                      rate_limiter: Optional[RateLimitTracker] = None) -> "WhatsAppChecker":
        return cls(
            client,
            max_retries=settings.max_retries,
            retry_delay=settings.retry_delay,
            retry_backoff=settings.retry_backoff,
            rate_limiter=rate_limiter,
            throw_on_limit=settings.throw_on_limit,
        )

    def _lookup(self, number: str) -> LookupResponse:
        try:
            return self.client.lookup(number)
        except Exception as e:
            # Auth/network failures raised by a client count as API errors
            logger.debug(f"Lookup for {number} raised: {e}")
            return LookupResponse(error=str(e) or e.__class__.__name__)

    def check_number(self, number: str, stop_event: Optional[threading.Event] = None) -> Optional[LookupResult]:
        """Look up `number` until a terminal result is reached.

        Rate-limit answers wait for the quota reset and are reissued without using up
        max_retries. Returns None when the number was left unresolved: the stop event
        fired while waiting, or the quota ran out with throw_on_limit set.
        """
        stop_event = stop_event or threading.Event()
        attempt = 0
        retries = 0

        while True:
            attempt += 1
            response = self._lookup(number)
            result = to_lookup_result(number, response, attempts=attempt)

            limited = False
            rate_limit_error = False
            if self.rate_limiter is not None:
                limited = self.rate_limiter.observe(result.rate_limit)
                if result.outcome == API_ERROR and is_rate_limit_error(result):
                    self.rate_limiter.report_limited(result.rate_limit)
                    limited = rate_limit_error = True

            if result.outcome != API_ERROR:
                return result

            if limited and self.throw_on_limit:
                logger.info(f"Rate limited while checking {number}; leaving it pending")
                return None

            if rate_limit_error:
                # Quota answers pause and reissue; they don't count as retries
                logger.debug(f"Rate limited while checking {number}; waiting for the quota to reset")
                if not self.rate_limiter.wait_if_limited(stop_event):
                    return None
                continue

            retries += 1
            if retries > self.max_retries:
                logger.info(f"Giving up on {number} after {attempt} attempts: {result.error}")
                return result

            delay = retry_delay_for(retries, self.retry_delay, self.retry_backoff)
            logger.debug(f"Retrying {number} in {delay:.1f}s (retry {retries}/{self.max_retries}): {result.error}")
            if delay > 0 and stop_event.wait(delay):
                return None
            if stop_event.is_set():
                return None
            if self.rate_limiter is not None and not self.rate_limiter.wait_if_limited(stop_event):
                return None
