import threading
import time
import unittest

from wa_checker.checker import WhatsAppChecker, retry_delay_for
from wa_checker.config import MAX_RATE_LIMIT_PAUSE, RATE_LIMIT_COOLDOWN
from wa_checker.core.models import ACTIVE, API_ERROR, NOT_PRESENT, LookupResponse, RateLimitInfo
from wa_checker.core.rate_limiter import RateLimitTracker


class ScriptedClient:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = 0

    def lookup(self, number):
        self.calls += 1
        response = self.responses.pop(0) if self.responses else LookupResponse(data={"isWAContact": True})
        if isinstance(response, Exception):
            raise response
        return response


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


SERVER_ERROR = LookupResponse(error="Internal server error", error_code="server_error")


class TestRetryDelay(unittest.TestCase):
    def test_policies(self):
        self.assertEqual([retry_delay_for(a, 2, 'fixed') for a in (1, 2, 3)], [2, 2, 2])
        self.assertEqual([retry_delay_for(a, 2, 'linear') for a in (1, 2, 3)], [2, 4, 6])
        self.assertEqual([retry_delay_for(a, 2, 'exponential') for a in (1, 2, 3)], [2, 4, 8])
        self.assertEqual(retry_delay_for(1, -5), 0)


class TestWhatsAppChecker(unittest.TestCase):
    def test_success_on_first_attempt(self):
        checker = WhatsAppChecker(ScriptedClient([]), retry_delay=0)
        result = checker.check_number("+12025550100")
        self.assertEqual(result.outcome, ACTIVE)
        self.assertEqual(result.attempts, 1)
        self.assertIsNotNone(result.checked_at)

    def test_retries_then_succeeds(self):
        client = ScriptedClient([SERVER_ERROR, SERVER_ERROR])
        result = WhatsAppChecker(client, max_retries=2, retry_delay=0).check_number("+12025550100")
        self.assertEqual(result.outcome, ACTIVE)
        self.assertEqual(client.calls, 3)

    def test_gives_up_after_max_retries(self):
        client = ScriptedClient([SERVER_ERROR] * 10)
        result = WhatsAppChecker(client, max_retries=2, retry_delay=0).check_number("+12025550100")
        self.assertEqual(result.outcome, API_ERROR)
        self.assertEqual(result.attempts, 3)
        self.assertEqual(client.calls, 3)

    def test_not_found_is_not_retried(self):
        client = ScriptedClient([LookupResponse(error="Number not found", error_code="not_found")])
        result = WhatsAppChecker(client, max_retries=3, retry_delay=0).check_number("+12025550100")
        self.assertEqual(result.outcome, NOT_PRESENT)
        self.assertEqual(client.calls, 1)

    def test_client_exception_becomes_api_error(self):
        client = ScriptedClient([RuntimeError("socket closed")])
        result = WhatsAppChecker(client, max_retries=0, retry_delay=0).check_number("+12025550100")
        self.assertEqual(result.outcome, API_ERROR)
        self.assertEqual(result.error, "socket closed")

    def test_stop_during_retry_wait_leaves_number_unresolved(self):
        stop = threading.Event()
        stop.set()
        client = ScriptedClient([SERVER_ERROR])
        result = WhatsAppChecker(client, max_retries=3, retry_delay=30).check_number("+12025550100", stop)
        self.assertIsNone(result)
        self.assertEqual(client.calls, 1)

    def test_throw_on_limit_returns_none_for_429(self):
        limiter = RateLimitTracker()
        client = ScriptedClient([LookupResponse(error="Too many requests", error_code="rate_limited")])
        checker = WhatsAppChecker(client, max_retries=3, retry_delay=0, rate_limiter=limiter, throw_on_limit=True)
        self.assertIsNone(checker.check_number("+12025550100"))
        self.assertTrue(limiter.is_limited())

    def test_rate_limit_answer_waits_and_does_not_use_retries(self):
        limiter = RateLimitTracker()
        quota = RateLimitInfo(remaining=0, limit=10, reset=int(time.time()) + 1)
        client = ScriptedClient([LookupResponse(error="Too many requests", error_code="rate_limited",
                                                rate_limit=quota)])
        checker = WhatsAppChecker(client, max_retries=0, retry_delay=0, rate_limiter=limiter)

        result = checker.check_number("+12025550100")

        self.assertEqual(result.outcome, ACTIVE)
        self.assertEqual(client.calls, 2)
        self.assertEqual(result.attempts, 2)
        self.assertGreaterEqual(time.time(), quota.reset - 0.05)

    def test_rate_limit_answers_do_not_exhaust_retries_for_later_errors(self):
        limiter = RateLimitTracker(default_cooldown=0.05)
        limited = LookupResponse(error="Too many requests", error_code="rate_limited")
        client = ScriptedClient([limited, limited, SERVER_ERROR])
        checker = WhatsAppChecker(client, max_retries=1, retry_delay=0, rate_limiter=limiter)

        result = checker.check_number("+12025550100")

        self.assertEqual(result.outcome, ACTIVE)
        self.assertEqual(client.calls, 4)

    def test_stop_during_rate_limit_wait_leaves_number_unresolved(self):
        stop = threading.Event()
        stop.set()
        limiter = RateLimitTracker()
        client = ScriptedClient([LookupResponse(error="Too many requests", error_code="rate_limited")])
        checker = WhatsAppChecker(client, max_retries=0, retry_delay=0, rate_limiter=limiter)

        self.assertIsNone(checker.check_number("+12025550100", stop))
        self.assertEqual(client.calls, 1)


class TestRateLimitTracker(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.tracker = RateLimitTracker(clock=self.clock)

    def test_observe_exhausted_sets_cooldown_until_reset(self):
        paused = self.tracker.observe(RateLimitInfo(remaining=0, limit=100, reset=1030))
        self.assertTrue(paused)
        self.assertTrue(self.tracker.is_limited())
        self.assertEqual(self.tracker.seconds_until_reset(), 30)
        self.assertEqual(self.tracker.limit_hits, 1)

        self.clock.now = 1030
        self.assertFalse(self.tracker.is_limited())

    def test_observe_with_quota_left(self):
        self.assertFalse(self.tracker.observe(RateLimitInfo(remaining=5, limit=100, reset=1030)))
        self.assertFalse(self.tracker.observe(None))
        self.assertFalse(self.tracker.is_limited())
        self.assertEqual(self.tracker.latest.remaining, 5)

    def test_threshold(self):
        tracker = RateLimitTracker(threshold=5, clock=self.clock)
        self.assertTrue(tracker.observe(RateLimitInfo(remaining=5, limit=100, reset=1010)))

    def test_report_limited_without_reset_uses_default_cooldown(self):
        self.tracker.report_limited()
        self.assertEqual(self.tracker.seconds_until_reset(), RATE_LIMIT_COOLDOWN)

    def test_pause_is_capped(self):
        self.tracker.observe(RateLimitInfo(remaining=0, limit=100, reset=1000 + 10 * MAX_RATE_LIMIT_PAUSE))
        self.assertEqual(self.tracker.seconds_until_reset(), MAX_RATE_LIMIT_PAUSE)

    def test_wait_returns_false_when_stopped(self):
        self.tracker.report_limited()
        stop = threading.Event()
        stop.set()
        self.assertFalse(self.tracker.wait_if_limited(stop))

    def test_wait_returns_true_when_not_limited(self):
        self.assertTrue(self.tracker.wait_if_limited(threading.Event()))
        status = self.tracker.get_status()
        self.assertFalse(status['limited'])
        self.assertEqual(status['limit_hits'], 0)


if __name__ == '__main__':
    unittest.main()
