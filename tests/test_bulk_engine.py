import shutil
import tempfile
import threading
import time
import unittest

from wa_checker.core.errors import ConfigurationError, InvalidTransitionError
from wa_checker.core.models import (
    ACTIVE, API_ERROR, CheckSettings, CompletionEvent, LookupResponse, PhoneNumberRecord, ProgressEvent,
    RateLimitInfo, Session,
)
from wa_checker.core.work_distributor import WorkDistributor
from wa_checker.operations.bulk_engine import BulkCheckEngine
from wa_checker.operations.session_store import SessionStore


def make_records(n, start=100):
    numbers = [f"+1202555{start + i:04d}" for i in range(n)]
    return [PhoneNumberRecord(original=num, canonical=num, is_valid=True, region="US", country_code="1")
            for num in numbers]


class FakeClient:
    """In-process lookup client; scripted responses per number, active by default."""

    def __init__(self, script=None, delay=0.0, on_call=None):
        self.script = {k: list(v) for k, v in (script or {}).items()}
        self.delay = delay
        self.on_call = on_call
        self.calls = []
        self.call_times = []
        self.closed = 0
        self.lock = threading.Lock()

    def lookup(self, number):
        with self.lock:
            self.calls.append(number)
            self.call_times.append(time.time())
            count = len(self.calls)
        if self.on_call:
            self.on_call(count, number)
        if self.delay:
            time.sleep(self.delay)
        with self.lock:
            responses = self.script.get(number)
            if responses:
                return responses.pop(0)
        return LookupResponse(data={"isWAContact": True, "name": f"User {number[-4:]}"})

    def close(self):
        self.closed += 1


def settings(**changes):
    base = CheckSettings(api_key="test-key", retry_delay=0, concurrent_requests=1)
    return base.copy(**changes)


class TestBulkCheckEngine(unittest.TestCase):
    def engine_for(self, client, store=None):
        return BulkCheckEngine(client_factory=lambda s: client, store=store)

    def test_sequential_run_completes_with_ordered_progress(self):
        records = make_records(5)
        client = FakeClient()
        events = list(self.engine_for(client).start(records, settings()))

        progress = [e for e in events if isinstance(e, ProgressEvent)]
        self.assertEqual([e.completed for e in progress], [1, 2, 3, 4, 5])
        self.assertEqual(progress[-1].percentage, 100.0)
        self.assertIsInstance(events[-1], CompletionEvent)
        self.assertEqual(sum(isinstance(e, CompletionEvent) for e in events), 1)

        session = events[-1].session
        self.assertEqual(session.status, "completed")
        self.assertEqual(session.completed_numbers, 5)
        self.assertEqual(session.successful_checks, 5)
        self.assertIsNotNone(session.end_time)
        self.assertEqual([r.number for r in session.results], [r.canonical for r in records])
        self.assertEqual(client.calls, [r.canonical for r in records])

    def test_cancel_then_resume_processes_only_remaining(self):
        records = make_records(6)
        session = Session.create(records, settings())
        holder = {}

        def cancel_on_third(count, number):
            if count == 3:
                holder["engine"].cancel(session.id)

        engine = self.engine_for(FakeClient(on_call=cancel_on_third))
        holder["engine"] = engine
        session = engine.run(records, settings(), session=session)

        self.assertEqual(session.status, "cancelled")
        self.assertEqual(len(session.results), 3)
        self.assertIsNotNone(session.paused_at)
        self.assertFalse(engine.is_running(session.id))

        resume_client = FakeClient()
        session = self.engine_for(resume_client).run_resume(session, settings())

        self.assertEqual(resume_client.calls, [r.canonical for r in records[3:]])
        self.assertEqual(session.status, "completed")
        numbers = [r.number for r in session.results]
        self.assertEqual(len(numbers), 6)
        self.assertEqual(len(set(numbers)), 6)
        self.assertIsNotNone(session.last_resumed_at)

    def test_retries_absorb_transient_errors(self):
        records = make_records(1)
        number = records[0].canonical
        failure = LookupResponse(error="Internal server error", error_code="server_error")
        client = FakeClient(script={number: [failure, failure, failure]})

        progress = []
        session = self.engine_for(client).run(records, settings(max_retries=3), progress_callback=progress.append)

        self.assertEqual(len(client.calls), 4)
        self.assertEqual(session.results[0].outcome, ACTIVE)
        self.assertEqual(session.results[0].attempts, 4)
        self.assertEqual(session.failed_checks, 0)
        self.assertEqual(progress[-1].failed, 0)

    def test_exhausted_retries_record_api_error(self):
        records = make_records(2)
        failure = LookupResponse(error="Internal server error", error_code="server_error")
        client = FakeClient(script={records[0].canonical: [failure] * 5})

        session = self.engine_for(client).run(records, settings(max_retries=2))

        self.assertEqual(session.status, "completed")
        self.assertEqual(session.results[0].outcome, API_ERROR)
        self.assertEqual(session.results[0].attempts, 3)
        self.assertEqual(session.failed_checks, 1)
        self.assertEqual(session.successful_checks, 1)

    def test_pauses_until_rate_limit_reset(self):
        records = make_records(2)
        reset = int(time.time()) + 2
        exhausted = LookupResponse(data={"isWAContact": True},
                                   rate_limit=RateLimitInfo(remaining=0, limit=10, reset=reset))
        client = FakeClient(script={records[0].canonical: [exhausted]})

        session = self.engine_for(client).run(records, settings())

        self.assertEqual(session.status, "completed")
        self.assertEqual(len(client.calls), 2)
        self.assertGreaterEqual(client.call_times[1], reset - 0.05)

    def test_cancel_during_rate_limit_pause(self):
        records = make_records(3)
        exhausted = LookupResponse(data={"isWAContact": True},
                                   rate_limit=RateLimitInfo(remaining=0, limit=10, reset=int(time.time()) + 30))
        client = FakeClient(script={records[0].canonical: [exhausted]})
        session = Session.create(records, settings())
        engine = self.engine_for(client)

        started = time.time()
        final = None
        for event in engine.start(records, settings(), session=session):
            if isinstance(event, ProgressEvent):
                self.assertEqual(event.rate_limit.remaining, 0)
                engine.cancel(session.id)
            else:
                final = event.session

        self.assertLess(time.time() - started, 10)
        self.assertEqual(client.calls, [records[0].canonical])
        self.assertEqual(final.status, "cancelled")
        self.assertTrue(final.is_resumable)

    def test_throw_on_limit_aborts_and_leaves_rest_pending(self):
        records = make_records(3)
        exhausted = LookupResponse(data={"isWAContact": True},
                                   rate_limit=RateLimitInfo(remaining=0, limit=10, reset=int(time.time()) + 60))
        client = FakeClient(script={records[0].canonical: [exhausted]})

        session = self.engine_for(client).run(records, settings(throw_on_limit=True))

        self.assertEqual(session.status, "cancelled")
        self.assertIn("Rate limit", session.error_message)
        self.assertEqual(len(session.results), 1)
        self.assertEqual(len(session.remaining_records()), 2)
        self.assertEqual(len(client.calls), 1)

    def test_throw_on_limit_with_429_leaves_number_unresolved(self):
        records = make_records(2)
        limited = LookupResponse(error="Too many requests", error_code="rate_limited")
        client = FakeClient(script={records[0].canonical: [limited]})

        session = self.engine_for(client).run(records, settings(throw_on_limit=True, max_retries=3))

        self.assertEqual(session.status, "cancelled")
        self.assertEqual(session.results, [])
        self.assertEqual(len(client.calls), 1)

    def test_stop_on_error(self):
        records = make_records(4)
        failure = LookupResponse(error="Unauthorized", error_code="unauthorized")
        client = FakeClient(script={records[1].canonical: [failure]})

        session = self.engine_for(client).run(records, settings(stop_on_error=True, max_retries=0))

        self.assertEqual(session.status, "cancelled")
        self.assertEqual(len(session.results), 2)
        self.assertIn(records[1].canonical, session.error_message)
        self.assertEqual(len(client.calls), 2)

    def test_missing_api_key_fails_fast(self):
        records = make_records(2)
        client = FakeClient()
        session = Session.create(records, settings(api_key=""))

        with self.assertRaises(ConfigurationError):
            self.engine_for(client).start(records, settings(api_key=""), session=session)

        self.assertEqual(session.status, "error")
        self.assertEqual(session.results, [])
        self.assertEqual(client.calls, [])

    def test_invalid_records_rejected(self):
        bad = [PhoneNumberRecord(original="abc", canonical="abc", is_valid=False, validation_error="no digits")]
        with self.assertRaises(ConfigurationError):
            self.engine_for(FakeClient()).start(bad, settings())
        with self.assertRaises(ConfigurationError):
            self.engine_for(FakeClient()).start([], settings())

    def test_cannot_resume_terminal_session(self):
        records = make_records(1)
        session = self.engine_for(FakeClient()).run(records, settings())
        self.assertEqual(session.status, "completed")
        with self.assertRaises(InvalidTransitionError):
            self.engine_for(FakeClient()).resume(session, settings())

    def test_concurrent_run_records_every_number_once(self):
        records = make_records(20)
        client = FakeClient(delay=0.01)

        events = list(self.engine_for(client).start(records, settings(concurrent_requests=4)))

        progress = [e.completed for e in events if isinstance(e, ProgressEvent)]
        self.assertEqual(progress, list(range(1, 21)))
        session = events[-1].session
        self.assertEqual(session.status, "completed")
        self.assertEqual(sorted(r.number for r in session.results), sorted(r.canonical for r in records))
        self.assertEqual(len(client.calls), 20)

    def test_closing_event_stream_cancels_session(self):
        records = make_records(5)
        session = Session.create(records, settings())
        engine = self.engine_for(FakeClient(delay=0.01))

        events = engine.start(records, settings(), session=session)
        next(events)
        events.close()

        self.assertEqual(session.status, "cancelled")
        self.assertFalse(engine.is_running(session.id))
        self.assertTrue(session.is_resumable)

    def test_cancel_from_progress_callback_stops_after_k_results(self):
        records = make_records(6)
        session = Session.create(records, settings())
        client = FakeClient(delay=0.05)
        engine = self.engine_for(client)

        def cancel_at_two(event):
            if event.completed == 2:
                engine.cancel(session.id)

        session = engine.run(records, settings(), session=session, progress_callback=cancel_at_two)

        self.assertEqual(session.status, "cancelled")
        self.assertEqual(len(session.results), 2)
        self.assertEqual(client.calls, [r.canonical for r in records[:2]])

        resume_client = FakeClient()
        session = self.engine_for(resume_client).run_resume(session, settings())
        self.assertEqual(resume_client.calls, [r.canonical for r in records[2:]])
        self.assertEqual(len({r.number for r in session.results}), 6)

    def test_cancel_while_iterating_fast_client(self):
        records = make_records(50)
        session = Session.create(records, settings())
        client = FakeClient()
        engine = self.engine_for(client)

        final = None
        for event in engine.start(records, settings(), session=session):
            if isinstance(event, CompletionEvent):
                final = event.session
            elif event.completed == 2:
                engine.cancel(session.id)

        self.assertEqual(final.status, "cancelled")
        self.assertEqual(len(final.results), 2)
        self.assertEqual(len(client.calls), 2)
        self.assertEqual(len(final.remaining_records()), 48)

    def test_sequential_events_have_nothing_in_flight(self):
        records = make_records(3)
        events = list(self.engine_for(FakeClient()).start(records, settings()))

        progress = [e for e in events if isinstance(e, ProgressEvent)]
        self.assertEqual([e.current_result.number for e in progress], [r.canonical for r in records])
        self.assertTrue(all(e.current_number is None for e in progress))

    def test_client_is_created_when_stream_starts_and_closed_at_end(self):
        records = make_records(2)
        client = FakeClient()
        created = []

        def factory(s):
            created.append(s)
            return client

        events = BulkCheckEngine(client_factory=factory).start(records, settings())
        self.assertEqual(created, [])

        list(events)
        self.assertEqual(len(created), 1)
        self.assertEqual(client.closed, 1)


class TestBulkCheckEngineWithStore(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.store = SessionStore(self.tmpdir)

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_final_session_is_persisted(self):
        records = make_records(3)
        engine = BulkCheckEngine(client_factory=lambda s: FakeClient(), store=self.store)

        session = engine.run(records, settings(), file_name="numbers.csv")

        stored = self.store.get(session.id)
        self.assertEqual(stored.status, "completed")
        self.assertEqual(stored.file_name, "numbers.csv")
        self.assertEqual(stored.completed_numbers, 3)
        self.assertEqual([r.number for r in stored.results], [r.canonical for r in records])
        self.assertNotEqual(stored.settings.api_key, "test-key")

    def test_configuration_error_is_persisted(self):
        engine = BulkCheckEngine(client_factory=lambda s: FakeClient(), store=self.store)
        with self.assertRaises(ConfigurationError):
            engine.start(make_records(1), settings(api_key=""))

        sessions = self.store.list()
        self.assertEqual(len(sessions), 1)
        self.assertEqual(sessions[0].status, "error")
        self.assertIn("API key", sessions[0].error_message)


class TestWorkDistributor(unittest.TestCase):
    def test_hands_out_each_number_once_in_order(self):
        records = make_records(3)
        distributor = WorkDistributor(records)

        items = [distributor.get_work() for _ in range(4)]
        self.assertEqual([idx for idx, _ in items[:3]], [0, 1, 2])
        self.assertEqual(items[0][1], records[0])
        self.assertIsNone(items[3])

        distributor.mark_completed(0)
        distributor.mark_unresolved(1)
        self.assertEqual(distributor.in_flight_number(), records[2].canonical)
        self.assertEqual(distributor.get_progress(), {
            'total': 3, 'dispatched': 3, 'resolved': 1, 'unresolved': 1, 'in_flight': 1,
            'never_dispatched': 0,
        })


if __name__ == '__main__':
    unittest.main()
