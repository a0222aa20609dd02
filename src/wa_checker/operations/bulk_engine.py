#!/usr/bin/env python3
"""
Bulk Check Engine Module
Runs a batch of lookups for one session: worker threads, retries, rate-limit pauses,
cancellation, resume, and a stream of progress events ending in one completion event.
"""

import time
import queue
import threading
import logging
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Union

from wa_checker.checker import WhatsAppChecker
from wa_checker.config import (
    MAX_CONCURRENT_REQUESTS, QUEUE_POLL_INTERVAL, RETRY_BACKOFF_POLICIES, SESSION_SAVE_INTERVAL,
)
from wa_checker.core.errors import ConfigurationError, InvalidTransitionError, StorageError
from wa_checker.core.models import (
    API_ERROR, CheckSettings, CompletionEvent, LookupResult, PhoneNumberRecord, ProgressEvent, Session,
)
from wa_checker.core.rate_limiter import RateLimitTracker
from wa_checker.core.threading_manager import ThreadingManager
from wa_checker.core.work_distributor import WorkDistributor
from wa_checker.services import create_lookup_client

logger = logging.getLogger(__name__)

Event = Union[ProgressEvent, CompletionEvent]


def validate_settings(settings: CheckSettings) -> None:
    """Raise ConfigurationError if a batch can't run with these settings."""
    if not settings.api_key or not settings.api_key.strip():
        raise ConfigurationError("API key is required")
    if not 1 <= settings.concurrent_requests <= MAX_CONCURRENT_REQUESTS:
        raise ConfigurationError(f"concurrent_requests must be between 1 and {MAX_CONCURRENT_REQUESTS}")
    if settings.max_retries < 0:
        raise ConfigurationError("max_retries must be non-negative")
    if settings.retry_delay < 0:
        raise ConfigurationError("retry_delay must be non-negative")
    if settings.timeout <= 0:
        raise ConfigurationError("timeout must be positive")
    if settings.retry_backoff not in RETRY_BACKOFF_POLICIES:
        raise ConfigurationError(f"retry_backoff must be one of {', '.join(RETRY_BACKOFF_POLICIES)}")


def validate_records(records: List[PhoneNumberRecord]) -> None:
    if not records:
        raise ConfigurationError("No valid numbers to check")
    invalid = [r.original for r in records if not r.is_valid]
    if invalid:
        raise ConfigurationError(f"{len(invalid)} invalid numbers in batch (first: {invalid[0]!r})")


class BulkCheckEngine:
    """Drives lookups for sessions; at most one live run per session id."""

    def __init__(self, client_factory: Callable = create_lookup_client, store=None):
        self.client_factory = client_factory
        self.store = store
        self._active: Dict[str, ThreadingManager] = {}
        self._lock = threading.Lock()

    # ------------------
    # Public operations
    # ------------------
    def start(self, records: Iterable[PhoneNumberRecord], settings: CheckSettings,
              session: Optional[Session] = None, file_name: str = "Current Session") -> Iterator[Event]:
        """Validate synchronously, then return the event stream for a new batch.

        Configuration problems raise ConfigurationError before any lookup; the session
        (created here when not given) ends up in the error state.
        """
        records = list(records)
        if session is None:
            session = Session.create(records, settings, file_name=file_name)
            if self.store is not None:
                self.store.create(session)
        elif session.status != "pending":
            raise InvalidTransitionError(session.status, "running")
        self._ensure_not_running(session.id)

        try:
            validate_records(records)
            validate_settings(settings)
        except ConfigurationError as e:
            logger.error(f"Session {session.id} failed to start: {e}")
            session.transition("running")
            session.transition("error")
            session.error_message = str(e)
            session.end_time = time.time()
            self._persist(session)
            raise

        if not session.original_numbers:
            session.original_numbers = list(records)
            session.total_numbers = len(records)
        session.settings = settings.copy()
        return self._run(session, records, settings)

    def resume(self, session: Session, settings: CheckSettings) -> Iterator[Event]:
        """Continue a pending/cancelled session with only its unresolved numbers."""
        if not session.is_resumable:
            raise InvalidTransitionError(session.status, "running")
        self._ensure_not_running(session.id)
        validate_settings(settings)

        remaining = session.remaining_records()
        logger.info(f"Resuming session {session.id}: {len(remaining)} of {session.total_numbers} numbers left")
        session.settings = settings.copy()
        return self._run(session, remaining, settings)

    def run(self, records: Iterable[PhoneNumberRecord], settings: CheckSettings,
            session: Optional[Session] = None, progress_callback: Optional[Callable[[ProgressEvent], None]] = None,
            file_name: str = "Current Session") -> Session:
        """Blocking variant of start(); returns the terminal session."""
        return self._consume(self.start(records, settings, session, file_name), progress_callback)

    def run_resume(self, session: Session, settings: CheckSettings,
                   progress_callback: Optional[Callable[[ProgressEvent], None]] = None) -> Session:
        return self._consume(self.resume(session, settings), progress_callback)

    def cancel(self, session_id: str) -> bool:
        """Request cancellation; in-flight lookups finish, no new ones start."""
        with self._lock:
            manager = self._active.get(session_id)
        if manager is None:
            return False
        logger.info(f"Cancellation requested for session {session_id}")
        manager.stop()
        return True

    def is_running(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._active

    # ------------------
    # Run loop
    # ------------------
    def _run(self, session: Session, records: List[PhoneNumberRecord], settings: CheckSettings) -> Iterator[Event]:
        manager = ThreadingManager(settings.concurrent_requests)
        self._register(session.id, manager)
        client = None
        finished = False

        try:
            if session.status == "cancelled":
                session.transition("running")
                session.last_resumed_at = time.time()
                session.paused_at = None
                session.end_time = None
                session.error_message = None
                self._persist(session)

            limiter = RateLimitTracker(threshold=settings.rate_limit_threshold)

            if records:
                client = self.client_factory(settings)
                checker = WhatsAppChecker.from_settings(client, settings, limiter)
                distributor = WorkDistributor(records)
                results_queue: "queue.Queue[LookupResult]" = queue.Queue()
                # One slot per lookup; a slot frees up only after its result was yielded
                slots = threading.BoundedSemaphore(settings.concurrent_requests)

                manager.start_workers(
                    self._worker,
                    work_distributor=distributor,
                    checker=checker,
                    rate_limiter=limiter,
                    results_queue=results_queue,
                    slots=slots,
                    manager=manager,
                    settings=settings,
                )

                since_save = 0
                while True:
                    try:
                        result = results_queue.get(timeout=QUEUE_POLL_INTERVAL)
                    except queue.Empty:
                        if not manager.any_alive() and results_queue.empty():
                            break
                        continue

                    if session.status == "pending":
                        session.transition("running")
                        self._persist(session)

                    session.record_result(result)
                    since_save += 1
                    if since_save >= SESSION_SAVE_INTERVAL:
                        self._persist(session)
                        since_save = 0

                    yield self._progress_event(session, result, limiter, distributor)
                    slots.release()

                manager.join()
                logger.debug(f"Session {session.id} dispatch summary: {distributor.get_progress()}")

            self._finish(session, manager)
            finished = True
            yield CompletionEvent(session)

        finally:
            manager.stop()
            manager.join()
            self._unregister(session.id)
            close = getattr(client, "close", None)
            if client is not None and callable(close):
                close()
            if not finished and session.status in ("pending", "running"):
                # Consumer stopped iterating or the loop raised; keep the session resumable
                self._mark_cancelled(session, "Run interrupted before completion")
                try:
                    self._persist(session)
                except StorageError:
                    logger.exception(f"Could not save interrupted session {session.id}")

    def _worker(self, worker_id: int, stop_event: threading.Event, work_distributor: WorkDistributor,
                checker: WhatsAppChecker, rate_limiter: RateLimitTracker,
                results_queue: "queue.Queue[LookupResult]", slots: threading.BoundedSemaphore,
                manager: ThreadingManager, settings: CheckSettings):
        """Worker thread: pull numbers, look them up, hand results to the run loop.

        A worker holds a slot for each lookup. The run loop gives the slot back once the
        result has been yielded, so a cancel issued while handling an event stops dispatch
        before the next lookup starts.
        """
        while self._acquire_slot(slots, stop_event):
            handed_off = False
            try:
                if stop_event.is_set():
                    break
                if not rate_limiter.wait_if_limited(stop_event):
                    break

                work_item = work_distributor.get_work()
                if work_item is None:
                    break  # No more work

                idx, record = work_item
                logger.debug(f"Worker {worker_id} checking {record.canonical}")
                result = checker.check_number(record.canonical, stop_event)

                if result is None:
                    work_distributor.mark_unresolved(idx)
                    if not stop_event.is_set():
                        manager.abort("Rate limit reached and throw_on_limit is enabled")
                    continue

                work_distributor.mark_completed(idx)
                results_queue.put(result)
                handed_off = True

                if (settings.throw_on_limit and result.rate_limit is not None
                        and result.rate_limit.is_exhausted(settings.rate_limit_threshold)):
                    manager.abort("Rate limit reached and throw_on_limit is enabled")
                elif settings.stop_on_error and result.outcome == API_ERROR:
                    manager.abort(f"Stopped after API error for {record.canonical}: {result.error}")
            finally:
                if not handed_off:
                    slots.release()

    @staticmethod
    def _acquire_slot(slots: threading.BoundedSemaphore, stop_event: threading.Event) -> bool:
        while not stop_event.is_set():
            if slots.acquire(timeout=QUEUE_POLL_INTERVAL):
                return True
        return False

    # ------------------
    # Helpers
    # ------------------
    @staticmethod
    def _progress_event(session: Session, result: LookupResult, limiter: RateLimitTracker,
                        distributor: WorkDistributor) -> ProgressEvent:
        return ProgressEvent(
            completed=session.completed_numbers,
            total=session.total_numbers,
            successful=session.successful_checks,
            failed=session.failed_checks,
            rate_limited=limiter.limit_hits,
            current_number=distributor.in_flight_number(),
            current_result=result,
            rate_limit=limiter.latest,
        )

    def _finish(self, session: Session, manager: ThreadingManager):
        remaining = session.remaining_records()
        if not remaining:
            if session.status == "pending":
                session.transition("running")
            session.transition("completed")
            session.end_time = time.time()
            logger.info(f"Session {session.id} completed: {session.successful_checks} active "
                        f"of {session.total_numbers}")
        elif manager.abort_reason:
            self._mark_cancelled(session, manager.abort_reason)
        elif manager.is_stopped():
            self._mark_cancelled(session)
        else:
            self._mark_cancelled(session, f"{len(remaining)} numbers left unresolved")
        self._persist(session)

    @staticmethod
    def _mark_cancelled(session: Session, reason: Optional[str] = None):
        session.transition("cancelled")
        now = time.time()
        session.paused_at = now
        session.end_time = now
        session.error_message = reason
        logger.info(f"Session {session.id} cancelled after {session.completed_numbers} of "
                    f"{session.total_numbers}" + (f": {reason}" if reason else ""))

    def _persist(self, session: Session):
        if self.store is not None:
            self.store.update(session)

    def _ensure_not_running(self, session_id: str):
        if self.is_running(session_id):
            raise InvalidTransitionError("running", "running")

    def _register(self, session_id: str, manager: ThreadingManager):
        with self._lock:
            if session_id in self._active:
                raise InvalidTransitionError("running", "running")
            self._active[session_id] = manager

    def _unregister(self, session_id: str):
        with self._lock:
            self._active.pop(session_id, None)

    @staticmethod
    def _consume(events: Iterator[Event], progress_callback: Optional[Callable[[ProgressEvent], None]]) -> Session:
        final: Optional[Session] = None
        for event in events:
            if isinstance(event, CompletionEvent):
                final = event.session
            elif progress_callback is not None:
                progress_callback(event)
        return final
