#!/usr/bin/env python3
"""
Threading Manager Module
Manages lookup worker threads and cooperative cancellation for a batch run.
"""

import threading
import logging
from typing import Callable, List, Optional

from wa_checker.config import WORKER_JOIN_TIMEOUT

logger = logging.getLogger(__name__)


class ThreadingManager:
    """Manages worker threads and coordination."""

    def __init__(self, max_threads: int = 1):
        self.max_threads = max(1, max_threads)
        self.stop_event = threading.Event()
        self.threads: List[threading.Thread] = []
        self._abort_reason: Optional[str] = None
        self._lock = threading.Lock()

    def start_workers(self, worker_function: Callable, **worker_kwargs) -> None:
        """Start worker threads; each runs worker_function until it runs out of work."""
        for worker_id in range(self.max_threads):
            thread = threading.Thread(
                target=self._worker_wrapper,
                args=(worker_id, worker_function),
                kwargs=worker_kwargs,
                name=f"lookup-worker-{worker_id}",
            )
            thread.daemon = True
            thread.start()
            self.threads.append(thread)

        logger.info(f"Started {len(self.threads)} worker threads")

    def _worker_wrapper(self, worker_id: int, worker_function: Callable, **kwargs):
        """Wrapper for worker function with error handling."""
        try:
            worker_function(worker_id=worker_id, stop_event=self.stop_event, **kwargs)
        except Exception:
            logger.exception(f"Worker {worker_id} encountered an unexpected error")

    def any_alive(self) -> bool:
        return any(t.is_alive() for t in self.threads)

    def join(self, timeout: float = WORKER_JOIN_TIMEOUT):
        for thread in self.threads:
            thread.join(timeout=timeout)

    def stop(self):
        """Signal all threads to stop dispatching new lookups."""
        self.stop_event.set()

    def abort(self, reason: str):
        """Stop dispatch because of a batch-level failure; the first reason wins."""
        with self._lock:
            if self._abort_reason is None:
                self._abort_reason = reason
                logger.warning(f"Aborting batch: {reason}")
        self.stop_event.set()

    @property
    def abort_reason(self) -> Optional[str]:
        with self._lock:
            return self._abort_reason

    def is_stopped(self) -> bool:
        return self.stop_event.is_set()
