#!/usr/bin/env python3
"""
Work Distributor Module
Hands out numbers to lookup workers in input order, each number at most once per run.
"""

import queue
import threading
import logging
from typing import Dict, List, Optional, Tuple

from wa_checker.core.models import PhoneNumberRecord

logger = logging.getLogger(__name__)

WorkItem = Tuple[int, PhoneNumberRecord]


class WorkDistributor:
    """Thread-safe queue of (position, record) pairs for one run."""

    def __init__(self, records: List[PhoneNumberRecord]):
        self.pending: "queue.Queue[WorkItem]" = queue.Queue()
        self.lock = threading.Lock()
        self.total = len(records)
        self.dispatched = 0
        self.resolved = 0
        self.unresolved: List[int] = []
        self.in_flight: Dict[int, str] = {}

        for item in enumerate(records):
            self.pending.put(item)

        logger.debug(f"WorkDistributor queued {self.total} numbers")

    def get_work(self) -> Optional[WorkItem]:
        """Next undispatched number, or None once the queue is drained."""
        try:
            item = self.pending.get_nowait()
        except queue.Empty:
            return None
        idx, record = item
        with self.lock:
            self.dispatched += 1
            self.in_flight[idx] = record.canonical
        return item

    def mark_completed(self, idx: int):
        with self.lock:
            self.in_flight.pop(idx, None)
            self.resolved += 1

    def mark_unresolved(self, idx: int):
        """Number was abandoned mid-lookup; it stays pending for a later resume."""
        with self.lock:
            self.in_flight.pop(idx, None)
            self.unresolved.append(idx)

    def in_flight_number(self) -> Optional[str]:
        """Earliest number (by input position) whose lookup is still running."""
        with self.lock:
            if not self.in_flight:
                return None
            return self.in_flight[min(self.in_flight)]

    def get_progress(self) -> Dict:
        with self.lock:
            return {
                'total': self.total,
                'dispatched': self.dispatched,
                'resolved': self.resolved,
                'unresolved': len(self.unresolved),
                'in_flight': len(self.in_flight),
                'never_dispatched': self.total - self.dispatched,
            }
