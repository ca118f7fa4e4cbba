"""
Per-Lead Lock Registry

Single writer per lead: every mutating engine operation for a lead runs while
holding that lead's lock. Different leads never contend.
"""

import threading
from contextlib import contextmanager


class LeadLockRegistry:
    """Hands out one reentrant lock per lead id."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def lock_for(self, lead_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(lead_id)
            if lock is None:
                lock = self._locks[lead_id] = threading.RLock()
            return lock

    @contextmanager
    def hold(self, lead_id: str):
        """Reentrant, so an approval can cascade into recomputation on the same lead."""
        lock = self.lock_for(lead_id)
        with lock:
            yield
