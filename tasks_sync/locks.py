"""
Per-key exclusion for concurrent item processing.

One KeyedLock lives for one reconciliation pass. Holding keys ("local:<id>",
"remote:<id>") guarantees no two workers touch the same mapping at once
without serializing unrelated items.
"""

import threading
from contextlib import contextmanager
from typing import Iterator, Optional


class KeyedLock:
    """A table of re-entrant locks created on demand, one per key."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def _lock_for(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock

    @contextmanager
    def hold(self, *keys: Optional[str]) -> Iterator[None]:
        """
        Hold every non-empty key for the duration of the block.

        Keys are acquired in sorted order so overlapping key sets cannot
        deadlock.
        """
        ordered = sorted({key for key in keys if key})
        acquired = []
        try:
            for key in ordered:
                lock = self._lock_for(key)
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


def local_key(local_id: Optional[str]) -> Optional[str]:
    return f"local:{local_id}" if local_id else None


def remote_key(remote_item_id: Optional[str]) -> Optional[str]:
    return f"remote:{remote_item_id}" if remote_item_id else None
