"""Per-(item, location) locks serializing stock operations within a process.

Ledger adjustments, reservation creation and settlements on the same key must
not interleave. Each key gets its own re-entrant lock; multi-key callers
acquire in sorted order so two settlements over overlapping carts cannot
deadlock. The database adds its own guards (conditional UPDATE, CHECK
constraint, row locks on PostgreSQL) for multi-process deployments.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, Tuple

StockKey = Tuple[int, int]  # (item_id, location_id)


class KeyedLockRegistry:
    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[StockKey, threading.RLock] = {}

    def _lock_for(self, key: StockKey) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, keys: Iterable[StockKey]) -> Iterator[None]:
        """Hold the locks for all ``keys`` for the duration of the block."""
        ordered = sorted(set(keys))
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


# Process-wide registry shared by all services
stock_locks = KeyedLockRegistry()
