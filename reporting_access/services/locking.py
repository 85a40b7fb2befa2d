"""
Keyed in-process locks.

Serializes check-then-insert sequences per logical key (e.g. per delegator)
inside one process.  Cross-process safety comes from the database: row
locks and partial unique indexes.

    with delegator_locks.hold(delegator_id):
        ...validate and insert...
"""

import threading
from contextlib import contextmanager
from typing import Hashable, Iterator


class KeyedLock:
    """A lock per key, created on first use and dropped when unused."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[Hashable, threading.Lock] = {}
        self._waiters: dict[Hashable, int] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._waiters[key] = self._waiters.get(key, 0) + 1
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._waiters[key] -= 1
                if self._waiters[key] == 0:
                    del self._waiters[key]
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


delegator_locks = KeyedLock()
marking_locks = KeyedLock()
grant_locks = KeyedLock()
