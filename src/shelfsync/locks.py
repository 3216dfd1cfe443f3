"""Per-book locks so read-merge-write cycles of one book never interleave."""
from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class BookLocks:
    """Hands out one re-entrant lock per book hash."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}

    def lock_for(self, book_hash: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(book_hash)
            if lock is None:
                lock = threading.RLock()
                self._locks[book_hash] = lock
            return lock

    @contextmanager
    def hold(self, book_hash: str) -> Iterator[None]:
        lock = self.lock_for(book_hash)
        with lock:
            yield
