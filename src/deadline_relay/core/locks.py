# src/deadline_relay/core/locks.py

from __future__ import annotations

import threading
from collections.abc import Hashable, Iterator
from contextlib import contextmanager


class KeyedLocks:
    """
    One lock per key, created on demand and dropped when nobody holds it.

    Used to serialize read-then-write sequences on a single key (a channel id,
    a ledger key) without serializing unrelated keys.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[Hashable, threading.Lock] = {}
        self._users: dict[Hashable, int] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            self._users[key] = self._users.get(key, 0) + 1

        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                left = self._users[key] - 1
                if left <= 0:
                    self._users.pop(key, None)
                    self._locks.pop(key, None)
                else:
                    self._users[key] = left

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
