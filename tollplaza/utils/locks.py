# tollplaza/utils/locks.py
"""
In-process keyed locks.

Serializes work per key (a plate number, a station id, a detection id)
inside one worker process. Cross-process safety comes from the database
constraints; these locks keep the common single-worker case from ever
hitting them.

A key's lock lives only while someone holds or waits for it, so the map
stays as small as the number of keys in use right now.
"""

import threading
from contextlib import contextmanager
from typing import Hashable


class KeyedLock:
    def __init__(self, name: str):
        self.name = name
        self._guard = threading.Lock()
        self._locks: dict[Hashable, threading.Lock] = {}
        self._users: dict[Hashable, int] = {}

    def _acquire_entry(self, key: Hashable) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            self._users[key] = self._users.get(key, 0) + 1
            return lock

    def _release_entry(self, key: Hashable):
        with self._guard:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self):
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key: Hashable):
        lock = self._acquire_entry(key)
        try:
            with lock:
                yield
        finally:
            self._release_entry(key)
