# examcoach/locks.py
from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator


class IdentityLocks:
    """
    One lock per identity key (phone number, account id).

    Mutations for the same identity run one at a time; different
    identities never wait on each other. Locks are reference counted and
    dropped once nobody holds or waits on them.
    """

    def __init__(self):
        self._global_lock = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}
        self._users: dict[str, int] = {}

    def _acquire_entry(self, key: str) -> threading.Lock:
        with self._global_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            self._users[key] = self._users.get(key, 0) + 1
            return lock

    def _release_entry(self, key: str) -> None:
        with self._global_lock:
            n = self._users.get(key, 0) - 1
            if n <= 0:
                self._users.pop(key, None)
                self._locks.pop(key, None)
            else:
                self._users[key] = n

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self._acquire_entry(key)
        try:
            with lock:
                yield
        finally:
            self._release_entry(key)

    def __len__(self) -> int:
        with self._global_lock:
            return len(self._locks)
