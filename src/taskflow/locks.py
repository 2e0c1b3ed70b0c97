from __future__ import annotations

import threading
import weakref


class OwnerLocks:
    """Per-owner mutexes: one owner's graph mutations run one at a time,
    different owners never wait on each other.

    Entries are weak, so an owner's lock is dropped once no writer holds a
    reference to it and the registry only tracks owners with writes in flight.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: weakref.WeakValueDictionary[str, threading.Lock] = (
            weakref.WeakValueDictionary()
        )

    def for_owner(self, owner_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(owner_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[owner_id] = lock
            return lock

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
