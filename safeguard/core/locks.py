"""Per-key locks so unrelated users never contend on one mutex."""

from __future__ import annotations

import threading
import weakref
from collections.abc import Hashable


class KeyedLocks:
    """Lazily creates one ``threading.Lock`` per key.

    Locks are held weakly: once no caller holds a key's lock it is dropped,
    and the next caller for that key gets a fresh one.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: weakref.WeakValueDictionary[Hashable, threading.Lock] = weakref.WeakValueDictionary()

    def for_key(self, key: Hashable) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock
