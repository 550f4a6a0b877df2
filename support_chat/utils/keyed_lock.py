"""
Per-key mutual exclusion within one process.

Holders of the same key run one at a time; different keys never share a lock.
Entries are dropped once no thread holds or waits on them.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator, Optional


class LockTimeout(Exception):
    """Raised when a key could not be acquired within the timeout."""


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class KeyedLock:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: Dict[Hashable, _Entry] = {}

    def _checkout(self, key: Hashable) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = _Entry()
                self._entries[key] = entry
            entry.users += 1
            return entry

    def _release(self, key: Hashable, entry: _Entry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                self._entries.pop(key, None)

    @contextmanager
    def hold(self, key: Hashable, timeout: Optional[float] = None) -> Iterator[None]:
        """Hold the lock for ``key``; raise LockTimeout if it is not acquired in time."""
        entry = self._checkout(key)
        acquired = entry.lock.acquire(timeout=-1 if timeout is None else timeout)
        if not acquired:
            self._release(key, entry)
            raise LockTimeout(f"Timed out waiting for lock on {key!r}")
        try:
            yield
        finally:
            entry.lock.release()
            self._release(key, entry)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)
