"""Per-entity locks for driver and wallet linearizability."""

import threading
from collections.abc import Iterable, Iterator
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field


@dataclass
class _LockEntry:
    lock: threading.RLock = field(default_factory=threading.RLock)
    holders: int = 0


class KeyedLocks:
    """Registry of re-entrant mutexes keyed by entity id.

    Thread-safe: entries are created on first use and dropped once no thread
    holds or waits on them, so the registry does not grow with every driver
    or wallet ever seen.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[str, _LockEntry] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._entries.setdefault(key, _LockEntry())
            entry.holders += 1
        entry.lock.acquire()
        try:
            yield
        finally:
            entry.lock.release()
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._entries[key]

    @contextmanager
    def hold_many(self, keys: Iterable[str]) -> Iterator[None]:
        """Acquire several keys in sorted order to avoid lock-order deadlocks."""
        with ExitStack() as stack:
            for key in sorted(set(keys)):
                stack.enter_context(self.hold(key))
            yield

    def active_keys(self) -> set[str]:
        with self._guard:
            return set(self._entries)
