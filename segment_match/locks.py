"""Per-key locking so concurrent requests for different keys never block each other."""

from __future__ import annotations

from contextlib import ExitStack, contextmanager
import threading
from typing import Dict, Hashable, Iterator, Optional, Sequence, Tuple


class KeyedLocks:
    """Hand out one re-entrant lock per key, dropped once no holder remains."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, Tuple[threading.RLock, int]] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            lock, users = self._locks.get(key, (threading.RLock(), 0))
            self._locks[key] = (lock, users + 1)
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                _, users = self._locks[key]
                if users <= 1:
                    del self._locks[key]
                else:
                    self._locks[key] = (lock, users - 1)

    @contextmanager
    def hold_all(self, keys: Sequence[Hashable]) -> Iterator[None]:
        """Hold every key at once, always acquired in sorted order."""

        with ExitStack() as stack:
            for key in sorted(set(keys)):
                stack.enter_context(self.hold(key))
            yield

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class Generations:
    """Change counters for the data cached results are derived from.

    A writer takes a ``snapshot`` before reading its inputs and writes its
    result inside ``unchanged``, which yields ``False`` when any counter moved
    in between. ``bump`` advances counters and holds them while the caller
    evicts, so an eviction and a write of the same key never interleave.
    Keys must be mutually orderable.
    """

    def __init__(self, locks: Optional[KeyedLocks] = None) -> None:
        self._locks = locks or KeyedLocks()
        self._guard = threading.Lock()
        self._counters: Dict[Hashable, int] = {}

    def snapshot(self, keys: Sequence[Hashable]) -> Tuple[int, ...]:
        with self._guard:
            return tuple(self._counters.get(key, 0) for key in keys)

    @contextmanager
    def bump(self, *keys: Hashable) -> Iterator[None]:
        with self._locks.hold_all([("generation", key) for key in keys]):
            with self._guard:
                for key in keys:
                    self._counters[key] = self._counters.get(key, 0) + 1
            yield

    @contextmanager
    def unchanged(self, keys: Sequence[Hashable], seen: Tuple[int, ...]) -> Iterator[bool]:
        with self._locks.hold_all([("generation", key) for key in keys]):
            yield self.snapshot(keys) == tuple(seen)


__all__ = ["Generations", "KeyedLocks"]
