from __future__ import annotations

import threading
import time
from contextlib import ExitStack, contextmanager
from typing import Iterable, Iterator, Optional

from docvault.core.errors import CascadeFailed


class Deadline:
    """Caller-supplied time budget for a cascade; ``None`` seconds means unbounded."""

    def __init__(self, seconds: Optional[float]) -> None:
        self._expires_at = None if seconds is None else time.monotonic() + seconds

    @property
    def remaining(self) -> Optional[float]:
        if self._expires_at is None:
            return None
        return max(self._expires_at - time.monotonic(), 0.0)

    def expired(self) -> bool:
        return self._expires_at is not None and time.monotonic() >= self._expires_at

    def check(self, operation: str) -> None:
        if self.expired():
            raise CascadeFailed(f"{operation} exceeded its deadline")


class SubtreeLocks:
    """Process-local locks keyed by department id.

    Structural operations take the lock of every department they touch, in
    sorted order, so overlapping subtrees are rewritten one operation at a time.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def _lock_for(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock

    @contextmanager
    def hold(self, keys: Iterable[Optional[str]], *, deadline: Optional[Deadline] = None) -> Iterator[None]:
        with ExitStack() as stack:
            for key in sorted({key for key in keys if key}):
                lock = self._lock_for(key)
                timeout = None if deadline is None else deadline.remaining
                acquired = lock.acquire() if timeout is None else lock.acquire(timeout=timeout)
                if not acquired:
                    raise CascadeFailed("Timed out waiting for a concurrent structural change", resource_id=key)
                stack.callback(lock.release)
            yield
