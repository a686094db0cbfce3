from __future__ import annotations

import time
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")


class TTLCache(Generic[T]):
    """Single-value read cache with a bounded time-to-live.

    Owned by one ``ContactStore``; two stores never share cached state.
    """

    def __init__(self, ttl_seconds: float = 30.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._value: Optional[T] = None
        self._stored_at: Optional[float] = None

    def is_fresh(self) -> bool:
        if self._stored_at is None:
            return False
        return self._clock() - self._stored_at < self.ttl_seconds

    def get(self) -> Optional[T]:
        if not self.is_fresh():
            return None
        return self._value

    def set(self, value: T) -> None:
        self._value = value
        self._stored_at = self._clock()

    def invalidate(self) -> None:
        self._value = None
        self._stored_at = None


__all__ = ["TTLCache"]
