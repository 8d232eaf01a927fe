"""Key/value store abstraction for rate-limit and lockout state.

The limiter and brute-force guard only talk to `KeyValueStore`; the default
`InMemoryKeyValueStore` keeps state per process. A deployment running several
workers swaps in a shared implementation of the same four methods.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
import threading
import time
from typing import Any, Callable, Dict, Optional

Clock = Callable[[], float]


class KeyValueStore(ABC):
    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Return the stored value, or None when absent or expired."""
        raise NotImplementedError

    @abstractmethod
    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete(self, key: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def expire(self, key: str, ttl_seconds: float) -> bool:
        """(Re)set the time-to-live of an existing key; False when absent."""
        raise NotImplementedError


@dataclass
class _Entry:
    value: Any
    expires_at: Optional[float]


class InMemoryKeyValueStore(KeyValueStore):
    """Thread-safe dict store; expired entries are dropped lazily on read."""

    def __init__(self, clock: Clock = time.time):
        self._clock = clock
        self._data: Dict[str, _Entry] = {}
        self._lock = threading.Lock()

    def _live(self, key: str) -> Optional[_Entry]:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self._clock():
            del self._data[key]
            return None
        return entry

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._live(key)
            return entry.value if entry else None

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        expires_at = None if ttl_seconds is None else self._clock() + ttl_seconds
        with self._lock:
            self._data[key] = _Entry(value, expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def expire(self, key: str, ttl_seconds: float) -> bool:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return False
            entry.expires_at = self._clock() + ttl_seconds
            return True

    def clear(self) -> None:
        with self._lock:
            self._data.clear()
