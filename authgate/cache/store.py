"""Key-value store interface used for cross-request shared state.

Values are strings. ``ttl`` is in seconds; ``None`` keeps the key until deleted.
"""
import threading
import time
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple


class KeyValueStore(ABC):
    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def compare_and_set(self, key: str, expected: Optional[str], value: str, ttl: Optional[int] = None) -> bool:
        """Write ``value`` only if the current value equals ``expected`` (``None`` = missing)."""

    @abstractmethod
    def pop(self, key: str) -> Optional[str]:
        """Atomically read and delete."""

    @abstractmethod
    def clear(self) -> None:
        ...


class MemoryStore(KeyValueStore):
    """Process-local store. Correct for a single server instance only."""

    def __init__(self):
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires = entry
        if expires is not None and expires <= time.monotonic():
            del self._data[key]
            return None
        return value

    def _write(self, key: str, value: str, ttl: Optional[int]):
        expires = time.monotonic() + ttl if ttl else None
        self._data[key] = (value, expires)

    def get(self, key):
        with self._lock:
            return self._live(key)

    def set(self, key, value, ttl=None):
        with self._lock:
            self._write(key, value, ttl)

    def delete(self, key):
        with self._lock:
            self._data.pop(key, None)

    def compare_and_set(self, key, expected, value, ttl=None):
        with self._lock:
            if self._live(key) != expected:
                return False
            self._write(key, value, ttl)
            return True

    def pop(self, key):
        with self._lock:
            value = self._live(key)
            self._data.pop(key, None)
            return value

    def clear(self):
        with self._lock:
            self._data.clear()
