"""In-process KeyValueStore for tests and single-process hosts."""

from __future__ import annotations

import threading


class InMemoryKeyValueStore:
    """Dict-backed store guarded by a lock.

    Survives for the lifetime of the object only; tests share one instance
    across simulated invocations to model the persisted boundary.
    """

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def compare_and_set(self, key: str, expected: str | None, new: str) -> bool:
        with self._lock:
            if self._data.get(key) != expected:
                return False
            self._data[key] = new
            return True

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock:
            return sorted(k for k in self._data if k.startswith(prefix))

    def snapshot(self) -> dict[str, str]:
        """Copy of the current contents (test inspection)."""
        with self._lock:
            return dict(self._data)

    def __len__(self) -> int:
        return len(self._data)
