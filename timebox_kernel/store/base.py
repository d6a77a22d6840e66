"""
KeyValueStore protocol.

Contract:
    String keys map to string values.  Writes are last-writer-wins with no
    multi-key transactions.  ``compare_and_set`` is the single atomic
    primitive; the scheduler's overlap guard depends on it.

Architecture: timebox_kernel/store.  ZERO imports outside the kernel.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class KeyValueStore(Protocol):
    """Persisted string-to-string store shared by every invocation.

    Contract:
        - ``get()`` returns None for an absent key.
        - ``delete()`` on an absent key is a no-op.
        - ``compare_and_set(key, expected, new)`` writes ``new`` only if the
          current value equals ``expected`` (``None`` meaning "absent") and
          reports whether the write happened.  Implementations MUST make this
          atomic against concurrent writers.
        - ``keys(prefix)`` lists keys starting with ``prefix``, sorted.
    """

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...

    def compare_and_set(
        self, key: str, expected: str | None, new: str,
    ) -> bool: ...

    def keys(self, prefix: str = "") -> list[str]: ...
