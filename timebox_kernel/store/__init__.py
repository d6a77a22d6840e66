"""
timebox_kernel.store -- the persisted key-value store collaborator.

The only state that survives an invocation boundary lives here.  Values are
serialized strings; the scheduler owns the key layout.
"""

from timebox_kernel.store.base import KeyValueStore
from timebox_kernel.store.memory import InMemoryKeyValueStore
from timebox_kernel.store.sql import SqlKeyValueStore

__all__ = [
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "SqlKeyValueStore",
]
