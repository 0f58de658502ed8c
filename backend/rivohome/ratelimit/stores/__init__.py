"""Counter store implementations.

The limiter talks to these through ``CounterStore`` so the shared Redis store
and the in-process fallback can be combined or swapped at construction time.
"""

from .base import CounterStore
from .failover import FailoverCounterStore
from .memory_store import MemoryFixedWindowStore, get_process_memory_store
from .redis_store import RedisSlidingLogStore

__all__ = [
    "CounterStore",
    "FailoverCounterStore",
    "MemoryFixedWindowStore",
    "RedisSlidingLogStore",
    "get_process_memory_store",
]
