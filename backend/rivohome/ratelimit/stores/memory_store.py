"""In-process fixed-window counter store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Approximate: a client can get up to 2x the limit across a window boundary.
- Thread-safe: one lock around the whole read-check-increment-write section.
"""

from __future__ import annotations

from dataclasses import dataclass
import heapq
import logging
import threading
from typing import Dict, Optional

from ..decision import StoreResult
from ..metrics import rl_memory_entries
from .base import CounterStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 1000
DEFAULT_EVICT_BATCH = 200


@dataclass
class _WindowState:
    count: int
    reset_ms: int


class MemoryFixedWindowStore(CounterStore):
    """Fixed-window counters held in a bounded dict.

    Used as the fallback behind the shared store, or alone where invocations
    cannot reach shared state.
    """

    name = "memory"

    def __init__(
        self,
        *,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        evict_batch: int = DEFAULT_EVICT_BATCH,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        if evict_batch < 1:
            raise ValueError("evict_batch must be >= 1")
        self._max_entries = max_entries
        self._evict_batch = evict_batch
        self._lock = threading.Lock()
        self._entries: Dict[str, _WindowState] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    async def record_and_check(
        self, key: str, window_ms: int, limit: int, now_ms: int
    ) -> StoreResult:
        # No await inside: the lock is never held across a suspension point
        return self.record(key, window_ms, limit, now_ms)

    def record(self, key: str, window_ms: int, limit: int, now_ms: int) -> StoreResult:
        with self._lock:
            self._prune_expired(now_ms)
            state = self._entries.get(key)
            if state is None:
                state = _WindowState(count=0, reset_ms=now_ms + window_ms)
                self._entries[key] = state
            elif now_ms > state.reset_ms:
                state.count = 0
                state.reset_ms = now_ms + window_ms

            state.count += 1
            result = StoreResult(
                allowed=state.count <= limit,
                current=state.count,
                reset_ms=state.reset_ms,
                backend=self.name,
            )

            if len(self._entries) > self._max_entries:
                self._evict(keep=key)
            size = len(self._entries)

        rl_memory_entries.set(size)
        return result

    def peek(self, key: str) -> Optional[tuple[int, int]]:
        """Return ``(count, reset_ms)`` for a key without recording anything."""
        with self._lock:
            state = self._entries.get(key)
            return (state.count, state.reset_ms) if state is not None else None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        rl_memory_entries.set(0)

    def _prune_expired(self, now_ms: int) -> None:
        expired = [k for k, state in self._entries.items() if state.reset_ms < now_ms]
        for k in expired:
            del self._entries[k]

    def _evict(self, *, keep: str) -> None:
        candidates = ((state.reset_ms, k) for k, state in self._entries.items() if k != keep)
        victims = heapq.nsmallest(self._evict_batch, candidates)
        for _, k in victims:
            del self._entries[k]
        logger.debug("Evicted %d in-process rate limit entries", len(victims))


_process_store: Optional[MemoryFixedWindowStore] = None
_process_store_lock = threading.Lock()


def get_process_memory_store(
    *,
    max_entries: int = DEFAULT_MAX_ENTRIES,
    evict_batch: int = DEFAULT_EVICT_BATCH,
) -> MemoryFixedWindowStore:
    """Return the process-wide fallback store, creating it on first use.

    The store lives for the rest of the process and is never replaced, so
    every limiter in the process shares one set of local counters.
    """
    global _process_store

    if _process_store is None:
        with _process_store_lock:
            if _process_store is None:
                _process_store = MemoryFixedWindowStore(
                    max_entries=max_entries, evict_batch=evict_batch
                )
    return _process_store
