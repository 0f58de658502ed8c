"""Counter store interface.

The limiter depends on this abstraction so the shared (Redis) and in-process
implementations, or a failover chain of both, can be swapped at construction.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from ..decision import StoreResult


class CounterStore(ABC):
    """Records one request for a key and reports whether it fits the limit."""

    #: Label used in logs, metrics and ``Decision.backend``.
    name: str = "abstract"

    @abstractmethod
    async def record_and_check(
        self, key: str, window_ms: int, limit: int, now_ms: int
    ) -> StoreResult:
        """Record a request at ``now_ms`` and decide it.

        Must be atomic per key: two concurrent calls at the limit boundary
        never both come back allowed.

        Raises:
            BackingStoreFault: when the store cannot answer reliably.
        """
        raise NotImplementedError

    async def close(self) -> None:
        """Release any connections held by the store."""
        return None
