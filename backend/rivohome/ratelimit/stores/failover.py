from __future__ import annotations

import logging

from ..decision import StoreResult
from ..errors import BackingStoreFault
from ..metrics import rl_backend_faults
from .base import CounterStore

logger = logging.getLogger(__name__)


class FailoverCounterStore(CounterStore):
    """Shared store first; in-process counters for any check it cannot answer.

    A fault is not retried. The failing check falls through to the fallback
    immediately and the next check tries the primary again.
    """

    def __init__(self, primary: CounterStore, fallback: CounterStore) -> None:
        self.primary = primary
        self.fallback = fallback
        self.name = f"{primary.name}+{fallback.name}"

    async def record_and_check(
        self, key: str, window_ms: int, limit: int, now_ms: int
    ) -> StoreResult:
        try:
            return await self.primary.record_and_check(key, window_ms, limit, now_ms)
        except BackingStoreFault as exc:
            logger.warning(
                "Rate limit store %s unavailable, using %s for this check: %s",
                exc.backend,
                self.fallback.name,
                exc.message,
                extra={"backend": exc.backend, "code": exc.code, "fault_details": exc.details},
            )
            try:
                rl_backend_faults.labels(backend=exc.backend).inc()
            except Exception:
                logger.debug("Non-fatal error ignored", exc_info=True)
        return await self.fallback.record_and_check(key, window_ms, limit, now_ms)

    async def close(self) -> None:
        await self.primary.close()
        await self.fallback.close()
