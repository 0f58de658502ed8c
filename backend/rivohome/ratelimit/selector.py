"""Pick the counter store chain once per process.

Hosts that can reach the shared store get Redis with an in-process fallback.
Hosts that cannot (no URL configured, or edge sandboxes without outbound
state access) get the in-process store alone.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .stores import (
    CounterStore,
    FailoverCounterStore,
    RedisSlidingLogStore,
    get_process_memory_store,
)

if TYPE_CHECKING:
    from rivohome.core.config import Settings

logger = logging.getLogger(__name__)


def select_counter_store(settings: "Settings") -> CounterStore:
    local = get_process_memory_store(
        max_entries=settings.rate_limit_memory_max_entries,
        evict_batch=settings.rate_limit_memory_evict_batch,
    )

    if settings.rate_limit_runtime == "edge":
        logger.info("[RATE_LIMIT] edge runtime: using in-process fixed-window counters only")
        return local
    if not settings.rate_limit_remote_configured:
        logger.warning(
            "[RATE_LIMIT] RATE_LIMIT_REDIS_URL not set: using in-process counters only; "
            "limits are enforced per instance"
        )
        return local

    remote = RedisSlidingLogStore(
        mode=settings.rate_limit_redis_mode,
        timeout_s=settings.rate_limit_redis_timeout_s,
    )
    logger.info(
        "[RATE_LIMIT] using shared sliding-log counters (%s mode) with in-process fallback",
        remote.mode,
    )
    return FailoverCounterStore(remote, local)
