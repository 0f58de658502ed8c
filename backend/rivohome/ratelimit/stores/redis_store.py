"""Shared sliding-log counter store on Redis.

Every granted request is a sorted-set member scored by its arrival time, so
the set's cardinality is exactly the number of grants inside the trailing
window. Two modes:

- ``script`` (default): one Lua script does prune, count, conditional add and
  expire atomically. A denial writes nothing.
- ``pipeline``: for servers without scripting. One MULTI/EXEC pipeline adds
  the member unconditionally, then a follow-up ZREM removes it on denial.
  MULTI/EXEC runs each check's ZCARD after every earlier ZADD, so this mode
  never admits more than the limit. Until the ZREM lands, a denied member
  still counts, so a concurrent check can be denied while a slot is free.
  A denial also refreshes the key's EXPIRE.
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Any, Awaitable, Callable, Literal, Sequence
import uuid

from redis.asyncio import Redis as AsyncRedis
from redis.exceptions import RedisError

from ..decision import StoreResult
from ..errors import BackingStoreFault
from ..redis_backend import SLIDING_LOG_LUA, get_redis
from .base import CounterStore

logger = logging.getLogger(__name__)

RedisMode = Literal["script", "pipeline"]


class RedisSlidingLogStore(CounterStore):
    name = "redis"

    def __init__(
        self,
        client_factory: Callable[[], Awaitable[AsyncRedis]] = get_redis,
        *,
        mode: RedisMode = "script",
        timeout_s: float = 0.5,
    ) -> None:
        if mode not in ("script", "pipeline"):
            raise ValueError(f"unknown redis mode: {mode}")
        if timeout_s <= 0:
            raise ValueError("timeout_s must be > 0")
        self._client_factory = client_factory
        self._mode = mode
        self._timeout_s = timeout_s

    @property
    def mode(self) -> str:
        return self._mode

    async def record_and_check(
        self, key: str, window_ms: int, limit: int, now_ms: int
    ) -> StoreResult:
        member = f"{now_ms}-{uuid.uuid4().hex}"
        try:
            return await asyncio.wait_for(
                self._evaluate(key, window_ms, limit, now_ms, member),
                timeout=self._timeout_s,
            )
        except BackingStoreFault:
            raise
        except asyncio.TimeoutError as exc:
            raise BackingStoreFault(
                f"shared store timed out after {self._timeout_s}s",
                backend=self.name,
                details={"mode": self._mode},
            ) from exc
        except (RedisError, OSError, RuntimeError) as exc:
            raise BackingStoreFault(
                f"shared store error: {exc}",
                backend=self.name,
                details={"mode": self._mode, "error_type": type(exc).__name__},
            ) from exc

    async def _evaluate(
        self, key: str, window_ms: int, limit: int, now_ms: int, member: str
    ) -> StoreResult:
        client = await self._client_factory()
        if self._mode == "script":
            return await self._evaluate_script(client, key, window_ms, limit, now_ms, member)
        return await self._evaluate_pipeline(client, key, window_ms, limit, now_ms, member)

    async def _evaluate_script(
        self,
        client: AsyncRedis,
        key: str,
        window_ms: int,
        limit: int,
        now_ms: int,
        member: str,
    ) -> StoreResult:
        script = client.register_script(SLIDING_LOG_LUA)
        res = await script(keys=[key], args=[now_ms, window_ms, limit, member])
        allowed_raw, current_raw, oldest_raw = self._unpack(res, 3)
        oldest_ms = _to_int(oldest_raw)
        return StoreResult(
            allowed=bool(_to_int(allowed_raw)),
            current=_to_int(current_raw),
            reset_ms=oldest_ms + window_ms,
            backend=self.name,
        )

    async def _evaluate_pipeline(
        self,
        client: AsyncRedis,
        key: str,
        window_ms: int,
        limit: int,
        now_ms: int,
        member: str,
    ) -> StoreResult:
        ttl_s = max(1, math.ceil(window_ms / 1000))
        async with client.pipeline(transaction=True) as pipe:
            pipe.zremrangebyscore(key, "-inf", now_ms - window_ms)
            pipe.zcard(key)
            pipe.zadd(key, {member: now_ms})
            pipe.expire(key, ttl_s)
            pipe.zrange(key, 0, 0, withscores=True)
            results = await pipe.execute()

        _, count_raw, _, _, oldest_raw = self._unpack(results, 5)
        before = _to_int(count_raw)
        oldest_ms = now_ms
        if oldest_raw:
            oldest_ms = _to_int(oldest_raw[0][1])

        if before >= limit:
            await self._compensate(client, key, member)
            return StoreResult(
                allowed=False, current=before, reset_ms=oldest_ms + window_ms, backend=self.name
            )
        return StoreResult(
            allowed=True, current=before + 1, reset_ms=oldest_ms + window_ms, backend=self.name
        )

    async def _compensate(self, client: AsyncRedis, key: str, member: str) -> None:
        try:
            await client.zrem(key, member)
        except (RedisError, OSError) as exc:
            # The member expires with the key; the denial itself stands
            logger.debug("Compensating ZREM failed for rate limit key: %s", exc)

    def _unpack(self, res: Any, size: int) -> Sequence[Any]:
        if not isinstance(res, (list, tuple)) or len(res) < size:
            raise BackingStoreFault(
                "malformed reply from shared store",
                backend=self.name,
                details={"mode": self._mode, "reply": repr(res)[:200]},
            )
        return res


def _to_int(value: Any) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError) as exc:
        raise BackingStoreFault(
            "malformed reply from shared store",
            backend=RedisSlidingLogStore.name,
            details={"value": repr(value)[:200]},
        ) from exc
