"""Async Redis client and server-side script for the shared counter store."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Optional
import weakref

from redis.asyncio import Redis as AsyncRedis

from rivohome.core import config as core_config

logger = logging.getLogger(__name__)

_clients_by_loop: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, AsyncRedis]" = (
    weakref.WeakKeyDictionary()
)
_locks_by_loop: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Lock]" = (
    weakref.WeakKeyDictionary()
)


async def get_redis() -> AsyncRedis:
    """
    Get or create the rate-limit Redis client for the running event loop.

    Raises:
        RuntimeError: when no store is configured or the first ping fails.
    """
    loop = asyncio.get_running_loop()
    existing = _clients_by_loop.get(loop)
    if existing is not None:
        return existing

    lock = _locks_by_loop.get(loop)
    if lock is None:
        lock = asyncio.Lock()
        _locks_by_loop[loop] = lock

    async with lock:
        existing = _clients_by_loop.get(loop)
        if existing is not None:
            return existing

        settings = core_config.settings
        if not settings.rate_limit_redis_url:
            raise RuntimeError("Redis unavailable: RATE_LIMIT_REDIS_URL is not set")
        token = settings.rate_limit_redis_token
        timeout_s = settings.rate_limit_redis_timeout_s
        client = AsyncRedis.from_url(
            settings.rate_limit_redis_url,
            password=token.get_secret_value() if token is not None else None,
            encoding="utf-8",
            decode_responses=True,
            socket_timeout=timeout_s,
            socket_connect_timeout=timeout_s,
        )
        try:
            await client.ping()
        except Exception as exc:
            logger.debug("[RATE_LIMIT] Redis client failed to connect: %s", exc)
            with contextlib.suppress(Exception):
                await client.aclose()
            raise RuntimeError("Redis unavailable") from exc

        _clients_by_loop[loop] = client
        logger.info("[RATE_LIMIT] Async Redis client initialized")
        return client


async def close_rate_limit_redis_client() -> None:
    """Close the client bound to the running loop, if any."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        return
    client: Optional[AsyncRedis] = _clients_by_loop.pop(loop, None)
    if client is None:
        return
    with contextlib.suppress(Exception):
        await client.aclose()
    with contextlib.suppress(Exception):
        await client.connection_pool.disconnect()
    logger.info("[RATE_LIMIT] Async Redis client closed")


# Sliding-log check in one atomic script
# KEYS[1] = sorted set of granted requests, scored by arrival ms
# ARGV[1] = now_ms
# ARGV[2] = window_ms
# ARGV[3] = limit
# ARGV[4] = member to add when granted ("{now_ms}-{nonce}")
# Returns: {allowed, current, oldest_ms}
SLIDING_LOG_LUA = r"""
local key = KEYS[1]
local now_ms = tonumber(ARGV[1])
local window_ms = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])

redis.call('ZREMRANGEBYSCORE', key, '-inf', now_ms - window_ms)
local current = redis.call('ZCARD', key)
local allowed = 0

if current < limit then
  redis.call('ZADD', key, now_ms, ARGV[4])
  redis.call('EXPIRE', key, math.ceil(window_ms / 1000))
  current = current + 1
  allowed = 1
end

-- nothing is written on denial
local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
local oldest_ms = now_ms
if oldest[2] then
  oldest_ms = tonumber(oldest[2])
end
return {allowed, current, oldest_ms}
"""

__all__ = ["get_redis", "close_rate_limit_redis_client", "SLIDING_LOG_LUA"]
