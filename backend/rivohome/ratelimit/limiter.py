"""Rate limit orchestration: policy, key, store, decision.

``RateLimiter.check`` never raises. Any failure inside it resolves to an
allowing decision plus an error log.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Iterable, Optional, Sequence

from rivohome.core import config as core_config

from .config import DEFAULT_POLICY, POLICIES, PolicyRegistry, RateLimitPolicy, build_policy_registry
from .decision import Decision, build_decision, fail_open_decision
from .identity import RateLimitRequest, build_key
from .metrics import rl_eval_duration, rl_eval_errors
from .observers import DecisionObserver, MetricsObserver, ViolationLogger, notify_observers
from .selector import select_counter_store
from .stores import CounterStore

logger = logging.getLogger(__name__)


class RateLimiter:
    def __init__(
        self,
        store: CounterStore,
        registry: PolicyRegistry,
        *,
        observers: Iterable[DecisionObserver] = (),
        namespace: str = "",
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Args:
            store: Counter store (or failover chain) chosen for this process.
            registry: Route-class policies.
            observers: Notified after every decision, in order.
            namespace: Optional prefix placed before the policy name in keys.
            clock: Time source returning UNIX time in seconds.
        """
        self.store = store
        self.registry = registry
        self.observers: Sequence[DecisionObserver] = tuple(observers)
        self.namespace = namespace
        self._clock = clock

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def check(self, request: RateLimitRequest) -> Decision:
        """Classify the request, record it, and decide."""
        now_ms = self.now_ms()
        policy: Optional[RateLimitPolicy] = None
        try:
            policy = self.registry.resolve(
                request.method,
                request.path,
                request.content_type,
                authenticated=request.authenticated,
            )
            return await self._evaluate(request, policy, now_ms)
        except Exception:
            return self._fail_open(request, policy, now_ms)

    async def check_policy(self, request: RateLimitRequest, policy_name: str) -> Decision:
        """Decide a request against a named policy instead of its route class."""
        now_ms = self.now_ms()
        policy: Optional[RateLimitPolicy] = None
        try:
            policy = self.registry.get(policy_name)
            return await self._evaluate(request, policy, now_ms)
        except Exception:
            return self._fail_open(request, policy, now_ms)

    async def _evaluate(
        self, request: RateLimitRequest, policy: RateLimitPolicy, now_ms: int
    ) -> Decision:
        key = build_key(request, policy, self.namespace)
        started = time.perf_counter()
        result = await self.store.record_and_check(key, policy.window_ms, policy.limit, now_ms)
        decision = build_decision(
            result,
            limit=policy.limit,
            window_ms=policy.window_ms,
            now_ms=now_ms,
            policy=policy.name,
            backend=result.backend or self.store.name,
        )
        try:
            rl_eval_duration.labels(policy=policy.name).observe(time.perf_counter() - started)
        except Exception:
            logger.debug("Non-fatal error ignored", exc_info=True)
        notify_observers(self.observers, request, key, decision)
        return decision

    def _fail_open(
        self, request: RateLimitRequest, policy: Optional[RateLimitPolicy], now_ms: int
    ) -> Decision:
        fallback = policy or POLICIES[DEFAULT_POLICY]
        logger.error(
            "Rate limit evaluation failed; allowing request",
            exc_info=True,
            extra={"policy": fallback.name, "path": request.path},
        )
        try:
            rl_eval_errors.labels(policy=fallback.name).inc()
        except Exception:
            logger.debug("Non-fatal error ignored", exc_info=True)
        return fail_open_decision(
            limit=fallback.limit,
            window_ms=fallback.window_ms,
            now_ms=now_ms,
            policy=fallback.name,
        )

    async def close(self) -> None:
        await self.store.close()


_limiter: Optional[RateLimiter] = None
_limiter_lock = threading.Lock()


def build_rate_limiter(settings: "core_config.Settings") -> RateLimiter:
    return RateLimiter(
        store=select_counter_store(settings),
        registry=build_policy_registry(settings),
        observers=(
            ViolationLogger(near_limit_ratio=settings.rate_limit_near_limit_ratio),
            MetricsObserver(),
        ),
        namespace=settings.rate_limit_namespace,
    )


def get_rate_limiter() -> RateLimiter:
    """Return the process-wide limiter, building it on first use.

    Store selection happens here, once, not per request.
    """
    global _limiter

    if _limiter is None:
        with _limiter_lock:
            if _limiter is None:
                _limiter = build_rate_limiter(core_config.settings)
    return _limiter


def set_rate_limiter(limiter: Optional[RateLimiter]) -> None:
    """Install a prebuilt limiter (tests, custom wiring) or clear the cached one."""
    global _limiter

    with _limiter_lock:
        _limiter = limiter
