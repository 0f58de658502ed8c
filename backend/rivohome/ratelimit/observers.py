"""Observers notified synchronously after every decision.

Observers see a decision that is already final. Whatever they raise is
swallowed by ``notify_observers``.
"""

from __future__ import annotations

from datetime import datetime, timezone
import hashlib
import logging
import math
from typing import Iterable, Optional, Protocol

from .decision import Decision
from .identity import RateLimitRequest
from .metrics import rl_decisions, rl_retry_after

logger = logging.getLogger(__name__)


class DecisionObserver(Protocol):
    def on_decision(self, request: RateLimitRequest, key: str, decision: Decision) -> None:
        ...


def hash_key(key: str) -> str:
    """Hash a counter key for logging without exposing the client identity."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


class ViolationLogger:
    """Structured log records for denials and near-limit grants."""

    def __init__(
        self, near_limit_ratio: float = 0.1, log: Optional[logging.Logger] = None
    ) -> None:
        self.near_limit_ratio = near_limit_ratio
        self._log = log or logging.getLogger("rivohome.ratelimit.violations")

    def near_limit_threshold(self, limit: int) -> int:
        return math.ceil(limit * self.near_limit_ratio)

    def on_decision(self, request: RateLimitRequest, key: str, decision: Decision) -> None:
        if not decision.allowed:
            self._log.warning(
                "rate_limit.exceeded",
                extra={
                    "key_hash": hash_key(key),
                    "policy": decision.policy,
                    "limit": decision.limit,
                    "current": decision.current,
                    "reset_time": decision.reset_iso,
                    "retry_after_s": decision.retry_after_s,
                    "backend": decision.backend,
                    "method": request.method,
                    "path": request.path,
                    "user_agent": (request.header("user-agent") or "unknown")[:64],
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                },
            )
            return

        if decision.remaining <= self.near_limit_threshold(decision.limit):
            self._log.info(
                "rate_limit.approaching",
                extra={
                    "key_hash": hash_key(key),
                    "policy": decision.policy,
                    "limit": decision.limit,
                    "remaining": decision.remaining,
                    "reset_time": decision.reset_iso,
                },
            )


class MetricsObserver:
    def on_decision(self, request: RateLimitRequest, key: str, decision: Decision) -> None:
        action = "allow" if decision.allowed else "block"
        rl_decisions.labels(policy=decision.policy, action=action, backend=decision.backend).inc()
        if not decision.allowed:
            rl_retry_after.labels(policy=decision.policy).observe(decision.retry_after_s)


def notify_observers(
    observers: Iterable[DecisionObserver],
    request: RateLimitRequest,
    key: str,
    decision: Decision,
) -> None:
    for observer in observers:
        try:
            observer.on_decision(request, key, decision)
        except Exception:
            # Observability must never block the request path
            logger.debug("Non-fatal error ignored", exc_info=True)
