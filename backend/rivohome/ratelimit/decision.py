from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import math


@dataclass(frozen=True)
class StoreResult:
    """Raw answer from a counter store for one recorded check."""

    allowed: bool
    current: int
    reset_ms: int
    backend: str = ""


@dataclass(frozen=True)
class Decision:
    allowed: bool
    limit: int
    current: int
    remaining: int
    reset_ms: int
    retry_after_s: int = 0
    policy: str = ""
    backend: str = ""

    @property
    def reset_epoch_s(self) -> int:
        return math.ceil(self.reset_ms / 1000)

    @property
    def reset_iso(self) -> str:
        """Reset instant as ISO-8601 UTC with millisecond precision."""
        dt = datetime.fromtimestamp(self.reset_ms / 1000, tz=timezone.utc)
        return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{self.reset_ms % 1000:03d}Z"


def build_decision(
    result: StoreResult,
    *,
    limit: int,
    window_ms: int,
    now_ms: int,
    policy: str,
    backend: str,
) -> Decision:
    # Clamp into [now, now + window] whatever the store reported
    reset_ms = min(max(int(result.reset_ms), now_ms), now_ms + window_ms)
    current = max(0, int(result.current))
    retry_after_s = 0
    if not result.allowed:
        retry_after_s = max(1, math.ceil((reset_ms - now_ms) / 1000))
    return Decision(
        allowed=result.allowed,
        limit=limit,
        current=current,
        remaining=max(0, limit - current),
        reset_ms=reset_ms,
        retry_after_s=retry_after_s,
        policy=policy,
        backend=backend,
    )


def fail_open_decision(*, limit: int, window_ms: int, now_ms: int, policy: str) -> Decision:
    return Decision(
        allowed=True,
        limit=limit,
        current=0,
        remaining=limit,
        reset_ms=now_ms + window_ms,
        retry_after_s=0,
        policy=policy,
        backend="fail_open",
    )
