from typing import Any, Dict, Optional

from fastapi import Response

from .config import RateLimitPolicy
from .decision import Decision


def rate_limit_headers(decision: Decision) -> Dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(max(decision.remaining, 0)),
        "X-RateLimit-Reset": str(decision.reset_epoch_s),
    }
    if not decision.allowed:
        headers["Retry-After"] = str(max(1, int(decision.retry_after_s)))
    if decision.policy:
        headers["X-RateLimit-Policy"] = decision.policy
    return headers


def set_rate_headers(res: Response, decision: Decision) -> None:
    for name, value in rate_limit_headers(decision).items():
        res.headers[name] = value


def denial_message(policy: RateLimitPolicy, action: Optional[str] = None) -> str:
    # Account policy messages name the throttled action
    return policy.message.replace("{action}", action or "request")


def denial_body(decision: Decision, message: str) -> Dict[str, Any]:
    """JSON body of a 429: exactly error, limit, remaining and resetTime."""
    return {
        "error": message,
        "limit": decision.limit,
        "remaining": max(decision.remaining, 0),
        "resetTime": decision.reset_iso,
    }
