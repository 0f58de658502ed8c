"""Request rate limiting with a shared Redis store and in-process fallback.

Wired as ASGI middleware (``rivohome.middleware.rate_limiter_asgi``) and, for
per-route or per-account throttles, as FastAPI dependencies.
"""

from .decision import Decision
from .dependency import account_rate_limit, rate_limit
from .limiter import RateLimiter, get_rate_limiter

__all__ = [
    "Decision",
    "RateLimiter",
    "account_rate_limit",
    "get_rate_limiter",
    "rate_limit",
]
