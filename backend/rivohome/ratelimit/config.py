"""Route-class policies and the registry that maps requests onto them.

Policies are deployment-time data: the defaults below, optionally adjusted
once through RATE_LIMIT_POLICY_OVERRIDES_JSON when the registry is built.
Nothing on the request path mutates them.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
import json
import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, Mapping, Optional

from .errors import PolicyConfigurationError
from .identity import RateLimitRequest, account_key, client_ip

if TYPE_CHECKING:
    from rivohome.core.config import Settings

logger = logging.getLogger(__name__)

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS

DEFAULT_MESSAGE = "Too many requests, please try again later."

# Receives the request and the policy, returns the identity token that follows
# the policy name in the counter key.
KeyStrategy = Callable[["RateLimitRequest", "RateLimitPolicy"], str]


@dataclass(frozen=True)
class RateLimitPolicy:
    name: str
    window_ms: int
    limit: int
    message: str = DEFAULT_MESSAGE
    key_strategy: Optional[KeyStrategy] = None

    def __post_init__(self) -> None:
        if not self.name:
            raise PolicyConfigurationError("policy name must be non-empty")
        if self.limit < 1:
            raise PolicyConfigurationError(
                f"policy {self.name!r}: limit must be >= 1", details={"limit": self.limit}
            )
        if self.window_ms < 1:
            raise PolicyConfigurationError(
                f"policy {self.name!r}: window_ms must be >= 1",
                details={"window_ms": self.window_ms},
            )

    @property
    def window_s(self) -> int:
        return -(-self.window_ms // 1000)


def _admin_key(request: RateLimitRequest, policy: RateLimitPolicy) -> str:
    # Admin counters are narrowed by user agent as well as address
    user_agent = (request.header("user-agent") or "unknown")[:20]
    return f"{client_ip(request)}:{user_agent}"


POLICIES: Dict[str, RateLimitPolicy] = {
    "auth": RateLimitPolicy(
        name="auth",
        window_ms=15 * MINUTE_MS,
        limit=10,
        message="Too many authentication attempts. Please try again in 15 minutes.",
    ),
    "passwordReset": RateLimitPolicy(
        name="passwordReset",
        window_ms=HOUR_MS,
        limit=3,
        message="Too many password reset requests. Please try again in 1 hour.",
    ),
    "signup": RateLimitPolicy(
        name="signup",
        window_ms=HOUR_MS,
        limit=3,
        message="Too many signup attempts. Please try again in an hour.",
    ),
    "admin": RateLimitPolicy(
        name="admin",
        window_ms=5 * MINUTE_MS,
        limit=10,
        message="Too many admin requests. Please try again in 5 minutes.",
        key_strategy=_admin_key,
    ),
    "api": RateLimitPolicy(
        name="api",
        window_ms=15 * MINUTE_MS,
        limit=100,
        message="Too many API requests. Please try again later.",
    ),
    "fileUpload": RateLimitPolicy(
        name="fileUpload",
        window_ms=HOUR_MS,
        limit=20,
        message="Too many file uploads. Please try again later.",
    ),
    "payment": RateLimitPolicy(
        name="payment",
        window_ms=10 * MINUTE_MS,
        limit=5,
        message="Too many payment attempts. Please try again in 10 minutes.",
    ),
    "general": RateLimitPolicy(
        name="general",
        window_ms=15 * MINUTE_MS,
        limit=1000,
        message="Too many requests. Please try again later.",
    ),
    # Account-scoped brute force protection; keyed by subject and action, not address
    "account": RateLimitPolicy(
        name="account",
        window_ms=30 * MINUTE_MS,
        limit=10,
        message="Too many {action} attempts for this account. Please try again in 30 minutes.",
        key_strategy=account_key,
    ),
}

DEFAULT_POLICY = "general"

# Most specific first. The first matching class wins.
CLASSIFICATION_ORDER = (
    "admin",
    "payment",
    "fileUpload",
    "signup",
    "passwordReset",
    "auth",
    "api",
)


def _is_auth_path(path: str) -> bool:
    return "/auth/" in path or "/sign-in" in path or path.startswith("/api/auth/")


def _is_upload(method: str, path: str, content_type: Optional[str]) -> bool:
    if "/upload" in path:
        return True
    return method == "POST" and "multipart/form-data" in (content_type or "").lower()


_MATCHERS: Dict[str, Callable[[str, str, Optional[str]], bool]] = {
    "admin": lambda m, p, ct: p == "/api/admin" or p.startswith("/api/admin/"),
    "payment": lambda m, p, ct: any(seg in p for seg in ("/stripe/", "/billing/", "/payment/")),
    "fileUpload": _is_upload,
    "signup": lambda m, p, ct: "/sign-up" in p,
    "passwordReset": lambda m, p, ct: _is_auth_path(p) and "reset" in p,
    "auth": lambda m, p, ct: _is_auth_path(p),
    "api": lambda m, p, ct: p.startswith("/api/"),
}


def classify_route(method: str, path: str, content_type: Optional[str] = None) -> str:
    """Return the route class for a request; unmatched routes are ``general``."""
    method = (method or "GET").upper()
    path = path or "/"
    for name in CLASSIFICATION_ORDER:
        if _MATCHERS[name](method, path, content_type):
            return name
    return DEFAULT_POLICY


class PolicyRegistry:
    """Immutable lookup from route class to policy."""

    def __init__(
        self,
        policies: Mapping[str, RateLimitPolicy],
        *,
        default: str = DEFAULT_POLICY,
        authenticated_api_limit: Optional[int] = None,
    ) -> None:
        if default not in policies:
            raise PolicyConfigurationError(f"default policy {default!r} is not defined")
        self._policies = dict(policies)
        self._default = default
        self._authenticated_api: Optional[RateLimitPolicy] = None
        api = self._policies.get("api")
        if api is not None and authenticated_api_limit:
            # Same key as anonymous api traffic: a header only raises the ceiling
            self._authenticated_api = replace(api, limit=authenticated_api_limit)

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self._policies)

    def get(self, name: str) -> RateLimitPolicy:
        policy = self._policies.get(name)
        if policy is None:
            logger.debug("No rate limit policy named %s; using %s", name, self._default)
            return self._policies[self._default]
        return policy

    def resolve(
        self,
        method: str,
        path: str,
        content_type: Optional[str] = None,
        *,
        authenticated: bool = False,
    ) -> RateLimitPolicy:
        name = classify_route(method, path, content_type)
        if name == "api" and authenticated and self._authenticated_api is not None:
            return self._authenticated_api
        return self.get(name)


def load_policy_overrides(raw: str) -> Dict[str, Dict[str, Any]]:
    raw = (raw or "").strip()
    if not raw:
        return {}
    try:
        obj = json.loads(raw)
    except ValueError:
        logger.warning("Ignoring RATE_LIMIT_POLICY_OVERRIDES_JSON: not valid JSON")
        return {}
    if not isinstance(obj, dict):
        logger.warning("Ignoring RATE_LIMIT_POLICY_OVERRIDES_JSON: expected an object")
        return {}
    return {str(k): dict(v) for k, v in obj.items() if isinstance(v, dict)}


def apply_overrides(
    policies: Mapping[str, RateLimitPolicy], overrides: Mapping[str, Mapping[str, Any]]
) -> Dict[str, RateLimitPolicy]:
    merged = dict(policies)
    for name, override in overrides.items():
        base = merged.get(name)
        if base is None:
            logger.warning("Ignoring override for unknown rate limit policy %s", name)
            continue
        changes: Dict[str, Any] = {}
        try:
            if "limit" in override:
                changes["limit"] = int(override["limit"])
            if "window_ms" in override:
                changes["window_ms"] = int(override["window_ms"])
            if "message" in override:
                changes["message"] = str(override["message"])
            merged[name] = replace(base, **changes)
        except (TypeError, ValueError, PolicyConfigurationError) as exc:
            logger.warning("Ignoring invalid override for rate limit policy %s: %s", name, exc)
    return merged


def build_policy_registry(settings: "Settings") -> PolicyRegistry:
    overrides = load_policy_overrides(settings.rate_limit_policy_overrides_json)
    policies = apply_overrides(POLICIES, overrides)
    if overrides:
        logger.info("Applied %d rate limit policy override(s)", len(overrides))
    return PolicyRegistry(
        policies, authenticated_api_limit=settings.rate_limit_api_authenticated_limit
    )
