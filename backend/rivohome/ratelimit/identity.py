from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Mapping, Optional

from starlette.types import Scope

if TYPE_CHECKING:
    from starlette.requests import Request

    from .config import RateLimitPolicy

UNKNOWN_CLIENT = "unknown"


@dataclass(frozen=True)
class RateLimitRequest:
    """The slice of an inbound request the limiter looks at.

    Header names are stored lower-cased.
    """

    method: str
    path: str
    headers: Mapping[str, str] = field(default_factory=dict)
    client_host: Optional[str] = None
    subject_id: Optional[str] = None
    action: Optional[str] = None

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())

    @property
    def content_type(self) -> Optional[str]:
        return self.header("content-type")

    @property
    def authenticated(self) -> bool:
        return bool(self.header("authorization"))

    @classmethod
    def from_scope(cls, scope: Scope) -> "RateLimitRequest":
        headers: dict[str, str] = {}
        for key, value in scope.get("headers") or []:
            name = key.decode("latin-1").lower()
            # First occurrence wins, matching how proxies prepend
            headers.setdefault(name, value.decode("latin-1"))
        client_info = scope.get("client")
        host = None
        if isinstance(client_info, (tuple, list)) and client_info:
            if isinstance(client_info[0], str) and client_info[0]:
                host = client_info[0]
        return cls(
            method=str(scope.get("method", "GET")).upper(),
            path=str(scope.get("path", "/")),
            headers=headers,
            client_host=host,
        )

    @classmethod
    def from_request(
        cls, request: "Request", *, action: Optional[str] = None
    ) -> "RateLimitRequest":
        base = cls.from_scope(request.scope)
        return cls(
            method=base.method,
            path=base.path,
            headers=base.headers,
            client_host=base.client_host,
            subject_id=resolve_subject(request),
            action=action,
        )


def resolve_subject(req: Any) -> Optional[str]:
    """
    Precedence:
    1) request.state.user.id
    2) request.state.user_id
    """
    try:
        user = getattr(req.state, "user", None)
        user_id = getattr(user, "id", None) if user is not None else None
        if not user_id:
            user_id = getattr(req.state, "user_id", None)
    except Exception:
        return None
    return str(user_id) if user_id else None


def client_ip(request: RateLimitRequest) -> str:
    """
    Precedence:
    1) first entry of X-Forwarded-For
    2) X-Real-IP
    3) Remote-Address header, then the socket peer
    4) "unknown" (every unidentifiable client shares one bucket)
    """
    forwarded = request.header("x-forwarded-for")
    if forwarded:
        candidate = forwarded.split(",")[0].strip()
        if candidate:
            return candidate
    for name in ("x-real-ip", "remote-address"):
        value = (request.header(name) or "").strip()
        if value:
            return value
    if request.client_host:
        return request.client_host
    return UNKNOWN_CLIENT


def identity_token(request: RateLimitRequest, policy: "RateLimitPolicy") -> str:
    if policy.key_strategy is not None:
        return policy.key_strategy(request, policy)
    ip = client_ip(request)
    if request.action:
        return f"{ip}:{request.action}"
    return ip


def account_key(request: RateLimitRequest, policy: "RateLimitPolicy") -> str:
    """Key on the account, not the address, so one account cannot be brute-forced from many IPs."""
    action = request.action or "default"
    if request.subject_id:
        return f"user:{request.subject_id}:{action}"
    return f"{client_ip(request)}:{action}"


def build_key(request: RateLimitRequest, policy: "RateLimitPolicy", namespace: str = "") -> str:
    key = f"{policy.name}:{identity_token(request, policy)}"
    if namespace:
        return f"{namespace}:{key}"
    return key
