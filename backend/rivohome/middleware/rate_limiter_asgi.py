"""
Pure ASGI Rate Limiter Middleware

Every HTTP request is classified, counted and either forwarded with
X-RateLimit-* headers or answered with a 429 before any route code runs.
"""

import logging
from typing import Iterable, Optional

from starlette.datastructures import MutableHeaders
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from ..core import config as core_config
from ..core.request_context import reset_request_id, set_request_id
from ..ratelimit.headers import denial_body, denial_message, rate_limit_headers
from ..ratelimit.identity import RateLimitRequest
from ..ratelimit.limiter import RateLimiter, get_rate_limiter

logger = logging.getLogger(__name__)

BYPASS_HEADER = "x-rate-limit-bypass"
REQUEST_ID_HEADER = "x-request-id"


class RateLimitMiddlewareASGI:
    """
    Pure ASGI middleware for rate limiting.

    The limiter is consulted exactly once per request. A request that is not
    denied is forwarded unchanged apart from the injected headers.
    """

    def __init__(
        self,
        app: ASGIApp,
        rate_limiter: Optional[RateLimiter] = None,
        exempt_paths: Optional[Iterable[str]] = None,
        bypass_token: Optional[str] = None,
    ) -> None:
        self.app = app
        self._rate_limiter = rate_limiter
        settings = core_config.settings
        if exempt_paths is None:
            exempt_paths = settings.rate_limit_exempt_paths
        self.exempt_paths = frozenset(exempt_paths)
        # Bypass token for load testing (configured via RATE_LIMIT_BYPASS_TOKEN env var)
        if bypass_token is None:
            bypass_token = settings.rate_limit_bypass_token
        self._bypass_token: str = bypass_token or ""

    @property
    def rate_limiter(self) -> RateLimiter:
        if self._rate_limiter is None:
            self._rate_limiter = get_rate_limiter()
        return self._rate_limiter

    def _has_bypass_token(self, scope: Scope) -> bool:
        """Check if request has valid rate limit bypass token."""
        if not self._bypass_token:
            return False
        headers = scope.get("headers") or []
        for key, value in headers:
            if key.decode("latin-1").lower() == BYPASS_HEADER:
                # Raw bytes: client header values need not be valid UTF-8
                return bool(value == self._bypass_token.encode())
        return False

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """ASGI application entrypoint."""

        # Only handle HTTP requests
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        # Honor global rate limit toggle (disable entirely when false)
        if not core_config.settings.rate_limit_enabled:
            await self.app(scope, receive, send)
            return

        if self._has_bypass_token(scope):
            await self.app(scope, receive, send)
            return

        if scope.get("path", "") in self.exempt_paths:
            await self.app(scope, receive, send)
            return

        request = RateLimitRequest.from_scope(scope)
        token = set_request_id(request.header(REQUEST_ID_HEADER))
        try:
            await self._dispatch(request, scope, receive, send)
        finally:
            reset_request_id(token)

    async def _dispatch(
        self, request: RateLimitRequest, scope: Scope, receive: Receive, send: Send
    ) -> None:
        limiter = self.rate_limiter
        decision = await limiter.check(request)
        headers = rate_limit_headers(decision)

        if not decision.allowed:
            message = denial_message(limiter.registry.get(decision.policy))
            response = JSONResponse(
                status_code=429,
                content=denial_body(decision, message),
                headers=headers,
            )
            await response(scope, receive, send)
            return

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                mutable = MutableHeaders(scope=message)
                for name, value in headers.items():
                    mutable[name] = value
            await send(message)

        await self.app(scope, receive, send_wrapper)
