from __future__ import annotations

from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from rivohome.core import config as core_config

from .headers import denial_body, denial_message, rate_limit_headers, set_rate_headers
from .identity import RateLimitRequest
from .limiter import get_rate_limiter

ACCOUNT_POLICY = "account"


class RateLimitExceeded(HTTPException):
    """429 raised by route dependencies; ``detail`` is the JSON body."""

    def __init__(self, body: dict[str, Any], headers: dict[str, str]) -> None:
        super().__init__(status_code=429, detail=body, headers=headers)


async def _enforce(
    request: Request, response: Response, policy: str, action: Optional[str] = None
) -> None:
    if not core_config.settings.rate_limit_enabled:
        return

    limiter = get_rate_limiter()
    rl_request = RateLimitRequest.from_request(request, action=action)
    decision = await limiter.check_policy(rl_request, policy)
    if decision.allowed:
        set_rate_headers(response, decision)
        return

    message = denial_message(limiter.registry.get(decision.policy), action)
    raise RateLimitExceeded(denial_body(decision, message), rate_limit_headers(decision))


def rate_limit(policy: str):
    # FastAPI dependency to attach on routes
    async def dep(request: Request, response: Response) -> None:
        await _enforce(request, response, policy)

    return dep


def account_rate_limit(action: str):
    """Throttle ``action`` per account (``request.state.user`` or ``user_id``).

    Must run after whatever dependency populates the subject; without one the
    counter falls back to the client address.
    """

    async def dep(request: Request, response: Response) -> None:
        await _enforce(request, response, ACCOUNT_POLICY, action=action)

    return dep


async def _rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.detail, headers=exc.headers)


def install_rate_limit_handler(app: FastAPI) -> None:
    """Render dependency 429s with the same flat body the middleware sends."""
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
