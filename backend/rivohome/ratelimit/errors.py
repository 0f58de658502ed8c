"""
Rate limiting exceptions.

None of these cross the RateLimiter boundary: the limiter converts every
fault into a Decision. They exist so stores and configuration loaders can
signal failure precisely to the code that does the converting.
"""

from typing import Any, Dict, Optional


class RateLimitError(Exception):
    """Base exception for all rate limiting errors."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)


class BackingStoreFault(RateLimitError):
    """Raised when the shared counter store cannot produce a reliable answer.

    Covers network and auth errors, timeouts and malformed replies.
    """

    def __init__(
        self,
        message: str,
        backend: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, code="BACKING_STORE_FAULT", details=details)
        self.backend = backend


class PolicyConfigurationError(RateLimitError):
    """Raised at build time for explicit policy configuration that cannot be honoured."""
