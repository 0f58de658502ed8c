# backend/rivohome/core/config.py
import logging
import os
from pathlib import Path
from typing import Annotated, Literal

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

def is_running_tests() -> bool:
    """
    Detect if code is running under pytest.

    PYTEST_CURRENT_TEST is set automatically by pytest during test runs, and is
    not expected to be present in production environments.
    """
    return os.getenv("PYTEST_CURRENT_TEST") is not None


logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # Goes up to backend/.env
    logger.debug("[CONFIG] Looking for .env at: %s (exists=%s)", env_path, env_path.exists())
    load_dotenv(env_path)


class Settings(BaseSettings):
    is_testing: bool = Field(default=False, description="Set by the test harness")
    log_level: str = Field(default="INFO", description="Root log level for the service")

    # Rate Limiting Configuration
    rate_limit_enabled: bool = Field(
        default=True, description="Enable rate limiting (disable for local debugging)"
    )
    rate_limit_redis_url: str | None = Field(
        default=None,
        description="Shared counter store URL; unset means in-process counters only",
    )
    rate_limit_redis_token: SecretStr | None = Field(
        default=None,
        description="Access token for the shared counter store (sent as the Redis password)",
    )
    rate_limit_redis_mode: Literal["script", "pipeline"] = Field(
        default="script",
        description="script: atomic Lua check; pipeline: MULTI/EXEC with compensating ZREM",
    )
    rate_limit_redis_timeout_s: float = Field(
        default=0.5,
        description="Upper bound for one shared-store round trip before falling back",
        gt=0,
    )
    rate_limit_runtime: Literal["server", "edge"] = Field(
        default="server",
        description="edge: sandboxed invocations without outbound state access use memory only",
    )
    rate_limit_namespace: str = Field(
        default="", description="Optional prefix placed before every counter key"
    )
    rate_limit_bypass_token: str = Field(
        default="", description="Token to bypass rate limiting (for load testing)"
    )
    rate_limit_exempt_paths: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["/health"],
        description="Comma-separated exact paths that are never rate limited",
    )
    rate_limit_memory_max_entries: int = Field(
        default=1000, description="In-process counter map size before eviction", ge=1
    )
    rate_limit_memory_evict_batch: int = Field(
        default=200, description="Entries evicted (soonest reset first) on overflow", ge=1
    )
    rate_limit_near_limit_ratio: float = Field(
        default=0.1,
        description="Allowed checks with remaining <= ceil(limit * ratio) are logged as approaching",
        ge=0,
        le=1,
    )
    rate_limit_api_authenticated_limit: int = Field(
        default=200,
        description="API policy limit for requests carrying an Authorization header",
        ge=1,
    )
    rate_limit_policy_overrides_json: str = Field(
        default="",
        description='JSON object, e.g. {"auth": {"limit": 20, "window_ms": 900000}}',
    )

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("rate_limit_exempt_paths", mode="before")
    @classmethod
    def _parse_exempt_paths(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [token.strip() for token in value.split(",") if token.strip()]
        if isinstance(value, (list, tuple, set)):
            return [str(token).strip() for token in value if str(token).strip()]
        raise ValueError("rate_limit_exempt_paths must be a comma-separated string or list")

    @field_validator("rate_limit_redis_url", mode="before")
    @classmethod
    def _blank_url_is_unset(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def rate_limit_remote_configured(self) -> bool:
        return bool(self.rate_limit_redis_url)


settings = Settings()
