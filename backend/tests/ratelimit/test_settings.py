import pytest
from pydantic import ValidationError

from rivohome.core.config import Settings


def _settings(**kwargs):
    return Settings(_env_file=None, **kwargs)


def test_defaults(monkeypatch):
    for name in ("RATE_LIMIT_REDIS_URL", "RATE_LIMIT_EXEMPT_PATHS", "RATE_LIMIT_RUNTIME"):
        monkeypatch.delenv(name, raising=False)

    settings = _settings()

    assert settings.rate_limit_enabled is True
    assert settings.rate_limit_redis_mode == "script"
    assert settings.rate_limit_runtime == "server"
    assert settings.rate_limit_exempt_paths == ["/health"]
    assert settings.rate_limit_memory_max_entries == 1000
    assert settings.rate_limit_memory_evict_batch == 200
    assert settings.rate_limit_remote_configured is False


def test_exempt_paths_from_comma_separated_env(monkeypatch):
    monkeypatch.setenv("RATE_LIMIT_EXEMPT_PATHS", "/health, /ready,,/metrics")

    assert _settings().rate_limit_exempt_paths == ["/health", "/ready", "/metrics"]


def test_blank_redis_url_means_not_configured(monkeypatch):
    monkeypatch.setenv("RATE_LIMIT_REDIS_URL", "  ")
    assert _settings().rate_limit_redis_url is None

    monkeypatch.setenv("RATE_LIMIT_REDIS_URL", "rediss://cache:6380")
    assert _settings().rate_limit_remote_configured is True


def test_token_is_secret(monkeypatch):
    monkeypatch.setenv("RATE_LIMIT_REDIS_TOKEN", "hunter2")

    settings = _settings()

    assert settings.rate_limit_redis_token.get_secret_value() == "hunter2"
    assert "hunter2" not in repr(settings)


@pytest.mark.parametrize(
    "name,value",
    [
        ("RATE_LIMIT_REDIS_MODE", "lua"),
        ("RATE_LIMIT_RUNTIME", "lambda"),
        ("RATE_LIMIT_REDIS_TIMEOUT_S", "0"),
        ("RATE_LIMIT_NEAR_LIMIT_RATIO", "2"),
    ],
)
def test_invalid_values_rejected(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ValidationError):
        _settings()
