import logging
from types import SimpleNamespace

import pytest

from rivohome.ratelimit.config import (
    CLASSIFICATION_ORDER,
    DEFAULT_POLICY,
    HOUR_MS,
    MINUTE_MS,
    POLICIES,
    PolicyRegistry,
    RateLimitPolicy,
    apply_overrides,
    build_policy_registry,
    classify_route,
    load_policy_overrides,
)
from rivohome.ratelimit.errors import PolicyConfigurationError


def _settings(**overrides):
    base = dict(rate_limit_policy_overrides_json="", rate_limit_api_authenticated_limit=200)
    base.update(overrides)
    return SimpleNamespace(**base)


def test_default_policy_table():
    expected = {
        "auth": (15 * MINUTE_MS, 10),
        "passwordReset": (HOUR_MS, 3),
        "signup": (HOUR_MS, 3),
        "admin": (5 * MINUTE_MS, 10),
        "api": (15 * MINUTE_MS, 100),
        "fileUpload": (HOUR_MS, 20),
        "payment": (10 * MINUTE_MS, 5),
        "general": (15 * MINUTE_MS, 1000),
        "account": (30 * MINUTE_MS, 10),
    }
    for name, (window_ms, limit) in expected.items():
        policy = POLICIES[name]
        assert policy.name == name
        assert policy.window_ms == window_ms
        assert policy.limit == limit
        assert policy.message


def test_window_s_rounds_up():
    policy = RateLimitPolicy(name="x", window_ms=1500, limit=1)
    assert policy.window_s == 2


@pytest.mark.parametrize(
    "kwargs",
    [
        {"name": "", "window_ms": 1000, "limit": 1},
        {"name": "x", "window_ms": 1000, "limit": 0},
        {"name": "x", "window_ms": 0, "limit": 1},
    ],
)
def test_invalid_policy_rejected(kwargs):
    with pytest.raises(PolicyConfigurationError):
        RateLimitPolicy(**kwargs)


@pytest.mark.parametrize(
    "method,path,content_type,expected",
    [
        ("GET", "/api/admin", None, "admin"),
        ("POST", "/api/admin/stripe/refund", None, "admin"),
        ("POST", "/api/stripe/checkout", None, "payment"),
        ("GET", "/api/billing/invoices", None, "payment"),
        ("POST", "/api/payment/intent", None, "payment"),
        ("POST", "/api/upload/avatar", None, "fileUpload"),
        ("POST", "/api/documents", "multipart/form-data; boundary=x", "fileUpload"),
        ("GET", "/api/documents", "multipart/form-data; boundary=x", "api"),
        ("POST", "/sign-up", None, "signup"),
        ("POST", "/api/auth/reset-password", None, "passwordReset"),
        ("POST", "/auth/reset", None, "passwordReset"),
        ("POST", "/api/auth/login", None, "auth"),
        ("GET", "/sign-in", None, "auth"),
        ("GET", "/api/listings", None, "api"),
        ("GET", "/", None, "general"),
        ("GET", "/listings/42", None, "general"),
    ],
)
def test_classify_route(method, path, content_type, expected):
    assert classify_route(method, path, content_type) == expected


def test_classification_prefers_most_specific_class():
    # Matches payment, upload and api at once
    assert classify_route("POST", "/api/payment/upload") == "payment"
    assert CLASSIFICATION_ORDER[0] == "admin"
    assert CLASSIFICATION_ORDER[-1] == "api"


def test_registry_unknown_policy_falls_back_to_default(caplog):
    registry = PolicyRegistry(POLICIES)
    with caplog.at_level(logging.DEBUG, logger="rivohome.ratelimit.config"):
        policy = registry.get("does-not-exist")
    assert policy.name == DEFAULT_POLICY
    assert any("does-not-exist" in r.getMessage() for r in caplog.records)


def test_registry_requires_default():
    with pytest.raises(PolicyConfigurationError):
        PolicyRegistry({"auth": POLICIES["auth"]})


def test_registry_authenticated_api_gets_higher_limit_only():
    registry = PolicyRegistry(POLICIES, authenticated_api_limit=200)

    anonymous = registry.resolve("GET", "/api/listings")
    authenticated = registry.resolve("GET", "/api/listings", authenticated=True)

    assert anonymous.limit == 100
    assert authenticated.limit == 200
    assert authenticated.name == "api"
    assert authenticated.key_strategy is None
    assert authenticated.window_ms == anonymous.window_ms
    # Authentication only changes api traffic
    assert registry.resolve("POST", "/api/auth/login", authenticated=True).limit == 10


def test_registry_without_authenticated_limit_uses_plain_api():
    registry = PolicyRegistry(POLICIES)
    assert registry.resolve("GET", "/api/listings", authenticated=True) is POLICIES["api"]


def test_load_policy_overrides_parses_objects():
    raw = '{"auth": {"limit": 20}, "bogus": 5}'
    assert load_policy_overrides(raw) == {"auth": {"limit": 20}}
    assert load_policy_overrides("") == {}


@pytest.mark.parametrize("raw", ["not json", "[1, 2]"])
def test_load_policy_overrides_ignores_bad_input(raw, caplog):
    with caplog.at_level(logging.WARNING, logger="rivohome.ratelimit.config"):
        assert load_policy_overrides(raw) == {}
    assert caplog.records


def test_apply_overrides_replaces_fields_and_keeps_originals():
    merged = apply_overrides(
        POLICIES, {"auth": {"limit": "20", "window_ms": 1000, "message": "slow down"}}
    )

    assert merged["auth"].limit == 20
    assert merged["auth"].window_ms == 1000
    assert merged["auth"].message == "slow down"
    assert POLICIES["auth"].limit == 10


def test_apply_overrides_skips_unknown_and_invalid(caplog):
    with caplog.at_level(logging.WARNING, logger="rivohome.ratelimit.config"):
        merged = apply_overrides(
            POLICIES, {"nope": {"limit": 1}, "auth": {"limit": 0}, "api": {"limit": "x"}}
        )

    assert "nope" not in merged
    assert merged["auth"] is POLICIES["auth"]
    assert merged["api"] is POLICIES["api"]
    assert len(caplog.records) == 3


def test_build_policy_registry_applies_settings():
    registry = build_policy_registry(
        _settings(
            rate_limit_policy_overrides_json='{"payment": {"limit": 2}}',
            rate_limit_api_authenticated_limit=500,
        )
    )

    assert registry.get("payment").limit == 2
    assert registry.resolve("GET", "/api/x", authenticated=True).limit == 500
    assert set(POLICIES) == set(registry.names)
