import pytest

from rivohome.ratelimit.decision import StoreResult, build_decision, fail_open_decision


def _decide(result, now_ms=0, window_ms=60_000, limit=5):
    return build_decision(
        result, limit=limit, window_ms=window_ms, now_ms=now_ms, policy="p", backend="memory"
    )


def test_allowed_decision_has_no_retry_after():
    decision = _decide(StoreResult(allowed=True, current=2, reset_ms=60_000))

    assert decision.allowed is True
    assert decision.remaining == 3
    assert decision.retry_after_s == 0
    assert decision.policy == "p"
    assert decision.backend == "memory"


def test_denied_decision_rounds_retry_after_up():
    decision = _decide(StoreResult(allowed=False, current=6, reset_ms=1_500), now_ms=1_000)

    assert decision.remaining == 0
    assert decision.retry_after_s == 1


def test_denied_decision_retry_after_at_least_one():
    decision = _decide(StoreResult(allowed=False, current=5, reset_ms=1_000), now_ms=1_000)
    assert decision.retry_after_s == 1


@pytest.mark.parametrize("reset_ms,expected", [(-5, 10_000), (999_999, 70_000), (40_000, 40_000)])
def test_reset_clamped_into_window(reset_ms, expected):
    decision = _decide(StoreResult(allowed=True, current=1, reset_ms=reset_ms), now_ms=10_000)

    assert decision.reset_ms == expected
    assert 10_000 <= decision.reset_ms <= 10_000 + 60_000


def test_reset_formats():
    decision = _decide(StoreResult(allowed=True, current=1, reset_ms=1_700_000_000_123), now_ms=1_700_000_000_000)

    assert decision.reset_epoch_s == 1_700_000_001
    assert decision.reset_iso == "2023-11-14T22:13:20.123Z"


def test_fail_open_decision():
    decision = fail_open_decision(limit=10, window_ms=1000, now_ms=5, policy="auth")

    assert decision.allowed is True
    assert decision.remaining == 10
    assert decision.reset_ms == 1005
    assert decision.backend == "fail_open"
