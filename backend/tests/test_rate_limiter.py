"""
Fixed-window rate limiter tests.
"""
import pytest

from paybridge.exceptions import RateLimitExceededError
from paybridge.services.rate_limiter import FixedWindowRateLimiter, build_rate_limiters


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def test_allows_up_to_limit_then_rejects(clock):
    limiter = FixedWindowRateLimiter("payment", 3, 60, "Too many payment attempts", clock=clock)

    assert [limiter.hit("10.0.0.1") for _ in range(3)] == [2, 1, 0]

    clock.now += 15
    with pytest.raises(RateLimitExceededError) as exc_info:
        limiter.hit("10.0.0.1")

    assert exc_info.value.status_code == 429
    assert exc_info.value.retry_after_seconds == 45
    assert exc_info.value.message == "Too many payment attempts"


def test_window_resets(clock):
    limiter = FixedWindowRateLimiter("auth", 1, 900, "slow down", clock=clock)
    limiter.hit("10.0.0.1")

    clock.now += 900

    assert limiter.hit("10.0.0.1") == 0


def test_keys_are_independent(clock):
    limiter = FixedWindowRateLimiter("general", 1, 60, "slow down", clock=clock)
    limiter.hit("10.0.0.1")

    assert limiter.hit("10.0.0.2") == 0
    with pytest.raises(RateLimitExceededError):
        limiter.hit("10.0.0.1")


def test_reset_clears_counters(clock):
    limiter = FixedWindowRateLimiter("general", 1, 60, "slow down", clock=clock)
    limiter.hit("10.0.0.1")

    limiter.reset()

    assert limiter.hit("10.0.0.1") == 0


def test_built_from_settings(test_settings):
    limiters = build_rate_limiters(test_settings.model_copy(update={"auth_rate_limit_max_requests": 5}))

    assert set(limiters) == {"general", "auth", "payment"}
    assert limiters["auth"].max_requests == 5
    assert limiters["auth"].window_seconds == 900
    assert limiters["payment"].window_seconds == 60
