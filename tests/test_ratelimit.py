from types import SimpleNamespace

import pytest

from enrollment_portal.errors import ErrorKind
from enrollment_portal.ratelimit import AttemptLimiter, RateLimitExceeded, client_key


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_window_fills_then_resets():
    clock = FakeClock()
    limiter = AttemptLimiter(max_attempts=2, window_seconds=60, clock=clock)

    limiter.hit("a")
    limiter.hit("a")
    with pytest.raises(RateLimitExceeded) as e:
        limiter.hit("a")
    assert e.value.kind is ErrorKind.RATE_LIMITED
    assert e.value.retry_after_seconds == 61

    # Other clients are unaffected.
    limiter.hit("b")

    clock.now += 60
    limiter.hit("a")


def test_reset_clears_a_client():
    limiter = AttemptLimiter(max_attempts=1, window_seconds=60, clock=FakeClock())
    limiter.hit("a")
    limiter.reset("a")
    limiter.hit("a")


def test_client_key_ignores_forwarded_for_unless_trusted():
    req = SimpleNamespace(
        client=SimpleNamespace(host="10.0.0.1"),
        headers={"x-forwarded-for": "203.0.113.9, 10.0.0.1", "user-agent": "curl/8"},
    )
    assert client_key(req) == "10.0.0.1|curl/8"
    assert client_key(req, trust_forwarded=True) == "203.0.113.9|curl/8"
    assert client_key(SimpleNamespace(client=None, headers={})) == "unknown|"
    assert client_key(SimpleNamespace(client=None, headers={}), trust_forwarded=True) == "unknown|"
