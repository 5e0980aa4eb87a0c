from __future__ import annotations

from types import SimpleNamespace

import pytest

pytest.importorskip("fastapi")

from fastapi import HTTPException

from app.api.rate_limit import FixedWindowRateLimiter, client_ip


def _request(host: str = "10.0.0.1", forwarded: str = ""):
    headers = {"x-forwarded-for": forwarded} if forwarded else {}
    return SimpleNamespace(headers=headers, client=SimpleNamespace(host=host))


class _Clock:
    def __init__(self, now: float):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_limit_applies_per_client_and_window() -> None:
    clock = _Clock(120.0)
    limiter = FixedWindowRateLimiter(2, 60, clock=clock)

    limiter.check(_request("10.0.0.1"))
    limiter.check(_request("10.0.0.1"))
    limiter.check(_request("10.0.0.2"))
    with pytest.raises(HTTPException) as exc:
        limiter.check(_request("10.0.0.1"))
    assert exc.value.status_code == 429
    assert exc.value.detail["retryAfter"] == 60

    clock.now = 180.0
    limiter.check(_request("10.0.0.1"))


def test_retry_after_counts_down_to_window_end() -> None:
    clock = _Clock(175.5)
    limiter = FixedWindowRateLimiter(1, 60, clock=clock)

    limiter.check(_request())
    with pytest.raises(HTTPException) as exc:
        limiter.check(_request())

    assert exc.value.headers["Retry-After"] == "5"


def test_forwarded_header_takes_precedence() -> None:
    assert client_ip(_request("10.0.0.1", forwarded="203.0.113.7, 10.0.0.1")) == "203.0.113.7"
    assert client_ip(_request("10.0.0.1")) == "10.0.0.1"


def test_zero_limit_disables_checks() -> None:
    limiter = FixedWindowRateLimiter(0, 60)
    for _ in range(100):
        limiter.check(_request())
