"""Tests for the backoff helper."""

from __future__ import annotations

import pytest

from updatectl.errors import CommandTimeout, ConnectionFailed, UpdateCheckFailed
from updatectl.services.retry import RetryPolicy, is_transient, retry_async
from tests.mock_executor import make_settings


class FakeSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def test_policy_from_settings():
    p = RetryPolicy.from_settings(
        make_settings(retry_max_attempts=5, retry_initial_delay_ms=100, retry_max_delay_ms=300),
    )
    assert p.max_attempts == 5
    assert [p.delay(n) for n in range(1, 5)] == [0.1, 0.2, 0.3, 0.3]


def test_is_transient():
    assert is_transient(CommandTimeout("h", 1))
    assert is_transient(ConnectionFailed("h", "reset"))
    assert not is_transient(ConnectionFailed("h", "odd", transient=False))
    assert not is_transient(UpdateCheckFailed("nope"))


async def test_backoff_doubles():
    sleep = FakeSleep()
    calls = []

    async def fn():
        calls.append(1)
        raise CommandTimeout("h", 1)

    with pytest.raises(CommandTimeout):
        await retry_async(fn, policy=RetryPolicy(max_attempts=4, initial_delay=0.5), sleep=sleep)
    assert len(calls) == 4
    assert sleep.delays == [0.5, 1.0, 2.0]


async def test_success_after_failure():
    sleep = FakeSleep()
    results = iter([ConnectionFailed("h", "reset"), "ok"])

    async def fn():
        item = next(results)
        if isinstance(item, Exception):
            raise item
        return item

    assert await retry_async(fn, policy=RetryPolicy(), sleep=sleep) == "ok"
    assert sleep.delays == [0.1]


async def test_permanent_error_raised_immediately():
    sleep = FakeSleep()

    async def fn():
        raise UpdateCheckFailed("bad output")

    with pytest.raises(UpdateCheckFailed):
        await retry_async(fn, policy=RetryPolicy(), sleep=sleep)
    assert sleep.delays == []
