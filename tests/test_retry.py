"""Tests for bounded exponential backoff."""

from __future__ import annotations

import random

import pytest

from tests.conftest import UpperBoundRng
from tutorrito.core.config import DeliveryConfig
from tutorrito.core.errors import DeliveryRejected, DependencyUnavailable
from tutorrito.notifications.retry import BackoffPolicy, retry_transient


class Flaky:
    def __init__(self, failures: list[Exception]) -> None:
        self.failures = list(failures)
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return "ok"


class TestBackoffPolicy:
    def test_ceiling_grows_exponentially(self) -> None:
        policy = BackoffPolicy(attempts=4, base_delay=0.5, multiplier=2.0, max_delay=10.0)
        assert [policy.ceiling(i) for i in range(3)] == [0.5, 1.0, 2.0]

    def test_ceiling_capped(self) -> None:
        policy = BackoffPolicy(base_delay=1.0, multiplier=10.0, max_delay=5.0)
        assert policy.ceiling(3) == 5.0

    def test_full_jitter_within_bounds(self) -> None:
        policy = BackoffPolicy()
        rng = random.Random(7)
        for i in range(3):
            assert 0.0 <= policy.delay(i, rng) <= policy.ceiling(i)

    def test_from_config(self) -> None:
        policy = BackoffPolicy.from_config(DeliveryConfig(base_delay_seconds=0.1), attempts=0)
        assert policy.attempts == 1
        assert policy.base_delay == 0.1


class TestRetryTransient:
    async def test_retries_transient_then_succeeds(self, recording_sleep) -> None:
        op = Flaky([DependencyUnavailable("503"), DependencyUnavailable("timeout")])
        result = await retry_transient(
            op, BackoffPolicy(), label="send", sleep=recording_sleep, rng=UpperBoundRng(),
        )
        assert result == "ok"
        assert op.calls == 3
        assert recording_sleep.delays == [0.5, 1.0]

    async def test_gives_up_after_bound(self, recording_sleep) -> None:
        op = Flaky([DependencyUnavailable("503")] * 5)
        with pytest.raises(DependencyUnavailable):
            await retry_transient(op, BackoffPolicy(attempts=3), label="send", sleep=recording_sleep)
        assert op.calls == 3
        assert len(recording_sleep.delays) == 2

    async def test_permanent_failure_not_retried(self, recording_sleep) -> None:
        op = Flaky([DeliveryRejected("422")])
        with pytest.raises(DeliveryRejected):
            await retry_transient(op, BackoffPolicy(), label="send", sleep=recording_sleep)
        assert op.calls == 1
        assert recording_sleep.delays == []

    async def test_on_retry_callback(self, recording_sleep) -> None:
        seen: list[int] = []
        op = Flaky([DependencyUnavailable("503")])
        await retry_transient(
            op, BackoffPolicy(), label="send", sleep=recording_sleep,
            on_retry=lambda n, exc: seen.append(n),
        )
        assert seen == [1]
