from __future__ import annotations

import pytest

from triage_bot.errors import TrackerError, TransientError
from triage_bot.orchestration.resilience import ResilientCaller, RetryPolicy, TokenBucket


class FakeTime:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def clock(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def test_token_bucket_allows_burst_then_waits() -> None:
    fake = FakeTime()
    bucket = TokenBucket(rate_per_s=2.0, capacity=2, clock=fake.clock, sleep=fake.sleep)

    assert bucket.acquire() == 0.0
    assert bucket.acquire() == 0.0
    assert not bucket.try_acquire()
    assert bucket.acquire() == pytest.approx(0.5)
    assert fake.sleeps == [pytest.approx(0.5)]


def test_token_bucket_refills_up_to_capacity() -> None:
    fake = FakeTime()
    bucket = TokenBucket(rate_per_s=1.0, capacity=3, clock=fake.clock, sleep=fake.sleep)
    for _ in range(3):
        assert bucket.try_acquire()
    fake.now += 100.0
    assert [bucket.try_acquire() for _ in range(4)] == [True, True, True, False]


def test_token_bucket_rejects_bad_arguments() -> None:
    with pytest.raises(ValueError):
        TokenBucket(rate_per_s=0, capacity=1)
    with pytest.raises(ValueError):
        TokenBucket(rate_per_s=1, capacity=0)


def test_retry_policy_backoff_is_capped_and_honours_retry_after() -> None:
    policy = RetryPolicy(max_attempts=5, base_delay_s=1.0, max_delay_s=10.0)
    assert [policy.delay_for(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 8.0, 10.0]
    assert policy.delay_for(1, retry_after_s=7.0) == 7.0
    assert policy.delay_for(1, retry_after_s=60.0) == 10.0


def test_caller_retries_transient_errors_then_succeeds() -> None:
    fake = FakeTime()
    attempts: list[int] = []

    def flaky(value: int) -> int:
        attempts.append(value)
        if len(attempts) < 3:
            raise TransientError("try again", reason_code="github_502")
        return value * 2

    caller = ResilientCaller(policy=RetryPolicy(max_attempts=3, base_delay_s=1.0), sleep=fake.sleep)

    assert caller.call("flaky", flaky, 21) == 42
    assert len(attempts) == 3
    assert fake.sleeps == [1.0, 2.0]


def test_caller_gives_up_after_max_attempts() -> None:
    fake = FakeTime()
    calls: list[str] = []

    def always_down() -> None:
        calls.append("x")
        raise TransientError("down", reason_code="timeout", retry_after_s=5.0)

    caller = ResilientCaller(policy=RetryPolicy(max_attempts=2, base_delay_s=1.0), sleep=fake.sleep)
    with pytest.raises(TransientError):
        caller.call("always_down", always_down)
    assert len(calls) == 2
    assert fake.sleeps == [5.0]


def test_caller_does_not_retry_permanent_errors() -> None:
    fake = FakeTime()
    calls: list[str] = []

    def forbidden() -> None:
        calls.append("x")
        raise TrackerError("nope", status_code=403)

    caller = ResilientCaller(sleep=fake.sleep)
    with pytest.raises(TrackerError):
        caller.call("forbidden", forbidden)
    assert calls == ["x"]
    assert fake.sleeps == []


def test_caller_takes_a_token_per_attempt() -> None:
    fake = FakeTime()
    bucket = TokenBucket(rate_per_s=1.0, capacity=1, clock=fake.clock, sleep=fake.sleep)
    caller = ResilientCaller(limiter=bucket, sleep=fake.sleep)

    caller.call("one", lambda: None)
    caller.call("two", lambda: None)

    assert fake.sleeps == [pytest.approx(1.0)]


def test_caller_without_limiter_keeps_the_retry_policy() -> None:
    fake = FakeTime()
    bucket = TokenBucket(rate_per_s=1.0, capacity=1, clock=fake.clock, sleep=fake.sleep)
    policy = RetryPolicy(max_attempts=4, base_delay_s=0.5)
    local = ResilientCaller(limiter=bucket, policy=policy, sleep=fake.sleep).without_limiter()

    local.call("one", lambda: None)
    local.call("two", lambda: None)

    assert local.limiter is None
    assert local.policy == policy
    assert fake.sleeps == []
