"""Unit tests for RetryPolicy polling and retry behavior."""

import pytest

from delegated_admin.retry_policy import RetryPolicy, exponential_backoff, fixed_backoff

pytestmark = pytest.mark.unit


def _policy(factory, fake_clock, *args, **kwargs) -> RetryPolicy:
    return factory(*args, sleep=fake_clock.sleep, clock=fake_clock, **kwargs)


# ============================================================================
# Construction
# ============================================================================


class TestConstruction:
    def test_requires_attempts_or_timeout(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=None, backoff=fixed_backoff(1))

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0, backoff=fixed_backoff(1))

    def test_exponential_delays_double(self):
        policy = RetryPolicy.exponential(10, max_attempts=6)
        assert list(policy.delays()) == [10, 20, 40, 80, 160]

    def test_exponential_backoff_cap(self):
        backoff = exponential_backoff(1, factor=2, max_delay=5)
        assert [backoff(n) for n in range(1, 6)] == [1, 2, 4, 5, 5]

    def test_with_clock_keeps_schedule(self, fake_clock):
        policy = RetryPolicy.fixed(3, max_attempts=2).with_clock(fake_clock.sleep, fake_clock)
        assert policy.max_attempts == 2
        assert policy.clock is fake_clock


# ============================================================================
# poll()
# ============================================================================


class TestPoll:
    def test_returns_first_satisfying_value(self, fake_clock):
        policy = _policy(RetryPolicy.fixed, fake_clock, 5, timeout=300)
        values = iter(["pending", "pending", "done"])

        result = policy.poll(lambda: next(values), until=lambda v: v == "done")

        assert result.satisfied
        assert result.value == "done"
        assert result.attempts == 3
        assert fake_clock.sleeps == [5, 5]

    def test_timeout_bounds_polling(self, fake_clock):
        policy = _policy(RetryPolicy.fixed, fake_clock, 5, timeout=300)

        result = policy.poll(lambda: "pending", until=lambda v: v == "done")

        assert not result.satisfied
        assert result.value == "pending"
        assert sum(fake_clock.sleeps) == 300
        assert result.attempts == 61

    def test_delay_first_sleeps_before_first_probe(self, fake_clock):
        policy = _policy(RetryPolicy.exponential, fake_clock, 10, max_attempts=6)
        probes = []

        def probe():
            probes.append(fake_clock.now)
            return "present"

        result = policy.poll(probe, until=lambda v: v is None, delay_first=True)

        assert not result.satisfied
        assert result.attempts == 6
        assert fake_clock.sleeps == [10, 20, 40, 80, 160, 320]
        assert probes[0] == 1010.0

    def test_probe_exception_propagates(self, fake_clock):
        policy = _policy(RetryPolicy.fixed, fake_clock, 1, max_attempts=3)

        def probe():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            policy.poll(probe, until=bool)


# ============================================================================
# call()
# ============================================================================


class TestCall:
    def test_retries_until_success(self, fake_clock):
        policy = _policy(RetryPolicy.fixed, fake_clock, 2, max_attempts=3)
        outcomes = iter([OSError("busy"), OSError("busy"), "bound"])

        def func():
            item = next(outcomes)
            if isinstance(item, Exception):
                raise item
            return item

        assert policy.call(func, retry_on=(OSError,)) == "bound"
        assert fake_clock.sleeps == [2, 2]

    def test_reraises_last_error_when_exhausted(self, fake_clock):
        policy = _policy(RetryPolicy.fixed, fake_clock, 2, max_attempts=3)
        calls = []

        def func():
            calls.append(1)
            raise OSError(f"attempt {len(calls)}")

        with pytest.raises(OSError, match="attempt 3"):
            policy.call(func, retry_on=(OSError,))
        assert len(calls) == 3

    def test_other_errors_are_not_retried(self, fake_clock):
        policy = _policy(RetryPolicy.fixed, fake_clock, 2, max_attempts=3)

        def func():
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            policy.call(func, retry_on=(OSError,))
        assert fake_clock.sleeps == []
