"""
epochrewards/tests/test_retry.py

Tests for retry policies and the retry helpers.
"""

import pytest
import trio

from epochrewards.errors import ChainError, TransientError
from epochrewards.retry import RetryPolicy, retry_async, retry_sync


class TestRetryPolicy:
    """Test policy arithmetic."""

    def test_fixed_delay(self):
        """Test a fixed policy waits the same every time."""
        policy = RetryPolicy.fixed(30.0)
        assert [policy.delay(n) for n in (1, 2, 10)] == [30.0, 30.0, 30.0]
        assert not policy.bounded

    def test_backoff_with_cap(self):
        """Test exponential backoff stops at max_interval."""
        policy = RetryPolicy(interval=1.0, backoff=2.0, max_interval=5.0)
        assert [policy.delay(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 5.0]

    def test_allows(self):
        """Test attempt bounds are inclusive."""
        policy = RetryPolicy(interval=0, max_attempts=3)
        assert policy.allows(3)
        assert not policy.allows(4)
        assert RetryPolicy(interval=0).allows(10**6)

    def test_jitter_stays_in_range(self):
        """Test jitter keeps the delay within the requested fraction."""
        policy = RetryPolicy(interval=10.0, jitter=0.1)
        for _ in range(50):
            assert 9.0 <= policy.delay(1) <= 11.0

    @pytest.mark.parametrize("kwargs", [
        {"interval": -1},
        {"interval": 1, "max_attempts": 0},
        {"interval": 1, "backoff": 0.5},
    ])
    def test_invalid(self, kwargs):
        """Test nonsensical policies are rejected."""
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)


class TestRetryAsync:
    """Test retry_async under trio."""

    @pytest.mark.trio
    async def test_succeeds_after_transient(self):
        """Test transient failures are retried until success."""
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise TransientError("busy")
            return "ok"

        assert await retry_async(flaky, RetryPolicy(interval=0, max_attempts=5)) == "ok"
        assert len(calls) == 3

    @pytest.mark.trio
    async def test_exhausted_reraises_last(self):
        """Test the last transient error escapes when attempts run out."""
        calls = []

        async def always():
            calls.append(1)
            raise TransientError(f"attempt {len(calls)}")

        with pytest.raises(TransientError) as exc:
            await retry_async(always, RetryPolicy(interval=0, max_attempts=2))
        assert str(exc.value) == "attempt 2"

    @pytest.mark.trio
    async def test_permanent_not_retried(self):
        """Test errors outside retry_on propagate immediately."""
        calls = []

        async def broken():
            calls.append(1)
            raise ChainError("rejected")

        with pytest.raises(ChainError):
            await retry_async(broken, RetryPolicy(interval=0, max_attempts=5))
        assert len(calls) == 1

    @pytest.mark.trio
    async def test_cancelled_during_wait(self):
        """Test an unbounded retry loop stops at the enclosing cancel scope."""
        async def never():
            raise TransientError("down")

        with trio.move_on_after(0.05) as scope:
            await retry_async(never, RetryPolicy.fixed(0.01))
        assert scope.cancelled_caught


class TestRetrySync:
    """Test the blocking retry helper used by the HTTP clients."""

    def test_succeeds_after_transient(self):
        """Test transient failures are retried with the policy's delays."""
        calls, waits = [], []

        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise TransientError("busy")
            return "ok"

        policy = RetryPolicy(interval=1.0, backoff=2.0, max_attempts=5)
        assert retry_sync(flaky, policy, sleep=waits.append) == "ok"
        assert len(calls) == 3
        assert waits == [1.0, 2.0]

    def test_exhausted_reraises_last(self):
        """Test the last transient error escapes when attempts run out."""
        calls = []

        def always():
            calls.append(1)
            raise TransientError(f"attempt {len(calls)}")

        with pytest.raises(TransientError) as exc:
            retry_sync(always, RetryPolicy(interval=0, max_attempts=3), sleep=lambda s: None)
        assert str(exc.value) == "attempt 3"

    def test_permanent_not_retried(self):
        """Test errors outside retry_on propagate without sleeping."""
        waits = []

        def broken():
            raise ChainError("rejected")

        with pytest.raises(ChainError):
            retry_sync(broken, RetryPolicy(interval=1.0, max_attempts=5), sleep=waits.append)
        assert waits == []
