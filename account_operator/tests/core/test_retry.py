from unittest.mock import AsyncMock

import pytest

from account_operator.core.retry import Backoff, RetryPolicy


class Flaky:
    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(f"failure {self.calls}")
        return "ok"


class TestRetryPolicy:
    @pytest.mark.asyncio
    async def test_succeeds_after_failures(self) -> None:
        """
        Arrange: an operation failing twice before succeeding
        Act: run it with five attempts
        Assert: the result is returned after sleeping between each failure
        """
        sleep = AsyncMock()
        policy = RetryPolicy(max_attempts=5, delay=0.5, sleep=sleep)
        operation = Flaky(failures=2)

        result = await policy.run(operation)

        assert result == "ok"
        assert operation.calls == 3
        assert [call.args[0] for call in sleep.await_args_list] == [0.5, 0.5]

    @pytest.mark.asyncio
    async def test_raises_last_error_when_exhausted(self) -> None:
        sleep = AsyncMock()
        policy = RetryPolicy(max_attempts=3, delay=1, sleep=sleep)
        operation = Flaky(failures=10)

        with pytest.raises(RuntimeError, match="failure 3"):
            await policy.run(operation)

        assert operation.calls == 3
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_does_not_retry_rejected_errors(self) -> None:
        sleep = AsyncMock()
        policy = RetryPolicy(max_attempts=3, delay=1, sleep=sleep)
        operation = Flaky(failures=10)

        with pytest.raises(RuntimeError, match="failure 1"):
            await policy.run(operation, should_retry=lambda e: False)

        assert operation.calls == 1
        sleep.assert_not_awaited()

    def test_linear_backoff_grows_with_attempts(self) -> None:
        policy = RetryPolicy(max_attempts=10, delay=1.0, backoff=Backoff.LINEAR)

        assert [policy.delay_for(attempt) for attempt in (1, 2, 3)] == [1.0, 2.0, 3.0]

    def test_fixed_backoff_is_constant(self) -> None:
        policy = RetryPolicy(max_attempts=10, delay=2.0)

        assert policy.delay_for(1) == policy.delay_for(7) == 2.0
