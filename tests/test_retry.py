"""
Retry helper tests.
"""
import pytest

from vault.utils.retry import retry_with_backoff


class Flaky:
    def __init__(self, failures, error=ConnectionError):
        self.failures = failures
        self.error = error
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error("boom")
        return "ok"


async def test_retries_until_success():
    delays = []

    async def sleep(delay):
        delays.append(delay)

    func = Flaky(failures=2)
    result = await retry_with_backoff(
        func, max_attempts=3, initial_delay=1.0, jitter=False,
        retryable_exceptions=(ConnectionError,), sleep=sleep,
    )

    assert result == "ok"
    assert func.calls == 3
    assert delays == [1.0, 2.0]


async def test_gives_up_after_max_attempts():
    async def sleep(delay):
        pass

    func = Flaky(failures=5)
    with pytest.raises(ConnectionError):
        await retry_with_backoff(func, max_attempts=3, retryable_exceptions=(ConnectionError,), sleep=sleep)
    assert func.calls == 3


async def test_non_retryable_propagates_immediately():
    func = Flaky(failures=1, error=ValueError)
    with pytest.raises(ValueError):
        await retry_with_backoff(func, max_attempts=3, retryable_exceptions=(ConnectionError,))
    assert func.calls == 1


async def test_should_continue_stops_retrying():
    async def sleep(delay):
        pass

    func = Flaky(failures=5)
    with pytest.raises(ConnectionError):
        await retry_with_backoff(
            func, max_attempts=5, retryable_exceptions=(ConnectionError,),
            should_continue=lambda: False, sleep=sleep,
        )
    assert func.calls == 1


async def test_delay_is_capped():
    delays = []

    async def sleep(delay):
        delays.append(delay)

    func = Flaky(failures=3)
    await retry_with_backoff(
        func, max_attempts=4, initial_delay=10.0, max_delay=15.0, jitter=False,
        retryable_exceptions=(ConnectionError,), sleep=sleep,
    )
    assert delays == [10.0, 15.0, 15.0]


async def test_jitter_never_shortens_the_backoff():
    delays = []

    async def sleep(delay):
        delays.append(delay)

    for _ in range(20):
        await retry_with_backoff(
            Flaky(failures=2), max_attempts=3, initial_delay=2.0, max_delay=5.0,
            retryable_exceptions=(ConnectionError,), sleep=sleep,
        )

    first, second = delays[0::2], delays[1::2]
    assert all(2.0 <= d <= 3.0 for d in first)
    assert all(4.0 <= d <= 5.0 for d in second)
