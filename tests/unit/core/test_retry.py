import pytest

from chatmirror.errors import AuthError, NetworkError, ServerError
from chatmirror.retry import RetryPolicy, RetryPresets, compute_delay, retryable, with_retry


class FlakyOperation:
    def __init__(self, failures):
        self.failures = list(failures)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return "ok"


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def test_compute_delay_doubles_and_caps():
    delays = [compute_delay(n, 1.0, 30.0) for n in range(1, 8)]
    assert delays == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0]


def test_compute_delay_jitter_scales_within_quarter():
    assert compute_delay(2, 1.0, 30.0, jitter=True, rng=lambda lo, hi: lo) == 1.5
    assert compute_delay(2, 1.0, 30.0, jitter=True, rng=lambda lo, hi: hi) == 2.5


@pytest.mark.asyncio
async def test_fail_fail_succeed_makes_three_calls_and_two_retry_callbacks():
    operation = FlakyOperation([NetworkError(), NetworkError()])
    sleep = RecordingSleep()
    retries = []
    policy = RetryPolicy(max_attempts=3, initial_delay=0.5, backoff_multiplier=2.0, jitter=False)

    result = await with_retry(
        operation,
        policy,
        on_retry=lambda attempt, delay, error: retries.append((attempt, delay, error.code)),
        sleep=sleep,
    )

    assert result == "ok"
    assert operation.calls == 3
    assert retries == [(1, 0.5, "NETWORK_ERROR"), (2, 1.0, "NETWORK_ERROR")]
    assert sleep.delays == [0.5, 1.0]


@pytest.mark.asyncio
async def test_non_transient_error_is_not_retried():
    error = AuthError()
    operation = FlakyOperation([error])
    sleep = RecordingSleep()

    with pytest.raises(AuthError) as exc_info:
        await with_retry(operation, RetryPresets.QUICK, sleep=sleep)

    assert exc_info.value is error
    assert operation.calls == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_exhausted_attempts_reraise_last_error_unchanged():
    last = ServerError("still down")
    operation = FlakyOperation([ServerError(), ServerError(), last])

    with pytest.raises(ServerError) as exc_info:
        await with_retry(
            operation, RetryPolicy(max_attempts=3, jitter=False), sleep=RecordingSleep()
        )

    assert exc_info.value is last
    assert operation.calls == 3


@pytest.mark.asyncio
async def test_plain_connection_error_counts_as_transient():
    operation = FlakyOperation([ConnectionResetError("reset")])

    assert await with_retry(operation, RetryPresets.QUICK, sleep=RecordingSleep()) == "ok"
    assert operation.calls == 2


@pytest.mark.asyncio
async def test_custom_predicate_overrides_default():
    operation = FlakyOperation([NetworkError()])

    with pytest.raises(NetworkError):
        await with_retry(
            operation,
            RetryPresets.QUICK,
            is_retryable=lambda error: False,
            sleep=RecordingSleep(),
        )
    assert operation.calls == 1


@pytest.mark.asyncio
async def test_retryable_decorator_passes_arguments():
    calls = []

    @retryable(RetryPresets.QUICK.with_overrides(jitter=False), sleep=RecordingSleep())
    async def fetch(value, *, suffix=""):
        calls.append(value)
        if len(calls) == 1:
            raise NetworkError()
        return value + suffix

    assert await fetch("a", suffix="!") == "a!"
    assert calls == ["a", "a"]


def test_presets():
    assert (RetryPresets.QUICK.max_attempts, RetryPresets.QUICK.initial_delay, RetryPresets.QUICK.max_delay) == (3, 0.5, 2.0)
    assert (RetryPresets.STANDARD.initial_delay, RetryPresets.STANDARD.max_delay) == (1.0, 10.0)
    assert (RetryPresets.AGGRESSIVE.max_attempts, RetryPresets.AGGRESSIVE.max_delay) == (5, 30.0)
