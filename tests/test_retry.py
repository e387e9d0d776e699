"""Tests for transient-error classification and backoff."""

import pytest

from mediagrab_backend.retry import backoff_delay, is_retryable, retry_with_backoff


class Recorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def scripted(*outcomes):
    calls = {"n": 0}

    async def fn():
        outcome = outcomes[calls["n"]]
        calls["n"] += 1
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    return fn, calls


class TestClassification:
    @pytest.mark.parametrize(
        "message",
        [
            "Page shows anti-bot protection",
            "Landed on an error page",
            "Something went wrong. Try reloading.",
            "Please try again later",
            "Site is blocking automated access",
            "parser service rate limit reached (429)",
            "429 Too Many Requests",
        ],
    )
    def test_transient_vocabulary(self, message):
        assert is_retryable(RuntimeError(message))

    @pytest.mark.parametrize("message", ["Tweet not found", "No media found", "Parser request timeout"])
    def test_other_errors_are_final(self, message):
        assert not is_retryable(RuntimeError(message))


class TestBackoffDelay:
    def test_doubles_each_attempt(self):
        no_jitter = lambda a, b: 0.0  # noqa: E731
        assert [backoff_delay(n, 2.0, rng=no_jitter) for n in range(3)] == [2.0, 4.0, 8.0]

    def test_jitter_bounds(self):
        assert backoff_delay(1, 2.0, 0.2, rng=lambda a, b: b) == pytest.approx(4.8)
        assert backoff_delay(1, 2.0, 0.2, rng=lambda a, b: a) == pytest.approx(3.2)


class TestRetryWithBackoff:
    async def test_two_transient_failures_then_success(self):
        fn, calls = scripted(RuntimeError("Something went wrong"), RuntimeError("Try again"), ["ok"])
        sleep = Recorder()

        result = await retry_with_backoff(fn, max_retries=3, initial_delay=2.0, jitter=0.2, sleep=sleep)

        assert result == ["ok"]
        assert calls["n"] == 3
        assert len(sleep.delays) == 2
        assert 1.6 <= sleep.delays[0] <= 2.4
        assert 3.2 <= sleep.delays[1] <= 4.8
        assert sum(sleep.delays) <= (2.0 + 4.0) * 1.2

    async def test_non_retryable_propagates_immediately(self):
        fn, calls = scripted(ValueError("Tweet not found"), ["never"])
        sleep = Recorder()

        with pytest.raises(ValueError, match="Tweet not found"):
            await retry_with_backoff(fn, sleep=sleep)

        assert calls["n"] == 1
        assert sleep.delays == []

    async def test_exhaustion_raises_last_error(self):
        errors = [RuntimeError(f"error page #{i}") for i in range(4)]
        fn, calls = scripted(*errors)
        sleep = Recorder()

        with pytest.raises(RuntimeError, match="error page #3"):
            await retry_with_backoff(fn, max_retries=3, initial_delay=0.01, sleep=sleep)

        assert calls["n"] == 4
        assert len(sleep.delays) == 3
