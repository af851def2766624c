"""
Tests for the retry and timeout wrapper around the generation backend.
"""

import asyncio

import pytest

from studio.llm_backend import (
    BackendConfigurationError,
    BackendError,
    BackendTimeoutError,
    BackendUnavailableError,
    Completion,
    CompletionOptions,
    TextPart,
)
from studio.llm_retry import OrchestrationError, RetryingBackend, describe_backend_failure


PARTS = [TextPart("Rewrite this prompt")]


class SleepRecorder:
    """Stands in for asyncio.sleep so backoff is observed, not waited for."""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


def wrap(backend, attempts=3, base=1.0, jitter=0.0):
    sleep = SleepRecorder()
    return RetryingBackend(backend, attempts=attempts, base_seconds=base, jitter_seconds=jitter, sleep=sleep), sleep


class TestRetryingBackend:
    """Bounded retries of transient failures."""

    @pytest.mark.asyncio
    async def test_success_needs_no_retry(self, backend):
        """Test a first-try success returns immediately."""
        retrying, sleep = wrap(backend)

        completion = await retrying.complete(PARTS, CompletionOptions())

        assert completion.text.startswith("Refined prompt")
        assert backend.count("refine") == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, backend):
        """Test an unavailable backend is retried until it answers."""
        backend.script("refine", BackendUnavailableError("503"), "second time lucky")
        retrying, sleep = wrap(backend)

        completion = await retrying.complete(PARTS, CompletionOptions())

        assert completion.text == "second time lucky"
        assert backend.count("refine") == 2
        assert sleep.delays == [1.0]

    @pytest.mark.asyncio
    async def test_exhausted_retries_report_attempts(self, backend):
        """Test the final error carries the number of attempts and delays grow."""
        backend.script("refine", *[BackendTimeoutError("deadline")] * 3)
        retrying, sleep = wrap(backend, base=0.5)

        with pytest.raises(BackendTimeoutError) as excinfo:
            await retrying.complete(PARTS, CompletionOptions())

        assert excinfo.value.attempts == 3
        assert backend.count("refine") == 3
        assert sleep.delays == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_non_transient_error_is_not_retried(self, backend):
        """Test bad requests fail on the first attempt."""
        backend.script("refine", BackendError("prompt blocked"))
        retrying, sleep = wrap(backend)

        with pytest.raises(BackendError) as excinfo:
            await retrying.complete(PARTS, CompletionOptions())

        assert excinfo.value.attempts == 1
        assert backend.count("refine") == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_jitter_is_bounded(self, backend):
        """Test each delay is the exponential step plus at most the jitter."""
        backend.script("refine", BackendUnavailableError("503"), BackendUnavailableError("503"), "ok")
        retrying, sleep = wrap(backend, base=1.0, jitter=0.25)

        await retrying.complete(PARTS, CompletionOptions())

        assert 1.0 <= sleep.delays[0] <= 1.25
        assert 2.0 <= sleep.delays[1] <= 2.25

    @pytest.mark.asyncio
    async def test_slow_call_times_out(self, backend):
        """Test a call exceeding its deadline becomes a timeout error."""

        async def slow(parts, options):
            await asyncio.sleep(1)
            return Completion(text="too late")

        backend.script("refine", slow)
        retrying, _ = wrap(backend, attempts=1)

        with pytest.raises(BackendTimeoutError):
            await retrying.complete(PARTS, CompletionOptions(timeout_seconds=0.01))


class TestFailureDescriptions:
    """User-facing failure text."""

    def test_timeout(self):
        """Test timeouts are named as such."""
        message = describe_backend_failure(BackendTimeoutError("deadline", attempts=3), "Image generation")

        assert message.startswith("Image generation timed out after 3 attempts")

    def test_unavailable(self):
        """Test unavailability is distinguished from other errors."""
        message = describe_backend_failure(BackendUnavailableError("503", attempts=1), "Brand analysis")

        assert message.startswith("Brand analysis failed: generation backend unavailable after 1 attempt.")

    def test_other(self):
        """Test other errors pass their text through."""
        message = describe_backend_failure(BackendError("prompt blocked"), "Compliance audit")

        assert message == "Compliance audit failed: prompt blocked"

    def test_orchestration_error_kind(self):
        """Test orchestration errors keep the timeout and unavailable kinds only."""
        timeout = OrchestrationError.from_backend_error(BackendTimeoutError("x"), "Agent step")
        config = OrchestrationError.from_backend_error(BackendConfigurationError("no key"), "Agent step")

        assert timeout.kind == "timeout"
        assert config.kind == "other"
        assert str(config) == "Agent step failed: no key"
