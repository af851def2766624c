"""
Retry and timeout policy for generation backend calls.

Every call gets a deadline chosen by its latency class. Transient failures
(timeouts and 5xx-equivalents) are retried with exponential backoff plus
random jitter; anything else fails immediately. Agents stay retry-transparent:
they talk to a RetryingBackend exactly as they would to the raw adapter.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Sequence

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_exponential, wait_random

from .core.config import settings
from .llm_backend import (
    TRANSIENT_ERRORS,
    BackendError,
    BackendTimeoutError,
    Completion,
    CompletionOptions,
    GenerationBackend,
    PromptPart,
)
from .middleware.metrics import track_backend_retry

logger = logging.getLogger(__name__)


class RetryingBackend(GenerationBackend):
    """Wraps a backend with per-call timeouts and bounded retries."""

    def __init__(
        self,
        backend: GenerationBackend,
        attempts: Optional[int] = None,
        base_seconds: Optional[float] = None,
        jitter_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.backend = backend
        self.attempts = attempts if attempts is not None else settings.RETRY_ATTEMPTS
        self.base_seconds = base_seconds if base_seconds is not None else settings.RETRY_BASE_SECONDS
        self.jitter_seconds = jitter_seconds if jitter_seconds is not None else settings.RETRY_JITTER_SECONDS
        self._sleep = sleep

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        kind = getattr(exc, "kind", "other")
        track_backend_retry(kind)
        logger.warning(
            f"Backend call failed ({kind}) on attempt {retry_state.attempt_number}/{self.attempts}, "
            f"retrying in {delay:.2f}s: {exc}"
        )

    async def _attempt(self, parts: Sequence[PromptPart], options: CompletionOptions) -> Completion:
        timeout = options.effective_timeout
        try:
            return await asyncio.wait_for(self.backend.complete(parts, options), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise BackendTimeoutError(f"Request timed out after {timeout:g}s") from e

    async def complete(self, parts: Sequence[PromptPart], options: CompletionOptions) -> Completion:
        """Run the call, retrying transient failures.

        Raises:
            BackendError: the last failure, with ``attempts`` set to the number of tries made
        """
        attempts_made = 0
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_exponential(multiplier=self.base_seconds) + wait_random(0, self.jitter_seconds),
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    attempts_made += 1
                    return await self._attempt(parts, options)
        except BackendError as e:
            e.attempts = attempts_made
            raise


def describe_backend_failure(error: BackendError, action: str) -> str:
    """Human-readable failure text that names the cause class.

    Args:
        error: Final error from a backend call
        action: What was being attempted, e.g. "Image generation"
    """
    tries = f" after {error.attempts} attempt{'s' if error.attempts != 1 else ''}"
    if isinstance(error, BackendTimeoutError):
        return f"{action} timed out{tries}. The request took too long; try a simpler request."
    if error.kind == "unavailable":
        return f"{action} failed: generation backend unavailable{tries}. Please try again shortly."
    return f"{action} failed: {error}"


class OrchestrationError(Exception):
    """A run cannot proceed at all. ``kind`` is unavailable, timeout or other."""

    def __init__(self, message: str, kind: str = "other"):
        super().__init__(message)
        self.kind = kind

    @classmethod
    def from_backend_error(cls, error: BackendError, action: str) -> "OrchestrationError":
        kind = error.kind if error.kind in ("unavailable", "timeout") else "other"
        return cls(describe_backend_failure(error, action), kind)
