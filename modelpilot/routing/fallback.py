"""Fallback controller: bounded retries with exponential backoff.

Drives one request's dispatch attempts through the state machine

    SELECTING → DISPATCHING → SUCCEEDED | RETRYING | EXHAUSTED

Attempts are strictly sequential. After a retryable failure the next model
is the next entry of the router's fallback list, reused cyclically when the
list is shorter than the retry budget. InvalidRequest failures are the
caller's fault and propagate immediately without a retry. Fallback entries
that fail the eligibility predicate are skipped without a dispatch.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Generic, TypeVar

from modelpilot.errors import (
    ProviderError,
    ProviderErrorKind,
    RoutingExhaustedError,
)
from modelpilot.schemas.config import FallbackConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FallbackState(StrEnum):
    SELECTING = "selecting"
    DISPATCHING = "dispatching"
    SUCCEEDED = "succeeded"
    RETRYING = "retrying"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class AttemptFailure:
    """One failed dispatch attempt."""

    model_id: str
    attempt_index: int
    error: ProviderError
    latency_ms: float


@dataclass
class FallbackResult(Generic[T]):
    """The successful attempt and everything that preceded it."""

    value: T
    model_id: str
    attempt_index: int
    attempts: list[str]
    failures: list[AttemptFailure] = field(default_factory=list)
    latency_ms: float = 0.0
    elapsed_ms: float = 0.0

    @property
    def retry_count(self) -> int:
        return self.attempt_index

    @property
    def fallback_used(self) -> bool:
        return self.attempt_index > 0


def backoff_delay(base_delay: float, attempt_index: int) -> float:
    """Delay before retry number ``attempt_index`` (0-based)."""
    return base_delay * (2 ** attempt_index)


class FallbackController:
    """Runs dispatch attempts for one request under a fallback policy.

    A controller instance is single-use: create one per request.

    Args:
        policy: The router's fallback configuration.
        base_delay: Base backoff delay in seconds.
        timeout: Per-attempt timeout in seconds; exceeding it counts as a
            Timeout provider error.
        sleep: Awaitable sleep used between attempts (injectable for tests).
        on_failure: Called synchronously with every failed attempt.
        on_cancel: Called with the model id, attempt index and elapsed
            milliseconds when the caller cancels an in-flight attempt.
        eligible: Predicate over model ids; fallback entries it rejects are
            never dispatched.
    """

    def __init__(
        self,
        policy: FallbackConfig,
        *,
        base_delay: float = 0.5,
        timeout: float = 60.0,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
        on_failure: Callable[[AttemptFailure], None] | None = None,
        on_cancel: Callable[[str, int, float], None] | None = None,
        eligible: Callable[[str], bool] | None = None,
    ) -> None:
        self._policy = policy
        self._base_delay = base_delay
        self._timeout = timeout
        self._sleep = sleep
        self._on_failure = on_failure
        self._on_cancel = on_cancel
        self._eligible = eligible
        self._state = FallbackState.SELECTING
        self.transitions: list[FallbackState] = [FallbackState.SELECTING]

    @property
    def state(self) -> FallbackState:
        return self._state

    def _transition(self, state: FallbackState) -> None:
        self._state = state
        self.transitions.append(state)

    def next_candidate(self, retry_index: int) -> str | None:
        """Model for retry number ``retry_index``, or None when there is none."""
        if not self._policy.enabled or retry_index >= self._policy.retry_attempts:
            return None
        fallbacks = self._policy.fallback_models
        if not fallbacks:
            return None
        for offset in range(len(fallbacks)):
            candidate = fallbacks[(retry_index + offset) % len(fallbacks)]
            if self._eligible is None or self._eligible(candidate):
                return candidate
            logger.debug("Fallback %s fails the request requirements, skipping", candidate)
        return None

    async def run(
        self,
        primary: str,
        attempt: Callable[[str], Awaitable[T]],
    ) -> FallbackResult[T]:
        """Dispatch to ``primary``, falling back on retryable failures.

        Args:
            primary: Model id of the first attempt.
            attempt: Coroutine factory performing one dispatch to a model id.

        Returns:
            FallbackResult for the successful attempt.

        Raises:
            ProviderError: Immediately, for InvalidRequest failures.
            RoutingExhaustedError: When retries are exhausted or disabled.
        """
        started = time.perf_counter()
        attempts: list[str] = []
        failures: list[AttemptFailure] = []
        unknown_retried = False
        retry_index = 0
        model_id = primary

        while True:
            self._transition(FallbackState.DISPATCHING)
            attempts.append(model_id)
            attempt_started = time.perf_counter()
            try:
                value = await asyncio.wait_for(attempt(model_id), timeout=self._timeout)
            except TimeoutError:
                error = ProviderError(
                    ProviderErrorKind.TIMEOUT,
                    f"{model_id}: no response within {self._timeout:g}s",
                    model_id=model_id,
                )
            except asyncio.CancelledError:
                if self._on_cancel is not None:
                    self._on_cancel(
                        model_id,
                        len(attempts) - 1,
                        (time.perf_counter() - attempt_started) * 1000,
                    )
                raise
            except ProviderError as e:
                error = e
            else:
                now = time.perf_counter()
                self._transition(FallbackState.SUCCEEDED)
                return FallbackResult(
                    value=value,
                    model_id=model_id,
                    attempt_index=len(attempts) - 1,
                    attempts=attempts,
                    failures=failures,
                    latency_ms=(now - attempt_started) * 1000,
                    elapsed_ms=(now - started) * 1000,
                )

            failure = AttemptFailure(
                model_id=model_id,
                attempt_index=len(attempts) - 1,
                error=error,
                latency_ms=(time.perf_counter() - attempt_started) * 1000,
            )
            failures.append(failure)
            if self._on_failure is not None:
                self._on_failure(failure)

            if error.error_kind == ProviderErrorKind.INVALID_REQUEST:
                self._transition(FallbackState.EXHAUSTED)
                logger.info("Invalid request rejected by %s, not retrying", model_id)
                raise error

            retryable = error.retryable
            if error.error_kind == ProviderErrorKind.UNKNOWN:
                # Unknown failures get one retry per request
                retryable = not unknown_retried
                unknown_retried = True

            next_model = self.next_candidate(retry_index) if retryable else None
            if next_model is None:
                self._transition(FallbackState.EXHAUSTED)
                logger.warning(
                    "Routing exhausted after %d attempt(s): %s",
                    len(attempts), error.message,
                )
                raise RoutingExhaustedError(error, attempts)

            self._transition(FallbackState.RETRYING)
            delay = backoff_delay(self._base_delay, retry_index)
            logger.warning(
                "Retry %d/%d: %s failed (%s), falling back to %s (backoff: %.1fs)",
                retry_index + 1, self._policy.retry_attempts, model_id,
                error.error_kind.value, next_model, delay,
            )
            await self._sleep(delay)
            retry_index += 1
            model_id = next_model
