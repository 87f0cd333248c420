"""Retry policies with exponential backoff and the retry coordinator."""

import random
from typing import Callable, Iterable, Optional, Protocol, Set, Tuple, Type

from crawlcore.errors import FetchError
from crawlcore.models.data_models import (
    DeadLetter,
    DecisionLogEntry,
    Outcome,
    ProcessingTask,
    Retry,
    RetryDecision,
)
from crawlcore.monitoring.logger import StructuredLogger
from crawlcore.state.buffers import DeadLetterQueue, InFlightBuffer, RetryBuffer
from crawlcore.state.decision_log import DecisionLog


def calculate_backoff_delay(
    attempt: int,
    base_delay: float = 0.5,
    max_delay: float = 4.0,
    jitter_max: float = 0.5
) -> float:
    """
    Calculate exponential backoff delay with jitter.

    Formula: min(max_delay, (base_delay * (2 ** attempt)) + random_jitter)

    Args:
        attempt: Retry attempt number (0-indexed)
        base_delay: Base delay in seconds
        max_delay: Maximum delay cap in seconds
        jitter_max: Maximum jitter to add in seconds

    Returns:
        Delay in seconds
    """
    exponential_delay = base_delay * (2 ** attempt)
    jitter = random.uniform(0, jitter_max)
    return min(max_delay, exponential_delay + jitter)


def describe_error(error: BaseException) -> str:
    message = str(error)
    return f"{type(error).__name__}: {message}" if message else type(error).__name__


class RetryPolicy(Protocol):
    """Classifies a failure into a retry or a dead-letter."""

    def on_failure(self, task: ProcessingTask, error: BaseException, now: float) -> RetryDecision:
        ...


class AlwaysRetryPolicy:
    """Retry every failure after a fixed delay."""

    def __init__(self, delay: float = 0.0):
        self.delay = delay

    def on_failure(self, task: ProcessingTask, error: BaseException, now: float) -> RetryDecision:
        return Retry(at=now + self.delay, reason=describe_error(error))


class MaxAttemptsRetryPolicy:
    """
    Retry with exponential backoff, then dead-letter.

    Retries on: any error except the `dead_letter_on` classes and fetch
    errors whose HTTP status is not in the retryable set
    Max retries: `max_attempts` (a task is run at most max_attempts + 1 times)
    Backoff: Exponential with jitter, capped at `max_delay`
    """

    RETRYABLE_STATUS_CODES: Set[int] = {429, 502, 503, 504}

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 4.0,
        jitter_max: float = 0.5,
        dead_letter_on: Iterable[Type[BaseException]] = (),
        retryable_status_codes: Optional[Iterable[int]] = None,
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter_max = jitter_max
        self.dead_letter_on: Tuple[Type[BaseException], ...] = tuple(dead_letter_on)
        self.retryable_status_codes = frozenset(
            retryable_status_codes if retryable_status_codes is not None else self.RETRYABLE_STATUS_CODES
        )

    def is_retryable(self, error: BaseException) -> bool:
        """
        Check if error is retryable.

        Args:
            error: Exception raised or returned by a pipeline step

        Returns:
            True if error should be retried
        """
        if self.dead_letter_on and isinstance(error, self.dead_letter_on):
            return False
        if isinstance(error, FetchError) and error.status is not None:
            return error.status in self.retryable_status_codes
        return True

    def on_failure(self, task: ProcessingTask, error: BaseException, now: float) -> RetryDecision:
        reason = describe_error(error)
        if not self.is_retryable(error):
            return DeadLetter(f"non-retryable {reason}")
        if task.attempt >= self.max_attempts:
            return DeadLetter(f"retries exhausted after {task.attempt + 1} attempts: {reason}", exhausted=True)

        delay = calculate_backoff_delay(task.attempt, self.base_delay, self.max_delay, self.jitter_max)
        return Retry(at=now + delay, reason=reason)


class CallableRetryPolicy:
    """Adapts a plain function into a RetryPolicy."""

    def __init__(self, fn: Callable[[ProcessingTask, BaseException, float], RetryDecision]):
        self.fn = fn

    def on_failure(self, task: ProcessingTask, error: BaseException, now: float) -> RetryDecision:
        return self.fn(task, error, now)


class RetryCoordinator:
    """
    Applies retry decisions to the crawl buffers.

    A retried task enters the retry buffer as a new incarnation with
    attempt + 1, then leaves the in-flight buffer. A dead-lettered task is
    written to the decision log first, then enters the dead-letter queue
    verbatim and leaves the in-flight buffer. Adding before removing means
    a crash in between duplicates the task instead of losing it.
    """

    def __init__(
        self,
        policy: RetryPolicy,
        in_flight: InFlightBuffer,
        retry_buffer: RetryBuffer,
        dead_letters: DeadLetterQueue,
        decision_log: DecisionLog,
        logger: Optional[StructuredLogger] = None,
    ):
        self.policy = policy
        self.in_flight = in_flight
        self.retry_buffer = retry_buffer
        self.dead_letters = dead_letters
        self.decision_log = decision_log
        self.logger = logger
        self.retries_scheduled = 0
        self.dead_lettered = 0

    def handle(
        self,
        task: ProcessingTask,
        error: BaseException,
        now: float,
        route_id: Optional[str] = None,
    ) -> RetryDecision:
        decision = self.policy.on_failure(task, error, now)

        if isinstance(decision, Retry):
            retry_task = task.retried(now, decision.reason)
            self.retry_buffer.schedule(retry_task, decision.at, decision.reason)
            self.in_flight.remove(task.id)
            self.retries_scheduled += 1
            if self.logger:
                self.logger.retry_scheduled(
                    task_id=str(task.id),
                    url=task.url,
                    attempt=retry_task.attempt,
                    delay=max(0.0, decision.at - now),
                    reason=decision.reason,
                )
        elif isinstance(decision, DeadLetter):
            outcome = Outcome.RETRIES_EXHAUSTED if decision.exhausted else Outcome.DEAD_LETTER
            self.dead_letter(task, decision.reason, now, route_id, describe_error(error), outcome)
        else:
            raise TypeError(f"RetryPolicy returned {type(decision).__name__}, expected Retry or DeadLetter")

        return decision

    def dead_letter(
        self,
        task: ProcessingTask,
        reason: str,
        now: float,
        route_id: Optional[str] = None,
        error: Optional[str] = None,
        outcome: Outcome = Outcome.DEAD_LETTER,
    ) -> None:
        """Terminal transition; recorded in the decision log before the task moves."""
        self.decision_log.record(DecisionLogEntry(
            task_id=task.id,
            url=task.url,
            outcome=outcome,
            reason=reason,
            timestamp=now,
            attempt=task.attempt,
            route_id=route_id,
        ))
        self.dead_letters.add(task, reason, dead_at=now, route_id=route_id, error=error)
        self.in_flight.remove(task.id)
        self.dead_lettered += 1
        if self.logger:
            self.logger.dead_lettered(task_id=str(task.id), url=task.url, attempt=task.attempt, reason=reason)
