"""Dispatch scheduler: picks the next runnable task or says how long to wait."""

import time
from dataclasses import dataclass
from typing import Callable, Optional, Union

from crawlcore.models.data_models import ProcessingTask
from crawlcore.monitoring.logger import StructuredLogger
from crawlcore.scheduling.politeness import PolitenessGate
from crawlcore.state.buffers import InFlightBuffer, RetryBuffer
from crawlcore.state.frontier import Frontier


@dataclass(frozen=True)
class TaskReady:
    """A task passed the politeness gate and should be dispatched now."""
    task: ProcessingTask


@dataclass(frozen=True)
class Park:
    """Nothing is runnable; wait up to `duration` seconds."""
    duration: float
    wake_at: Optional[float] = None


@dataclass(frozen=True)
class Drained:
    """Frontier and retry buffer are both empty."""


DRAINED = Drained()

ScheduleDecision = Union[TaskReady, Park, Drained]


class Scheduler:
    """
    Produces one scheduling decision per call.

    Each step moves due retries into the frontier, then scans a bounded
    number of frontier tasks. A task the politeness gate denies is
    deferred into the retry buffer with its attempt unchanged, so the
    scan never blocks on a busy lane.

    Every hand-off adds the task to its next structure before taking it
    out of the previous one, so a crash between the two steps leaves a
    duplicate for recovery to resolve rather than a lost task. With
    `in_flight` given, a permitted task is put in flight before it leaves
    the frontier.
    """

    REASON_POLITENESS = "politeness"

    # Park used when work exists but no wake-up time can be computed
    FALLBACK_PARK = 0.01

    def __init__(
        self,
        frontier: Frontier,
        retry_buffer: RetryBuffer,
        gate: PolitenessGate,
        now: Callable[[], float] = time.time,
        retry_drain_batch: int = 128,
        frontier_scan_batch: int = 128,
        max_park: float = 0.25,
        logger: Optional[StructuredLogger] = None,
        in_flight: Optional[InFlightBuffer] = None,
    ):
        self.frontier = frontier
        self.retry_buffer = retry_buffer
        self.gate = gate
        self._now = now
        self.retry_drain_batch = max(1, retry_drain_batch)
        self.frontier_scan_batch = max(1, frontier_scan_batch)
        self.max_park = max_park
        self.logger = logger
        self.in_flight = in_flight
        self.deferrals = 0

    def next_decision(self) -> ScheduleDecision:
        now = self._now()

        self.move_due_retries(now)

        for _ in range(self.frontier_scan_batch):
            task = self.frontier.peek()
            if task is None:
                break

            permit = self.gate.permit(task)
            if not permit.allowed:
                self._defer(task, now, permit.retry_after)
                continue

            if self.in_flight is not None:
                self.in_flight.put(task)
            self.frontier.remove(task.id)
            return TaskReady(task)

        if self.frontier.size() > 0:
            # Scan budget spent on deferrals; come straight back
            return Park(0.0, now)

        if self.retry_buffer.size() == 0:
            return DRAINED

        return self._park(now)

    def move_due_retries(self, now: float) -> int:
        """Move retry entries whose due time has elapsed to the frontier tail."""
        ready = self.retry_buffer.due_entries(now, self.retry_drain_batch, hand_off=self.frontier.offer)
        return len(ready)

    def _defer(self, task: ProcessingTask, now: float, delay: float) -> None:
        eligible_at = now + delay
        self.retry_buffer.schedule(task.deferred(eligible_at), eligible_at, self.REASON_POLITENESS)
        self.frontier.remove(task.id)
        self.deferrals += 1
        if self.logger:
            key = self.gate.key_of(task)
            self.logger.task_deferred(
                task_id=str(task.id), url=task.url, delay=delay, lane=key.lane, host=key.host
            )

    def _park(self, now: float) -> Park:
        next_due = self.retry_buffer.next_due_at()
        if next_due is None:
            return Park(self.FALLBACK_PARK, now + self.FALLBACK_PARK)

        # Clamp to [0, max_park]; wake_at keeps the real due time
        duration = min(max(0.0, next_due - now), self.max_park)
        return Park(duration, next_due)
