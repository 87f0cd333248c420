"""Processing engine: runs a task's pipeline and applies the outcome."""

from dataclasses import dataclass
from typing import Optional, Union

from crawlcore.errors import RoutingError
from crawlcore.engine.context import ProcessingContext, RunContext
from crawlcore.models.data_models import DecisionLogEntry, Done, Fail, Outcome, ProcessingTask
from crawlcore.pipeline.executor import PipelineExecutor
from crawlcore.scheduling.retry import RetryCoordinator, describe_error


@dataclass(frozen=True)
class TaskCompleted:
    task: ProcessingTask
    step_id: str
    route_id: Optional[str] = None


@dataclass(frozen=True)
class TaskFailed:
    task: ProcessingTask
    error: BaseException
    route_id: Optional[str] = None
    routing: bool = False


@dataclass(frozen=True)
class TaskDiscarded:
    task: ProcessingTask
    reason: str


ExecutionOutcome = Union[TaskCompleted, TaskFailed, TaskDiscarded]


class CrawlEngine:
    """
    Splits task processing into a worker half and a coordinator half.

    `execute()` may run on any worker thread; it only touches shared state
    through `ProcessingContext.enqueue`. `apply()` runs on the coordinating
    thread and performs every in-flight, retry and dead-letter transition.
    """

    REASON_NO_ROUTE = "no route resolved"
    REASON_PROCESSED = "already processed"

    def __init__(
        self,
        run: RunContext,
        executor: Optional[PipelineExecutor] = None,
        coordinator: Optional[RetryCoordinator] = None,
    ):
        self.run = run
        self.executor = executor or PipelineExecutor(run.routes)
        self.coordinator = coordinator or RetryCoordinator(
            policy=run.retry_policy,
            in_flight=run.in_flight,
            retry_buffer=run.retry_buffer,
            dead_letters=run.dead_letters,
            decision_log=run.decision_log,
            logger=run.logger,
        )
        self.completed = 0
        self.discarded = 0

    def begin(self, task: ProcessingTask) -> None:
        """Record a dispatched task as in flight, unless the scheduler already did."""
        if not self.run.in_flight.contains(task.id):
            self.run.in_flight.put(task)
        if self.run.logger:
            self.run.logger.task_dispatched(task_id=str(task.id), url=task.url, attempt=task.attempt)

    def execute(self, task: ProcessingTask) -> ExecutionOutcome:
        """
        Run the task's route to completion.

        Tasks outside the run's scope, or whose URL another task already
        processed, are discarded without running a pipeline. Step failures
        come back as TaskFailed; routing misconfiguration is flagged so it
        is dead-lettered instead of retried. Persistence errors propagate.
        """
        scope = self.run.scope
        if not scope.is_allowed(task):
            return TaskDiscarded(task, scope.deny_reason(task))
        if self.run.seen.is_processed(task.url):
            return TaskDiscarded(task, self.REASON_PROCESSED)

        ctx = ProcessingContext(task, self.run)
        try:
            result = self.executor.run(ctx)
        except RoutingError as e:
            return TaskFailed(task, e, ctx.route_id, routing=True)

        if isinstance(result, Done):
            return TaskCompleted(task, result.step_id, ctx.route_id)
        if isinstance(result, Fail):
            return TaskFailed(task, result.cause, ctx.route_id)
        return TaskFailed(task, TypeError(f"Pipeline ended with {type(result).__name__}"), ctx.route_id)

    def apply(self, outcome: ExecutionOutcome, now: Optional[float] = None) -> None:
        """Move the task out of the in-flight buffer according to its outcome."""
        now = self.run.clock() if now is None else now
        task = outcome.task
        self.run.gate.release(task)

        if isinstance(outcome, TaskCompleted):
            self.run.decision_log.record(DecisionLogEntry(
                task_id=task.id,
                url=task.url,
                outcome=Outcome.DONE,
                reason=outcome.step_id,
                timestamp=now,
                attempt=task.attempt,
                route_id=outcome.route_id,
            ))
            self.run.in_flight.remove(task.id)
            self.run.seen.mark_processed(task.url)
            self.completed += 1
            if self.run.logger:
                self.run.logger.task_done(task_id=str(task.id), url=task.url, route_id=outcome.route_id)
        elif isinstance(outcome, TaskDiscarded):
            self.run.decision_log.record(DecisionLogEntry(
                task_id=task.id,
                url=task.url,
                outcome=Outcome.DISCARDED,
                reason=outcome.reason,
                timestamp=now,
                attempt=task.attempt,
            ))
            self.run.in_flight.remove(task.id)
            self.discarded += 1
            if self.run.logger:
                self.run.logger.debug("task_discarded", task_id=str(task.id), url=task.url, reason=outcome.reason)
        elif outcome.routing:
            if self.run.logger:
                self.run.logger.error(
                    "routing_failed", task_id=str(task.id), url=task.url, error=str(outcome.error)
                )
            self.coordinator.dead_letter(
                task, self.REASON_NO_ROUTE, now, outcome.route_id, describe_error(outcome.error)
            )
        else:
            self.coordinator.handle(task, outcome.error, now, outcome.route_id)

    def process(self, task: ProcessingTask) -> ExecutionOutcome:
        """begin, execute and apply on the calling thread."""
        self.begin(task)
        outcome = self.execute(task)
        self.apply(outcome)
        return outcome
