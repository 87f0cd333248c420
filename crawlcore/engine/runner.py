"""Runners that drive the scheduler until the crawl is drained."""

import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, Optional, Protocol

from crawlcore.engine.engine import CrawlEngine
from crawlcore.models.config import CrawlerConfig
from crawlcore.models.data_models import ProcessingTask
from crawlcore.scheduling.scheduler import Park, Scheduler, TaskReady


class Runner(Protocol):

    def run_until_drained(self, engine: CrawlEngine, scheduler: Scheduler) -> None:
        ...


class SingleThreadRunner:
    """
    Processes one task at a time on the calling thread.

    Returns once the scheduler reports the frontier and retry buffer
    empty; nothing can be left in flight between iterations.
    """

    def __init__(self, sleeper: Callable[[float], None] = time.sleep):
        self.sleeper = sleeper

    def run_until_drained(self, engine: CrawlEngine, scheduler: Scheduler) -> None:
        while True:
            decision = scheduler.next_decision()
            if isinstance(decision, TaskReady):
                engine.process(decision.task)
            elif isinstance(decision, Park):
                if decision.duration > 0:
                    self.sleeper(decision.duration)
            else:
                return


class ExecutorRunner:
    """
    Runs pipelines on a thread pool while this thread coordinates.

    Dispatch stops at `max_in_flight` outstanding tasks; completions are
    applied here, one at a time, so buffer transitions never race.
    Terminates when the scheduler is drained and no task is outstanding.
    """

    def __init__(
        self,
        pool_size: int = 4,
        max_in_flight: Optional[int] = None,
        executor: Optional[ThreadPoolExecutor] = None,
        sleeper: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize executor runner.

        Args:
            pool_size: Worker threads when the runner creates its own pool
            max_in_flight: Outstanding task limit (default: 2 * pool_size)
            executor: Optional externally owned pool; it is not shut down here
            sleeper: Sleep function used when idle with nothing outstanding
        """
        if pool_size <= 0:
            raise ValueError(f"pool_size must be positive, got: {pool_size}")
        self.pool_size = pool_size
        self.max_in_flight = max_in_flight or pool_size * 2
        self._executor = executor
        self.sleeper = sleeper

    def run_until_drained(self, engine: CrawlEngine, scheduler: Scheduler) -> None:
        owns_executor = self._executor is None
        executor = self._executor or ThreadPoolExecutor(
            max_workers=self.pool_size, thread_name_prefix="crawl-worker"
        )
        pending: Dict[Future, ProcessingTask] = {}
        try:
            while True:
                park: Optional[Park] = None
                drained = False

                while len(pending) < self.max_in_flight:
                    decision = scheduler.next_decision()
                    if isinstance(decision, TaskReady):
                        engine.begin(decision.task)
                        pending[executor.submit(engine.execute, decision.task)] = decision.task
                    elif isinstance(decision, Park):
                        park = decision
                        break
                    else:
                        drained = True
                        break

                if not pending:
                    if drained:
                        return
                    if park is not None and park.duration > 0:
                        self.sleeper(park.duration)
                    continue

                # Full or drained: block for a completion; parked: wait at most the park
                timeout = park.duration if park is not None else None
                done, _ = wait(list(pending), timeout=timeout, return_when=FIRST_COMPLETED)
                for future in done:
                    pending.pop(future)
                    engine.apply(future.result())
        finally:
            if owns_executor:
                executor.shutdown(wait=True)


def runner_for(config: CrawlerConfig, sleeper: Callable[[float], None] = time.sleep) -> Runner:
    """Choose the runner named by `config.run_mode`."""
    if config.run_mode == "single":
        return SingleThreadRunner(sleeper=sleeper)
    return ExecutorRunner(
        pool_size=config.worker_pool_size,
        max_in_flight=config.max_in_flight,
        sleeper=sleeper,
    )
