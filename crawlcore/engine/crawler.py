"""Crawler facade wiring buffers, scheduler, engine and runner together."""

import time
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, Union

from crawlcore.engine.context import AllowAll, RunContext, ScopePolicy
from crawlcore.engine.engine import CrawlEngine
from crawlcore.engine.runner import Runner, runner_for
from crawlcore.fetcher.http_client import Fetcher, HTTPFetcher
from crawlcore.fetcher.parsers import ParserRegistry
from crawlcore.models.config import CrawlerConfig, PersistenceConfig
from crawlcore.models.data_models import CrawlSummary, ProcessingTask, RoutingHint
from crawlcore.monitoring.logger import StructuredLogger
from crawlcore.persistence.events import RetryScheduled
from crawlcore.persistence.repository import Durability, FileSnapshotRepository, FileWalRepository
from crawlcore.persistence.snapshot_policy import EveryNMutations, NeverCheckpoint, SnapshotPolicy, TimeInterval
from crawlcore.persistence.wrapper import (
    PersistentFrontier,
    PersistentInFlightBuffer,
    PersistentRetryBuffer,
    PersistentStructure,
)
from crawlcore.pipeline.routing import Route, RouteResolver
from crawlcore.scheduling.politeness import LanePolicy, PolitenessGate
from crawlcore.scheduling.retry import MaxAttemptsRetryPolicy, RetryPolicy
from crawlcore.scheduling.scheduler import Scheduler
from crawlcore.state.buffers import InFlightBuffer, InMemoryRetryBuffer
from crawlcore.state.frontier import FifoFrontier


class Crawler:
    """
    One crawl run: seed URLs, drain to fixpoint, report a summary.

    When built with durable structures, `recover()` must be called before
    seeding to reload state left by a previous process.
    """

    def __init__(
        self,
        run: RunContext,
        scheduler: Scheduler,
        runner: Runner,
        engine: Optional[CrawlEngine] = None,
        durable: Sequence[PersistentStructure] = (),
        wals: Sequence[FileWalRepository] = (),
    ):
        self.run = run
        self.scheduler = scheduler
        self.runner = runner
        self.engine = engine or CrawlEngine(run)
        self.durable = list(durable)
        self._wals = list(wals)
        self.logger = run.logger
        self.seeded = 0

    @property
    def frontier(self):
        return self.run.frontier

    @property
    def in_flight(self):
        return self.run.in_flight

    @property
    def retry_buffer(self):
        return self.run.retry_buffer

    @property
    def dead_letters(self):
        return self.run.dead_letters

    @property
    def decision_log(self):
        return self.run.decision_log

    def seed(
        self,
        url: str,
        hint: RoutingHint = RoutingHint.DEFAULT,
        priority: int = 0,
    ) -> Optional[ProcessingTask]:
        """
        Offer a seed URL to the frontier.

        Returns:
            The seeded task, or None if the URL was already discovered
        """
        if not self.run.seen.mark_discovered(url):
            return None
        task = self.run.tasks.seed(url, hint, priority)
        self.run.frontier.offer(task)
        self.seeded += 1
        return task

    def seed_all(self, urls: Iterable[str], hint: RoutingHint = RoutingHint.DEFAULT) -> int:
        return sum(1 for url in urls if self.seed(url, hint) is not None)

    def recover(self) -> int:
        """
        Restore durable structures and requeue orphaned in-flight tasks.

        Tasks that were in flight when the previous process stopped are
        offered back to the frontier before leaving the in-flight buffer,
        so a crash during recovery can duplicate but never lose them.

        A crash between the two halves of a hand-off leaves one task id in
        two structures. Recovery keeps one copy: the frontier copy wins
        over a retry entry, and a queued or retry copy wins over an
        in-flight one.

        Returns:
            Number of orphaned tasks moved back to the frontier
        """
        for structure in self.durable:
            structure.restore()

        for structure in self.durable:
            for value in structure.mirror_values():
                task = value.task if isinstance(value, RetryScheduled) else value
                self.run.seen.mark_discovered(task.url)

        duplicates = 0
        for entry in self.run.retry_buffer.entries():
            if self.run.frontier.contains(entry.task.id):
                self.run.retry_buffer.remove(entry.task.id)
                duplicates += 1

        orphans = 0
        for task in self.run.in_flight.tasks():
            if self.run.frontier.contains(task.id) or self.run.retry_buffer.contains(task.id):
                duplicates += 1
            else:
                self.run.frontier.offer(task)
                orphans += 1
            self.run.in_flight.remove(task.id)

        if self.logger:
            self.logger.log(
                "recovered",
                orphans=orphans,
                duplicates=duplicates,
                frontier=self.run.frontier.size(),
                retry=self.run.retry_buffer.size(),
            )
        return orphans

    def checkpoint(self) -> None:
        for structure in self.durable:
            structure.checkpoint()

    def run_until_drained(self) -> CrawlSummary:
        """
        Dispatch until frontier, retry buffer and in-flight buffer are empty.

        Raises:
            PersistenceError: If the WAL cannot be written; the drain stops
        """
        if self.logger:
            self.logger.log("crawl_start", seeded=self.seeded, frontier=self.run.frontier.size())

        start = time.time()
        self.runner.run_until_drained(self.engine, self.scheduler)
        summary = self.summary(time.time() - start)

        if self.logger:
            self.logger.log(
                "drain_complete",
                completed=summary.completed,
                dead_lettered=summary.dead_lettered,
                retries=summary.retries_scheduled,
                deferrals=summary.politeness_deferrals,
                elapsed_seconds=round(summary.elapsed_seconds, 3),
            )
        return summary

    def summary(self, elapsed_seconds: float = 0.0) -> CrawlSummary:
        return CrawlSummary(
            seeded=self.seeded,
            completed=self.engine.completed,
            dead_lettered=self.run.dead_letters.size(),
            retries_scheduled=self.engine.coordinator.retries_scheduled,
            politeness_deferrals=self.scheduler.deferrals,
            elapsed_seconds=elapsed_seconds,
            discarded=self.engine.discarded,
            frontier_size=self.run.frontier.size(),
            retry_size=self.run.retry_buffer.size(),
            in_flight_size=self.run.in_flight.size(),
            dead_letters=self.run.dead_letters.entries(),
            decisions=self.run.decision_log.entries(),
        )

    def close(self) -> None:
        """Flush and close WAL files and the HTTP client, if owned."""
        for wal in self._wals:
            wal.close()
        if isinstance(self.run.fetcher, HTTPFetcher):
            self.run.fetcher.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def _durability(persistence: PersistenceConfig) -> Durability:
    if persistence.durability == "batched":
        return Durability.batched(persistence.batch_max_records, persistence.batch_max_delay)
    if persistence.durability == "async":
        return Durability.asynchronous(persistence.async_flush_interval)
    return Durability.sync()


def _snapshot_policy(persistence: PersistenceConfig) -> SnapshotPolicy:
    if persistence.checkpoint_interval:
        return TimeInterval(persistence.checkpoint_interval)
    if persistence.checkpoint_every:
        return EveryNMutations(persistence.checkpoint_every)
    return NeverCheckpoint()


def build_gate(config: CrawlerConfig, clock: Callable[[], float] = time.time) -> PolitenessGate:
    lanes = {
        name: LanePolicy(min_interval=lane.min_interval, max_concurrency=lane.max_concurrency)
        for name, lane in config.lane_map().items()
    }
    return PolitenessGate(
        lanes=lanes,
        default_policy=LanePolicy(min_interval=config.default_min_interval),
        now=clock,
    )


def build_crawler(
    config: CrawlerConfig,
    routes: Union[RouteResolver, Iterable[Route]],
    fetcher: Optional[Fetcher] = None,
    retry_policy: Optional[RetryPolicy] = None,
    scope: Optional[ScopePolicy] = None,
    parsers: Optional[ParserRegistry] = None,
    gate: Optional[PolitenessGate] = None,
    runner: Optional[Runner] = None,
    logger: Optional[StructuredLogger] = None,
    clock: Callable[[], float] = time.time,
    sleeper: Callable[[float], None] = time.sleep,
) -> Crawler:
    """
    Wire a crawler from configuration.

    With `config.persistence.enabled`, the frontier, in-flight and retry
    buffers are file-backed under the state directory; call `recover()`
    on the result before seeding.

    Args:
        config: Crawler configuration
        routes: Route table or routes in match order
        fetcher: Fetcher used by FetchStep (default: HTTPFetcher from config)
        retry_policy: Failure classification (default: MaxAttemptsRetryPolicy from config)
        scope: Scope policy for discovered links (default: allow all)
        parsers: Parser registry (default: ParserRegistry.default())
        gate: Politeness gate (default: built from config lanes)
        runner: Runner (default: chosen by config.run_mode)
        logger: Structured logger (default: new logger at config.log_level)
        clock: Epoch-seconds clock shared by every component
        sleeper: Sleep function used by the runner while parked

    Returns:
        Configured Crawler
    """
    logger = logger or StructuredLogger(level=config.log_level)
    resolver = routes if isinstance(routes, RouteResolver) else RouteResolver(routes)

    frontier = FifoFrontier()
    in_flight = InFlightBuffer()
    retry_buffer = InMemoryRetryBuffer()
    durable: List[PersistentStructure] = []
    wals: List[FileWalRepository] = []

    if config.persistence.enabled:
        state_dir: Path = config.persistence.state_path
        state_dir.mkdir(parents=True, exist_ok=True)
        durability = _durability(config.persistence)

        def storage(name: str):
            wal = FileWalRepository(state_dir / f"{name}.wal", durability, logger)
            wals.append(wal)
            return dict(
                wal=wal,
                snapshots=FileSnapshotRepository(state_dir / f"{name}.snapshot.json"),
                policy=_snapshot_policy(config.persistence),
                logger=logger,
            )

        frontier = PersistentFrontier(frontier, **storage("frontier"))
        in_flight = PersistentInFlightBuffer(in_flight, **storage("inflight"))
        retry_buffer = PersistentRetryBuffer(retry_buffer, **storage("retry"))
        durable = [frontier, in_flight, retry_buffer]

    run = RunContext(
        routes=resolver,
        gate=gate or build_gate(config, clock),
        retry_policy=retry_policy or MaxAttemptsRetryPolicy(
            max_attempts=config.max_attempts,
            base_delay=config.retry_base_delay,
            max_delay=config.retry_max_delay,
            jitter_max=config.retry_jitter_max,
        ),
        frontier=frontier,
        in_flight=in_flight,
        retry_buffer=retry_buffer,
        fetcher=fetcher or HTTPFetcher(
            connect_timeout=config.connect_timeout,
            read_timeout=config.read_timeout,
            user_agent=config.user_agent,
        ),
        parsers=parsers or ParserRegistry.default(),
        scope=scope or AllowAll(),
        clock=clock,
        logger=logger,
    )
    scheduler = Scheduler(
        frontier=run.frontier,
        retry_buffer=run.retry_buffer,
        gate=run.gate,
        now=clock,
        retry_drain_batch=config.retry_drain_batch,
        frontier_scan_batch=config.frontier_scan_batch,
        max_park=config.max_park_seconds,
        logger=logger,
        in_flight=run.in_flight,
    )
    return Crawler(
        run=run,
        scheduler=scheduler,
        runner=runner or runner_for(config, sleeper),
        durable=durable,
        wals=wals,
    )
