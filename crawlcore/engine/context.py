"""Run-level and per-task processing contexts."""

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol
from urllib.parse import urldefrag, urljoin, urlsplit

from crawlcore.fetcher.http_client import Fetcher
from crawlcore.fetcher.parsers import ParserRegistry
from crawlcore.models.data_models import (
    DecisionLogEntry,
    FetchResult,
    Outcome,
    ParsedDocument,
    ProcessingTask,
    RoutingHint,
    TaskId,
    TaskOrigin,
)
from crawlcore.monitoring.logger import StructuredLogger
from crawlcore.pipeline.routing import RouteResolver
from crawlcore.scheduling.politeness import PolitenessGate
from crawlcore.scheduling.retry import RetryPolicy
from crawlcore.state.buffers import DeadLetterQueue, InFlightBuffer, InMemoryRetryBuffer, RetryBuffer
from crawlcore.state.decision_log import DecisionLog
from crawlcore.state.frontier import FifoFrontier, Frontier


class SeenStore:
    """Thread-safe record of discovered and processed URLs."""

    def __init__(self):
        self._lock = threading.Lock()
        self._discovered: set = set()
        self._processed: set = set()

    def mark_discovered(self, url: str) -> bool:
        """Return True only the first time a URL is seen."""
        with self._lock:
            if url in self._discovered:
                return False
            self._discovered.add(url)
            return True

    def mark_processed(self, url: str) -> None:
        with self._lock:
            self._discovered.add(url)
            self._processed.add(url)

    def is_processed(self, url: str) -> bool:
        with self._lock:
            return url in self._processed

    def discovered_count(self) -> int:
        with self._lock:
            return len(self._discovered)


class ScopePolicy(Protocol):
    """Decides whether a discovered task belongs to this crawl."""

    def is_allowed(self, task: ProcessingTask) -> bool:
        ...

    def deny_reason(self, task: ProcessingTask) -> str:
        ...


class AllowAll:

    def is_allowed(self, task: ProcessingTask) -> bool:
        return True

    def deny_reason(self, task: ProcessingTask) -> str:
        return ""


class HostScope:
    """Allow only the given hosts (and optionally their subdomains)."""

    def __init__(self, hosts: Iterable[str], include_subdomains: bool = False):
        self.hosts = {h.lower() for h in hosts}
        self.include_subdomains = include_subdomains

    def is_allowed(self, task: ProcessingTask) -> bool:
        host = task.host
        if host in self.hosts:
            return True
        return self.include_subdomains and any(host.endswith("." + h) for h in self.hosts)

    def deny_reason(self, task: ProcessingTask) -> str:
        return f"host {task.host} out of scope"


class MaxDepthScope:

    def __init__(self, max_depth: int):
        self.max_depth = max_depth

    def is_allowed(self, task: ProcessingTask) -> bool:
        return task.depth <= self.max_depth

    def deny_reason(self, task: ProcessingTask) -> str:
        return f"depth {task.depth} exceeds {self.max_depth}"


class TaskFactory:
    """Creates seed and child tasks stamped with the run clock."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock

    def seed(self, url: str, hint: RoutingHint = RoutingHint.DEFAULT, priority: int = 0) -> ProcessingTask:
        now = self.clock()
        return ProcessingTask(
            id=TaskId.random(),
            url=url,
            origin=TaskOrigin.seed(),
            discovered_at=now,
            priority=priority,
            hint=hint,
            scheduled_at=now,
        )

    def child_of(
        self,
        parent: ProcessingTask,
        url: str,
        hint: Optional[RoutingHint] = None,
        reason: str = "pipeline",
    ) -> ProcessingTask:
        return parent.child(url, self.clock(), hint=hint, reason=reason)


@dataclass
class RunContext:
    """Shared resources of one crawl run.

    The buffers may be plain in-memory structures or their persistent
    wrappers; everything else only talks to them through their APIs.
    """
    routes: RouteResolver
    gate: PolitenessGate
    retry_policy: RetryPolicy
    frontier: Frontier = field(default_factory=FifoFrontier)
    in_flight: InFlightBuffer = field(default_factory=InFlightBuffer)
    retry_buffer: RetryBuffer = field(default_factory=InMemoryRetryBuffer)
    dead_letters: DeadLetterQueue = field(default_factory=DeadLetterQueue)
    decision_log: DecisionLog = field(default_factory=DecisionLog)
    fetcher: Optional[Fetcher] = None
    parsers: ParserRegistry = field(default_factory=ParserRegistry.default)
    seen: SeenStore = field(default_factory=SeenStore)
    scope: ScopePolicy = field(default_factory=AllowAll)
    clock: Callable[[], float] = time.time
    tasks: Optional[TaskFactory] = None
    logger: Optional[StructuredLogger] = None

    def __post_init__(self):
        if self.tasks is None:
            self.tasks = TaskFactory(self.clock)


class ProcessingContext:
    """
    Mutable state of one task while its pipeline runs.

    Populated in stages: the fetch step sets `fetch_result`, the parse
    step sets `document`, extraction steps call `enqueue()`. Confined to
    the worker thread running the task.
    """

    def __init__(self, task: ProcessingTask, run: RunContext):
        self.task = task
        self.run = run
        self.fetch_result: Optional[FetchResult] = None
        self.document: Optional[ParsedDocument] = None
        self.route_id: Optional[str] = None
        self.attributes: Dict[str, Any] = {}
        self.enqueued: List[ProcessingTask] = []

    def enqueue(self, url: Optional[str], hint: Optional[RoutingHint] = None) -> Optional[ProcessingTask]:
        """
        Offer a discovered URL to the frontier as a derived task.

        Relative URLs resolve against the final fetched URL. Self links,
        out-of-scope tasks and already discovered URLs are rejected.

        Returns:
            The new task, or None if it was rejected
        """
        if not url:
            self._decide(Outcome.ENQUEUE_REJECTED, "", "invalid url")
            return None

        base = self.fetch_result.final_url if self.fetch_result else self.task.url
        absolute, _ = urldefrag(urljoin(base, url))
        if urlsplit(absolute).scheme not in ("http", "https"):
            self._decide(Outcome.ENQUEUE_REJECTED, absolute, "unsupported scheme")
            return None
        if absolute == self.task.url:
            self._decide(Outcome.ENQUEUE_REJECTED, absolute, "self link")
            return None

        reason = f"route:{self.route_id}" if self.route_id else "pipeline"
        child = self.run.tasks.child_of(self.task, absolute, hint, reason)

        if not self.run.scope.is_allowed(child):
            self._decide(Outcome.ENQUEUE_REJECTED, absolute, self.run.scope.deny_reason(child))
            return None
        if not self.run.seen.mark_discovered(absolute):
            self._decide(Outcome.ENQUEUE_REJECTED, absolute, "duplicate discovered")
            return None

        self.run.frontier.offer(child)
        self.enqueued.append(child)
        self._decide(Outcome.ENQUEUE_ACCEPTED, absolute, f"parent={self.task.id}", task_id=child.id)
        return child

    def _decide(self, outcome: Outcome, url: str, reason: str, task_id: Optional[TaskId] = None) -> None:
        self.run.decision_log.record(DecisionLogEntry(
            task_id=task_id,
            url=url,
            outcome=outcome,
            reason=reason,
            timestamp=self.run.clock(),
            attempt=0,
            route_id=self.route_id,
        ))
