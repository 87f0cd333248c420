"""Core data models for the crawl scheduler."""

import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urlsplit


@dataclass(frozen=True)
class TaskId:
    """Opaque task identifier, compared by value."""
    value: str

    @classmethod
    def random(cls) -> "TaskId":
        return cls(uuid.uuid4().hex)

    def __str__(self) -> str:
        return self.value


class OriginKind(Enum):
    """How a task entered the system."""
    SEED = "seed"
    RETRY = "retry"
    DERIVED = "derived"


@dataclass(frozen=True)
class TaskOrigin:
    """Provenance of a task."""
    kind: OriginKind
    reason: str = ""
    parent_id: Optional[TaskId] = None

    @classmethod
    def seed(cls, reason: str = "seed") -> "TaskOrigin":
        return cls(OriginKind.SEED, reason)

    @classmethod
    def retry(cls, reason: str) -> "TaskOrigin":
        return cls(OriginKind.RETRY, reason)

    @classmethod
    def derived(cls, reason: str, parent_id: Optional[TaskId] = None) -> "TaskOrigin":
        return cls(OriginKind.DERIVED, reason, parent_id)


class RoutingHint(Enum):
    """Routing tag; its value doubles as the default politeness lane."""
    DEFAULT = "default"
    HTML = "html"
    JSON = "json"
    ASSET = "asset"
    SITEMAP = "sitemap"


@dataclass(frozen=True)
class ProcessingTask:
    """Immutable unit of crawl work.

    Every state transition (retry, deferral, discovery of a child link)
    produces a new instance; nothing here is mutated after construction.
    Times are epoch seconds.
    """
    id: TaskId
    url: str
    attempt: int = 0
    parent_url: Optional[str] = None
    origin: TaskOrigin = field(default_factory=TaskOrigin.seed)
    depth: int = 0
    discovered_at: float = 0.0
    priority: int = 0
    hint: RoutingHint = RoutingHint.DEFAULT
    scheduled_at: float = 0.0

    def __post_init__(self):
        if self.attempt < 0:
            raise ValueError(f"attempt must be >= 0, got: {self.attempt}")

    @property
    def host(self) -> str:
        return (urlsplit(self.url).hostname or "").lower()

    @property
    def path(self) -> str:
        return urlsplit(self.url).path or "/"

    def retried(self, now: float, reason: str) -> "ProcessingTask":
        """Next incarnation after a failure: same id, attempt + 1."""
        return replace(
            self,
            attempt=self.attempt + 1,
            origin=TaskOrigin.retry(reason),
            scheduled_at=now,
        )

    def deferred(self, at: float) -> "ProcessingTask":
        """Same attempt, scheduled for a later instant."""
        return replace(self, scheduled_at=at)

    def child(
        self,
        url: str,
        now: float,
        hint: Optional[RoutingHint] = None,
        reason: str = "pipeline",
    ) -> "ProcessingTask":
        """New task discovered while processing this one."""
        return ProcessingTask(
            id=TaskId.random(),
            url=url,
            attempt=0,
            parent_url=self.url,
            origin=TaskOrigin.derived(reason, self.id),
            depth=self.depth + 1,
            discovered_at=now,
            priority=self.priority,
            hint=hint or self.hint,
            scheduled_at=now,
        )


@dataclass(frozen=True)
class PolitenessKey:
    """Throttling bucket a task is dispatched against."""
    lane: str
    host: str


@dataclass(frozen=True)
class PermitDecision:
    """Answer of the politeness gate."""
    allowed: bool
    retry_after: float = 0.0

    @classmethod
    def allow(cls) -> "PermitDecision":
        return cls(True, 0.0)

    @classmethod
    def deny(cls, retry_after: float) -> "PermitDecision":
        return cls(False, max(0.0, retry_after))


# Retry decisions

@dataclass(frozen=True)
class Retry:
    """Run the task again at `at`."""
    at: float
    reason: str


@dataclass(frozen=True)
class DeadLetter:
    """Abandon the task permanently."""
    reason: str
    exhausted: bool = False


RetryDecision = Union[Retry, DeadLetter]


# Pipeline step results

@dataclass(frozen=True)
class Continue:
    step_id: str


@dataclass(frozen=True)
class Done:
    step_id: str


@dataclass(frozen=True)
class Fail:
    step_id: str
    cause: BaseException


@dataclass(frozen=True)
class Reroute:
    """Hand the same processing context to another named route."""
    step_id: str
    route_id: str


PipelineResult = Union[Continue, Done, Fail, Reroute]


class Outcome(Enum):
    """Kinds of decision log entries."""
    DONE = "done"
    DEAD_LETTER = "dead_letter"
    RETRIES_EXHAUSTED = "retries_exhausted"
    ENQUEUE_ACCEPTED = "enqueue_accepted"
    ENQUEUE_REJECTED = "enqueue_rejected"
    DISCARDED = "discarded"


TERMINAL_OUTCOMES = frozenset({Outcome.DONE, Outcome.DEAD_LETTER, Outcome.RETRIES_EXHAUSTED, Outcome.DISCARDED})


@dataclass(frozen=True)
class DecisionLogEntry:
    """Immutable audit record."""
    task_id: Optional[TaskId]
    url: str
    outcome: Outcome
    reason: str
    timestamp: float
    attempt: int = 0
    route_id: Optional[str] = None

    @property
    def terminal(self) -> bool:
        return self.outcome in TERMINAL_OUTCOMES


@dataclass(frozen=True)
class DeadLetterItem:
    """A task parked permanently in the dead-letter queue."""
    task: ProcessingTask
    reason: str
    dead_at: float
    route_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class CrawlSummary:
    """Counters reported after a drain."""
    seeded: int
    completed: int
    dead_lettered: int
    retries_scheduled: int
    politeness_deferrals: int
    elapsed_seconds: float
    discarded: int = 0
    frontier_size: int = 0
    retry_size: int = 0
    in_flight_size: int = 0
    dead_letters: List[DeadLetterItem] = field(default_factory=list)
    decisions: List[DecisionLogEntry] = field(default_factory=list)

    @property
    def drained(self) -> bool:
        return self.frontier_size == 0 and self.retry_size == 0 and self.in_flight_size == 0


@dataclass(frozen=True)
class FetchRequest:
    url: str
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class FetchResult:
    """Response of a fetcher, content type without parameters."""
    final_url: str
    status: int
    headers: Dict[str, str]
    body: bytes
    content_type: str


@dataclass(frozen=True)
class ParsedDocument:
    url: str
    content_type: str
    content: Any
