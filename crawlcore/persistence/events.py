"""WAL events and snapshots of the durable structures.

Each durable structure has its own closed set of events. Replay code
dispatches on the concrete type and rejects anything it does not know.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Union

from crawlcore.models.data_models import ProcessingTask, TaskId


@dataclass(frozen=True)
class FrontierOffered:
    task: ProcessingTask


@dataclass(frozen=True)
class FrontierPolled:
    task_id: TaskId


@dataclass(frozen=True)
class InFlightPut:
    task: ProcessingTask


@dataclass(frozen=True)
class InFlightRemoved:
    task_id: TaskId


@dataclass(frozen=True)
class RetryScheduled:
    task: ProcessingTask
    at: float
    reason: Optional[str] = None


@dataclass(frozen=True)
class RetryReleased:
    task_id: TaskId


FrontierEvent = Union[FrontierOffered, FrontierPolled]
InFlightEvent = Union[InFlightPut, InFlightRemoved]
RetryEvent = Union[RetryScheduled, RetryReleased]
StateEvent = Union[FrontierEvent, InFlightEvent, RetryEvent]


@dataclass(frozen=True)
class FrontierSnapshot:
    """Frontier contents in offer order."""
    tasks: List[ProcessingTask] = field(default_factory=list)


@dataclass(frozen=True)
class InFlightSnapshot:
    tasks: List[ProcessingTask] = field(default_factory=list)


@dataclass(frozen=True)
class RetrySnapshot:
    """Retry entries in scheduling order."""
    entries: List[RetryScheduled] = field(default_factory=list)


Snapshot = Union[FrontierSnapshot, InFlightSnapshot, RetrySnapshot]
