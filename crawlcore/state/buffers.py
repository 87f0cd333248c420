"""In-flight, retry and dead-letter buffers."""

import heapq
import itertools
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol, Tuple

from crawlcore.models.data_models import DeadLetterItem, ProcessingTask, TaskId


class InFlightBuffer:
    """
    Tasks currently owned by a worker, keyed by task id.

    Uses a lock so the coordinating thread and recovery code can
    inspect it while workers complete.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._tasks: Dict[TaskId, ProcessingTask] = {}

    def put(self, task: ProcessingTask) -> None:
        with self._lock:
            self._tasks[task.id] = task

    def remove(self, task_id: TaskId) -> Optional[ProcessingTask]:
        """Remove a task; an unknown id is a no-op returning None."""
        with self._lock:
            return self._tasks.pop(task_id, None)

    def contains(self, task_id: TaskId) -> bool:
        with self._lock:
            return task_id in self._tasks

    def size(self) -> int:
        with self._lock:
            return len(self._tasks)

    def tasks(self) -> List[ProcessingTask]:
        with self._lock:
            return list(self._tasks.values())


@dataclass(frozen=True)
class RetryEntry:
    """A task waiting in the retry buffer until `due_at`."""
    task: ProcessingTask
    due_at: float
    reason: Optional[str] = None


class RetryBuffer(Protocol):
    """Contract of the delayed-retry store."""

    def schedule(self, task: ProcessingTask, at: float, reason: Optional[str] = None) -> None:
        ...

    def due_entries(
        self,
        now: float,
        limit: Optional[int] = None,
        hand_off: Optional[Callable[[ProcessingTask], None]] = None,
    ) -> List[ProcessingTask]:
        ...

    def remove(self, task_id: TaskId) -> Optional[RetryEntry]:
        ...

    def next_due_at(self) -> Optional[float]:
        ...

    def contains(self, task_id: TaskId) -> bool:
        ...

    def size(self) -> int:
        ...


class InMemoryRetryBuffer:
    """
    Retry buffer ordered by due time.

    Entries with equal due times are released in the order they were
    scheduled. Scheduling a task id that is already waiting replaces the
    earlier entry so an id is never held twice.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._heap: List[Tuple[float, int, TaskId]] = []
        self._entries: Dict[TaskId, Tuple[int, RetryEntry]] = {}
        self._sequence = itertools.count()

    def schedule(self, task: ProcessingTask, at: float, reason: Optional[str] = None) -> None:
        with self._lock:
            seq = next(self._sequence)
            self._entries[task.id] = (seq, RetryEntry(task, at, reason))
            heapq.heappush(self._heap, (at, seq, task.id))

    def due_entries(
        self,
        now: float,
        limit: Optional[int] = None,
        hand_off: Optional[Callable[[ProcessingTask], None]] = None,
    ) -> List[ProcessingTask]:
        """
        Remove and return tasks whose due time has elapsed.

        Args:
            now: Current time in epoch seconds
            limit: Maximum number of tasks to release (None for all)
            hand_off: Called with each due task before it is removed; if it
                raises, that task stays in the buffer

        Returns:
            Due tasks, earliest first
        """
        released: List[ProcessingTask] = []
        with self._lock:
            while self._heap and (limit is None or len(released) < limit):
                at, seq, task_id = self._heap[0]
                current = self._entries.get(task_id)
                if current is None or current[0] != seq:
                    # Stale heap slot left behind by a replaced or released entry
                    heapq.heappop(self._heap)
                    continue
                if at > now:
                    break
                task = current[1].task
                if hand_off is not None:
                    hand_off(task)
                heapq.heappop(self._heap)
                del self._entries[task_id]
                released.append(task)
        return released

    def remove(self, task_id: TaskId) -> Optional[RetryEntry]:
        with self._lock:
            current = self._entries.pop(task_id, None)
            return current[1] if current else None

    def next_due_at(self) -> Optional[float]:
        with self._lock:
            while self._heap:
                at, seq, task_id = self._heap[0]
                current = self._entries.get(task_id)
                if current is not None and current[0] == seq:
                    return at
                heapq.heappop(self._heap)
            return None

    def contains(self, task_id: TaskId) -> bool:
        with self._lock:
            return task_id in self._entries

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def entries(self) -> List[RetryEntry]:
        """Waiting entries ordered by due time."""
        with self._lock:
            ordered = sorted(self._entries.values(), key=lambda item: (item[1].due_at, item[0]))
            return [entry for _, entry in ordered]


class DeadLetterQueue:
    """Terminal store of permanently failed tasks. Entries are never removed."""

    def __init__(self):
        self._lock = threading.Lock()
        self._items: List[DeadLetterItem] = []
        self._ids: set = set()

    def add(
        self,
        task: ProcessingTask,
        reason: str,
        dead_at: float = 0.0,
        route_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> DeadLetterItem:
        item = DeadLetterItem(task=task, reason=reason, dead_at=dead_at, route_id=route_id, error=error)
        with self._lock:
            self._items.append(item)
            self._ids.add(task.id)
        return item

    def contains(self, task_id: TaskId) -> bool:
        with self._lock:
            return task_id in self._ids

    def size(self) -> int:
        with self._lock:
            return len(self._items)

    def entries(self) -> List[DeadLetterItem]:
        with self._lock:
            return self._items.copy()
