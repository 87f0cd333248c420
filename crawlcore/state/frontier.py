"""Frontier: queue of tasks waiting to be dispatched."""

import heapq
import itertools
import threading
from typing import List, Optional, Protocol, Tuple

from crawlcore.models.data_models import ProcessingTask, TaskId


class Frontier(Protocol):
    """Queue contract shared by the live and the durable frontier."""

    def offer(self, task: Optional[ProcessingTask]) -> None:
        ...

    def poll(self) -> Optional[ProcessingTask]:
        ...

    def peek(self) -> Optional[ProcessingTask]:
        ...

    def remove(self, task_id: TaskId) -> Optional[ProcessingTask]:
        ...

    def contains(self, task_id: TaskId) -> bool:
        ...

    def size(self) -> int:
        ...


class FifoFrontier:
    """
    Thread-safe frontier ordered by priority, then by offer order.

    Higher `priority` values are served first. Within one priority class
    tasks come out in exactly the order they were offered.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._heap: List[Tuple[int, int, ProcessingTask]] = []
        self._sequence = itertools.count()

    def offer(self, task: Optional[ProcessingTask]) -> None:
        """Enqueue a task at the tail of its priority class; None is ignored."""
        if task is None:
            return
        with self._lock:
            heapq.heappush(self._heap, (-task.priority, next(self._sequence), task))

    def poll(self) -> Optional[ProcessingTask]:
        """Remove and return the head, or None when empty."""
        with self._lock:
            if not self._heap:
                return None
            return heapq.heappop(self._heap)[2]

    def peek(self) -> Optional[ProcessingTask]:
        with self._lock:
            return self._heap[0][2] if self._heap else None

    def remove(self, task_id: TaskId) -> Optional[ProcessingTask]:
        """Remove a task by id; the head is the common case and costs O(log n)."""
        with self._lock:
            if not self._heap:
                return None
            if self._heap[0][2].id == task_id:
                return heapq.heappop(self._heap)[2]
            for index, entry in enumerate(self._heap):
                if entry[2].id == task_id:
                    self._heap[index] = self._heap[-1]
                    self._heap.pop()
                    heapq.heapify(self._heap)
                    return entry[2]
            return None

    def size(self) -> int:
        with self._lock:
            return len(self._heap)

    def contains(self, task_id: TaskId) -> bool:
        with self._lock:
            return any(entry[2].id == task_id for entry in self._heap)

    def tasks(self) -> List[ProcessingTask]:
        """Contents in dispatch order."""
        with self._lock:
            return [entry[2] for entry in sorted(self._heap)]
