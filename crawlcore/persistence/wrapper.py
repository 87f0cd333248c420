"""Durable wrappers around the frontier, in-flight and retry structures.

Every mutating call goes through `PersistentStructure._commit`, which under
one lock appends the event to the WAL, applies it to the in-memory mirror
and then to the live delegate. The mirror is the durability source of
truth: checkpoints snapshot the mirror, and restore rebuilds the mirror
from snapshot + WAL before repopulating the delegate.

Replay is idempotent: add-style events key by task id and remove-style
events on an absent id do nothing, so replaying a WAL on top of a
snapshot that already contains its effects yields the same state.
"""

import threading
from collections import OrderedDict
from typing import Callable, Generic, List, Optional, TypeVar

from crawlcore.errors import PersistenceError, StateError
from crawlcore.models.data_models import ProcessingTask, TaskId
from crawlcore.monitoring.logger import StructuredLogger
from crawlcore.persistence.events import (
    FrontierOffered,
    FrontierPolled,
    FrontierSnapshot,
    InFlightPut,
    InFlightRemoved,
    InFlightSnapshot,
    RetryReleased,
    RetryScheduled,
    RetrySnapshot,
)
from crawlcore.persistence.repository import SnapshotRepository, WalRepository
from crawlcore.persistence.snapshot_policy import NeverCheckpoint, SnapshotPolicy
from crawlcore.state.buffers import InFlightBuffer, InMemoryRetryBuffer, RetryEntry
from crawlcore.state.frontier import FifoFrontier

D = TypeVar("D")
E = TypeVar("E")
S = TypeVar("S")
V = TypeVar("V")
T = TypeVar("T")


class PersistentStructure(Generic[D, E, S, V]):
    """
    WAL + mirror + delegate triple shared by all durable structures.

    Type parameters: D is the delegate, E the event type, S the snapshot
    type and V the mirror value stored per task id.

    Subclasses supply `_apply` (event -> mirror), `_snapshot_of`,
    `_load_snapshot` and `_repopulate`; they never touch the WAL directly.
    """

    name = "structure"

    def __init__(
        self,
        delegate: D,
        wal: WalRepository[E],
        snapshots: SnapshotRepository[S],
        policy: Optional[SnapshotPolicy] = None,
        logger: Optional[StructuredLogger] = None,
    ):
        self._delegate = delegate
        self._wal = wal
        self._snapshots = snapshots
        self._policy = policy or NeverCheckpoint()
        self.logger = logger
        self._lock = threading.RLock()
        self._mirror: "OrderedDict[TaskId, V]" = OrderedDict()
        self._restored = False

    @property
    def delegate(self) -> D:
        return self._delegate

    @property
    def restored(self) -> bool:
        return self._restored

    def mirror_values(self) -> List[V]:
        """Mirror contents in insertion order."""
        with self._lock:
            return list(self._mirror.values())

    def _commit(self, event: E, apply_to_delegate: Callable[[], T]) -> T:
        """Append, mirror, delegate, then maybe checkpoint. Caller holds the lock."""
        try:
            self._wal.append(event)
        except PersistenceError:
            raise
        except OSError as e:
            raise PersistenceError(f"{self.name}: WAL append failed") from e

        self._apply(self._mirror, event)
        result = apply_to_delegate()

        self._policy.record_mutation()
        if self._policy.should_checkpoint():
            try:
                self._checkpoint_locked()
            except (PersistenceError, OSError) as e:
                # The mutation is already durable in the WAL; the policy stays
                # due so the next mutation tries again
                if self.logger:
                    self.logger.error("checkpoint_failed", structure=self.name, error=str(e))
        return result

    def checkpoint(self) -> None:
        """Write a snapshot of the mirror, then flush and truncate the WAL."""
        with self._lock:
            self._checkpoint_locked()

    def _checkpoint_locked(self) -> None:
        self._snapshots.save(self._snapshot_of(self._mirror))
        # Flush before truncate so no appended event is dropped unsynced
        self._wal.flush()
        self._wal.truncate()
        self._policy.checkpointed()
        if self.logger:
            self.logger.checkpoint(structure=self.name, entries=len(self._mirror))

    def restore(self) -> None:
        """
        Rebuild mirror and delegate from the latest snapshot plus the WAL.

        Only the first successful call does any work. The delegate must be
        empty, since its contents would otherwise be duplicated.

        Raises:
            StateError: If the delegate already holds entries
            PersistenceError: If the snapshot or WAL cannot be read
        """
        with self._lock:
            if self._restored:
                return
            if self._delegate_size() != 0:
                raise StateError(
                    f"{self.name}: restore requires an empty delegate, found {self._delegate_size()} entries"
                )

            mirror: "OrderedDict[TaskId, V]" = OrderedDict()
            snapshot = self._snapshots.load()
            if snapshot is not None:
                self._load_snapshot(mirror, snapshot)

            events = self._wal.read_all()
            self.replay(mirror, events)

            self._mirror = mirror
            self._repopulate(mirror)
            self._restored = True

            if self.logger:
                self.logger.log(
                    "restore",
                    structure=self.name,
                    snapshot=snapshot is not None,
                    events=len(events),
                    entries=len(mirror),
                )

    def replay(self, mirror: "OrderedDict[TaskId, V]", events: List[E]) -> None:
        """Apply events to a mirror strictly in append order."""
        for event in events:
            self._apply(mirror, event)

    def _apply(self, mirror: "OrderedDict[TaskId, V]", event: E) -> None:
        raise NotImplementedError

    def _snapshot_of(self, mirror: "OrderedDict[TaskId, V]") -> S:
        raise NotImplementedError

    def _load_snapshot(self, mirror: "OrderedDict[TaskId, V]", snapshot: S) -> None:
        raise NotImplementedError

    def _repopulate(self, mirror: "OrderedDict[TaskId, V]") -> None:
        raise NotImplementedError

    def _delegate_size(self) -> int:
        return self._delegate.size()


class PersistentFrontier(PersistentStructure[FifoFrontier, object, FrontierSnapshot, ProcessingTask]):
    """Frontier whose every offer and poll is written ahead to a WAL."""

    name = "frontier"

    def offer(self, task: Optional[ProcessingTask]) -> None:
        if task is None:
            return
        with self._lock:
            self._commit(FrontierOffered(task), lambda: self._delegate.offer(task))

    def poll(self) -> Optional[ProcessingTask]:
        with self._lock:
            # Peek first so the WAL names the task before the delegate gives it up
            head = self._delegate.peek()
            if head is None:
                return None
            return self._commit(FrontierPolled(head.id), self._delegate.poll)

    def remove(self, task_id: TaskId) -> Optional[ProcessingTask]:
        with self._lock:
            if task_id not in self._mirror:
                return None
            return self._commit(FrontierPolled(task_id), lambda: self._delegate.remove(task_id))

    def peek(self) -> Optional[ProcessingTask]:
        return self._delegate.peek()

    def size(self) -> int:
        return self._delegate.size()

    def contains(self, task_id: TaskId) -> bool:
        with self._lock:
            return task_id in self._mirror

    def _apply(self, mirror, event) -> None:
        if isinstance(event, FrontierOffered):
            mirror[event.task.id] = event.task
        elif isinstance(event, FrontierPolled):
            mirror.pop(event.task_id, None)
        else:
            raise PersistenceError(f"frontier: unexpected event {type(event).__name__}")

    def _snapshot_of(self, mirror) -> FrontierSnapshot:
        return FrontierSnapshot(list(mirror.values()))

    def _load_snapshot(self, mirror, snapshot: FrontierSnapshot) -> None:
        for task in snapshot.tasks:
            mirror[task.id] = task

    def _repopulate(self, mirror) -> None:
        for task in mirror.values():
            self._delegate.offer(task)


class PersistentInFlightBuffer(PersistentStructure[InFlightBuffer, object, InFlightSnapshot, ProcessingTask]):
    """In-flight buffer backed by a WAL."""

    name = "inflight"

    def put(self, task: ProcessingTask) -> None:
        with self._lock:
            self._commit(InFlightPut(task), lambda: self._delegate.put(task))

    def remove(self, task_id: TaskId) -> Optional[ProcessingTask]:
        with self._lock:
            if task_id not in self._mirror:
                return None
            return self._commit(InFlightRemoved(task_id), lambda: self._delegate.remove(task_id))

    def contains(self, task_id: TaskId) -> bool:
        return self._delegate.contains(task_id)

    def size(self) -> int:
        return self._delegate.size()

    def tasks(self) -> List[ProcessingTask]:
        return self._delegate.tasks()

    def _apply(self, mirror, event) -> None:
        if isinstance(event, InFlightPut):
            mirror[event.task.id] = event.task
        elif isinstance(event, InFlightRemoved):
            mirror.pop(event.task_id, None)
        else:
            raise PersistenceError(f"inflight: unexpected event {type(event).__name__}")

    def _snapshot_of(self, mirror) -> InFlightSnapshot:
        return InFlightSnapshot(list(mirror.values()))

    def _load_snapshot(self, mirror, snapshot: InFlightSnapshot) -> None:
        for task in snapshot.tasks:
            mirror[task.id] = task

    def _repopulate(self, mirror) -> None:
        for task in mirror.values():
            self._delegate.put(task)


class PersistentRetryBuffer(PersistentStructure[InMemoryRetryBuffer, object, RetrySnapshot, RetryScheduled]):
    """
    Retry buffer backed by a WAL.

    Due entries are chosen from the mirror (earliest due time first,
    scheduling order on ties) so each release is logged before the
    delegate drops the entry.
    """

    name = "retry"

    def schedule(self, task: ProcessingTask, at: float, reason: Optional[str] = None) -> None:
        with self._lock:
            self._commit(RetryScheduled(task, at, reason), lambda: self._delegate.schedule(task, at, reason))

    def due_entries(
        self,
        now: float,
        limit: Optional[int] = None,
        hand_off: Optional[Callable[[ProcessingTask], None]] = None,
    ) -> List[ProcessingTask]:
        with self._lock:
            due = sorted(
                (entry for entry in self._mirror.values() if entry.at <= now),
                key=lambda entry: entry.at,
            )
            if limit is not None:
                due = due[:limit]

            released: List[ProcessingTask] = []
            for entry in due:
                task_id = entry.task.id
                # The receiver logs its copy before the release is logged here
                if hand_off is not None:
                    hand_off(entry.task)
                self._commit(RetryReleased(task_id), lambda: self._delegate.remove(task_id))
                released.append(entry.task)
            return released

    def remove(self, task_id: TaskId) -> Optional[RetryEntry]:
        with self._lock:
            if task_id not in self._mirror:
                return None
            return self._commit(RetryReleased(task_id), lambda: self._delegate.remove(task_id))

    def next_due_at(self) -> Optional[float]:
        return self._delegate.next_due_at()

    def contains(self, task_id: TaskId) -> bool:
        return self._delegate.contains(task_id)

    def size(self) -> int:
        return self._delegate.size()

    def entries(self) -> List[RetryEntry]:
        return self._delegate.entries()

    def _apply(self, mirror, event) -> None:
        if isinstance(event, RetryScheduled):
            # Rescheduling an id moves it to the back of the tie order
            mirror.pop(event.task.id, None)
            mirror[event.task.id] = event
        elif isinstance(event, RetryReleased):
            mirror.pop(event.task_id, None)
        else:
            raise PersistenceError(f"retry: unexpected event {type(event).__name__}")

    def _snapshot_of(self, mirror) -> RetrySnapshot:
        return RetrySnapshot(list(mirror.values()))

    def _load_snapshot(self, mirror, snapshot: RetrySnapshot) -> None:
        for entry in snapshot.entries:
            mirror[entry.task.id] = entry

    def _repopulate(self, mirror) -> None:
        for entry in mirror.values():
            self._delegate.schedule(entry.task, entry.at, entry.reason)
