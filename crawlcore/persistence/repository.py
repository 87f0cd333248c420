"""WAL and snapshot storage.

Two media are provided: in-memory repositories for tests and embedding,
and file repositories that write JSON lines (WAL) and JSON documents
(snapshots) with fsync according to a durability mode.
"""

import json
import os
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Generic, List, Optional, Protocol, TypeVar

from crawlcore.errors import PersistenceError
from crawlcore.monitoring.logger import StructuredLogger
from crawlcore.persistence.codec import decode_event, encode_event, snapshot_from_dict, snapshot_to_dict
from crawlcore.persistence.events import Snapshot, StateEvent

E = TypeVar("E")
S = TypeVar("S")


class WalRepository(Protocol[E]):
    """Append-only event log."""

    def append(self, event: E) -> None:
        ...

    def read_all(self) -> List[E]:
        ...

    def truncate(self) -> None:
        ...

    def flush(self) -> None:
        ...


class SnapshotRepository(Protocol[S]):
    """Holds the latest snapshot of one structure."""

    def save(self, snapshot: S) -> None:
        ...

    def load(self) -> Optional[S]:
        ...


class InMemoryWalRepository(Generic[E]):
    """WAL kept in a list. Survives as long as the object does."""

    def __init__(self):
        self._lock = threading.Lock()
        self._events: List[E] = []

    def append(self, event: E) -> None:
        with self._lock:
            self._events.append(event)

    def read_all(self) -> List[E]:
        with self._lock:
            return self._events.copy()

    def truncate(self) -> None:
        with self._lock:
            self._events.clear()

    def flush(self) -> None:
        pass

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)


class InMemorySnapshotRepository(Generic[S]):

    def __init__(self):
        self._lock = threading.Lock()
        self._snapshot: Optional[S] = None
        self.saves = 0

    def save(self, snapshot: S) -> None:
        with self._lock:
            self._snapshot = snapshot
            self.saves += 1

    def load(self) -> Optional[S]:
        with self._lock:
            return self._snapshot


class DurabilityMode(Enum):
    """When the file WAL calls fsync."""
    SYNC = "sync"
    BATCHED = "batched"
    ASYNC = "async"


@dataclass(frozen=True)
class Durability:
    """
    Fsync policy of a file WAL.

    SYNC fsyncs every append. BATCHED fsyncs once `max_records` appends
    or `max_delay` seconds have accumulated. ASYNC fsyncs at most every
    `flush_interval` seconds; data written between fsyncs may be lost
    on power failure but not on process crash.
    """
    mode: DurabilityMode = DurabilityMode.SYNC
    max_records: int = 64
    max_delay: float = 0.05
    flush_interval: float = 1.0

    @classmethod
    def sync(cls) -> "Durability":
        return cls(DurabilityMode.SYNC)

    @classmethod
    def batched(cls, max_records: int = 64, max_delay: float = 0.05) -> "Durability":
        return cls(DurabilityMode.BATCHED, max_records=max_records, max_delay=max_delay)

    @classmethod
    def asynchronous(cls, flush_interval: float = 1.0) -> "Durability":
        return cls(DurabilityMode.ASYNC, flush_interval=flush_interval)


class FileWalRepository:
    """
    WAL stored as one JSON object per line.

    Appends are serialized by a lock. Any OS-level failure surfaces as
    PersistenceError so the calling wrapper does not apply the mutation.
    With `repair=False` a torn tail is skipped but left on disk, for
    readers that must not modify the state directory.
    """

    def __init__(
        self,
        path: Path,
        durability: Optional[Durability] = None,
        logger: Optional[StructuredLogger] = None,
        now: Callable[[], float] = time.monotonic,
        repair: bool = True,
    ):
        self.path = Path(path)
        self.repair = repair
        self.durability = durability or Durability.sync()
        self.logger = logger
        self._now = now
        self._lock = threading.Lock()
        self._handle = None
        self._pending = 0
        self._last_sync = now()

    def _open(self):
        if self._handle is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._handle = open(self.path, "a", encoding="utf-8")
        return self._handle

    def append(self, event: StateEvent) -> None:
        line = encode_event(event) + "\n"
        with self._lock:
            try:
                handle = self._open()
                handle.write(line)
                handle.flush()
                self._pending += 1
                if self._should_sync():
                    self._sync_locked()
            except OSError as e:
                raise PersistenceError(f"Failed to append WAL: {self.path}") from e

    def _should_sync(self) -> bool:
        mode = self.durability.mode
        elapsed = self._now() - self._last_sync
        if mode is DurabilityMode.SYNC:
            return True
        if mode is DurabilityMode.BATCHED:
            return self._pending >= self.durability.max_records or elapsed >= self.durability.max_delay
        return elapsed >= self.durability.flush_interval

    def _sync_locked(self) -> None:
        if self._handle is not None:
            self._handle.flush()
            os.fsync(self._handle.fileno())
        self._pending = 0
        self._last_sync = self._now()

    def flush(self) -> None:
        with self._lock:
            try:
                self._sync_locked()
            except OSError as e:
                raise PersistenceError(f"Failed to flush WAL: {self.path}") from e

    def read_all(self) -> List[StateEvent]:
        """
        Read every event in append order.

        A final line that fails to decode is treated as a torn write from a
        crash: it is skipped and cut from the file, so later appends start
        on a clean line. A bad line anywhere else is corruption.

        Raises:
            PersistenceError: If the file cannot be read or is corrupt
        """
        with self._lock:
            if not self.path.exists():
                return []
            try:
                with open(self.path, "rb") as f:
                    data = f.read()
            except OSError as e:
                raise PersistenceError(f"Failed to read WAL: {self.path}") from e

            lines = data.split(b"\n")
            last = max((i for i, raw in enumerate(lines) if raw.strip()), default=-1)
            events: List[StateEvent] = []
            offset = 0
            for index, raw in enumerate(lines):
                if raw.strip():
                    try:
                        events.append(decode_event(raw.decode("utf-8")))
                    except (PersistenceError, UnicodeDecodeError):
                        if index != last:
                            raise PersistenceError(f"Corrupt WAL {self.path} at line {index + 1}")
                        if self.logger:
                            self.logger.warning(
                                "wal_torn_tail", path=str(self.path), line=index + 1, repaired=self.repair
                            )
                        if self.repair:
                            self._cut_locked(offset)
                        break
                offset += len(raw) + 1
            return events

    def _cut_locked(self, size: int) -> None:
        try:
            if self._handle is not None:
                self._handle.close()
                self._handle = None
            os.truncate(self.path, size)
        except OSError as e:
            raise PersistenceError(f"Failed to cut torn WAL tail: {self.path}") from e

    def truncate(self) -> None:
        """Empty the log; the truncation itself is fsynced before returning."""
        with self._lock:
            try:
                if self._handle is not None:
                    self._handle.close()
                    self._handle = None
                if self.path.exists():
                    with open(self.path, "w", encoding="utf-8") as f:
                        f.flush()
                        os.fsync(f.fileno())
                self._pending = 0
                self._last_sync = self._now()
            except OSError as e:
                raise PersistenceError(f"Failed to truncate WAL: {self.path}") from e

    def close(self) -> None:
        with self._lock:
            if self._handle is not None:
                try:
                    self._sync_locked()
                finally:
                    self._handle.close()
                    self._handle = None


class FileSnapshotRepository:
    """Snapshot stored as a JSON document, replaced atomically on save."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def save(self, snapshot: Snapshot) -> None:
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(snapshot_to_dict(snapshot), f, separators=(",", ":"))
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise PersistenceError(f"Failed to write snapshot: {self.path}") from e

    def load(self) -> Optional[Snapshot]:
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except OSError as e:
            raise PersistenceError(f"Failed to read snapshot: {self.path}") from e
        except json.JSONDecodeError as e:
            raise PersistenceError(f"Corrupt snapshot: {self.path}") from e
        return snapshot_from_dict(data)
