"""Checkpoint thresholds for durable structures."""

import time
from typing import Callable, Protocol


class SnapshotPolicy(Protocol):
    """Decides when a durable structure compacts its WAL into a snapshot."""

    def record_mutation(self) -> None:
        ...

    def should_checkpoint(self) -> bool:
        ...

    def checkpointed(self) -> None:
        ...


class EveryNMutations:
    """Checkpoint after `n` mutations since the last checkpoint."""

    def __init__(self, n: int):
        if n <= 0:
            raise ValueError(f"n must be positive, got: {n}")
        self.n = n
        self._count = 0

    def record_mutation(self) -> None:
        self._count += 1

    def should_checkpoint(self) -> bool:
        return self._count >= self.n

    def checkpointed(self) -> None:
        self._count = 0


class TimeInterval:
    """Checkpoint once `seconds` have passed and at least one mutation happened."""

    def __init__(self, seconds: float, now: Callable[[], float] = time.monotonic):
        self.seconds = seconds
        self._now = now
        self._last = now()
        self._dirty = False

    def record_mutation(self) -> None:
        self._dirty = True

    def should_checkpoint(self) -> bool:
        return self._dirty and self._now() - self._last >= self.seconds

    def checkpointed(self) -> None:
        self._last = self._now()
        self._dirty = False


class NeverCheckpoint:
    """Only explicit checkpoint() calls compact the WAL."""

    def record_mutation(self) -> None:
        pass

    def should_checkpoint(self) -> bool:
        return False

    def checkpointed(self) -> None:
        pass
