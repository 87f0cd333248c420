"""Write-ahead logging, snapshots and durable structure wrappers."""

from .repository import (
    Durability,
    DurabilityMode,
    FileSnapshotRepository,
    FileWalRepository,
    InMemorySnapshotRepository,
    InMemoryWalRepository,
    SnapshotRepository,
    WalRepository,
)
from .snapshot_policy import EveryNMutations, NeverCheckpoint, SnapshotPolicy, TimeInterval
from .wrapper import PersistentFrontier, PersistentInFlightBuffer, PersistentRetryBuffer, PersistentStructure

__all__ = [
    "Durability",
    "DurabilityMode",
    "EveryNMutations",
    "FileSnapshotRepository",
    "FileWalRepository",
    "InMemorySnapshotRepository",
    "InMemoryWalRepository",
    "NeverCheckpoint",
    "PersistentFrontier",
    "PersistentInFlightBuffer",
    "PersistentRetryBuffer",
    "PersistentStructure",
    "SnapshotPolicy",
    "SnapshotRepository",
    "TimeInterval",
    "WalRepository",
]
