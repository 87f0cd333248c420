"""Append-only audit trail of crawl decisions."""

import threading
from typing import List, Optional

from crawlcore.models.data_models import DecisionLogEntry, Outcome


class DecisionLog:
    """
    Thread-safe, append-only decision log.

    There is no API to mutate or remove entries; reads return copies.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: List[DecisionLogEntry] = []

    def record(self, entry: DecisionLogEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def entries(self, outcome: Optional[Outcome] = None) -> List[DecisionLogEntry]:
        """Get entries, optionally only those with the given outcome."""
        with self._lock:
            if outcome is None:
                return self._entries.copy()
            return [e for e in self._entries if e.outcome is outcome]

    def terminal_entries(self) -> List[DecisionLogEntry]:
        with self._lock:
            return [e for e in self._entries if e.terminal]

    def count(self, outcome: Outcome) -> int:
        with self._lock:
            return sum(1 for e in self._entries if e.outcome is outcome)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
