"""In-memory crawl state: frontier, buffers and decision log."""

from .buffers import DeadLetterQueue, InFlightBuffer, InMemoryRetryBuffer, RetryBuffer, RetryEntry
from .decision_log import DecisionLog
from .frontier import FifoFrontier, Frontier

__all__ = [
    "DeadLetterQueue",
    "DecisionLog",
    "FifoFrontier",
    "Frontier",
    "InFlightBuffer",
    "InMemoryRetryBuffer",
    "RetryBuffer",
    "RetryEntry",
]
