"""Politeness, retry classification and dispatch scheduling."""

from .politeness import HostLaneKeyResolver, LanePolicy, PolitenessGate, PolitenessKeyResolver
from .retry import (
    AlwaysRetryPolicy,
    CallableRetryPolicy,
    MaxAttemptsRetryPolicy,
    RetryCoordinator,
    RetryPolicy,
    calculate_backoff_delay,
)
from .scheduler import DRAINED, Drained, Park, ScheduleDecision, Scheduler, TaskReady

__all__ = [
    "AlwaysRetryPolicy",
    "CallableRetryPolicy",
    "DRAINED",
    "Drained",
    "HostLaneKeyResolver",
    "LanePolicy",
    "MaxAttemptsRetryPolicy",
    "Park",
    "PolitenessGate",
    "PolitenessKeyResolver",
    "RetryCoordinator",
    "RetryPolicy",
    "ScheduleDecision",
    "Scheduler",
    "TaskReady",
    "calculate_backoff_delay",
]
