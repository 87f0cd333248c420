"""Crawl engine, runners and the Crawler facade."""

from .context import (
    AllowAll,
    HostScope,
    MaxDepthScope,
    ProcessingContext,
    RunContext,
    ScopePolicy,
    SeenStore,
    TaskFactory,
)
from .crawler import Crawler, build_crawler, build_gate
from .engine import CrawlEngine, ExecutionOutcome, TaskCompleted, TaskDiscarded, TaskFailed
from .runner import ExecutorRunner, Runner, SingleThreadRunner, runner_for

__all__ = [
    "AllowAll",
    "CrawlEngine",
    "Crawler",
    "ExecutionOutcome",
    "ExecutorRunner",
    "HostScope",
    "MaxDepthScope",
    "ProcessingContext",
    "RunContext",
    "Runner",
    "ScopePolicy",
    "SeenStore",
    "SingleThreadRunner",
    "TaskCompleted",
    "TaskDiscarded",
    "TaskFactory",
    "TaskFailed",
    "build_crawler",
    "build_gate",
    "runner_for",
]
