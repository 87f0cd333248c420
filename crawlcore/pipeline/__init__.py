"""Routing and pipeline execution."""

from .executor import PipelineExecutor
from .routing import (
    Pipeline,
    PipelineStep,
    Route,
    RouteResolver,
    all_of,
    any_of,
    any_task,
    hint_is,
    host_is,
    not_,
    path_prefix,
    url_matches,
)
from .steps import EnqueueLinksStep, FetchStep, ParseStep, extract_html_links

__all__ = [
    "EnqueueLinksStep",
    "FetchStep",
    "ParseStep",
    "Pipeline",
    "PipelineExecutor",
    "PipelineStep",
    "Route",
    "RouteResolver",
    "all_of",
    "any_of",
    "any_task",
    "extract_html_links",
    "hint_is",
    "host_is",
    "not_",
    "path_prefix",
    "url_matches",
]
