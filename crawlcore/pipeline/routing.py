"""Route matching: picks the pipeline that processes a task."""

import re
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Union

from crawlcore.errors import ConfigurationError
from crawlcore.models.data_models import ProcessingTask, RoutingHint

Matcher = Callable[[ProcessingTask], bool]


def any_task(task: ProcessingTask) -> bool:
    return True


def hint_is(*hints: RoutingHint) -> Matcher:
    wanted = frozenset(hints)
    return lambda task: task.hint in wanted


def host_is(*hosts: str) -> Matcher:
    wanted = frozenset(h.lower() for h in hosts)
    return lambda task: task.host in wanted


def path_prefix(prefix: str) -> Matcher:
    return lambda task: task.path.startswith(prefix)


def url_matches(pattern: Union[str, "re.Pattern"]) -> Matcher:
    compiled = re.compile(pattern) if isinstance(pattern, str) else pattern
    return lambda task: compiled.search(task.url) is not None


def all_of(*matchers: Matcher) -> Matcher:
    return lambda task: all(m(task) for m in matchers)


def any_of(*matchers: Matcher) -> Matcher:
    return lambda task: any(m(task) for m in matchers)


def not_(matcher: Matcher) -> Matcher:
    return lambda task: not matcher(task)


@dataclass(frozen=True)
class PipelineStep:
    """Named step wrapping a plain function of the processing context."""
    id: str
    fn: Callable

    def run(self, ctx):
        return self.fn(ctx)


@dataclass(frozen=True)
class Pipeline:
    """Ordered steps run against one processing context."""
    id: str
    steps: Sequence = field(default_factory=tuple)


@dataclass(frozen=True)
class Route:
    id: str
    matcher: Matcher
    pipeline: Pipeline


class RouteResolver:
    """
    Ordered route table, first match wins.

    Route ids are unique; `by_id` serves explicit reroutes.
    """

    def __init__(self, routes: Optional[Iterable[Route]] = None):
        self._routes: List[Route] = []
        self._by_id: Dict[str, Route] = {}
        for route in routes or ():
            self.register(route)

    def register(self, route: Route) -> None:
        """Append a route; registration order is match order."""
        if route.id in self._by_id:
            raise ConfigurationError(f"Duplicate route id: {route.id}")
        self._routes.append(route)
        self._by_id[route.id] = route

    def resolve(self, task: ProcessingTask) -> Optional[Route]:
        for route in self._routes:
            if route.matcher(task):
                return route
        return None

    def by_id(self, route_id: str) -> Optional[Route]:
        return self._by_id.get(route_id)

    @property
    def routes(self) -> List[Route]:
        return list(self._routes)

    def __len__(self) -> int:
        return len(self._routes)
