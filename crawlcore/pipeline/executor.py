"""Runs a route's pipeline against a processing context."""

from typing import TYPE_CHECKING, Optional

from crawlcore.errors import PersistenceError, RoutingError
from crawlcore.models.data_models import Continue, Done, Fail, PipelineResult, Reroute
from crawlcore.pipeline.routing import Pipeline, Route, RouteResolver

if TYPE_CHECKING:
    from crawlcore.engine.context import ProcessingContext


class PipelineExecutor:
    """
    Executes pipelines step by step.

    Continue advances to the next step; Done and Fail end the run. A step
    returning None counts as Continue. Exceptions raised by a step become
    Fail results, except persistence failures, which must reach the
    runner. Reroute hands the same context to another route by id.
    """

    MAX_ROUTE_HOPS = 8

    def __init__(self, routes: RouteResolver):
        self.routes = routes

    def run(self, ctx: "ProcessingContext") -> PipelineResult:
        """
        Resolve the task's route and execute it.

        Raises:
            RoutingError: If no route matches or a reroute cannot be followed
        """
        route = self.routes.resolve(ctx.task)
        if route is None:
            raise RoutingError(f"No route resolved for {ctx.task.url}")
        return self.execute(route, ctx)

    def execute(self, route: Route, ctx: "ProcessingContext") -> PipelineResult:
        hops = 0
        while True:
            ctx.route_id = route.id
            result = self._run_pipeline(route.pipeline, ctx)
            if not isinstance(result, Reroute):
                return result

            hops += 1
            if hops > self.MAX_ROUTE_HOPS:
                raise RoutingError(
                    f"Route hop limit {self.MAX_ROUTE_HOPS} exceeded for {ctx.task.url} at {route.id}"
                )
            target = self.routes.by_id(result.route_id)
            if target is None:
                raise RoutingError(f"Unknown route {result.route_id!r} requested by step {result.step_id}")
            route = target

    def _run_pipeline(self, pipeline: Pipeline, ctx: "ProcessingContext") -> PipelineResult:
        last: Optional[Continue] = None
        for step in pipeline.steps:
            try:
                result = step.run(ctx)
            except PersistenceError:
                raise
            except Exception as e:
                return Fail(step.id, e)

            if result is None:
                result = Continue(step.id)
            if isinstance(result, Continue):
                last = result
                continue
            if isinstance(result, (Done, Fail, Reroute)):
                return result
            return Fail(step.id, TypeError(f"Step {step.id} returned {type(result).__name__}"))

        # Ran off the end: the last step that continued completes the task
        return Done(last.step_id if last else pipeline.id)
