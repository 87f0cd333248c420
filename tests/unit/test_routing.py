"""Unit tests for route matching and pipeline execution."""

import pytest

from crawlcore.engine.context import ProcessingContext, RunContext
from crawlcore.errors import ConfigurationError, PersistenceError, RoutingError
from crawlcore.models.data_models import Continue, Done, Fail, Reroute, RoutingHint
from crawlcore.pipeline import (
    Pipeline,
    PipelineExecutor,
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
from crawlcore.scheduling import AlwaysRetryPolicy, PolitenessGate
from tests.fixtures.sample_data import make_task


def step(step_id, result=None, calls=None):
    def fn(ctx):
        if calls is not None:
            calls.append(step_id)
        if isinstance(result, BaseException):
            raise result
        return result
    return PipelineStep(step_id, fn)


def context_for(task, resolver):
    run = RunContext(routes=resolver, gate=PolitenessGate(), retry_policy=AlwaysRetryPolicy())
    return ProcessingContext(task, run)


class TestMatchers:

    def test_basic_matchers(self):
        task = make_task(1, host="shop.example", hint=RoutingHint.HTML)

        assert any_task(task)
        assert hint_is(RoutingHint.HTML, RoutingHint.JSON)(task)
        assert not hint_is(RoutingHint.ASSET)(task)
        assert host_is("SHOP.example")(task)
        assert path_prefix("/page")(task)
        assert url_matches(r"/page/\d+$")(task)

    def test_combinators(self):
        task = make_task(1, host="shop.example")

        assert all_of(host_is("shop.example"), path_prefix("/page"))(task)
        assert not all_of(host_is("shop.example"), path_prefix("/api"))(task)
        assert any_of(host_is("other"), path_prefix("/page"))(task)
        assert not_(host_is("other"))(task)


class TestRouteResolver:

    def test_first_match_wins(self):
        specific = Route("html", hint_is(RoutingHint.HTML), Pipeline("p1"))
        fallback = Route("default", any_task, Pipeline("p2"))
        resolver = RouteResolver([specific, fallback])

        assert resolver.resolve(make_task(1, hint=RoutingHint.HTML)) is specific
        assert resolver.resolve(make_task(2)) is fallback

    def test_no_match_returns_none(self):
        resolver = RouteResolver([Route("html", hint_is(RoutingHint.HTML), Pipeline("p"))])
        assert resolver.resolve(make_task(1)) is None

    def test_duplicate_ids_rejected(self):
        resolver = RouteResolver([Route("a", any_task, Pipeline("p"))])
        with pytest.raises(ConfigurationError, match="Duplicate route id"):
            resolver.register(Route("a", any_task, Pipeline("q")))

    def test_by_id(self):
        route = Route("a", any_task, Pipeline("p"))
        resolver = RouteResolver([route])
        assert resolver.by_id("a") is route
        assert resolver.by_id("b") is None
        assert len(resolver) == 1


class TestPipelineExecutor:

    def test_continue_runs_steps_in_order_then_done(self):
        calls = []
        pipeline = Pipeline("p", [step("a", Continue("a"), calls), step("b", None, calls), step("c", Done("c"), calls)])
        resolver = RouteResolver([Route("r", any_task, pipeline)])

        result = PipelineExecutor(resolver).run(context_for(make_task(1), resolver))

        assert result == Done("c")
        assert calls == ["a", "b", "c"]

    def test_done_short_circuits(self):
        calls = []
        pipeline = Pipeline("p", [step("a", Done("a"), calls), step("b", Continue("b"), calls)])
        resolver = RouteResolver([Route("r", any_task, pipeline)])

        assert PipelineExecutor(resolver).run(context_for(make_task(1), resolver)) == Done("a")
        assert calls == ["a"]

    def test_running_off_the_end_is_done_of_last_step(self):
        pipeline = Pipeline("p", [step("a", Continue("a")), step("b", Continue("b"))])
        resolver = RouteResolver([Route("r", any_task, pipeline)])

        assert PipelineExecutor(resolver).run(context_for(make_task(1), resolver)) == Done("b")

    def test_exception_becomes_fail(self):
        error = ValueError("bad")
        pipeline = Pipeline("p", [step("a", error), step("b", Done("b"))])
        resolver = RouteResolver([Route("r", any_task, pipeline)])

        result = PipelineExecutor(resolver).run(context_for(make_task(1), resolver))
        assert isinstance(result, Fail)
        assert result.step_id == "a"
        assert result.cause is error

    def test_persistence_error_propagates(self):
        pipeline = Pipeline("p", [step("a", PersistenceError("disk"))])
        resolver = RouteResolver([Route("r", any_task, pipeline)])

        with pytest.raises(PersistenceError):
            PipelineExecutor(resolver).run(context_for(make_task(1), resolver))

    def test_unknown_result_type_fails(self):
        pipeline = Pipeline("p", [step("a", "yes")])
        resolver = RouteResolver([Route("r", any_task, pipeline)])

        result = PipelineExecutor(resolver).run(context_for(make_task(1), resolver))
        assert isinstance(result.cause, TypeError)

    def test_reroute_hands_context_to_named_route(self):
        seen_routes = []

        def record(ctx):
            seen_routes.append(ctx.route_id)
            return Done("record")

        entry = Route("entry", any_task, Pipeline("p1", [step("sniff", Reroute("sniff", "json"))]))
        json_route = Route("json", hint_is(RoutingHint.JSON), Pipeline("p2", [PipelineStep("record", record)]))
        resolver = RouteResolver([entry, json_route])
        ctx = context_for(make_task(1), resolver)

        assert PipelineExecutor(resolver).run(ctx) == Done("record")
        assert seen_routes == ["json"]
        assert ctx.route_id == "json"

    def test_no_route_raises_routing_error(self):
        resolver = RouteResolver([Route("html", hint_is(RoutingHint.HTML), Pipeline("p"))])
        with pytest.raises(RoutingError, match="No route resolved"):
            PipelineExecutor(resolver).run(context_for(make_task(1), resolver))

    def test_reroute_to_unknown_route(self):
        resolver = RouteResolver([Route("r", any_task, Pipeline("p", [step("a", Reroute("a", "nowhere"))]))])
        with pytest.raises(RoutingError, match="Unknown route 'nowhere'"):
            PipelineExecutor(resolver).run(context_for(make_task(1), resolver))

    def test_reroute_loop_hits_hop_limit(self):
        calls = []
        looping = Route("loop", any_task, Pipeline("p", [step("a", Reroute("a", "loop"), calls)]))
        resolver = RouteResolver([looping])

        with pytest.raises(RoutingError, match="hop limit"):
            PipelineExecutor(resolver).run(context_for(make_task(1), resolver))
        assert len(calls) == PipelineExecutor.MAX_ROUTE_HOPS + 1
