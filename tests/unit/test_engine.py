"""Unit tests for CrawlEngine execute/apply and the runners."""

import threading
from dataclasses import replace

import pytest

from crawlcore.engine import (
    CrawlEngine,
    ExecutorRunner,
    HostScope,
    RunContext,
    SingleThreadRunner,
    TaskCompleted,
    TaskDiscarded,
    TaskFailed,
)
from crawlcore.engine.runner import runner_for
from crawlcore.errors import PersistenceError, RoutingError
from crawlcore.models.config import CrawlerConfig
from crawlcore.models.data_models import Continue, Done, Outcome, RoutingHint, TaskId
from crawlcore.pipeline import Pipeline, PipelineStep, Route, RouteResolver, any_task, hint_is
from crawlcore.scheduling import AlwaysRetryPolicy, LanePolicy, MaxAttemptsRetryPolicy, PolitenessGate, Scheduler
from tests.fixtures.sample_data import FakeClock, make_task


def make_engine(steps, clock=None, policy=None, matcher=any_task, gate=None):
    clock = clock or FakeClock()
    run = RunContext(
        routes=RouteResolver([Route("main", matcher, Pipeline("p", steps))]),
        gate=gate or PolitenessGate(now=clock.now),
        retry_policy=policy or AlwaysRetryPolicy(delay=1.0),
        clock=clock.now,
    )
    return CrawlEngine(run), run


def ok_step(ctx):
    return Done("ok")


def boom_step(ctx):
    raise RuntimeError("boom")


class TestCrawlEngine:

    def test_done_removes_task_and_records_decision(self):
        engine, run = make_engine([PipelineStep("ok", ok_step)])
        task = make_task(1)

        engine.begin(task)
        assert run.in_flight.contains(task.id)
        outcome = engine.execute(task)
        assert outcome == TaskCompleted(task, "ok", "main")
        engine.apply(outcome)

        assert run.in_flight.size() == 0
        entry = run.decision_log.entries()[0]
        assert entry.outcome is Outcome.DONE
        assert entry.route_id == "main"
        assert run.seen.is_processed(task.url)
        assert engine.completed == 1

    def test_failure_goes_to_retry_buffer(self):
        clock = FakeClock(initial_time=10.0)
        engine, run = make_engine([PipelineStep("boom", boom_step)], clock=clock)
        task = make_task(1)

        outcome = engine.process(task)

        assert isinstance(outcome, TaskFailed)
        assert not outcome.routing
        assert run.in_flight.size() == 0
        entry = run.retry_buffer.entries()[0]
        assert entry.task.attempt == 1
        assert entry.due_at == 11.0

    def test_routing_failure_dead_letters_without_retry(self):
        engine, run = make_engine([PipelineStep("ok", ok_step)], matcher=hint_is(RoutingHint.HTML))
        task = make_task(1)

        outcome = engine.process(task)

        assert outcome.routing
        assert isinstance(outcome.error, RoutingError)
        assert run.retry_buffer.size() == 0
        item = run.dead_letters.entries()[0]
        assert item.reason == "no route resolved"
        assert run.decision_log.entries()[0].outcome is Outcome.DEAD_LETTER

    def test_apply_releases_politeness_slot(self):
        clock = FakeClock()
        gate = PolitenessGate(default_policy=LanePolicy(max_concurrency=1), now=clock.now)
        engine, run = make_engine([PipelineStep("ok", ok_step)], clock=clock, gate=gate)
        task = make_task(1)

        assert gate.permit(task).allowed
        engine.process(task)

        assert gate.active(gate.key_of(task)) == 0

    def test_out_of_scope_task_is_discarded_without_running(self):
        ran = []

        def recording_step(ctx):
            ran.append(ctx.task.id)
            return Done("ok")

        engine, run = make_engine([PipelineStep("ok", recording_step)])
        run.scope = HostScope(["other.org"])
        task = make_task(1)

        outcome = engine.process(task)

        assert outcome == TaskDiscarded(task, "host example.com out of scope")
        assert ran == []
        assert run.in_flight.size() == 0
        entry = run.decision_log.entries()[0]
        assert entry.outcome is Outcome.DISCARDED
        assert entry.terminal
        assert engine.discarded == 1
        assert engine.completed == 0
        assert not run.seen.is_processed(task.url)

    def test_task_for_processed_url_is_discarded(self):
        engine, run = make_engine([PipelineStep("ok", ok_step)])
        engine.process(make_task(1))
        twin = replace(make_task(1), id=TaskId("twin"))

        engine.begin(twin)
        outcome = engine.execute(twin)
        assert outcome == TaskDiscarded(twin, "already processed")
        engine.apply(outcome)

        assert run.in_flight.size() == 0
        discarded = run.decision_log.entries(Outcome.DISCARDED)
        assert [(e.task_id, e.reason) for e in discarded] == [(TaskId("twin"), "already processed")]
        assert engine.completed == 1
        assert engine.discarded == 1

    def test_persistence_error_in_step_propagates(self):
        def broken(ctx):
            raise PersistenceError("disk full")

        engine, _ = make_engine([PipelineStep("broken", broken)])
        with pytest.raises(PersistenceError):
            engine.execute(make_task(1))


def drain_with(runner, engine, run, clock, tasks):
    for task in tasks:
        run.frontier.offer(task)
    scheduler = Scheduler(run.frontier, run.retry_buffer, run.gate, now=clock.now, max_park=5.0)
    runner.run_until_drained(engine, scheduler)
    return scheduler


class TestRunners:

    def test_single_thread_runner_parks_with_sleeper(self):
        clock = FakeClock()
        attempts = {}

        def flaky(ctx):
            attempts[ctx.task.id] = attempts.get(ctx.task.id, 0) + 1
            if ctx.task.attempt == 0:
                raise RuntimeError("first try fails")
            return Continue("flaky")

        engine, run = make_engine([PipelineStep("flaky", flaky)], clock=clock, policy=AlwaysRetryPolicy(delay=2.0))
        drain_with(SingleThreadRunner(sleeper=clock.sleep), engine, run, clock, [make_task(n) for n in range(3)])

        assert engine.completed == 3
        assert all(count == 2 for count in attempts.values())
        assert clock.sleeps and sum(clock.sleeps) >= 2.0
        assert run.frontier.size() == run.retry_buffer.size() == run.in_flight.size() == 0

    def test_executor_runner_drains_and_respects_max_in_flight(self):
        lock = threading.Lock()
        active = {"now": 0, "peak": 0}

        def tracked(ctx):
            with lock:
                active["now"] += 1
                active["peak"] = max(active["peak"], active["now"])
            with lock:
                active["now"] -= 1
            return Done("tracked")

        clock = FakeClock()
        engine, run = make_engine([PipelineStep("tracked", tracked)], clock=clock)
        runner = ExecutorRunner(pool_size=2, max_in_flight=3, sleeper=clock.sleep)
        drain_with(runner, engine, run, clock, [make_task(n) for n in range(40)])

        assert engine.completed == 40
        assert active["peak"] <= 2
        assert run.in_flight.size() == 0

    def test_executor_runner_surfaces_worker_persistence_errors(self):
        def broken(ctx):
            raise PersistenceError("disk full")

        clock = FakeClock()
        engine, run = make_engine([PipelineStep("broken", broken)], clock=clock)
        with pytest.raises(PersistenceError):
            drain_with(ExecutorRunner(pool_size=2, sleeper=clock.sleep), engine, run, clock, [make_task(1)])

    def test_invalid_pool_size(self):
        with pytest.raises(ValueError, match="pool_size must be positive"):
            ExecutorRunner(pool_size=0)

    def test_runner_for_config(self):
        assert isinstance(runner_for(CrawlerConfig(run_mode="single")), SingleThreadRunner)
        runner = runner_for(CrawlerConfig(run_mode="executor", worker_pool_size=3, max_in_flight=9))
        assert isinstance(runner, ExecutorRunner)
        assert runner.pool_size == 3
        assert runner.max_in_flight == 9


def test_max_attempts_policy_end_to_end_dead_letters_after_retries():
    clock = FakeClock()
    engine, run = make_engine(
        [PipelineStep("boom", boom_step)],
        clock=clock,
        policy=MaxAttemptsRetryPolicy(max_attempts=2, base_delay=0.0, max_delay=0.0, jitter_max=0.0),
    )
    drain_with(SingleThreadRunner(sleeper=clock.sleep), engine, run, clock, [make_task(1)])

    item = run.dead_letters.entries()[0]
    assert item.task.attempt == 2
    assert run.decision_log.entries()[0].outcome is Outcome.RETRIES_EXHAUSTED
    assert engine.coordinator.retries_scheduled == 2
