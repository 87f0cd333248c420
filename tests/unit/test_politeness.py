"""Deterministic unit tests for the politeness gate with a fake clock."""

import threading

import pytest

from crawlcore.models.data_models import PolitenessKey, RoutingHint
from crawlcore.scheduling import HostLaneKeyResolver, LanePolicy, PolitenessGate
from tests.fixtures.sample_data import FakeClock, make_task


@pytest.fixture
def clk():
    return FakeClock(initial_time=0.0)


class TestMinimumInterval:

    def test_second_dispatch_denied_until_interval_passes(self, clk):
        gate = PolitenessGate(default_policy=LanePolicy(min_interval=2.0), now=clk.now)

        assert gate.permit(make_task(1)).allowed

        clk.advance(0.5)
        denied = gate.permit(make_task(2))
        assert not denied.allowed
        assert denied.retry_after == pytest.approx(1.5)

        clk.advance(1.5)
        assert gate.permit(make_task(2)).allowed

    def test_permitted_dispatches_are_spaced(self, clk):
        gate = PolitenessGate(default_policy=LanePolicy(min_interval=1.0), now=clk.now)
        key = gate.key_of(make_task(0))
        dispatch_times = []

        for n in range(50):
            if gate.permit(make_task(n)).allowed:
                dispatch_times.append(gate.last_dispatch(key))
            clk.advance(0.3)

        gaps = [b - a for a, b in zip(dispatch_times, dispatch_times[1:])]
        assert len(dispatch_times) > 1
        assert all(gap >= 1.0 - 1e-9 for gap in gaps)

    def test_hosts_are_independent(self, clk):
        gate = PolitenessGate(default_policy=LanePolicy(min_interval=5.0), now=clk.now)
        assert gate.permit(make_task(1, host="a.example")).allowed
        assert gate.permit(make_task(2, host="b.example")).allowed
        assert not gate.permit(make_task(3, host="a.example")).allowed

    def test_lanes_are_independent_on_one_host(self, clk):
        gate = PolitenessGate(
            lanes={"asset": LanePolicy(min_interval=0.0)},
            default_policy=LanePolicy(min_interval=5.0),
            now=clk.now,
        )
        assert gate.permit(make_task(1, hint=RoutingHint.HTML)).allowed
        assert not gate.permit(make_task(2, hint=RoutingHint.HTML)).allowed
        assert gate.permit(make_task(3, hint=RoutingHint.ASSET)).allowed
        assert gate.permit(make_task(4, hint=RoutingHint.ASSET)).allowed

    def test_clock_going_backwards_does_not_rewind_timestamp(self, clk):
        gate = PolitenessGate(default_policy=LanePolicy(min_interval=0.0), now=clk.now)
        key = gate.key_of(make_task(1))
        clk.advance(10.0)
        gate.permit(make_task(1))
        clk.t = 5.0
        gate.permit(make_task(2))
        assert gate.last_dispatch(key) == 10.0


class TestConcurrencyLimit:

    def test_active_slots_are_released(self, clk):
        gate = PolitenessGate(
            default_policy=LanePolicy(min_interval=0.0, max_concurrency=2),
            concurrency_retry_after=0.25,
            now=clk.now,
        )
        first, second, third = make_task(1), make_task(2), make_task(3)

        assert gate.permit(first).allowed
        assert gate.permit(second).allowed
        denied = gate.permit(third)
        assert not denied.allowed
        assert denied.retry_after == 0.25

        gate.release(first)
        assert gate.active(gate.key_of(first)) == 1
        assert gate.permit(third).allowed

    def test_release_unknown_key_is_noop(self):
        gate = PolitenessGate()
        gate.release(make_task(1))
        assert gate.active(PolitenessKey("default", "example.com")) == 0

    def test_parallel_permits_respect_limit(self):
        gate = PolitenessGate(default_policy=LanePolicy(min_interval=0.0, max_concurrency=3))
        results = []
        lock = threading.Lock()

        def worker(n):
            decision = gate.permit(make_task(n))
            with lock:
                results.append(decision.allowed)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 3


class TestIdleKeys:

    def test_prune_forgets_only_idle_elapsed_keys(self, clk):
        gate = PolitenessGate(default_policy=LanePolicy(min_interval=1.0, max_concurrency=1), now=clk.now)
        for host in ("a.com", "b.com", "c.com"):
            assert gate.permit(make_task(1, host=host)).allowed
        gate.release(make_task(1, host="a.com"))
        gate.release(make_task(1, host="b.com"))
        clk.advance(0.5)
        gate.permit(make_task(2, host="d.com"))
        gate.release(make_task(2, host="d.com"))
        clk.advance(0.6)

        # a and b are released and past their interval; c holds a slot; d is still inside its interval
        assert gate.prune() == 2
        assert gate.tracked_keys() == 2
        assert gate.last_dispatch(gate.key_of(make_task(1, host="a.com"))) is None
        assert not gate.permit(make_task(3, host="d.com")).allowed
        assert not gate.permit(make_task(3, host="c.com")).allowed

    def test_forgotten_key_permits_like_a_new_one(self, clk):
        gate = PolitenessGate(default_policy=LanePolicy(min_interval=1.0), now=clk.now)
        gate.permit(make_task(1))
        gate.release(make_task(1))
        clk.advance(1.0)
        gate.prune()

        assert gate.permit(make_task(2)).allowed
        clk.advance(0.5)
        assert not gate.permit(make_task(3)).allowed

    def test_permits_sweep_idle_keys_periodically(self, clk):
        gate = PolitenessGate(now=clk.now, prune_every=10)
        for n in range(25):
            task = make_task(n, host=f"host{n}.com")
            assert gate.permit(task).allowed
            gate.release(task)

        # Sweeps ran at permits 10 and 20; only keys added since remain
        assert gate.tracked_keys() == 6

    def test_sweeps_can_be_disabled(self, clk):
        gate = PolitenessGate(now=clk.now, prune_every=0)
        for n in range(30):
            gate.permit(make_task(n, host=f"host{n}.com"))
        assert gate.tracked_keys() == 30


def test_key_resolver_can_merge_hints_into_one_lane(clk):
    resolver = HostLaneKeyResolver({RoutingHint.HTML: "pages", RoutingHint.JSON: "pages"})
    gate = PolitenessGate(default_policy=LanePolicy(min_interval=1.0), key_resolver=resolver, now=clk.now)

    assert gate.key_of(make_task(1, hint=RoutingHint.JSON)) == PolitenessKey("pages", "example.com")
    assert gate.permit(make_task(1, hint=RoutingHint.HTML)).allowed
    assert not gate.permit(make_task(2, hint=RoutingHint.JSON)).allowed
