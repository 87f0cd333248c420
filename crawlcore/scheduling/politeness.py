"""Per-lane politeness gate using minimum dispatch intervals."""

import itertools
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional, Protocol

from crawlcore.models.data_models import PermitDecision, PolitenessKey, ProcessingTask, RoutingHint


class PolitenessKeyResolver(Protocol):
    """Maps a task to the bucket it is throttled in."""

    def __call__(self, task: ProcessingTask) -> PolitenessKey:
        ...


class HostLaneKeyResolver:
    """
    Default key resolver: lane from the routing hint, host from the URL.

    `lanes_by_hint` lets several hints share one lane, e.g. HTML and JSON
    pages of the same site throttled together.
    """

    def __init__(self, lanes_by_hint: Optional[Mapping[RoutingHint, str]] = None):
        self.lanes_by_hint = dict(lanes_by_hint or {})

    def __call__(self, task: ProcessingTask) -> PolitenessKey:
        lane = self.lanes_by_hint.get(task.hint, task.hint.value)
        return PolitenessKey(lane=lane, host=task.host)


@dataclass(frozen=True)
class LanePolicy:
    """Throttling rule for one lane, applied per host."""
    min_interval: float = 0.0
    max_concurrency: Optional[int] = None


class _KeyState:
    """Dispatch bookkeeping for a single politeness key."""

    __slots__ = ("lock", "last_dispatch", "active", "retired")

    def __init__(self):
        self.lock = threading.Lock()
        self.last_dispatch: Optional[float] = None
        self.active = 0
        # Set under `lock` once prune() has dropped this state from the gate
        self.retired = False


class PolitenessGate:
    """
    Minimum-interval gate partitioned by politeness key.

    Each key has its own lock, so permits for unrelated hosts or lanes
    never wait on each other. A denied task should be deferred by the
    caller, not slept on.

    Keys whose interval has elapsed and that hold no slots are forgotten
    every `prune_every` permits, so a long crawl over many hosts does not
    keep one state per host forever. A forgotten key behaves exactly like
    one never seen.
    """

    def __init__(
        self,
        lanes: Optional[Mapping[str, LanePolicy]] = None,
        default_policy: Optional[LanePolicy] = None,
        key_resolver: Optional[PolitenessKeyResolver] = None,
        concurrency_retry_after: float = 0.05,
        now: Callable[[], float] = time.time,
        prune_every: int = 1024,
    ):
        """Initialize politeness gate.

        Args:
            lanes: Policy per lane name
            default_policy: Policy for lanes without an entry (default: no throttling)
            key_resolver: Task -> PolitenessKey mapping (default: HostLaneKeyResolver)
            concurrency_retry_after: Delay suggested when a key is at max concurrency
            now: Clock function returning epoch seconds
            prune_every: Permits between sweeps of idle keys (0 disables them)
        """
        self.lanes: Dict[str, LanePolicy] = dict(lanes or {})
        self.default_policy = default_policy or LanePolicy()
        self.key_resolver = key_resolver or HostLaneKeyResolver()
        self.concurrency_retry_after = concurrency_retry_after
        self.prune_every = prune_every
        self._now = now
        self._states: Dict[PolitenessKey, _KeyState] = {}
        self._states_lock = threading.Lock()
        self._permits = itertools.count(1)

    def policy_for(self, lane: str) -> LanePolicy:
        return self.lanes.get(lane, self.default_policy)

    def key_of(self, task: ProcessingTask) -> PolitenessKey:
        return self.key_resolver(task)

    def _state(self, key: PolitenessKey) -> _KeyState:
        state = self._states.get(key)
        if state is None:
            # setdefault is atomic, so racing creators end up sharing one state
            state = self._states.setdefault(key, _KeyState())
        return state

    def _locked_state(self, key: PolitenessKey) -> _KeyState:
        """Return the live state for `key` with its lock held."""
        while True:
            state = self._state(key)
            state.lock.acquire()
            if not state.retired:
                return state
            state.lock.release()

    def permit(self, task: ProcessingTask) -> PermitDecision:
        """
        Decide whether a task may be dispatched now.

        On allow, the dispatch time is recorded and, for lanes with a
        concurrency limit, a slot is taken until release() is called.

        Returns:
            PermitDecision.allow() or PermitDecision.deny(seconds_to_wait)
        """
        if self.prune_every and next(self._permits) % self.prune_every == 0:
            self.prune()

        key = self.key_of(task)
        policy = self.policy_for(key.lane)
        state = self._locked_state(key)
        try:
            now = self._now()

            if policy.max_concurrency is not None and state.active >= policy.max_concurrency:
                return PermitDecision.deny(max(self.concurrency_retry_after, policy.min_interval))

            if state.last_dispatch is not None:
                elapsed = now - state.last_dispatch
                if elapsed < policy.min_interval:
                    return PermitDecision.deny(policy.min_interval - elapsed)

            # Never move the stored timestamp backwards
            if state.last_dispatch is None or now > state.last_dispatch:
                state.last_dispatch = now
            state.active += 1
            return PermitDecision.allow()
        finally:
            state.lock.release()

    def release(self, task: ProcessingTask) -> None:
        """Free the concurrency slot taken by a permitted task."""
        state = self._states.get(self.key_of(task))
        if state is None:
            return
        with state.lock:
            if state.active > 0:
                state.active -= 1

    def prune(self) -> int:
        """
        Forget keys with no active slots whose minimum interval has passed.

        Returns:
            Number of keys removed
        """
        removed = 0
        with self._states_lock:
            now = self._now()
            for key, state in list(self._states.items()):
                with state.lock:
                    if state.active > 0:
                        continue
                    min_interval = self.policy_for(key.lane).min_interval
                    if state.last_dispatch is not None and now - state.last_dispatch < min_interval:
                        continue
                    state.retired = True
                    del self._states[key]
                    removed += 1
        return removed

    def tracked_keys(self) -> int:
        return len(self._states)

    def last_dispatch(self, key: PolitenessKey) -> Optional[float]:
        state = self._states.get(key)
        if state is None:
            return None
        with state.lock:
            return state.last_dispatch

    def active(self, key: PolitenessKey) -> int:
        state = self._states.get(key)
        return state.active if state else 0
