"""Tests for AllocationCoordinator.

Covers the walk-through scenarios of a two-seat and a one-seat slot,
release semantics, lock timeouts, and concurrent booking desks.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from opd_tokens.config import EngineConfig
from opd_tokens.core.coordinator import DEFAULT_LOCK_TIMEOUT, AllocationCoordinator
from opd_tokens.core.errors import (
    AllocationTimeout,
    ErrorCode,
    InvalidCategory,
    InvalidTransition,
    ResourceNotFound,
    TokenNotFound,
)
from opd_tokens.core.lifecycle import TokenState, WaitReason
from opd_tokens.core.models import AdmissionDecision, Occupancy
from opd_tokens.core.stores import InMemoryResourceStore, InMemoryTokenStore

OCC = TokenState.OCCUPYING
WAIT = TokenState.WAITING


@pytest.fixture
def walk_ins(coordinator):
    """Scenario 1: A and B occupy slot-2, C waits."""
    a = coordinator.submit("slot-2", "WALK_IN", {"name": "A"}).token_id
    b = coordinator.submit("slot-2", "WALK_IN", {"name": "B"}).token_id
    c = coordinator.submit("slot-2", "WALK_IN", {"name": "C"}).token_id
    return a, b, c


class TestScenarios:
    """End-to-end walk-throughs on a single resource."""

    def test_fill_then_waitlist(self, coordinator, walk_ins, states):
        a, b, c = walk_ins
        assert states(a, b, c) == {a: OCC, b: OCC, c: WAIT}
        assert coordinator.get_occupancy("slot-2") == (2, 2)
        assert coordinator.list_waiting("slot-2") == [c]

    def test_emergency_preempts_earliest_walk_in(self, coordinator, walk_ins, states):
        """D displaces A, the earliest of two equally ranked walk-ins."""
        a, b, c = walk_ins
        result = coordinator.submit("slot-2", "EMERGENCY", {"name": "D"})
        d = result.token_id

        assert result.decision is AdmissionDecision.PREEMPTED
        assert result.preempted.id == a
        assert states(a, b, c, d) == {a: WAIT, b: OCC, c: WAIT, d: OCC}
        assert coordinator.get_token(a).wait_reason is WaitReason.DISPLACED
        assert coordinator.get_occupancy("slot-2") == (2, 2)
        assert {t.id for t in coordinator.occupants("slot-2")} == {b, d}

    def test_release_promotes_displaced_token(self, coordinator, walk_ins, states):
        """Releasing B promotes A, which predates C in the waitlist."""
        a, b, c = walk_ins
        d = coordinator.submit("slot-2", "EMERGENCY").token_id

        result = coordinator.release(b, "FULFILLED")

        assert result.previous_state is OCC
        assert result.token.state is TokenState.FULFILLED
        assert result.promoted.id == a
        assert states(a, b, c, d) == {
            a: OCC,
            b: TokenState.FULFILLED,
            c: WAIT,
            d: OCC,
        }
        assert coordinator.list_waiting("slot-2") == [c]

    def test_cancel_promotes_on_single_seat(self, coordinator, states):
        j1 = coordinator.submit("slot-1", "ONLINE").token_id
        j2 = coordinator.submit("slot-1", "WALK_IN").token_id
        assert states(j1, j2) == {j1: OCC, j2: WAIT}

        result = coordinator.release(j1, "CANCELLED")

        assert result.promoted.id == j2
        assert states(j1, j2) == {j1: TokenState.CANCELLED, j2: OCC}

    def test_emergency_saturation(self, coordinator, states):
        e1 = coordinator.submit("slot-2", "EMERGENCY").token_id
        e2 = coordinator.submit("slot-2", "EMERGENCY").token_id

        result = coordinator.submit("slot-2", "EMERGENCY")

        assert result.decision is AdmissionDecision.SATURATED
        assert states(e1, e2, result.token_id) == {
            e1: OCC,
            e2: OCC,
            result.token_id: WAIT,
        }
        assert coordinator.list_waiting("slot-2") == [result.token_id]


class TestRelease:
    """release() outcomes and failures."""

    def test_no_show_keeps_the_unit(self, coordinator, states):
        """A no-show does not trigger reallocation."""
        j1 = coordinator.submit("slot-1", "WALK_IN").token_id
        j2 = coordinator.submit("slot-1", "WALK_IN").token_id

        result = coordinator.release(j1, "NO_SHOW")

        assert result.promoted is None
        assert states(j1, j2) == {j1: TokenState.NO_SHOW, j2: WAIT}
        assert coordinator.get_occupancy("slot-1") == Occupancy(active=0, capacity=1)

    def test_explicit_reallocate_after_no_show(self, coordinator):
        j1 = coordinator.submit("slot-1", "WALK_IN").token_id
        j2 = coordinator.submit("slot-1", "WALK_IN").token_id
        coordinator.release(j1, "NO_SHOW")

        promoted = coordinator.reallocate("slot-1")

        assert promoted.id == j2
        assert coordinator.reallocate("slot-1") is None

    def test_cancelling_a_waiting_token(self, coordinator, walk_ins, states):
        """Dropping off the waitlist frees nothing and promotes nobody."""
        a, b, c = walk_ins
        result = coordinator.release(c, "CANCELLED")

        assert result.previous_state is WAIT
        assert result.promoted is None
        assert states(a, b, c) == {a: OCC, b: OCC, c: TokenState.CANCELLED}

    def test_waiting_token_cannot_be_fulfilled(self, coordinator, walk_ins, states):
        a, b, c = walk_ins
        with pytest.raises(InvalidTransition) as exc_info:
            coordinator.release(c, "FULFILLED")
        assert exc_info.value.code is ErrorCode.INVALID_TRANSITION
        assert states(c) == {c: WAIT}

    def test_double_release_raises(self, coordinator):
        token_id = coordinator.submit("slot-1", "PAID").token_id
        coordinator.release(token_id, "FULFILLED")
        with pytest.raises(InvalidTransition):
            coordinator.release(token_id, "CANCELLED")

    def test_non_terminal_outcome_raises(self, coordinator):
        token_id = coordinator.submit("slot-1", "PAID").token_id
        with pytest.raises(InvalidTransition):
            coordinator.release(token_id, "WAITING")

    def test_unknown_token(self, coordinator):
        with pytest.raises(TokenNotFound):
            coordinator.release(404, "FULFILLED")

    def test_promotion_respects_priority_over_arrival(self, coordinator):
        """A later PAID token jumps ahead of an earlier WALK_IN."""
        first = coordinator.submit("slot-1", "ONLINE").token_id
        walk_in = coordinator.submit("slot-1", "WALK_IN").token_id
        paid = coordinator.submit("slot-1", "PAID").token_id
        assert coordinator.list_waiting("slot-1") == [paid, walk_in]

        assert coordinator.release(first, "FULFILLED").promoted.id == paid


class TestSubmitValidation:

    def test_invalid_category(self, coordinator, tokens):
        with pytest.raises(InvalidCategory):
            coordinator.submit("slot-2", 9)
        assert len(tokens) == 0

    def test_unknown_resource(self, coordinator, tokens):
        with pytest.raises(ResourceNotFound):
            coordinator.submit("slot-9", "WALK_IN")
        assert len(tokens) == 0

    def test_unknown_resource_creates_no_lock(self, coordinator):
        """Locks exist only for resources that were actually operated on."""
        with pytest.raises(ResourceNotFound):
            coordinator.submit("slot-9", "WALK_IN")
        coordinator.submit("slot-1", "WALK_IN")
        coordinator.get_occupancy("slot-1")
        assert list(coordinator._locks) == ["slot-1"]

    def test_accepts_rank_and_loose_names(self, coordinator):
        assert coordinator.submit("slot-2", 1).token.priority_class.value == "EMERGENCY"
        assert coordinator.submit("slot-2", "follow-up").token.priority_class.value == "FOLLOW_UP"


class TestReads:

    def test_visit_history_in_completion_order(self, coordinator):
        a = coordinator.submit("slot-2", "WALK_IN").token_id
        b = coordinator.submit("slot-2", "WALK_IN").token_id
        coordinator.release(b, "FULFILLED")
        coordinator.release(a, "FULFILLED")

        history = coordinator.visit_history("slot-2")
        assert [t.id for t in history] == [b, a]
        assert all(t.completed_at is not None for t in history)

    def test_snapshot(self, coordinator, walk_ins):
        a, b, c = walk_ins
        coordinator.release(a, "FULFILLED")

        snap = coordinator.snapshot("slot-2")

        assert snap["resource"]["label"] == "Dr. Smith 09:00-10:00"
        assert snap["occupancy"] == {"active": 2, "capacity": 2}
        assert [t["id"] for t in snap["occupying"]] == [b, c]
        assert snap["waiting"] == []
        assert [t["id"] for t in snap["visited"]] == [a]
        assert snap["visited"][0]["state"] == "fulfilled"


class TestStats:

    def test_counters(self, coordinator, walk_ins):
        a, b, c = walk_ins
        coordinator.submit("slot-2", "EMERGENCY")
        coordinator.release(b, "CANCELLED")

        stats = coordinator.stats
        assert stats.submitted == 4
        assert stats.admitted == 2
        assert stats.waitlisted == 1
        assert stats.preempted == 1
        assert stats.released == 1
        assert stats.promoted == 1
        assert stats.timeouts == 0

    def test_stats_is_a_snapshot(self, coordinator):
        stats = coordinator.stats
        coordinator.submit("slot-1", "WALK_IN")
        assert stats.submitted == 0
        assert coordinator.stats.to_dict()["submitted"] == 1


class TestLockTimeout:
    """Lock acquisition failures leave state untouched."""

    def test_submit_times_out_while_resource_locked(self, coordinator, tokens):
        lock = coordinator._lock_for("slot-2")
        lock.acquire()
        try:
            with pytest.raises(AllocationTimeout) as exc_info:
                coordinator.submit("slot-2", "WALK_IN", timeout=0.05)
        finally:
            lock.release()

        err = exc_info.value
        assert err.code is ErrorCode.RESOURCE_BUSY
        assert err.details()["operation"] == "submit"
        assert err.details()["resource_id"] == "slot-2"
        assert len(tokens) == 0
        assert coordinator.stats.timeouts == 1
        assert coordinator.stats.submitted == 0

    def test_release_times_out_without_changing_token(self, coordinator):
        token_id = coordinator.submit("slot-1", "WALK_IN").token_id
        lock = coordinator._lock_for("slot-1")
        lock.acquire()
        try:
            with pytest.raises(AllocationTimeout):
                coordinator.release(token_id, "FULFILLED", timeout=0)
        finally:
            lock.release()
        assert coordinator.get_token(token_id).state is OCC

    def test_other_resources_are_not_blocked(self, coordinator):
        lock = coordinator._lock_for("slot-2")
        lock.acquire()
        try:
            result = coordinator.submit("slot-1", "WALK_IN", timeout=0.05)
        finally:
            lock.release()
        assert result.state is OCC

    def test_lock_released_after_error(self, coordinator):
        """A failing operation does not leave its lock held."""
        token_id = coordinator.submit("slot-1", "WALK_IN").token_id
        coordinator.release(token_id, "FULFILLED")
        with pytest.raises(InvalidTransition):
            coordinator.release(token_id, "FULFILLED")
        assert coordinator.submit("slot-1", "PAID", timeout=0).state is OCC

    def test_default_timeout(self, resources, tokens):
        assert AllocationCoordinator(resources, tokens).default_timeout == DEFAULT_LOCK_TIMEOUT

    def test_from_config(self, resources):
        coordinator = AllocationCoordinator.from_config(
            EngineConfig(lock_timeout=2.5), resources=resources
        )
        assert coordinator.default_timeout == 2.5
        assert coordinator.resources is resources
        assert isinstance(coordinator.tokens, InMemoryTokenStore)


class TestConcurrency:
    """Many booking desks hitting the same coordinator."""

    def test_parallel_submits_never_exceed_capacity(self):
        resources = InMemoryResourceStore()
        resources.add("busy", capacity=5)
        resources.add("quiet", capacity=3)
        coordinator = AllocationCoordinator(resources, InMemoryTokenStore())

        jobs = [("busy", "WALK_IN")] * 40 + [("quiet", "ONLINE")] * 20
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda job: coordinator.submit(*job), jobs))

        assert len({r.token_id for r in results}) == 60
        assert coordinator.get_occupancy("busy") == (5, 5)
        assert coordinator.get_occupancy("quiet") == (3, 3)
        assert len(coordinator.list_waiting("busy")) == 35
        assert len(coordinator.list_waiting("quiet")) == 17

    @pytest.mark.slow
    def test_mixed_traffic_preserves_invariants(self):
        """Emergencies, releases and submits interleave without overbooking."""
        resources = InMemoryResourceStore()
        resources.add("slot", capacity=3)
        tokens = InMemoryTokenStore()
        coordinator = AllocationCoordinator(resources, tokens)
        seeded = [coordinator.submit("slot", "WALK_IN").token_id for _ in range(3)]
        violations = []
        stop = threading.Event()

        def watch():
            while not stop.is_set():
                if coordinator.get_occupancy("slot").active > 3:
                    violations.append(True)
                time.sleep(0.001)

        def desk(i):
            if i % 3 == 0:
                coordinator.submit("slot", "EMERGENCY")
            elif i % 3 == 1:
                coordinator.submit("slot", "PAID")
            else:
                occupants = coordinator.occupants("slot")
                if not occupants:
                    return
                try:
                    coordinator.release(occupants[0].id, "FULFILLED")
                except InvalidTransition:
                    # another desk displaced or released it first
                    pass

        watcher = threading.Thread(target=watch)
        watcher.start()
        try:
            with ThreadPoolExecutor(max_workers=6) as pool:
                list(pool.map(desk, range(60)))
        finally:
            stop.set()
            watcher.join()

        assert not violations
        occupancy = coordinator.get_occupancy("slot")
        assert occupancy.active <= 3
        # a waiting token only exists while the slot is full
        if coordinator.list_waiting("slot"):
            assert occupancy.is_full
        assert all(tokens.get(tid) for tid in seeded)


class TestAsync:

    @pytest.mark.asyncio
    async def test_submit_and_release_async(self, coordinator):
        first = await coordinator.submit_async("slot-1", "WALK_IN")
        second = await coordinator.submit_async("slot-1", "PAID")
        assert await coordinator.list_waiting_async("slot-1") == [second.token_id]

        result = await coordinator.release_async(first.token_id, "FULFILLED")

        assert result.promoted.id == second.token_id
        assert await coordinator.get_occupancy_async("slot-1") == (1, 1)

    @pytest.mark.asyncio
    async def test_async_errors_propagate(self, coordinator):
        with pytest.raises(ResourceNotFound):
            await coordinator.submit_async("missing", "WALK_IN")
