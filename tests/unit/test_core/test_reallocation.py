"""Tests for waitlist ordering and promotion."""

import pytest

from opd_tokens.core.errors import ResourceNotFound
from opd_tokens.core.lifecycle import TokenState, WaitReason
from opd_tokens.core.priority import PriorityClass
from opd_tokens.core.reallocation import (
    ReallocationEngine,
    order_waitlist,
    select_promotion_candidate,
)


@pytest.fixture
def engine(resources, tokens):
    return ReallocationEngine(resources, tokens)


def _add(tokens, category, state, resource_id="slot-2"):
    return tokens.create(resource_id, PriorityClass.parse(category), state)


class TestOrdering:

    def test_priority_then_fifo(self, tokens):
        """Most urgent first; equal ranks keep arrival order."""
        w1 = _add(tokens, "WALK_IN", TokenState.WAITING)
        o1 = _add(tokens, "ONLINE", TokenState.WAITING)
        w2 = _add(tokens, "WALK_IN", TokenState.WAITING)
        p1 = _add(tokens, "PAID", TokenState.WAITING)

        ordered = order_waitlist([w2, w1, p1, o1])
        assert [t.id for t in ordered] == [p1.id, o1.id, w1.id, w2.id]
        assert select_promotion_candidate([w2, w1, p1, o1]) == p1

    def test_empty_waitlist(self):
        assert select_promotion_candidate([]) is None
        assert order_waitlist([]) == []


class TestReallocate:
    """ReallocationEngine.reallocate."""

    def test_promotes_best_candidate(self, engine, tokens):
        _add(tokens, "PAID", TokenState.OCCUPYING)
        walk_in = _add(tokens, "WALK_IN", TokenState.WAITING)
        follow_up = _add(tokens, "FOLLOW_UP", TokenState.WAITING)

        promoted = engine.reallocate("slot-2")

        assert promoted.id == follow_up.id
        assert promoted.state is TokenState.OCCUPYING
        assert promoted.wait_reason is None
        assert tokens.get(walk_in.id).state is TokenState.WAITING

    def test_promotes_at_most_one(self, engine, tokens):
        """Two free units still yield a single promotion per call."""
        a = _add(tokens, "WALK_IN", TokenState.WAITING)
        b = _add(tokens, "WALK_IN", TokenState.WAITING)

        assert engine.reallocate("slot-2").id == a.id
        assert tokens.get(b.id).state is TokenState.WAITING
        assert engine.reallocate("slot-2").id == b.id

    def test_no_op_when_full(self, engine, tokens):
        _add(tokens, "WALK_IN", TokenState.OCCUPYING, resource_id="slot-1")
        waiting = _add(tokens, "EMERGENCY", TokenState.WAITING, resource_id="slot-1")

        assert engine.reallocate("slot-1") is None
        assert tokens.get(waiting.id).state is TokenState.WAITING

    def test_no_op_when_waitlist_empty(self, engine):
        assert engine.reallocate("slot-2") is None

    def test_displaced_token_is_promoted_like_any_other(self, engine, tokens):
        displaced = tokens.create(
            "slot-1",
            PriorityClass.ONLINE,
            TokenState.WAITING,
            wait_reason=WaitReason.DISPLACED,
        )
        promoted = engine.reallocate("slot-1")
        assert promoted.id == displaced.id
        assert promoted.wait_reason is None

    def test_unknown_resource(self, engine):
        with pytest.raises(ResourceNotFound):
            engine.reallocate("nowhere")
