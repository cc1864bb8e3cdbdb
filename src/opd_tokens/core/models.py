"""
Data model shared by the engines, stores and coordinator.

Tokens are frozen dataclasses. A state change produces a new Token via
``Token.transition`` and is persisted with ``TokenStore.update``; identity
fields (id, resource_id, priority_class, created_at) are carried over
unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Hashable, Mapping, NamedTuple, Optional

from opd_tokens.core.lifecycle import TokenState, WaitReason, check_transition
from opd_tokens.core.priority import PriorityClass

ResourceId = Hashable


@dataclass(frozen=True)
class Resource:
    """A capacity-bounded allocation target, e.g. one clinic time slot.

    Attributes:
        id: Unique resource identifier
        capacity: Number of tokens that may occupy the resource at once
        label: Display name only ("Dr. Smith 09:00-10:00")
    """

    id: ResourceId
    capacity: int
    label: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "capacity": self.capacity, "label": self.label}


@dataclass(frozen=True)
class Token:
    """A single allocation request.

    Attributes:
        id: Monotonically assigned by the token store
        resource_id: Resource the token is bound to
        priority_class: Source category
        state: Current lifecycle state
        created_at: Nanosecond timestamp, strictly increasing per store
        wait_reason: Sub-tag set only while WAITING
        completed_at: Set on transition into FULFILLED
        metadata: Opaque request metadata (patient name, contact, ...)
    """

    id: int
    resource_id: ResourceId
    priority_class: PriorityClass
    state: TokenState
    created_at: int
    wait_reason: Optional[WaitReason] = None
    completed_at: Optional[datetime] = None
    metadata: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def priority_rank(self) -> int:
        return self.priority_class.rank

    def transition(
        self,
        to_state: TokenState,
        *,
        wait_reason: Optional[WaitReason] = None,
        completed_at: Optional[datetime] = None,
    ) -> "Token":
        """Return a copy of this token in to_state.

        Raises:
            InvalidTransition: If the state machine forbids the move
        """
        check_transition(self.state, to_state, token_id=self.id)
        if to_state is TokenState.WAITING:
            wait_reason = wait_reason or WaitReason.QUEUED
        else:
            wait_reason = None
        if to_state is TokenState.FULFILLED:
            completed_at = completed_at or datetime.now()
        else:
            completed_at = None
        return replace(
            self,
            state=to_state,
            wait_reason=wait_reason,
            completed_at=completed_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "resource_id": self.resource_id,
            "priority_class": self.priority_class.value,
            "priority_rank": self.priority_rank,
            "state": self.state.value,
            "wait_reason": self.wait_reason.value if self.wait_reason else None,
            "created_at": self.created_at,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "metadata": dict(self.metadata),
        }


class Occupancy(NamedTuple):
    """Occupying count and capacity of one resource."""

    active: int
    capacity: int

    @property
    def available(self) -> int:
        return max(0, self.capacity - self.active)

    @property
    def is_full(self) -> bool:
        return self.active >= self.capacity


class AdmissionDecision(str, Enum):
    """How the admission engine disposed of a submission."""

    ADMITTED = "admitted"
    WAITLISTED = "waitlisted"
    PREEMPTED = "preempted"
    SATURATED = "saturated"


@dataclass(frozen=True)
class AdmissionResult:
    """Outcome of one submission.

    ``preempted`` holds the demoted victim when decision is PREEMPTED.
    """

    token: Token
    decision: AdmissionDecision
    preempted: Optional[Token] = None

    @property
    def token_id(self) -> int:
        return self.token.id

    @property
    def state(self) -> TokenState:
        return self.token.state

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token.to_dict(),
            "decision": self.decision.value,
            "preempted": self.preempted.to_dict() if self.preempted else None,
        }


@dataclass(frozen=True)
class ReleaseResult:
    """Outcome of one release call."""

    token: Token
    previous_state: TokenState
    promoted: Optional[Token] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token.to_dict(),
            "previous_state": self.previous_state.value,
            "promoted": self.promoted.to_dict() if self.promoted else None,
        }
