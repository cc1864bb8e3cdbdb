"""
Admission engine: decides the fate of a newly submitted token.

    count < capacity             -> OCCUPYING  (admitted)
    full, not EMERGENCY          -> WAITING    (waitlisted)
    full, EMERGENCY, victim      -> victim OCCUPYING -> WAITING, new OCCUPYING
    full, EMERGENCY, all EMERG.  -> WAITING    (saturated)

The engine itself is not thread-safe. AllocationCoordinator calls it while
holding the resource's lock.
"""

import logging
from typing import Any, Iterable, Mapping, Optional

from opd_tokens.core.lifecycle import TokenState, WaitReason, check_transition
from opd_tokens.core.models import AdmissionDecision, AdmissionResult, ResourceId, Token
from opd_tokens.core.priority import TOP_PRIORITY, PriorityClass
from opd_tokens.core.stores import ResourceStore, TokenStore

logger = logging.getLogger(__name__)


def select_victim(occupants: Iterable[Token]) -> Optional[Token]:
    """Pick the occupant to preempt.

    Least urgent (highest rank) wins; among equals the earliest created is
    chosen. Returns None when there are no occupants.
    """
    return max(
        occupants,
        key=lambda t: (t.priority_rank, -t.created_at),
        default=None,
    )


class AdmissionEngine:
    """Admits, waitlists or preempts on behalf of a new submission."""

    def __init__(self, resources: ResourceStore, tokens: TokenStore):
        self._resources = resources
        self._tokens = tokens

    def admit(
        self,
        resource_id: ResourceId,
        priority_class: Any,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> AdmissionResult:
        """Admit a new token against a resource.

        Args:
            resource_id: Target resource
            priority_class: Anything PriorityClass.parse accepts
            metadata: Opaque request metadata stored on the token

        Returns:
            AdmissionResult with the created token and, on preemption,
            the demoted victim

        Raises:
            InvalidCategory: If priority_class is not a known category
            ResourceNotFound: If the resource does not exist
        """
        category = PriorityClass.parse(priority_class)
        capacity = self._resources.get_capacity(resource_id)
        active = self._tokens.count_by_resource_and_state(
            resource_id, TokenState.OCCUPYING
        )

        if active < capacity:
            token = self._create(resource_id, category, TokenState.OCCUPYING, metadata)
            return self._decided(token, AdmissionDecision.ADMITTED, active, capacity)

        if category is not TOP_PRIORITY:
            token = self._create(resource_id, category, TokenState.WAITING, metadata)
            return self._decided(token, AdmissionDecision.WAITLISTED, active, capacity)

        occupants = self._tokens.list_by_resource_and_state(
            resource_id, TokenState.OCCUPYING
        )
        victim = select_victim(occupants)
        if victim is None or victim.priority_class is TOP_PRIORITY:
            token = self._create(resource_id, category, TokenState.WAITING, metadata)
            return self._decided(token, AdmissionDecision.SATURATED, active, capacity)

        # Release the victim's unit before granting it.
        demoted = self._tokens.update(
            victim.transition(TokenState.WAITING, wait_reason=WaitReason.DISPLACED)
        )
        token = self._create(resource_id, category, TokenState.OCCUPYING, metadata)
        logger.warning(
            f"Token {demoted.id} preempted by emergency token {token.id}",
            extra={
                "resource_id": resource_id,
                "victim_id": demoted.id,
                "victim_class": demoted.priority_class.value,
                "token_id": token.id,
            },
        )
        return self._decided(
            token, AdmissionDecision.PREEMPTED, active, capacity, preempted=demoted
        )

    def _create(
        self,
        resource_id: ResourceId,
        category: PriorityClass,
        state: TokenState,
        metadata: Optional[Mapping[str, Any]],
    ) -> Token:
        check_transition(TokenState.PENDING, state)
        return self._tokens.create(
            resource_id,
            category,
            state,
            wait_reason=WaitReason.QUEUED if state is TokenState.WAITING else None,
            metadata=metadata,
        )

    def _decided(
        self,
        token: Token,
        decision: AdmissionDecision,
        active: int,
        capacity: int,
        preempted: Optional[Token] = None,
    ) -> AdmissionResult:
        logger.info(
            f"Token {token.id} {decision.value}",
            extra={
                "resource_id": token.resource_id,
                "token_id": token.id,
                "priority_class": token.priority_class.value,
                "decision": decision.value,
                "active_before": active,
                "capacity": capacity,
            },
        )
        return AdmissionResult(token=token, decision=decision, preempted=preempted)
