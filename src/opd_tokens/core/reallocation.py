"""
Reallocation engine: backfills a freed unit from the waitlist.

Called once, synchronously, after a token leaves OCCUPYING for FULFILLED or
CANCELLED. Promotes at most one token per call.
"""

import logging
from typing import Iterable, List, Optional

from opd_tokens.core.lifecycle import TokenState
from opd_tokens.core.models import ResourceId, Token
from opd_tokens.core.stores import ResourceStore, TokenStore

logger = logging.getLogger(__name__)


def _promotion_key(token: Token):
    return (token.priority_rank, token.created_at)


def order_waitlist(waiting: Iterable[Token]) -> List[Token]:
    """Waiting tokens in promotion order: most urgent first, then FIFO."""
    return sorted(waiting, key=_promotion_key)


def select_promotion_candidate(waiting: Iterable[Token]) -> Optional[Token]:
    """Next token to promote, or None for an empty waitlist."""
    return min(waiting, key=_promotion_key, default=None)


class ReallocationEngine:
    """Promotes the best waiting token when a unit is free."""

    def __init__(self, resources: ResourceStore, tokens: TokenStore):
        self._resources = resources
        self._tokens = tokens

    def reallocate(self, resource_id: ResourceId) -> Optional[Token]:
        """Promote one waiting token if the resource has a free unit.

        Returns:
            The promoted token, or None when occupancy is already at
            capacity or nobody is waiting

        Raises:
            ResourceNotFound: If the resource does not exist
        """
        capacity = self._resources.get_capacity(resource_id)
        active = self._tokens.count_by_resource_and_state(
            resource_id, TokenState.OCCUPYING
        )
        if active >= capacity:
            logger.debug(
                "No free unit to reallocate",
                extra={"resource_id": resource_id, "active": active, "capacity": capacity},
            )
            return None

        candidate = select_promotion_candidate(
            self._tokens.list_by_resource_and_state(resource_id, TokenState.WAITING)
        )
        if candidate is None:
            logger.debug("Waitlist empty", extra={"resource_id": resource_id})
            return None

        promoted = self._tokens.update(candidate.transition(TokenState.OCCUPYING))
        logger.info(
            f"Token {promoted.id} promoted from waitlist",
            extra={
                "resource_id": resource_id,
                "token_id": promoted.id,
                "priority_class": promoted.priority_class.value,
                "wait_reason": candidate.wait_reason.value if candidate.wait_reason else None,
            },
        )
        return promoted
