"""
Token lifecycle states and the transitions between them.

PENDING is only ever the origin of a creation transition; a token is never
stored in it. FULFILLED, CANCELLED and NO_SHOW are terminal.
"""

from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from opd_tokens.core.errors import InvalidTransition


class TokenState(str, Enum):
    """Lifecycle state of a token."""

    PENDING = "pending"
    OCCUPYING = "occupying"
    WAITING = "waiting"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


class WaitReason(str, Enum):
    """Why a token sits in WAITING. Observability only."""

    QUEUED = "queued"
    DISPLACED = "displaced"


TERMINAL_STATES: FrozenSet[TokenState] = frozenset(
    {TokenState.FULFILLED, TokenState.CANCELLED, TokenState.NO_SHOW}
)

# Outcomes an external release call may request.
RELEASE_OUTCOMES: FrozenSet[TokenState] = TERMINAL_STATES

# NO_SHOW absent: a no-show keeps its unit.
REALLOCATING_OUTCOMES: FrozenSet[TokenState] = frozenset(
    {TokenState.FULFILLED, TokenState.CANCELLED}
)

STATE_TRANSITIONS: Dict[TokenState, FrozenSet[TokenState]] = {
    TokenState.PENDING: frozenset({TokenState.OCCUPYING, TokenState.WAITING}),
    TokenState.OCCUPYING: frozenset(
        {
            TokenState.FULFILLED,
            TokenState.CANCELLED,
            TokenState.NO_SHOW,
            TokenState.WAITING,
        }
    ),
    TokenState.WAITING: frozenset({TokenState.OCCUPYING, TokenState.CANCELLED}),
    TokenState.FULFILLED: frozenset(),
    TokenState.CANCELLED: frozenset(),
    TokenState.NO_SHOW: frozenset(),
}

# Outcome names used on the booking desks.
_OUTCOME_ALIASES: Dict[str, TokenState] = {
    "VISITED": TokenState.FULFILLED,
    "COMPLETED": TokenState.FULFILLED,
    "NOSHOW": TokenState.NO_SHOW,
}


def can_transition(from_state: TokenState, to_state: TokenState) -> bool:
    """Whether the state machine allows from_state -> to_state."""
    return to_state in STATE_TRANSITIONS.get(from_state, frozenset())


def check_transition(
    from_state: TokenState,
    to_state: TokenState,
    token_id: Optional[int] = None,
) -> None:
    """Validate a transition.

    Raises:
        InvalidTransition: If the transition is not in STATE_TRANSITIONS
    """
    if not can_transition(from_state, to_state):
        raise InvalidTransition(from_state, to_state, token_id=token_id)


def frees_capacity(from_state: TokenState, to_state: TokenState) -> bool:
    """Whether the transition gives a unit back for reallocation."""
    return from_state is TokenState.OCCUPYING and to_state in REALLOCATING_OUTCOMES


def parse_outcome(value: Any) -> TokenState:
    """Coerce a release outcome to a terminal TokenState.

    Accepts a TokenState or its name/value in any case ("fulfilled",
    "NO_SHOW", "no-show") plus the aliases "visited" and "completed".

    Raises:
        InvalidTransition: If the value does not name a terminal state
    """
    state: Optional[TokenState] = None
    if isinstance(value, TokenState):
        state = value
    elif isinstance(value, str):
        key = value.strip().upper().replace("-", "_").replace(" ", "_")
        state = TokenState.__members__.get(key) or _OUTCOME_ALIASES.get(key)
    if state is None or state not in RELEASE_OUTCOMES:
        raise InvalidTransition(TokenState.OCCUPYING, value)
    return state
