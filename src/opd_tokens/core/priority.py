"""
Priority model for token admission.

A fixed total order over request categories, most urgent first:

    EMERGENCY(1) < PAID(2) < FOLLOW_UP(3) < ONLINE(4) < WALK_IN(5)

A numerically smaller rank is more urgent. The model is an immutable lookup
and is shared between threads without locking.
"""

import re
from enum import Enum
from typing import Any, Dict, List

from opd_tokens.core.errors import InvalidCategory

__all__ = ["PriorityClass", "TOP_PRIORITY", "rank_of", "describe_categories"]

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z])(?=[A-Z])")


class PriorityClass(str, Enum):
    """Source category of a token request."""

    EMERGENCY = "EMERGENCY"
    PAID = "PAID"
    FOLLOW_UP = "FOLLOW_UP"
    ONLINE = "ONLINE"
    WALK_IN = "WALK_IN"

    @property
    def rank(self) -> int:
        """Urgency rank, 1 = most urgent."""
        return _RANKS[self]

    @classmethod
    def from_rank(cls, rank: int) -> "PriorityClass":
        """Look up a class by its numeric rank.

        Raises:
            InvalidCategory: If rank is not 1-5
        """
        try:
            return _BY_RANK[rank]
        except (KeyError, TypeError):
            raise InvalidCategory(rank) from None

    @classmethod
    def parse(cls, value: Any) -> "PriorityClass":
        """Coerce user input to a PriorityClass.

        Accepts a PriorityClass, a name in any common spelling
        ("walk_in", "WALK-IN", "WalkIn", "walk in") or an integer rank.

        Raises:
            InvalidCategory: For anything outside the enumeration
        """
        if isinstance(value, cls):
            return value
        # bool is an int subclass; True must not silently mean EMERGENCY
        if isinstance(value, bool):
            raise InvalidCategory(value)
        if isinstance(value, int):
            return cls.from_rank(value)
        if isinstance(value, str):
            text = value.strip()
            if text.isdecimal():
                return cls.from_rank(int(text))
            name = _CAMEL_BOUNDARY.sub("_", text)
            name = re.sub(r"[\s\-]+", "_", name).upper()
            try:
                return cls[name]
            except KeyError:
                raise InvalidCategory(value) from None
        raise InvalidCategory(value)


_RANKS: Dict[PriorityClass, int] = {
    PriorityClass.EMERGENCY: 1,
    PriorityClass.PAID: 2,
    PriorityClass.FOLLOW_UP: 3,
    PriorityClass.ONLINE: 4,
    PriorityClass.WALK_IN: 5,
}
_BY_RANK: Dict[int, PriorityClass] = {rank: cls for cls, rank in _RANKS.items()}

#: The only class allowed to preempt an occupant.
TOP_PRIORITY = PriorityClass.EMERGENCY


def rank_of(value: Any) -> int:
    """Rank for any value PriorityClass.parse accepts."""
    return PriorityClass.parse(value).rank


def describe_categories() -> List[Dict[str, Any]]:
    """All classes in urgency order, for listings."""
    return [
        {
            "category": cls.value,
            "rank": cls.rank,
            "can_preempt": cls is TOP_PRIORITY,
        }
        for cls in sorted(PriorityClass, key=lambda c: c.rank)
    ]
