"""Admission, preemption and reallocation engine for opd-tokens."""

from opd_tokens.core.errors import (
    AllocationError,
    AllocationTimeout,
    InvalidCategory,
    InvalidTransition,
    ResourceNotFound,
    TokenNotFound,
)

from opd_tokens.core.priority import PriorityClass, TOP_PRIORITY

from opd_tokens.core.lifecycle import TokenState, WaitReason

from opd_tokens.core.models import (
    AdmissionDecision,
    AdmissionResult,
    Occupancy,
    ReleaseResult,
    Resource,
    Token,
)

from opd_tokens.core.stores import (
    InMemoryResourceStore,
    InMemoryTokenStore,
    ResourceStore,
    TokenStore,
)

from opd_tokens.core.admission import AdmissionEngine
from opd_tokens.core.reallocation import ReallocationEngine
from opd_tokens.core.coordinator import AllocationCoordinator, CoordinatorStats

__all__ = [
    "AllocationError",
    "AllocationTimeout",
    "InvalidCategory",
    "InvalidTransition",
    "ResourceNotFound",
    "TokenNotFound",
    "PriorityClass",
    "TOP_PRIORITY",
    "TokenState",
    "WaitReason",
    "AdmissionDecision",
    "AdmissionResult",
    "Occupancy",
    "ReleaseResult",
    "Resource",
    "Token",
    "InMemoryResourceStore",
    "InMemoryTokenStore",
    "ResourceStore",
    "TokenStore",
    "AdmissionEngine",
    "ReallocationEngine",
    "AllocationCoordinator",
    "CoordinatorStats",
]
