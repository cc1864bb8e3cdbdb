"""
Allocation coordinator: the concurrency boundary of the engine.

Every operation that reads or writes a resource's occupancy runs while
holding that resource's lock, so admission, preemption, release and
promotion on one resource form atomic units. Different resources have
different locks and never block each other.

Example:
    from opd_tokens.core.coordinator import AllocationCoordinator
    from opd_tokens.core.stores import InMemoryResourceStore, InMemoryTokenStore

    resources = InMemoryResourceStore()
    resources.add("smith-0900", capacity=2)
    coordinator = AllocationCoordinator(resources, InMemoryTokenStore())

    result = coordinator.submit("smith-0900", "WALK_IN", timeout=5.0)
    coordinator.release(result.token_id, "FULFILLED")
"""

import asyncio
import logging
import threading
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterator, List, Mapping, Optional

from opd_tokens.core.admission import AdmissionEngine
from opd_tokens.core.errors import AllocationTimeout
from opd_tokens.core.lifecycle import TokenState, frees_capacity, parse_outcome
from opd_tokens.core.models import (
    AdmissionDecision,
    AdmissionResult,
    Occupancy,
    ReleaseResult,
    ResourceId,
    Token,
)
from opd_tokens.core.priority import PriorityClass
from opd_tokens.core.reallocation import ReallocationEngine, order_waitlist
from opd_tokens.core.stores import (
    InMemoryResourceStore,
    InMemoryTokenStore,
    ResourceStore,
    TokenStore,
)

logger = logging.getLogger(__name__)

#: Default wait for a resource lock, in seconds.
DEFAULT_LOCK_TIMEOUT: float = 30.0


@dataclass
class CoordinatorStats:
    """Counters for coordinator activity."""

    submitted: int = 0
    admitted: int = 0
    waitlisted: int = 0
    preempted: int = 0
    saturated: int = 0
    released: int = 0
    promoted: int = 0
    timeouts: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class AllocationCoordinator:
    """Serializes admission and reallocation per resource.

    Args:
        resources: Resource (capacity) store
        tokens: Token store
        default_timeout: Lock wait used when a call passes no timeout;
            None waits without a limit
    """

    def __init__(
        self,
        resources: ResourceStore,
        tokens: TokenStore,
        *,
        default_timeout: Optional[float] = DEFAULT_LOCK_TIMEOUT,
    ):
        self._resources = resources
        self._tokens = tokens
        self._default_timeout = default_timeout
        self._admission = AdmissionEngine(resources, tokens)
        self._reallocation = ReallocationEngine(resources, tokens)

        self._locks: Dict[ResourceId, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._stats = CoordinatorStats()
        self._stats_lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        config: Optional[Any] = None,
        *,
        resources: Optional[ResourceStore] = None,
        tokens: Optional[TokenStore] = None,
    ) -> "AllocationCoordinator":
        """Build a coordinator using EngineConfig settings.

        Stores default to fresh in-memory ones.
        """
        from opd_tokens.config import get_config

        config = config or get_config()
        return cls(
            resources if resources is not None else InMemoryResourceStore(),
            tokens if tokens is not None else InMemoryTokenStore(),
            default_timeout=config.lock_timeout,
        )

    @property
    def resources(self) -> ResourceStore:
        return self._resources

    @property
    def tokens(self) -> TokenStore:
        return self._tokens

    @property
    def default_timeout(self) -> Optional[float]:
        return self._default_timeout

    @property
    def stats(self) -> CoordinatorStats:
        """Snapshot of the activity counters."""
        with self._stats_lock:
            return CoordinatorStats(**asdict(self._stats))

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    def _lock_for(self, resource_id: ResourceId) -> threading.Lock:
        """Lock for a resource, created on first use.

        Locks are kept for the coordinator's lifetime, one per resource that
        has been operated on. Callers look the resource up before asking for
        its lock, so unknown ids never add an entry. The stores have no
        resource removal; if one is added, drop the lock with it.
        """
        with self._locks_guard:
            lock = self._locks.get(resource_id)
            if lock is None:
                lock = self._locks[resource_id] = threading.Lock()
            return lock

    @contextmanager
    def _exclusive(
        self,
        resource_id: ResourceId,
        timeout: Optional[float],
        operation: str,
    ) -> Iterator[None]:
        """Hold the resource's lock, or raise AllocationTimeout untouched."""
        lock = self._lock_for(resource_id)
        effective = self._default_timeout if timeout is None else timeout
        if effective is None:
            acquired = lock.acquire()
        elif effective <= 0:
            acquired = lock.acquire(blocking=False)
        else:
            acquired = lock.acquire(timeout=effective)

        if not acquired:
            self._count("timeouts")
            logger.warning(
                f"Timed out waiting for resource lock during {operation}",
                extra={
                    "resource_id": resource_id,
                    "timeout_seconds": effective,
                    "operation": operation,
                },
            )
            raise AllocationTimeout(resource_id, effective, operation=operation)
        try:
            yield
        finally:
            lock.release()

    def _count(self, *names: str) -> None:
        with self._stats_lock:
            for name in names:
                setattr(self._stats, name, getattr(self._stats, name) + 1)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def submit(
        self,
        resource_id: ResourceId,
        category: Any,
        metadata: Optional[Mapping[str, Any]] = None,
        *,
        timeout: Optional[float] = None,
    ) -> AdmissionResult:
        """Submit a new token for a resource.

        Args:
            resource_id: Target resource
            category: Priority class (enum, name or rank)
            metadata: Opaque request metadata stored on the token
            timeout: Lock wait in seconds (defaults to default_timeout)

        Returns:
            AdmissionResult; ``token_id`` and ``state`` give the new token's
            id and resulting state

        Raises:
            InvalidCategory: Unknown category
            ResourceNotFound: Unknown resource
            AllocationTimeout: Lock not acquired in time, nothing changed
        """
        priority_class = PriorityClass.parse(category)
        self._resources.get_capacity(resource_id)

        with self._exclusive(resource_id, timeout, "submit"):
            result = self._admission.admit(resource_id, priority_class, metadata)

        counters = ["submitted", _DECISION_COUNTERS[result.decision]]
        self._count(*counters)
        return result

    def release(
        self,
        token_id: int,
        outcome: Any,
        *,
        timeout: Optional[float] = None,
    ) -> ReleaseResult:
        """Move a token into a terminal state.

        Leaving OCCUPYING for FULFILLED or CANCELLED triggers exactly one
        reallocation before this returns. NO_SHOW keeps the unit occupied.

        Args:
            token_id: Token to release
            outcome: FULFILLED, CANCELLED or NO_SHOW (enum or name)
            timeout: Lock wait in seconds (defaults to default_timeout)

        Raises:
            TokenNotFound: Unknown token id
            InvalidTransition: Outcome not terminal, or not reachable from
                the token's current state
            AllocationTimeout: Lock not acquired in time, nothing changed
        """
        target = parse_outcome(outcome)
        resource_id = self._tokens.get(token_id).resource_id

        with self._exclusive(resource_id, timeout, "release"):
            # Re-read under the lock; a preemption may have moved it.
            current = self._tokens.get(token_id)
            released = self._tokens.update(current.transition(target))
            promoted = None
            if frees_capacity(current.state, target):
                promoted = self._reallocation.reallocate(resource_id)

        logger.info(
            f"Token {token_id} released as {target.value}",
            extra={
                "resource_id": resource_id,
                "token_id": token_id,
                "previous_state": current.state.value,
                "outcome": target.value,
                "promoted_id": promoted.id if promoted else None,
            },
        )
        self._count("released", *(["promoted"] if promoted else []))
        return ReleaseResult(
            token=released, previous_state=current.state, promoted=promoted
        )

    def reallocate(
        self,
        resource_id: ResourceId,
        *,
        timeout: Optional[float] = None,
    ) -> Optional[Token]:
        """Promote one waiting token if a unit is free.

        release() already does this for the unit it frees; call this once
        per additional freed unit when reclaiming several.
        """
        self._resources.get_capacity(resource_id)
        with self._exclusive(resource_id, timeout, "reallocate"):
            promoted = self._reallocation.reallocate(resource_id)
        if promoted is not None:
            self._count("promoted")
        return promoted

    def get_occupancy(
        self,
        resource_id: ResourceId,
        *,
        timeout: Optional[float] = None,
    ) -> Occupancy:
        """Occupying count and capacity, as an (active, capacity) tuple."""
        capacity = self._resources.get_capacity(resource_id)
        with self._exclusive(resource_id, timeout, "get_occupancy"):
            active = self._tokens.count_by_resource_and_state(
                resource_id, TokenState.OCCUPYING
            )
        return Occupancy(active=active, capacity=capacity)

    def list_waiting(
        self,
        resource_id: ResourceId,
        *,
        timeout: Optional[float] = None,
    ) -> List[int]:
        """Waiting token ids in promotion order (priority, then creation)."""
        return [t.id for t in self.waitlist(resource_id, timeout=timeout)]

    def waitlist(
        self,
        resource_id: ResourceId,
        *,
        timeout: Optional[float] = None,
    ) -> List[Token]:
        """Waiting tokens in promotion order."""
        self._resources.get_capacity(resource_id)
        with self._exclusive(resource_id, timeout, "waitlist"):
            waiting = self._tokens.list_by_resource_and_state(
                resource_id, TokenState.WAITING
            )
        return order_waitlist(waiting)

    def occupants(
        self,
        resource_id: ResourceId,
        *,
        timeout: Optional[float] = None,
    ) -> List[Token]:
        """Occupying tokens in creation order."""
        self._resources.get_capacity(resource_id)
        with self._exclusive(resource_id, timeout, "occupants"):
            return self._tokens.list_by_resource_and_state(
                resource_id, TokenState.OCCUPYING
            )

    def visit_history(self, resource_id: ResourceId) -> List[Token]:
        """Fulfilled tokens ordered by completion time.

        Terminal tokens never change, so no lock is needed.
        """
        self._resources.get_capacity(resource_id)
        fulfilled = self._tokens.list_by_resource_and_state(
            resource_id, TokenState.FULFILLED
        )
        return sorted(fulfilled, key=lambda t: (t.completed_at, t.created_at))

    def get_token(self, token_id: int) -> Token:
        """Current record of a token.

        Raises:
            TokenNotFound: Unknown token id
        """
        return self._tokens.get(token_id)

    def snapshot(
        self,
        resource_id: ResourceId,
        *,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Consistent view of one resource: occupancy, occupants, waitlist."""
        resource = self._resources.get(resource_id)
        with self._exclusive(resource_id, timeout, "snapshot"):
            occupying = self._tokens.list_by_resource_and_state(
                resource_id, TokenState.OCCUPYING
            )
            waiting = self._tokens.list_by_resource_and_state(
                resource_id, TokenState.WAITING
            )
        return {
            "resource": resource.to_dict(),
            "occupancy": {
                "active": len(occupying),
                "capacity": resource.capacity,
            },
            "occupying": [t.to_dict() for t in occupying],
            "waiting": [t.to_dict() for t in order_waitlist(waiting)],
            "visited": [t.to_dict() for t in self.visit_history(resource_id)],
        }

    # ------------------------------------------------------------------
    # Async variants
    # ------------------------------------------------------------------

    async def submit_async(
        self,
        resource_id: ResourceId,
        category: Any,
        metadata: Optional[Mapping[str, Any]] = None,
        *,
        timeout: Optional[float] = None,
    ) -> AdmissionResult:
        """Async version of submit(); runs in a worker thread."""
        return await asyncio.to_thread(
            self.submit, resource_id, category, metadata, timeout=timeout
        )

    async def release_async(
        self,
        token_id: int,
        outcome: Any,
        *,
        timeout: Optional[float] = None,
    ) -> ReleaseResult:
        """Async version of release(); runs in a worker thread."""
        return await asyncio.to_thread(
            self.release, token_id, outcome, timeout=timeout
        )

    async def get_occupancy_async(
        self,
        resource_id: ResourceId,
        *,
        timeout: Optional[float] = None,
    ) -> Occupancy:
        return await asyncio.to_thread(
            self.get_occupancy, resource_id, timeout=timeout
        )

    async def list_waiting_async(
        self,
        resource_id: ResourceId,
        *,
        timeout: Optional[float] = None,
    ) -> List[int]:
        return await asyncio.to_thread(
            self.list_waiting, resource_id, timeout=timeout
        )


_DECISION_COUNTERS: Dict[AdmissionDecision, str] = {
    AdmissionDecision.ADMITTED: "admitted",
    AdmissionDecision.WAITLISTED: "waitlisted",
    AdmissionDecision.PREEMPTED: "preempted",
    AdmissionDecision.SATURATED: "saturated",
}
