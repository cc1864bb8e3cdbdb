"""
Resource and token storage backends.

The engine talks to storage only through the narrow ``ResourceStore`` and
``TokenStore`` interfaces below. The in-memory implementations are
thread-safe so one pair of stores can back several resources being worked
on concurrently; per-resource atomicity is the coordinator's job, not the
store's.
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import replace
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

from opd_tokens.core.errors import ResourceNotFound, TokenNotFound
from opd_tokens.core.lifecycle import TokenState, WaitReason
from opd_tokens.core.models import Resource, ResourceId, Token
from opd_tokens.core.priority import PriorityClass

logger = logging.getLogger(__name__)

_IMMUTABLE_FIELDS = ("resource_id", "priority_class", "created_at")


class ResourceStore(ABC):
    """Abstract base class for resource (capacity record) storage."""

    @abstractmethod
    def get(self, resource_id: ResourceId) -> Resource:
        """
        Retrieve a resource by id.

        Raises:
            ResourceNotFound: If no such resource exists
        """
        pass

    def get_capacity(self, resource_id: ResourceId) -> int:
        """
        Capacity of a resource.

        Raises:
            ResourceNotFound: If no such resource exists
        """
        return self.get(resource_id).capacity


class TokenStore(ABC):
    """Abstract base class for token storage."""

    @abstractmethod
    def create(
        self,
        resource_id: ResourceId,
        priority_class: PriorityClass,
        state: TokenState,
        *,
        wait_reason: Optional[WaitReason] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> Token:
        """
        Create and persist a token, assigning its id and created_at.

        Returns:
            The stored Token
        """
        pass

    @abstractmethod
    def get(self, token_id: int) -> Token:
        """
        Retrieve a token by id.

        Raises:
            TokenNotFound: If no such token exists
        """
        pass

    @abstractmethod
    def update(self, token: Token) -> Token:
        """
        Replace the stored record for token.id.

        Raises:
            TokenNotFound: If the token was never created
            ValueError: If an immutable field differs from the stored record
        """
        pass

    @abstractmethod
    def count_by_resource_and_state(
        self, resource_id: ResourceId, state: TokenState
    ) -> int:
        """Number of tokens of a resource in a state."""
        pass

    @abstractmethod
    def list_by_resource_and_state(
        self, resource_id: ResourceId, state: TokenState
    ) -> List[Token]:
        """Tokens of a resource in a state, in creation order."""
        pass


class InMemoryResourceStore(ResourceStore):
    """Dictionary-backed resource store."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._resources: Dict[ResourceId, Resource] = {}

    def add(
        self,
        resource_id: ResourceId,
        capacity: int,
        label: Optional[str] = None,
    ) -> Resource:
        """
        Register a resource.

        Raises:
            ValueError: If capacity < 1 or the id is already registered
        """
        if isinstance(capacity, bool) or not isinstance(capacity, int):
            raise ValueError(f"Capacity must be an integer; got {capacity!r}.")
        if capacity < 1:
            raise ValueError("Capacity must be at least 1.")
        resource = Resource(id=resource_id, capacity=capacity, label=label)
        with self._lock:
            if resource_id in self._resources:
                raise ValueError(f"Resource already exists: {resource_id!r}")
            self._resources[resource_id] = resource
        logger.debug(
            "Resource registered",
            extra={"resource_id": resource_id, "capacity": capacity},
        )
        return resource

    def get(self, resource_id: ResourceId) -> Resource:
        with self._lock:
            try:
                return self._resources[resource_id]
            except (KeyError, TypeError):
                raise ResourceNotFound(resource_id) from None

    def list_resources(self) -> List[Resource]:
        with self._lock:
            return list(self._resources.values())

    def __contains__(self, resource_id: object) -> bool:
        with self._lock:
            return resource_id in self._resources

    def __len__(self) -> int:
        with self._lock:
            return len(self._resources)


class InMemoryTokenStore(TokenStore):
    """
    Dictionary-backed token store.

    Ids come from a counter starting at 1. ``created_at`` is the wall clock
    in nanoseconds, bumped by one whenever it would not be strictly greater
    than the previous token's, so creation order is total.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tokens: Dict[int, Token] = {}
        self._ids = itertools.count(1)
        self._last_created_ns = 0

    def _next_created_at(self) -> int:
        now = time.time_ns()
        if now <= self._last_created_ns:
            now = self._last_created_ns + 1
        self._last_created_ns = now
        return now

    def create(
        self,
        resource_id: ResourceId,
        priority_class: PriorityClass,
        state: TokenState,
        *,
        wait_reason: Optional[WaitReason] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> Token:
        with self._lock:
            token = Token(
                id=next(self._ids),
                resource_id=resource_id,
                priority_class=priority_class,
                state=state,
                created_at=self._next_created_at(),
                wait_reason=wait_reason,
                metadata=MappingProxyType(dict(metadata or {})),
            )
            self._tokens[token.id] = token
        return token

    def get(self, token_id: int) -> Token:
        with self._lock:
            try:
                return self._tokens[token_id]
            except (KeyError, TypeError):
                raise TokenNotFound(token_id) from None

    def update(self, token: Token) -> Token:
        with self._lock:
            stored = self._tokens.get(token.id)
            if stored is None:
                raise TokenNotFound(token.id)
            for name in _IMMUTABLE_FIELDS:
                if getattr(stored, name) != getattr(token, name):
                    raise ValueError(
                        f"Token {token.id}: field {name!r} is immutable"
                    )
            # metadata is fixed at creation as well
            token = replace(token, metadata=stored.metadata)
            self._tokens[token.id] = token
        return token

    def count_by_resource_and_state(
        self, resource_id: ResourceId, state: TokenState
    ) -> int:
        with self._lock:
            return sum(
                1
                for t in self._tokens.values()
                if t.resource_id == resource_id and t.state is state
            )

    def list_by_resource_and_state(
        self, resource_id: ResourceId, state: TokenState
    ) -> List[Token]:
        with self._lock:
            matches = [
                t
                for t in self._tokens.values()
                if t.resource_id == resource_id and t.state is state
            ]
        return sorted(matches, key=lambda t: t.created_at)

    def list_by_resource(self, resource_id: ResourceId) -> List[Token]:
        """Every token of a resource, any state, in creation order."""
        with self._lock:
            matches = [t for t in self._tokens.values() if t.resource_id == resource_id]
        return sorted(matches, key=lambda t: t.created_at)

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)
