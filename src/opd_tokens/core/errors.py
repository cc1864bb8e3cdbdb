"""
Error taxonomy for the allocation engine.

Every failure the engine surfaces derives from ``AllocationError`` and
carries a canonical ``ErrorCode``/``ErrorType`` pair plus a remediation hint,
so callers (the CLI, a REST layer) can map it to their transport without
inspecting messages.

The engine never retries internally. Each error is fatal to the call that
raised it; the caller decides whether to retry the whole submit/release.
"""

from enum import Enum
from typing import Any, Dict, Hashable, Optional


class ErrorCode(str, Enum):
    """Machine-readable error codes.

    Codes use SCREAMING_SNAKE_CASE and stay stable across releases.
    """

    # Validation errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_CATEGORY = "INVALID_CATEGORY"

    # Resource/state errors
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    TOKEN_NOT_FOUND = "TOKEN_NOT_FOUND"
    INVALID_TRANSITION = "INVALID_TRANSITION"

    # System errors
    RESOURCE_BUSY = "RESOURCE_BUSY"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorType(str, Enum):
    """Error categories for routing and client-side handling.

    Each type corresponds to an HTTP status analog and tells the client
    whether retrying makes sense.
    """

    VALIDATION = "validation"  # 400 - No retry, fix input
    NOT_FOUND = "not_found"  # 404 - No retry
    CONFLICT = "conflict"  # 409 - No retry, caller/application bug
    UNAVAILABLE = "unavailable"  # 503 - Yes, retry the whole call
    INTERNAL = "internal"  # 500 - Yes, with backoff


class AllocationError(Exception):
    """Base class for all allocation engine errors.

    Attributes:
        code: Canonical error code
        error_type: Error category
        remediation: Actionable guidance for the caller
    """

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    error_type: ErrorType = ErrorType.INTERNAL
    remediation: Optional[str] = None

    def details(self) -> Dict[str, Any]:
        """Structured context for logs and error envelopes."""
        return {}


class ResourceNotFound(AllocationError):
    """Raised when a resource id is unknown to the resource store."""

    code = ErrorCode.RESOURCE_NOT_FOUND
    error_type = ErrorType.NOT_FOUND
    remediation = "Create the resource before submitting tokens against it"

    def __init__(self, resource_id: Hashable):
        super().__init__(f"Resource not found: {resource_id!r}")
        self.resource_id = resource_id

    def details(self) -> Dict[str, Any]:
        return {"resource_id": self.resource_id}


class TokenNotFound(AllocationError):
    """Raised when releasing or reading a token id that does not exist."""

    code = ErrorCode.TOKEN_NOT_FOUND
    error_type = ErrorType.NOT_FOUND
    remediation = "Use a token id returned by submit"

    def __init__(self, token_id: Any):
        super().__init__(f"Token not found: {token_id!r}")
        self.token_id = token_id

    def details(self) -> Dict[str, Any]:
        return {"token_id": self.token_id}


class InvalidCategory(AllocationError):
    """Raised for a priority category outside the fixed enumeration."""

    code = ErrorCode.INVALID_CATEGORY
    error_type = ErrorType.VALIDATION
    remediation = (
        "Use one of EMERGENCY, PAID, FOLLOW_UP, ONLINE, WALK_IN or a rank 1-5"
    )

    def __init__(self, value: Any):
        super().__init__(f"Invalid priority category: {value!r}")
        self.value = value

    def details(self) -> Dict[str, Any]:
        return {"value": repr(self.value)}


class InvalidTransition(AllocationError):
    """Raised for a lifecycle transition the state machine does not allow.

    This always points at a caller or application bug, e.g. releasing a
    token twice or marking a waitlisted token as fulfilled.
    """

    code = ErrorCode.INVALID_TRANSITION
    error_type = ErrorType.CONFLICT
    remediation = "Check the token's current state before releasing it"

    def __init__(
        self,
        from_state: Any,
        to_state: Any,
        token_id: Optional[int] = None,
    ):
        subject = f"token {token_id}" if token_id is not None else "token"
        super().__init__(
            f"Invalid transition for {subject}: {_label(from_state)} -> {_label(to_state)}"
        )
        self.from_state = from_state
        self.to_state = to_state
        self.token_id = token_id

    def details(self) -> Dict[str, Any]:
        return {
            "token_id": self.token_id,
            "from_state": _label(self.from_state),
            "to_state": _label(self.to_state),
        }


class AllocationTimeout(AllocationError):
    """Raised when a resource's lock could not be acquired in time.

    The operation has not started when this is raised; engine state is
    unchanged and the whole call may be retried.

    Attributes:
        resource_id: The resource whose lock was contended
        timeout_seconds: The timeout that was exceeded
        operation: Name of the coordinator operation
    """

    code = ErrorCode.RESOURCE_BUSY
    error_type = ErrorType.UNAVAILABLE
    remediation = "Retry the call; another booking desk holds this resource"

    def __init__(
        self,
        resource_id: Hashable,
        timeout_seconds: Optional[float],
        operation: Optional[str] = None,
    ):
        super().__init__(
            f"Timed out after {timeout_seconds}s waiting for resource {resource_id!r}"
        )
        self.resource_id = resource_id
        self.timeout_seconds = timeout_seconds
        self.operation = operation

    def details(self) -> Dict[str, Any]:
        return {
            "resource_id": self.resource_id,
            "timeout_seconds": self.timeout_seconds,
            "operation": self.operation,
        }


def _label(state: Any) -> str:
    return getattr(state, "name", None) or str(state)
