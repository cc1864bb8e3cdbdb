"""
Standard response envelopes for callers that serialize engine results.

Every envelope carries ``meta.version`` = "response-v1" and, inside a
request context, the correlation ID as ``meta.request_id``. Errors put the
canonical code, type and remediation in ``data`` and the human-readable
message in ``error``.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Sequence, Union

from opd_tokens.core.context import current_correlation_id
from opd_tokens.core.errors import AllocationError, ErrorCode, ErrorType

RESPONSE_VERSION = "response-v1"


@dataclass
class Response:
    """
    Standard response structure.

    Attributes:
        success: Whether the operation completed successfully
        data: The primary payload
        error: Error message if success is False, None otherwise
        meta: Response metadata including version identifier
    """

    success: bool
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=lambda: {"version": RESPONSE_VERSION})


def _build_meta(
    *,
    request_id: Optional[str] = None,
    warnings: Optional[Sequence[str]] = None,
    extra: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    meta: Dict[str, Any] = {"version": RESPONSE_VERSION}
    effective_request_id = request_id or current_correlation_id() or None
    if effective_request_id:
        meta["request_id"] = effective_request_id
    if warnings:
        meta["warnings"] = list(warnings)
    if extra:
        meta.update(dict(extra))
    return meta


def success_response(
    data: Optional[Mapping[str, Any]] = None,
    *,
    warnings: Optional[Sequence[str]] = None,
    request_id: Optional[str] = None,
    meta: Optional[Mapping[str, Any]] = None,
    **fields: Any,
) -> Response:
    """Create a standardized success response.

    Args:
        data: Optional mapping used as the base payload.
        warnings: Non-fatal issues to surface in ``meta.warnings``.
        request_id: Correlation identifier (defaults to the context's).
        meta: Arbitrary extra metadata to merge into ``meta``.
        **fields: Additional payload fields.
    """
    payload: Dict[str, Any] = {}
    if data:
        payload.update(dict(data))
    if fields:
        payload.update(fields)
    return Response(
        success=True,
        data=payload,
        error=None,
        meta=_build_meta(request_id=request_id, warnings=warnings, extra=meta),
    )


def error_response(
    message: str,
    *,
    error_code: Optional[Union[ErrorCode, str]] = None,
    error_type: Optional[Union[ErrorType, str]] = None,
    remediation: Optional[str] = None,
    details: Optional[Mapping[str, Any]] = None,
    request_id: Optional[str] = None,
    meta: Optional[Mapping[str, Any]] = None,
) -> Response:
    """Create a standardized error response.

    Example:
        >>> error_response(
        ...     "Invalid priority category: 'VIP'",
        ...     error_code=ErrorCode.INVALID_CATEGORY,
        ...     error_type=ErrorType.VALIDATION,
        ... )
    """
    code = error_code if error_code is not None else ErrorCode.INTERNAL_ERROR
    kind = error_type if error_type is not None else ErrorType.INTERNAL
    payload: Dict[str, Any] = {
        "error_code": code.value if isinstance(code, ErrorCode) else code,
        "error_type": kind.value if isinstance(kind, ErrorType) else kind,
    }
    if remediation:
        payload["remediation"] = remediation
    if details:
        payload["details"] = dict(details)
    return Response(
        success=False,
        data=payload,
        error=message,
        meta=_build_meta(request_id=request_id, extra=meta),
    )


def error_response_from(exc: AllocationError, **kwargs: Any) -> Response:
    """Map an engine error to its error envelope."""
    return error_response(
        str(exc),
        error_code=exc.code,
        error_type=exc.error_type,
        remediation=exc.remediation,
        details=exc.details(),
        **kwargs,
    )
