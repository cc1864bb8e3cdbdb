"""Per-call context: which booking desk made a call, and under which id.

A booking desk (reception counter, online portal, emergency triage) issues
submit/release calls. The desk id and a correlation id live in context
variables so the logging filter and the response envelopes can read them
without threading them through every engine signature. ``asyncio.to_thread``
copies the current context, so the async coordinator variants keep them.

Usage:
    from opd_tokens.core.context import desk_context

    with desk_context("triage") as ctx:
        coordinator.submit("smith-0900", "EMERGENCY")
        ctx.correlation_id  # e.g. "req_1f0c9a7be2d4"
"""

from __future__ import annotations

import secrets
import time
from contextlib import asynccontextmanager, contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Iterator, Optional

__all__ = [
    "ANONYMOUS_DESK",
    "CallContext",
    "new_correlation_id",
    "desk_context",
    "async_desk_context",
    "current_correlation_id",
    "current_desk_id",
    "current_started_at",
    "current_elapsed_ms",
    "current_context",
]

ANONYMOUS_DESK = "anonymous"

_correlation_id: ContextVar[str] = ContextVar("opd_correlation_id", default="")
_desk_id: ContextVar[str] = ContextVar("opd_desk_id", default=ANONYMOUS_DESK)
_started_at: ContextVar[float] = ContextVar("opd_started_at", default=0.0)


def new_correlation_id(prefix: str = "req") -> str:
    """Return ``{prefix}_`` followed by 12 random hex characters."""
    return f"{prefix}_{secrets.token_hex(6)}"


@dataclass(frozen=True)
class CallContext:
    """The context active for one desk call."""

    correlation_id: str
    desk_id: str
    started_at: float

    def elapsed_ms(self) -> float:
        return _elapsed_ms(self.started_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "correlation_id": self.correlation_id,
            "desk_id": self.desk_id,
            "elapsed_ms": round(self.elapsed_ms(), 2),
        }


def _elapsed_ms(started_at: float) -> float:
    return (time.time() - started_at) * 1000 if started_at > 0 else 0.0


@contextmanager
def desk_context(
    desk_id: Optional[str] = None,
    *,
    correlation_id: Optional[str] = None,
) -> Iterator[CallContext]:
    """Bind a desk and correlation id for the duration of a with block.

    Nested blocks shadow the outer binding and restore it on exit.
    """
    ctx = CallContext(
        correlation_id=correlation_id or new_correlation_id(),
        desk_id=desk_id or ANONYMOUS_DESK,
        started_at=time.time(),
    )
    tokens = (
        (_correlation_id, _correlation_id.set(ctx.correlation_id)),
        (_desk_id, _desk_id.set(ctx.desk_id)),
        (_started_at, _started_at.set(ctx.started_at)),
    )
    try:
        yield ctx
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


@asynccontextmanager
async def async_desk_context(
    desk_id: Optional[str] = None,
    *,
    correlation_id: Optional[str] = None,
) -> AsyncIterator[CallContext]:
    with desk_context(desk_id, correlation_id=correlation_id) as ctx:
        yield ctx


def current_correlation_id() -> str:
    """Correlation id of the active call, "" outside desk_context."""
    return _correlation_id.get()


def current_desk_id() -> str:
    return _desk_id.get()


def current_started_at() -> float:
    return _started_at.get()


def current_elapsed_ms() -> float:
    return _elapsed_ms(_started_at.get())


def current_context() -> Optional[CallContext]:
    """The active CallContext, or None outside desk_context."""
    correlation_id = _correlation_id.get()
    if not correlation_id:
        return None
    return CallContext(
        correlation_id=correlation_id,
        desk_id=_desk_id.get(),
        started_at=_started_at.get(),
    )
