"""Log output for the ``opd_tokens`` logger namespace.

Engine modules log through ``logging.getLogger(__name__)`` and attach
structured fields (resource_id, token_id, decision, ...) via ``extra=``.
This module decides how those records are rendered:

- ``DeskContextFilter`` stamps every record with the active correlation id,
  booking desk and elapsed time from ``opd_tokens.core.context``.
- ``JsonLineFormatter`` writes one JSON object per record; extra fields go
  under ``"fields"``.
- ``ConsoleFormatter`` writes a single readable line.

The library itself installs only a NullHandler; applications (and the CLI's
``--log-level``) call ``configure_logging``.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TextIO, Union

from opd_tokens.core.context import (
    ANONYMOUS_DESK,
    current_correlation_id,
    current_desk_id,
    current_elapsed_ms,
)

__all__ = [
    "ROOT_LOGGER",
    "DeskContextFilter",
    "JsonLineFormatter",
    "ConsoleFormatter",
    "configure_logging",
    "get_logger",
]

ROOT_LOGGER = "opd_tokens"

_CONTEXT_ATTRS = ("correlation_id", "desk_id", "elapsed_ms")

# Attribute names set by LogRecord itself; everything else came from extra=.
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"} | set(_CONTEXT_ATTRS)


def _record_fields(record: logging.LogRecord) -> Dict[str, Any]:
    """The extra= fields of a record, made JSON-safe."""
    fields: Dict[str, Any] = {}
    for key, value in record.__dict__.items():
        if key in _RECORD_ATTRS:
            continue
        try:
            json.dumps(value)
        except (TypeError, ValueError):
            value = repr(value)
        fields[key] = value
    return fields


class DeskContextFilter(logging.Filter):
    """Copy the active desk context onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = current_correlation_id() or "-"
        record.desk_id = current_desk_id()
        record.elapsed_ms = round(current_elapsed_ms(), 2)
        return True


class JsonLineFormatter(logging.Formatter):
    """One JSON object per record.

    Example:
        {"ts":"2026-03-02T09:14:05.221+00:00","level":"WARNING",
         "logger":"opd_tokens.core.admission",
         "msg":"Token 2 preempted by emergency token 4",
         "correlation_id":"req_1f0c9a7be2d4","desk_id":"triage",
         "elapsed_ms":0.41,"fields":{"resource_id":"smith-0900",...}}
    """

    def __init__(self, *, with_fields: bool = True):
        super().__init__()
        self.with_fields = with_fields

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(
                timespec="milliseconds"
            ),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", "-"),
            "desk_id": getattr(record, "desk_id", ANONYMOUS_DESK),
            "elapsed_ms": getattr(record, "elapsed_ms", 0.0),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        if self.with_fields:
            fields = _record_fields(record)
            if fields:
                entry["fields"] = fields
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Single-line output for terminals.

        09:14:05 WARNING  core.admission [req_1f0c9a7be2d4 triage] Token 2 preempted ...
    """

    def __init__(self, *, show_time: bool = True):
        super().__init__()
        self.show_time = show_time

    def format(self, record: logging.LogRecord) -> str:
        name = record.name
        if name.startswith(ROOT_LOGGER + "."):
            name = name[len(ROOT_LOGGER) + 1 :]

        head = f"{record.levelname:<8} {name}"
        if self.show_time:
            head = datetime.fromtimestamp(record.created).strftime("%H:%M:%S ") + head

        correlation_id = getattr(record, "correlation_id", "-")
        if correlation_id != "-":
            head += f" [{correlation_id} {getattr(record, 'desk_id', ANONYMOUS_DESK)}]"

        line = f"{head} {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(
    *,
    level: Union[int, str] = logging.INFO,
    format: str = "json",
    stream: Optional[TextIO] = None,
    with_context: bool = True,
) -> logging.Logger:
    """Send opd_tokens records to a stream.

    Replaces whatever handlers the namespace had, so repeated calls do not
    duplicate output.

    Args:
        level: Level name or number; unknown names fall back to INFO
        format: "json" or "console"
        stream: Destination (default: stderr)
        with_context: Attach DeskContextFilter

    Returns:
        The opd_tokens logger
    """
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        level = resolved if isinstance(resolved, int) else logging.INFO

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JsonLineFormatter() if format == "json" else ConsoleFormatter())
    if with_context:
        handler.addFilter(DeskContextFilter())

    logger = logging.getLogger(ROOT_LOGGER)
    for old in list(logger.handlers):
        logger.removeHandler(old)
    logger.addHandler(handler)
    logger.setLevel(level)
    return logger


def get_logger(name: str) -> logging.Logger:
    """Logger under the opd_tokens namespace ("core.x" -> "opd_tokens.core.x")."""
    if name != ROOT_LOGGER and not name.startswith(ROOT_LOGGER + "."):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)
