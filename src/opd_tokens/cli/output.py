"""JSON output helpers for the opd-tokens CLI.

This module is the sole output mechanism for the CLI. Envelopes come from
opd_tokens.core.responses so CLI output matches what other callers build.
"""

import json
import sys
from dataclasses import asdict
from typing import Any, Mapping, NoReturn, Optional, Sequence

from opd_tokens.core.errors import AllocationError
from opd_tokens.core.responses import error_response_from, success_response


def emit(data: Any, *, file: Any = None) -> None:
    """Emit minified JSON (stdout by default)."""
    print(json.dumps(data, separators=(",", ":"), default=str), file=file or sys.stdout)


def emit_success(
    data: Any,
    *,
    warnings: Optional[Sequence[str]] = None,
    meta: Optional[Mapping[str, Any]] = None,
) -> None:
    """Emit a success envelope to stdout; non-dict data goes under "result"."""
    payload = data if isinstance(data, dict) else {"result": data}
    emit(asdict(success_response(data=payload, warnings=warnings, meta=meta)))


def emit_allocation_error(exc: AllocationError) -> NoReturn:
    """Emit the envelope for an engine error and exit with code 1."""
    emit(asdict(error_response_from(exc)), file=sys.stderr)
    sys.exit(1)
