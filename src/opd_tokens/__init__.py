"""opd-tokens - priority admission and waitlist backfill for clinic slots."""

import logging
from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("opd-tokens")
except PackageNotFoundError:
    # Package not installed (development mode without editable install)
    __version__ = "0.1.0"

from opd_tokens.core import (
    AllocationCoordinator,
    InMemoryResourceStore,
    InMemoryTokenStore,
    PriorityClass,
    TokenState,
)

# Library default: silent unless the application configures logging.
logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "__version__",
    "AllocationCoordinator",
    "InMemoryResourceStore",
    "InMemoryTokenStore",
    "PriorityClass",
    "TokenState",
]
