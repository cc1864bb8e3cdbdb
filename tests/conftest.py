"""
Root pytest configuration and shared fixtures.

Provides fresh stores and coordinators per test, and restores the global
config and the opd_tokens logger afterwards.
"""

import logging

import pytest

from opd_tokens.config import set_config
from opd_tokens.core.coordinator import AllocationCoordinator
from opd_tokens.core.stores import InMemoryResourceStore, InMemoryTokenStore


@pytest.fixture(autouse=True)
def reset_globals():
    """Reset the config singleton and logger handlers around each test."""
    set_config(None)
    yield
    set_config(None)
    logger = logging.getLogger("opd_tokens")
    logger.handlers.clear()
    logger.addHandler(logging.NullHandler())
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def resources():
    """Resource store with two slots: capacity 2 and capacity 1."""
    store = InMemoryResourceStore()
    store.add("slot-2", capacity=2, label="Dr. Smith 09:00-10:00")
    store.add("slot-1", capacity=1, label="Dr. Jones 10:00-11:00")
    return store


@pytest.fixture
def tokens():
    return InMemoryTokenStore()


@pytest.fixture
def coordinator(resources, tokens):
    return AllocationCoordinator(resources, tokens, default_timeout=5.0)


@pytest.fixture
def states(tokens):
    """Callable returning {token_id: state} for the given ids."""

    def _states(*token_ids):
        return {tid: tokens.get(tid).state for tid in token_ids}

    return _states
