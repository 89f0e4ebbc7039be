"""Shared pytest fixtures."""

import pytest

from qcache import ManualScheduler, QueryCache


@pytest.fixture
def scheduler() -> ManualScheduler:
    """Virtual clock; timers fire only on advance()."""
    return ManualScheduler()


@pytest.fixture
def cache(scheduler: ManualScheduler) -> QueryCache:
    """Create a fresh QueryCache on virtual time for each test."""
    return QueryCache(scheduler=scheduler)


@pytest.fixture
def live_cache() -> QueryCache:
    """QueryCache on the event loop clock with immediate retries."""
    return QueryCache(retry_delay=0)
