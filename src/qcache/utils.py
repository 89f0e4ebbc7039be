"""Small helpers shared by the reducer and the query."""

import asyncio
from typing import Any


def functional_update(updater: Any, previous: Any) -> Any:
    """Apply `updater` to `previous` if callable, else return it as the value."""
    if callable(updater):
        return updater(previous)
    return updater


def never_settle(*_args: Any) -> "asyncio.Future[Any]":
    """Fetch function for locally seeded queries: a future nobody resolves."""
    return asyncio.get_running_loop().create_future()
