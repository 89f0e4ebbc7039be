"""Default query reducer.

A pure function from (state, action) to the next QueryState. Queries may
swap it out through the ``query_reducer`` option.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace

from qcache.actions import (
    Action,
    Activate,
    Deactivate,
    Error,
    Failed,
    Fetch,
    Init,
    MarkStale,
    SetData,
    Success,
)
from qcache.types import QueryState
from qcache.utils import functional_update

QueryReducer = Callable[[QueryState | None, Action], QueryState]


def default_query_reducer(state: QueryState | None, action: Action) -> QueryState:
    """Compute the next state of a query.

    Raises:
        TypeError: for anything that is not a known action.
    """
    if isinstance(action, Init):
        return QueryState(
            status=(
                "success"
                if action.manual or action.initial_data is not None
                else "loading"
            ),
            error=None,
            is_fetching=not action.manual,
            can_fetch_more=False,
            failure_count=0,
            is_stale=True,
            is_inactive=False,
            data=action.initial_data,
        )

    if state is None:
        raise TypeError(f"{type(action).__name__} dispatched before Init")

    if isinstance(action, Activate):
        return replace(state, is_inactive=False)
    if isinstance(action, Deactivate):
        return replace(state, is_inactive=True)
    if isinstance(action, Failed):
        return replace(state, failure_count=state.failure_count + 1)
    if isinstance(action, MarkStale):
        return replace(state, is_stale=True)
    if isinstance(action, Fetch):
        return replace(
            state,
            status="loading" if state.status == "error" else state.status,
            is_fetching=True,
            failure_count=0,
        )
    if isinstance(action, Success):
        return replace(
            state,
            status="success",
            data=action.data,
            error=None,
            is_stale=False,
            is_fetching=False,
            can_fetch_more=action.can_fetch_more,
        )
    if isinstance(action, Error):
        if action.cancelled:
            return replace(state, is_fetching=False)
        return replace(
            state,
            is_fetching=False,
            status="error",
            error=action.error,
            is_stale=True,
        )
    if isinstance(action, SetData):
        return replace(state, data=functional_update(action.updater, state.data))

    raise TypeError(f"Unknown query action: {action!r}")


__all__ = ["QueryReducer", "default_query_reducer"]
