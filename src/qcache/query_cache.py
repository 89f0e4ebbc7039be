"""QueryCache - the container of queries.

Provides:
- subscribe(): global listeners, notified after every state change
- find_queries(), get_query_data(): lookups by key or predicate
- remove_queries(), refetch_queries(), clear(): bulk operations
- prefetch_query(), set_query_data(): populate the cache
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from typing import Any, Literal

from qcache.config import QueryConfig
from qcache.keys import get_query_args, is_hash_prefix
from qcache.query import Query, QueryFn
from qcache.timers import AsyncioScheduler, Scheduler
from qcache.types import QueryKeyParts
from qcache.utils import never_settle

logger = logging.getLogger(__name__)

Listener = Callable[["QueryCache"], None]
QueryPredicate = Callable[[Query], bool]


class QueryCache:
    """In-memory cache of async query results.

    Usage:
        cache = QueryCache(stale_time="30s", retry=2)

        todos = await cache.prefetch_query("todos", fetch_todos)
        cache.set_query_data(("todo", 1), lambda old: {**old, "done": True})
        await cache.refetch_queries("todos")

    Every cache is independent; keyword arguments are the default options
    for the queries it builds.
    """

    def __init__(
        self,
        *,
        scheduler: Scheduler | None = None,
        is_visible: Callable[[], bool] | None = None,
        is_server: bool = False,
        **defaults: Any,
    ) -> None:
        self.queries: dict[str, Query] = {}
        self.is_fetching = 0
        self.default_config = QueryConfig().merge(defaults)
        self.scheduler: Scheduler = scheduler or AsyncioScheduler()
        self.is_visible: Callable[[], bool] = is_visible or (lambda: True)
        self.is_server = is_server
        self._listeners: list[Listener] = []

    def configure(self, **options: Any) -> None:
        """Update the defaults merged under every later per-call option."""
        self.default_config = self.default_config.merge(options)

    # -------------------------------------------------------------------------
    # Listeners
    # -------------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call `listener(cache)` after any change; returns the unsubscriber."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify_global_listeners(self) -> None:
        self.is_fetching = sum(
            1 for query in self.queries.values() if query.state.is_fetching
        )
        for listener in list(self._listeners):
            listener(self)

    # -------------------------------------------------------------------------
    # Lookup and bulk operations
    # -------------------------------------------------------------------------

    def clear(self) -> None:
        """Drop every query. Instances are not unsubscribed or cancelled."""
        self.queries = {}
        self._notify_global_listeners()

    def _match(self, predicate: QueryPredicate | Any, *, exact: bool) -> list[Query]:
        if not callable(predicate):
            query_hash, _ = self.default_config.query_key_serializer_fn(predicate)
            if query_hash is None:
                return []

            def predicate(query: Query) -> bool:
                if query.query_hash is None:
                    return False
                if exact:
                    return query.query_hash == query_hash
                return is_hash_prefix(query_hash, query.query_hash)

        return [query for query in self.queries.values() if predicate(query)]

    def find_queries(
        self, predicate: QueryPredicate | Any, *, exact: bool = False
    ) -> Query | list[Query] | None:
        """Find queries by predicate or by key.

        A key matches its own hash when `exact`, else every query whose key
        starts with the same parts. Exact lookups return one query or None.
        """
        found = self._match(predicate, exact=exact)
        if exact:
            return found[0] if found else None
        return found

    def get_query_data(self, query_key: Any) -> Any:
        """Cached data for exactly `query_key`, or None. Never fetches."""
        query = self.find_queries(query_key, exact=True)
        if query is None:
            return None
        return query.state.data

    def remove_queries(
        self, predicate: QueryPredicate | Any, *, exact: bool = False
    ) -> None:
        """Delete matching queries; listeners hear about it only if any matched."""
        found = self._match(predicate, exact=exact)

        for query in found:
            self.queries.pop(query.query_hash, None)

        if found:
            self._notify_global_listeners()

    async def refetch_queries(
        self,
        predicate: QueryPredicate | Literal[True] | Any,
        *,
        exact: bool = False,
        throw_on_error: bool = False,
    ) -> list[Any] | None:
        """Refetch matching queries that have at least one instance.

        Pass ``True`` to select every query. Errors are logged and swallowed
        unless `throw_on_error` is set.
        """
        if predicate is True:
            selected = list(self.queries.values())
        else:
            selected = self._match(predicate, exact=exact)

        selected = [query for query in selected if query.instances]

        try:
            return list(await asyncio.gather(*(q.fetch() for q in selected)))
        except Exception:
            if throw_on_error:
                raise
            logger.warning(
                "Refetch of %d queries failed", len(selected), exc_info=True
            )
            return None

    # -------------------------------------------------------------------------
    # Building and populating queries
    # -------------------------------------------------------------------------

    def _build_query(
        self,
        query_key: Any,
        query_variables: QueryKeyParts,
        query_fn: QueryFn,
        options: Mapping[str, Any] | None = None,
    ) -> Query:
        config = self.default_config.merge(options)
        query_hash, key_parts = config.query_key_serializer_fn(query_key)

        query = self.queries.get(query_hash) if query_hash is not None else None
        if query is not None:
            query.update(
                query_variables=query_variables, query_fn=query_fn, options=options
            )
            return query

        query = Query(
            self,
            query_key=key_parts,
            query_hash=query_hash,
            query_variables=query_variables,
            query_fn=query_fn,
            config=config,
        )

        # Nobody is subscribed yet
        query.heal()
        query.schedule_garbage_collection()

        if not self.is_server and query_hash is not None:
            self.queries[query_hash] = query

        return query

    async def prefetch_query(self, query_key: Any, *args: Any, **options: Any) -> Any:
        """Build the query for `query_key` and fetch it.

        Usage:
            await cache.prefetch_query("todos", fetch_todos)
            await cache.prefetch_query("todo", (5,), fetch_todo, stale_time="1m")

        Errors are logged and swallowed unless ``throw_on_error`` is set.
        """
        query_variables, query_fn = get_query_args(args)
        query = self._build_query(query_key, query_variables, query_fn, options)

        try:
            return await query.fetch()
        except Exception:
            if query.config.throw_on_error:
                raise
            logger.warning("Prefetch of %s failed", query.query_hash, exc_info=True)
            return None

    def set_query_data(self, query_key: Any, updater: Any) -> None:
        """Write data for `query_key` locally without fetching.

        `updater` is the new data, or a function of the previous data.
        """
        query = self.find_queries(query_key, exact=True)
        if query is None:
            query = self._build_query(query_key, (), never_settle, {"manual": True})
        query.set_data(updater)


__all__ = ["QueryCache"]
