"""Query - one cache entry.

Owns the entry's state, its single in-flight fetch, the retry loop, the
stale and garbage-collection timers, and the instances subscribed to it.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import math
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any

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
from qcache.config import QueryConfig
from qcache.reducer import default_query_reducer
from qcache.timers import TimerHandle
from qcache.types import (
    CANCELLED,
    Cancelled,
    Instance,
    QueryHash,
    QueryKeyParts,
    QueryState,
)
from qcache.utils import functional_update

if TYPE_CHECKING:
    from qcache.query_cache import QueryCache

logger = logging.getLogger(__name__)

QueryFn = Callable[..., Any]


class Query:
    """A cache entry for one canonical key.

    At most one fetch is in flight at a time. Every ``fetch()`` call until
    that cycle settles joins the same task through its own shield, so one
    caller giving up does not cancel the fetch for the others.
    """

    def __init__(
        self,
        cache: QueryCache,
        *,
        query_key: QueryKeyParts,
        query_hash: QueryHash | None,
        query_variables: QueryKeyParts,
        query_fn: QueryFn,
        config: QueryConfig,
    ) -> None:
        self.cache = cache
        self.query_key = query_key
        self.query_hash = query_hash
        self.query_variables = query_variables
        self.query_fn = query_fn
        self.config = config

        self._reducer = config.query_reducer or default_query_reducer
        self.state: QueryState = self._reducer(
            None, Init(initial_data=config.initial_data, manual=config.manual)
        )

        self.instances: list[Instance] = []
        self.promise: asyncio.Task[Any] | None = None
        self.cancelled: Cancelled | None = None
        self.cancel_queries: Callable[[], None] | None = None
        self.cache_timeout: TimerHandle | None = None
        self.stale_timeout: TimerHandle | None = None

    def __repr__(self) -> str:
        return f"Query({self.query_hash!r}, status={self.state.status!r})"

    @property
    def is_inactive(self) -> bool:
        return self.state.is_inactive

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    def _dispatch(self, action: Action) -> None:
        self.state = self._reducer(self.state, action)
        for instance in list(self.instances):
            if instance.on_state_update is not None:
                instance.on_state_update(self.state)
        self.cache._notify_global_listeners()

    def set_data(self, updater: Any) -> None:
        """Replace data with a value, or with ``updater(previous_data)``."""
        self._dispatch(SetData(updater=updater))

    def update(
        self,
        *,
        query_variables: QueryKeyParts,
        query_fn: QueryFn,
        options: Mapping[str, Any] | None = None,
    ) -> None:
        """Re-register this query.

        The new variables and fetch function replace the old ones; options
        are merged over the current config, new keys winning.
        """
        self.query_variables = query_variables
        self.query_fn = query_fn
        self.config = self.config.merge(options)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def heal(self) -> None:
        """Mark active, stop garbage collection and forget any cancellation."""
        if self.state.is_inactive:
            self._dispatch(Activate())
        self._clear_cache_timeout()
        self.cancelled = None

    def schedule_garbage_collection(self) -> None:
        """Mark inactive and remove from the cache after ``cache_time``."""
        if not self.state.is_inactive:
            self._dispatch(Deactivate())
        self._clear_cache_timeout()

        cache_time = self.config.cache_time
        if math.isinf(cache_time):
            return
        self.cache_timeout = self.cache.scheduler.call_later(cache_time, self._collect)

    def _collect(self) -> None:
        self.cache_timeout = None
        logger.debug("Collecting inactive query %s", self.query_hash)
        query_hash = self.query_hash
        self.cache.remove_queries(lambda q: q.query_hash == query_hash)

    def _clear_cache_timeout(self) -> None:
        if self.cache_timeout is not None:
            self.cache_timeout.cancel()
            self.cache_timeout = None

    def subscribe(self, instance: Instance) -> Callable[[], None]:
        """Register an instance; returns the function that unsubscribes it.

        Subscribing an id that is already present merges the callbacks
        into the existing record.
        """
        found = next((i for i in self.instances if i.id == instance.id), None)
        if found is not None:
            found.merge(instance)
        else:
            self.instances.append(instance)

        self.heal()

        def unsubscribe() -> None:
            remaining = [i for i in self.instances if i.id != instance.id]
            if len(remaining) == len(self.instances):
                return
            self.instances = remaining

            if not self.instances:
                self.cancelled = CANCELLED
                if self.promise is not None and self.cancel_queries is not None:
                    logger.debug("Cancelling fetch of %s", self.query_hash)
                    self.cancel_queries()
                self.schedule_garbage_collection()

        return unsubscribe

    # -------------------------------------------------------------------------
    # Fetching
    # -------------------------------------------------------------------------

    def fetch(self, *, fetch_override: QueryFn | None = None) -> asyncio.Future[Any]:
        """Start a fetch cycle, or join the one already in flight.

        Returns a future resolving to the fetched data. It resolves to None
        when the cycle is cancelled or the query has no key, and raises the
        last error once retries are exhausted.
        """
        loop = asyncio.get_running_loop()

        if not self.query_hash:
            done = loop.create_future()
            done.set_result(None)
            return done

        if self.promise is None:
            self.cancelled = None
            logger.debug("Fetching %s", self.query_hash)
            # promise must be set before any callback runs
            self.promise = loop.create_task(
                self._fetch_cycle(fetch_override or self.query_fn)
            )
            self._dispatch(Fetch())

        return asyncio.shield(self.promise)

    async def _fetch_cycle(self, query_fn: QueryFn) -> Any:
        try:
            result = await self._try_fetch(
                query_fn, (*self.query_key, *self.query_variables)
            )
        except asyncio.CancelledError:
            self._dispatch(Error(error=None, cancelled=True))
            self._cleanup()
            raise
        except Exception as error:
            self._dispatch(Error(error=error))
            self._cleanup()

            for instance in list(self.instances):
                if instance.on_error is not None:
                    instance.on_error(error)
            for instance in list(self.instances):
                if instance.on_settled is not None:
                    instance.on_settled(None, error)
            raise

        if isinstance(result, Cancelled):
            logger.debug("Fetch of %s was cancelled", self.query_hash)
            self._dispatch(Error(error=None, cancelled=True))
            self._cleanup()
            return None

        self._dispatch(Success(data=result))

        for instance in list(self.instances):
            if instance.on_success is not None:
                instance.on_success(self.state.data)
        for instance in list(self.instances):
            if instance.on_settled is not None:
                instance.on_settled(self.state.data, None)

        self._cleanup()
        return result

    def _cleanup(self) -> None:
        self.promise = None

        # Re-arm staleness after every settle, cancelled ones included
        if self.stale_timeout is not None:
            self.stale_timeout.cancel()
            self.stale_timeout = None

        stale_time = self.config.stale_time
        if math.isinf(stale_time):
            return
        self.stale_timeout = self.cache.scheduler.call_later(
            stale_time, self._mark_stale
        )

    def _mark_stale(self) -> None:
        self.stale_timeout = None
        self._dispatch(MarkStale())

    async def _try_fetch(self, query_fn: QueryFn, args: tuple[Any, ...]) -> Any:
        """Call `query_fn` until it succeeds, retries run out, or we are cancelled.

        Returns the data, or the cancellation signal. Raises the last error
        when no retry is left.
        """
        while True:
            try:
                data = await self._run_operation(query_fn, args)
            except Exception:
                if self.cancelled is not None:
                    return self.cancelled

                self._dispatch(Failed())

                if not self._should_retry():
                    raise

                if not self.cache.is_visible():
                    logger.debug(
                        "Suspending retries of %s while not visible", self.query_hash
                    )
                    await self._wait(None)
                    return self.cancelled or CANCELLED

                delay = functional_update(
                    self.config.retry_delay, self.state.failure_count
                )
                logger.debug(
                    "Retrying %s in %sms (failure %d)",
                    self.query_hash,
                    delay,
                    self.state.failure_count,
                )
                await self._wait(delay)

                if self.cancelled is not None:
                    return self.cancelled
                continue

            if isinstance(data, Cancelled):
                return self.cancelled or data
            if self.cancelled is not None:
                return self.cancelled
            return data

    def _should_retry(self) -> bool:
        retry = self.config.retry
        if isinstance(retry, bool):
            return retry
        # failure_count already includes the attempt that just failed
        return self.state.failure_count <= retry

    async def _run_operation(self, query_fn: QueryFn, args: tuple[Any, ...]) -> Any:
        result = query_fn(*args)
        if not inspect.isawaitable(result):
            return result

        # Cancelling is a request: only an awaitable with its own cancel()
        # gets a hook. Anything else runs to completion and _try_fetch
        # throws the result away if the query is still cancelled by then.
        own_cancel = getattr(result, "cancel", None)
        operation = asyncio.ensure_future(result)
        requested = False

        if callable(own_cancel):

            def cancel() -> None:
                nonlocal requested
                requested = True
                own_cancel()

            self.cancel_queries = cancel

        try:
            return await operation
        except asyncio.CancelledError:
            if requested:
                return self.cancelled or CANCELLED
            raise
        finally:
            self.cancel_queries = None

    async def _wait(self, delay: float | None) -> None:
        """Sleep `delay` ms on the cache's scheduler, or until cancelled.

        ``cancel_queries`` interrupts the sleep, but it only ends early if
        the query is still cancelled when this task resumes; a re-subscribe
        in between keeps the full delay. With no delay the wait only ends
        through a cancellation.
        """
        loop = asyncio.get_running_loop()
        elapsed = loop.create_future()
        interrupted = loop.create_future()

        def finish() -> None:
            if not elapsed.done():
                elapsed.set_result(None)

        def wake() -> None:
            if not interrupted.done():
                interrupted.set_result(None)

        handle = None
        if delay is not None and not math.isinf(delay):
            handle = self.cache.scheduler.call_later(delay, finish)

        self.cancel_queries = wake
        try:
            while not elapsed.done():
                await asyncio.wait(
                    {elapsed, interrupted}, return_when=asyncio.FIRST_COMPLETED
                )
                if self.cancelled is not None:
                    return
                if interrupted.done():
                    interrupted = loop.create_future()
        finally:
            if handle is not None:
                handle.cancel()
            self.cancel_queries = None


__all__ = ["Query", "QueryFn"]
