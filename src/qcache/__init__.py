"""qcache - in-memory cache for async query results."""

from qcache import actions
from qcache.config import QueryConfig, default_retry_delay, parse_duration
from qcache.keys import serialize_query_key
from qcache.query import Query
from qcache.query_cache import QueryCache
from qcache.reducer import default_query_reducer
from qcache.timers import AsyncioScheduler, ManualScheduler, Scheduler
from qcache.types import CANCELLED, Cancelled, Instance, QueryState, QueryStatus
from qcache.utils import functional_update

__version__ = "0.1.0"

__all__ = [
    "CANCELLED",
    "AsyncioScheduler",
    "Cancelled",
    "Instance",
    "ManualScheduler",
    "Query",
    "QueryCache",
    "QueryConfig",
    "QueryState",
    "QueryStatus",
    "Scheduler",
    "actions",
    "default_query_reducer",
    "default_retry_delay",
    "functional_update",
    "parse_duration",
    "serialize_query_key",
]
