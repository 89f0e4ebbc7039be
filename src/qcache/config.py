"""Query configuration and duration parsing."""

from __future__ import annotations

import math
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, fields, replace
from typing import Any

from qcache.keys import QueryKeySerializer, serialize_query_key

# "30s", "5m", "2h", "1d", plain milliseconds, or math.inf for "never"
Duration = str | int | float

_DURATION_PATTERN = re.compile(r"^(\d+)(ms|s|m|h|d)$")
_UNITS: dict[str, int] = {
    "ms": 1,
    "s": 1000,
    "m": 60_000,
    "h": 3_600_000,
    "d": 86_400_000,
}


def parse_duration(duration: Duration) -> float:
    """Parse a duration to milliseconds. Numbers pass through unchanged."""
    if isinstance(duration, bool):
        raise ValueError(f"Invalid duration: {duration!r}")
    if isinstance(duration, (int, float)):
        if duration < 0 or math.isnan(duration):
            raise ValueError(f"Invalid duration: {duration!r}")
        return duration

    match = _DURATION_PATTERN.match(duration)
    if not match:
        raise ValueError(f"Invalid duration: {duration!r}")

    value, unit = match.groups()
    return int(value) * _UNITS[unit]


def default_retry_delay(failure_count: int) -> float:
    """Exponential backoff in ms, capped at 30 seconds."""
    return min(1000 * 2**failure_count, 30_000)


@dataclass(slots=True)
class QueryConfig:
    """Resolved options of one query.

    Per-call options are merged over a cache's defaults with ``merge``;
    the newer value of each key wins.
    """

    retry: bool | int = 3
    retry_delay: Callable[[int], float] | float = default_retry_delay
    stale_time: Duration = 0
    cache_time: Duration = "5m"
    initial_data: Any = None
    manual: bool = False
    throw_on_error: bool = False
    query_reducer: Callable[..., Any] | None = None
    query_key_serializer_fn: QueryKeySerializer = field(
        default=serialize_query_key
    )

    def __post_init__(self) -> None:
        self.stale_time = parse_duration(self.stale_time)
        self.cache_time = parse_duration(self.cache_time)
        if not isinstance(self.retry, bool) and self.retry < 0:
            raise ValueError(f"retry must be a bool or a non-negative int, got {self.retry!r}")

    def merge(self, options: Mapping[str, Any] | None = None) -> QueryConfig:
        """Return a copy with `options` applied key by key."""
        if not options:
            return replace(self)
        unknown = set(options) - _OPTION_NAMES
        if unknown:
            raise TypeError(f"Unknown query options: {', '.join(sorted(unknown))}")
        return replace(self, **options)


_OPTION_NAMES = frozenset(f.name for f in fields(QueryConfig))


__all__ = ["Duration", "QueryConfig", "default_retry_delay", "parse_duration"]
