"""Query key serialization.

A user key becomes a canonical hash string plus the ordered parts that are
passed to the fetch function. Parts are JSON-encoded with sorted keys and
joined with ``:``, so ``("todos",)`` is a segment prefix of ``("todos", 1)``.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any

from qcache.types import QueryHash, QueryKeyParts

logger = logging.getLogger(__name__)

QueryKeySerializer = Callable[[Any], tuple[QueryHash | None, QueryKeyParts]]

_ESCAPE_MAP = {"\\": "\\\\", ":": "\\:"}


def _escape(part: str) -> str:
    result = part
    for char, escaped in _ESCAPE_MAP.items():
        result = result.replace(char, escaped)
    return result


def _encode_part(part: Any) -> str:
    return _escape(json.dumps(part, sort_keys=True, default=str))


def serialize_query_key(query_key: Any) -> tuple[QueryHash | None, QueryKeyParts]:
    """Turn a user key into ``(query_hash, key_parts)``.

    Falsy keys, and callables that raise or return a falsy key, have no
    hash: the query exists but never fetches (a dependent query).

    Example:
        serialize_query_key("todos")               # ('"todos"', ("todos",))
        serialize_query_key(("todo", {"id": 5}))   # ('"todo":{"id"\\: 5}', ...)
    """
    if callable(query_key):
        try:
            query_key = query_key()
        except Exception:
            logger.debug("Query key function raised; treating key as disabled")
            return None, ()

    if query_key is None or query_key == "" or query_key == () or query_key == []:
        return None, ()

    parts: QueryKeyParts
    if isinstance(query_key, (list, tuple)):
        parts = tuple(query_key)
    else:
        parts = (query_key,)

    return ":".join(_encode_part(p) for p in parts), parts


def is_hash_prefix(prefix: QueryHash, query_hash: QueryHash) -> bool:
    """Check if `prefix` names `query_hash` or one of its leading segments."""
    if query_hash == prefix:
        return True
    return query_hash.startswith(prefix + ":")


def get_query_args(
    args: tuple[Any, ...],
) -> tuple[QueryKeyParts, Callable[..., Any]]:
    """Split ``([variables,] fn)`` positional arguments.

    Variables are optional: a callable in first position is the fetch
    function itself.
    """
    if len(args) == 1 and callable(args[0]):
        return (), args[0]
    if len(args) == 2 and callable(args[1]):
        variables = args[0]
        if not isinstance(variables, (list, tuple)):
            variables = (variables,)
        return tuple(variables), args[1]
    raise TypeError("Expected ([variables,] query_fn) after the query key")


__all__ = [
    "QueryKeySerializer",
    "get_query_args",
    "is_hash_prefix",
    "serialize_query_key",
]
