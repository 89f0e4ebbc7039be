"""Core types for qcache."""

from collections.abc import Callable, Hashable
from dataclasses import dataclass, field
from typing import Any, Literal

QueryStatus = Literal["loading", "success", "error"]

# Canonical identity of a query and the ordered parts it was built from
QueryHash = str
QueryKeyParts = tuple[Any, ...]


@dataclass(frozen=True, slots=True)
class QueryState:
    """Observable snapshot of one query, produced by the reducer."""

    status: QueryStatus = "loading"
    error: BaseException | None = None
    is_fetching: bool = False
    can_fetch_more: bool = False
    failure_count: int = 0
    is_stale: bool = True
    is_inactive: bool = False
    data: Any = None


@dataclass(slots=True)
class Instance:
    """A consumer subscribed to a query."""

    id: Hashable
    on_state_update: Callable[[QueryState], None] | None = None
    on_success: Callable[[Any], None] | None = None
    on_error: Callable[[BaseException], None] | None = None
    on_settled: Callable[[Any, BaseException | None], None] | None = None

    def merge(self, other: "Instance") -> None:
        """Take every callback `other` provides, keep the rest."""
        for name in ("on_state_update", "on_success", "on_error", "on_settled"):
            callback = getattr(other, name)
            if callback is not None:
                setattr(self, name, callback)


@dataclass(frozen=True, slots=True)
class Cancelled:
    """Marks a fetch cycle abandoned by its owner.

    Not an exception: the retry loop returns it as a result so that a late
    success can be told apart from a cancellation.
    """

    reason: str = field(default="cancelled")

    def __repr__(self) -> str:
        return f"Cancelled({self.reason})"


CANCELLED = Cancelled()
