"""State-transition actions dispatched to the query reducer."""

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class Init:
    initial_data: Any = None
    manual: bool = False


@dataclass(frozen=True, slots=True)
class Activate:
    pass


@dataclass(frozen=True, slots=True)
class Deactivate:
    pass


@dataclass(frozen=True, slots=True)
class Failed:
    """One more failed attempt in the current fetch cycle."""


@dataclass(frozen=True, slots=True)
class MarkStale:
    pass


@dataclass(frozen=True, slots=True)
class Fetch:
    """A fetch cycle has started."""


@dataclass(frozen=True, slots=True)
class Success:
    data: Any
    can_fetch_more: bool = False


@dataclass(frozen=True, slots=True)
class Error:
    error: BaseException | None
    cancelled: bool = False


@dataclass(frozen=True, slots=True)
class SetData:
    updater: Any


Action = (
    Init
    | Activate
    | Deactivate
    | Failed
    | MarkStale
    | Fetch
    | Success
    | Error
    | SetData
)

__all__ = [
    "Action",
    "Activate",
    "Deactivate",
    "Error",
    "Failed",
    "Fetch",
    "Init",
    "MarkStale",
    "SetData",
    "Success",
]
