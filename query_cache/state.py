"""
Query state snapshot and transition function.

Every change to a query's visible state goes through :func:`transition`,
which maps a prior :class:`QueryState` and one event to a new snapshot.
Snapshots are immutable; observers can keep references to old ones.
"""

import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Optional, Union

from .shared.errors import InvalidTransitionError


class QueryStatus(str, Enum):
    """Query lifecycle statuses."""
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class QueryState:
    """Visible snapshot of a query."""
    status: QueryStatus
    data: Any = None
    error: Optional[BaseException] = None
    is_fetching: bool = False
    is_stale: bool = True
    marked_for_garbage_collection: bool = False
    failure_count: int = 0
    updated_at: float = 0.0

    @property
    def is_loading(self) -> bool:
        return self.status == QueryStatus.LOADING

    @property
    def is_success(self) -> bool:
        return self.status == QueryStatus.SUCCESS

    @property
    def is_error(self) -> bool:
        return self.status == QueryStatus.ERROR

    @property
    def is_idle(self) -> bool:
        return self.status == QueryStatus.IDLE


@dataclass(frozen=True)
class Init:
    initial_status: QueryStatus
    initial_data: Any = None
    has_initial_data: bool = False
    is_stale: bool = True


@dataclass(frozen=True)
class FetchStarted:
    pass


@dataclass(frozen=True)
class AttemptFailed:
    pass


@dataclass(frozen=True)
class MarkStale:
    pass


@dataclass(frozen=True)
class MarkForGC:
    pass


@dataclass(frozen=True)
class Succeeded:
    updater: Any


@dataclass(frozen=True)
class Failed:
    error: BaseException
    cancelled: bool = False


@dataclass(frozen=True)
class ExternalSet:
    updater: Union[QueryState, Callable[[QueryState], QueryState]]


QueryEvent = Union[Init, FetchStarted, AttemptFailed, MarkStale, MarkForGC, Succeeded, Failed, ExternalSet]


def functional_update(updater: Any, value: Any) -> Any:
    """Apply ``updater`` to ``value`` if it is callable, else return it as the new value."""
    return updater(value) if callable(updater) else updater


def transition(state: Optional[QueryState], event: QueryEvent,
               now: Callable[[], float] = time.time) -> QueryState:
    """Return the state produced by applying ``event`` to ``state``."""
    if isinstance(event, Init):
        return QueryState(
            status=event.initial_status,
            data=event.initial_data,
            error=None,
            is_fetching=not event.has_initial_data and event.initial_status == QueryStatus.LOADING,
            is_stale=event.is_stale,
            marked_for_garbage_collection=False,
            failure_count=0,
            updated_at=now() if event.has_initial_data else 0.0,
        )

    if state is None:
        raise InvalidTransitionError(
            "Query state must be initialized before applying events",
            details={"event": type(event).__name__}
        )

    if isinstance(event, FetchStarted):
        return replace(
            state,
            status=QueryStatus.SUCCESS if state.data is not None else QueryStatus.LOADING,
            is_fetching=True,
            failure_count=0,
        )

    if isinstance(event, AttemptFailed):
        return replace(state, failure_count=state.failure_count + 1)

    if isinstance(event, MarkStale):
        return replace(state, is_stale=True)

    if isinstance(event, MarkForGC):
        return replace(state, marked_for_garbage_collection=True)

    if isinstance(event, Succeeded):
        return replace(
            state,
            status=QueryStatus.SUCCESS,
            data=functional_update(event.updater, state.data),
            error=None,
            is_stale=False,
            is_fetching=False,
            failure_count=0,
            updated_at=now(),
        )

    if isinstance(event, Failed):
        if event.cancelled:
            return replace(state, is_fetching=False, is_stale=True)
        return replace(
            state,
            is_fetching=False,
            is_stale=True,
            status=QueryStatus.ERROR,
            error=event.error,
        )

    if isinstance(event, ExternalSet):
        new_state = functional_update(event.updater, state)
        if not isinstance(new_state, QueryState):
            raise InvalidTransitionError(
                "State updater must return a QueryState",
                details={"returned": type(new_state).__name__}
            )
        return new_state

    raise InvalidTransitionError(
        "Unknown query event",
        details={"event": type(event).__name__}
    )
