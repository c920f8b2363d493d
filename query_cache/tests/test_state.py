"""
Unit tests for the query state machine.
"""

import dataclasses

import pytest

from query_cache.shared.errors import InvalidTransitionError, QueryCancelledError
from query_cache.state import (
    AttemptFailed,
    ExternalSet,
    Failed,
    FetchStarted,
    Init,
    MarkForGC,
    MarkStale,
    QueryState,
    QueryStatus,
    Succeeded,
    transition,
)


def fixed_clock():
    return 1700000000.0


class TestInit:
    """Test cases for the initial state."""

    def test_loading_without_data_is_fetching(self):
        """Test that an enabled query without data starts fetching."""
        state = transition(None, Init(initial_status=QueryStatus.LOADING))

        assert state.is_loading
        assert state.is_fetching is True
        assert state.is_stale is True
        assert state.updated_at == 0.0

    def test_initial_data_is_success(self):
        """Test that initial data produces a settled success state."""
        state = transition(
            None,
            Init(initial_status=QueryStatus.SUCCESS, initial_data=[1], has_initial_data=True, is_stale=False),
            now=fixed_clock
        )

        assert state.is_success
        assert state.data == [1]
        assert state.is_fetching is False
        assert state.is_stale is False
        assert state.updated_at == fixed_clock()

    def test_idle_is_not_fetching(self):
        """Test that a disabled query starts idle."""
        state = transition(None, Init(initial_status=QueryStatus.IDLE))

        assert state.is_idle
        assert state.is_fetching is False

    def test_events_require_initialized_state(self):
        """Test that only Init applies to a missing state."""
        with pytest.raises(InvalidTransitionError) as exc_info:
            transition(None, FetchStarted())

        assert exc_info.value.details == {"event": "FetchStarted"}


class TestTransitions:
    """Test cases for transitions from an existing state."""

    @pytest.fixture
    def loading(self):
        """Loading state without data."""
        return QueryState(status=QueryStatus.LOADING, is_fetching=True)

    @pytest.fixture
    def settled(self):
        """Successful state with data."""
        return QueryState(status=QueryStatus.SUCCESS, data={"id": 1}, is_stale=False, updated_at=1.0)

    def test_fetch_started_keeps_success_with_data(self, settled):
        """Test that a background refetch keeps the success status."""
        state = transition(settled, FetchStarted())

        assert state.is_success
        assert state.is_fetching is True
        assert state.failure_count == 0

    def test_fetch_started_without_data_is_loading(self):
        """Test that a fetch after an error without data is loading."""
        errored = QueryState(status=QueryStatus.ERROR, error=ValueError("x"), failure_count=2)

        state = transition(errored, FetchStarted())

        assert state.is_loading
        assert state.failure_count == 0

    def test_attempt_failed_counts(self, loading):
        """Test that failed attempts increment the failure count."""
        state = transition(transition(loading, AttemptFailed()), AttemptFailed())

        assert state.failure_count == 2
        assert state.is_loading

    def test_mark_stale_and_gc(self, settled):
        """Test the staleness and collection flags."""
        state = transition(transition(settled, MarkStale()), MarkForGC())

        assert state.is_stale is True
        assert state.marked_for_garbage_collection is True
        assert state.data == {"id": 1}

    def test_succeeded_applies_updater(self, settled):
        """Test that success applies a functional updater to the old data."""
        state = transition(
            settled,
            Succeeded(lambda old: {**old, "name": "a"}),
            now=fixed_clock
        )

        assert state.data == {"id": 1, "name": "a"}
        assert state.is_stale is False
        assert state.is_fetching is False
        assert state.error is None
        assert state.updated_at == fixed_clock()

    def test_succeeded_clears_error(self):
        """Test that success recovers from an error state."""
        errored = QueryState(status=QueryStatus.ERROR, error=ValueError("x"), failure_count=1)

        state = transition(errored, Succeeded("ok"))

        assert state.is_success
        assert state.error is None
        assert state.failure_count == 0

    def test_failed_keeps_data(self, settled):
        """Test that a failure keeps previously fetched data."""
        error = RuntimeError("boom")

        state = transition(transition(settled, FetchStarted()), Failed(error=error))

        assert state.is_error
        assert state.error is error
        assert state.data == {"id": 1}
        assert state.is_fetching is False
        assert state.is_stale is True

    def test_cancelled_failure_is_invisible(self, loading):
        """Test that a cancellation only stops fetching."""
        state = transition(loading, Failed(error=QueryCancelledError(), cancelled=True))

        assert state.is_loading
        assert state.error is None
        assert state.is_fetching is False
        assert state.is_stale is True

    def test_external_set(self, settled):
        """Test replacing the state through an updater."""
        state = transition(settled, ExternalSet(lambda old: dataclasses.replace(old, data="replaced")))

        assert state.data == "replaced"
        assert settled.data == {"id": 1}

    def test_external_set_rejects_non_state(self, settled):
        """Test that updaters must return a state."""
        with pytest.raises(InvalidTransitionError):
            transition(settled, ExternalSet(lambda old: {"status": "success"}))

    def test_unknown_event(self, settled):
        """Test that unknown events are rejected."""
        with pytest.raises(InvalidTransitionError) as exc_info:
            transition(settled, object())

        assert exc_info.value.code == "INVALID_TRANSITION"

    def test_states_are_immutable(self, settled):
        """Test that snapshots cannot be mutated."""
        with pytest.raises(dataclasses.FrozenInstanceError):
            settled.data = None
