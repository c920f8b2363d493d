"""
Deduplicated fetch execution with retry and cancellation.
"""

import asyncio
import inspect
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, TYPE_CHECKING

from .shared.errors import QueryCancelledError
from .shared.logging import bind_query_context, get_logger, reset_query_context
from .shared.retry import resolve_retry_delay, should_retry
from .shared.tracing import add_span_event, trace_operation
from .state import AttemptFailed, Failed, FetchStarted

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from .query import Query


QueryFn = Callable[..., Any]


@dataclass
class FetchAttempt:
    """Handle for the single in-flight fetch of a query."""
    attempt_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    task: Optional["asyncio.Task[Any]"] = None
    cancelled: bool = False
    cancel_hook: Optional[Callable[[], Any]] = None
    _cancel_event: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    def cancel(self) -> None:
        """Mark cancelled and ask the underlying operation to stop."""
        if self.cancelled:
            return
        self.cancelled = True
        self._cancel_event.set()
        if self.cancel_hook is not None:
            self.cancel_hook()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise QueryCancelledError(details={"attempt_id": self.attempt_id})

    async def wait(self, awaitable: Optional[Awaitable[Any]] = None, timeout: Optional[float] = None) -> None:
        """Wait for ``awaitable`` and/or ``timeout``, raising if cancelled meanwhile."""
        self.raise_if_cancelled()
        waiters = {asyncio.ensure_future(self._cancel_event.wait())}
        if awaitable is not None:
            waiters.add(asyncio.ensure_future(awaitable))
        try:
            await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                if not waiter.done():
                    waiter.cancel()
        self.raise_if_cancelled()


class QueryFetcher:
    """Runs at most one fetch at a time for a query and shares its result."""

    def __init__(self, query: "Query"):
        self._query = query
        self.in_flight: Optional[FetchAttempt] = None
        self.logger = get_logger("query_cache.fetcher")

    def fetch(self, query_fn: Optional[QueryFn] = None) -> "asyncio.Task[Any]":
        """Start a fetch, or return the task of the one already running.

        The task resolves to the fetched data, to ``None`` when the fetch was
        cancelled, or raises the fetch function's final error.
        """
        if self.in_flight is not None:
            return self.in_flight.task

        query = self._query
        attempt = FetchAttempt()
        # Consumers are fixed at start; their configs are read on settle. A
        # blocked suspending read is represented by the query itself.
        callback_targets = list(query.instances)
        if query.was_suspended:
            callback_targets.insert(0, query)

        self.in_flight = attempt
        attempt.task = asyncio.ensure_future(
            self._run(attempt, query_fn or query.query_fn, callback_targets)
        )
        query.dispatch(FetchStarted())
        return attempt.task

    def cancel(self) -> bool:
        """Cancel the in-flight fetch; returns False when nothing was running."""
        attempt = self.in_flight
        if attempt is None:
            return False
        self._abandon(attempt)
        return True

    def _release(self, attempt: FetchAttempt) -> None:
        if self.in_flight is attempt:
            self.in_flight = None

    def _abandon(self, attempt: FetchAttempt) -> None:
        # Drop the handle without awaiting it; the attempt discards its own result.
        attempt.cancel()
        if self.in_flight is not attempt:
            return
        self.in_flight = None
        self._query.metrics.record_cancellation()
        self._query.dispatch(Failed(
            error=QueryCancelledError(details={"attempt_id": attempt.attempt_id}),
            cancelled=True
        ))

    async def _run(self, attempt: FetchAttempt, query_fn: QueryFn, callback_targets: List[Any]) -> Any:
        query = self._query
        tokens = bind_query_context(query.query_hash, query.cache.name)
        started = time.monotonic()
        try:
            data = await self._attempt_loop(attempt, query_fn)
        except QueryCancelledError:
            self.logger.debug("Fetch cancelled", attempt_id=attempt.attempt_id)
            query.metrics.record_fetch("cancelled", time.monotonic() - started)
            return None
        except asyncio.CancelledError:
            self._abandon(attempt)
            raise
        except Exception as error:
            if attempt.cancelled:
                query.metrics.record_fetch("cancelled", time.monotonic() - started)
                return None

            self._release(attempt)
            query.dispatch(Failed(error=error, cancelled=False))
            query.metrics.record_fetch("error", time.monotonic() - started)
            self.logger.debug(
                "Fetch failed",
                attempt_id=attempt.attempt_id,
                failure_count=query.state.failure_count,
                error=str(error)
            )

            for target in callback_targets:
                if target.config.on_error:
                    target.config.on_error(error)
            for target in callback_targets:
                if target.config.on_settled:
                    target.config.on_settled(None, error)
            raise
        finally:
            reset_query_context(tokens)

        self._release(attempt)
        is_data_equal = query.config.is_data_equal
        query.set_data(lambda old: old if is_data_equal(old, data) else data)
        query.metrics.record_fetch("success", time.monotonic() - started)

        for target in callback_targets:
            if target.config.on_success:
                target.config.on_success(query.state.data)
        for target in callback_targets:
            if target.config.on_settled:
                target.config.on_settled(query.state.data, None)

        return data

    async def _attempt_loop(self, attempt: FetchAttempt, query_fn: QueryFn) -> Any:
        query = self._query
        args = query.config.query_fn_params_filter(tuple(query.query_key))

        while True:
            attempt.raise_if_cancelled()
            try:
                data = await self._invoke(attempt, query_fn, args)
            except QueryCancelledError:
                raise
            except Exception as error:
                attempt.raise_if_cancelled()

                query.dispatch(AttemptFailed())
                query.metrics.record_attempt_failure()
                failure_count = query.state.failure_count

                if not should_retry(query.config.retry, failure_count, error):
                    raise

                activity = query.cache.activity
                if not activity.is_active():
                    query.retry_paused = True
                    self.logger.debug("Retry paused until activity resumes", failure_count=failure_count)
                    try:
                        await attempt.wait(activity.wait_until_active())
                    finally:
                        query.retry_paused = False

                delay = resolve_retry_delay(query.config.retry_delay, failure_count)
                query.metrics.record_retry()
                add_span_event("query.retry", failure_count=failure_count, delay=delay)
                self.logger.debug(
                    "Fetch attempt failed, waiting before next attempt",
                    attempt_id=attempt.attempt_id,
                    failure_count=failure_count,
                    delay=delay,
                    error=str(error)
                )
                await attempt.wait(timeout=delay)
                continue

            attempt.raise_if_cancelled()
            return data

    async def _invoke(self, attempt: FetchAttempt, query_fn: QueryFn, args: tuple) -> Any:
        query = self._query
        with trace_operation(
            "query.fetch_attempt",
            query_hash=query.query_hash,
            failure_count=query.state.failure_count,
        ):
            result = query_fn(*args)
            if not inspect.isawaitable(result):
                return result

            operation = asyncio.ensure_future(result)
            attempt.cancel_hook = operation.cancel
            try:
                return await operation
            except asyncio.CancelledError:
                # Only a cancel issued through the attempt is ours to absorb.
                if attempt.cancelled and operation.cancelled():
                    raise QueryCancelledError(details={"attempt_id": attempt.attempt_id}) from None
                raise
            finally:
                attempt.cancel_hook = None
