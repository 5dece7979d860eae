#!/usr/bin/env python3
"""Resilience Patterns for calls to the assistant provider.

This module provides resilience patterns to handle transient failures:
    - Retry with exponential backoff
    - Per-call deadlines
    - Circuit breaker
    - Bounded fan-out that settles every item under an overall budget

Example:
    # Retry with exponential backoff
    result = await retry_async(provider.update_assistant, "asst_1", fields)

    # Fan out, isolating failures and cancelling stragglers after 120s
    outcomes = await gather_settled(ids, update_one, max_concurrent=8,
                                    budget_seconds=120)
"""
import asyncio
import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Iterable, Optional, TypeVar

from .exceptions import (
    CircuitOpenError,
    RemoteTimeoutError,
    RemoteUnavailableError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ============================================
# Retry with Exponential Backoff
# ============================================

DEFAULT_RETRYABLE_EXCEPTIONS = (
    RemoteTimeoutError,
    RemoteUnavailableError,
    asyncio.TimeoutError,
    ConnectionResetError,
)


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args,
    max_attempts: int = 3,
    backoff_factor: float = 2.0,
    initial_delay: float = 1.0,
    max_delay: float = 30.0,
    jitter: bool = True,
    retryable_exceptions: tuple = DEFAULT_RETRYABLE_EXCEPTIONS,
    **kwargs,
) -> T:
    """Retry an async function call with exponential backoff.

    Only exceptions in ``retryable_exceptions`` are retried; anything else
    propagates on the first attempt.

    Args:
        func: Async function to call
        *args: Arguments to pass to func
        max_attempts: Maximum attempts (including the first try)
        backoff_factor: Delay multiplier
        initial_delay: Initial delay in seconds
        max_delay: Maximum delay in seconds
        jitter: Randomize each delay between 50% and 150%
        retryable_exceptions: Exceptions to retry on
        **kwargs: Keyword arguments to pass to func

    Returns:
        Result from func

    Example:
        assistant_id = await retry_async(
            provider.create_assistant,
            name="Lisa Assistant",
            instructions=text,
            model="gpt-4-1106-preview",
            max_attempts=3,
        )
    """
    last_exception: Optional[Exception] = None
    delay = initial_delay

    for attempt in range(1, max_attempts + 1):
        try:
            return await func(*args, **kwargs)

        except retryable_exceptions as e:
            last_exception = e

            if isinstance(e, RemoteUnavailableError) and e.retry_after:
                delay = float(e.retry_after)

            if attempt < max_attempts:
                actual_delay = min(delay, max_delay)
                if jitter:
                    actual_delay = actual_delay * (0.5 + random.random())
                logger.warning(
                    f"Retry {attempt}/{max_attempts}: {e}. Waiting {actual_delay:.1f}s"
                )
                await asyncio.sleep(actual_delay)
                delay = min(delay * backoff_factor, max_delay)
            else:
                logger.error(f"All {max_attempts} attempts failed. Last error: {e}")
                raise

    if last_exception:
        raise last_exception
    raise RuntimeError("Retry logic error")


async def with_timeout(
    func: Callable[..., Awaitable[T]],
    timeout_seconds: Optional[float],
    *args,
    **kwargs,
) -> T:
    """Execute async function with a deadline.

    Raises:
        asyncio.TimeoutError: If the deadline passes first
    """
    if not timeout_seconds:
        return await func(*args, **kwargs)
    return await asyncio.wait_for(func(*args, **kwargs), timeout=timeout_seconds)


# ============================================
# Circuit Breaker
# ============================================

class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"      # Normal operation, requests pass through
    OPEN = "open"          # Failing, requests rejected immediately
    HALF_OPEN = "half_open"  # Testing if service recovered


class CircuitBreaker:
    """Circuit breaker to stop hammering a provider that keeps failing.

    State Transitions:
        CLOSED -> OPEN: When failure_count >= failure_threshold
        OPEN -> HALF_OPEN: When timeout expires
        HALF_OPEN -> CLOSED: When success_threshold test calls succeed
        HALF_OPEN -> OPEN: When a test call fails

    Only exceptions matching ``counted_exceptions`` count as failures, so a
    404 for one assistant does not open the circuit for all of them.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: float = 60.0,
        success_threshold: int = 1,
        name: str = "default",
        counted_exceptions: tuple = DEFAULT_RETRYABLE_EXCEPTIONS,
    ):
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.success_threshold = success_threshold
        self.name = name
        self.counted_exceptions = counted_exceptions

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time: Optional[datetime] = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == CircuitState.OPEN

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def _should_attempt(self) -> bool:
        if self._state == CircuitState.CLOSED:
            return True

        if self._state == CircuitState.OPEN:
            if self._last_failure_time:
                elapsed = (
                    datetime.now(timezone.utc) - self._last_failure_time
                ).total_seconds()
                if elapsed >= self.timeout:
                    return True
            return False

        return True

    async def call(
        self,
        func: Callable[..., Awaitable[T]],
        *args,
        **kwargs,
    ) -> T:
        """Execute function through the circuit breaker.

        Raises:
            CircuitOpenError: If circuit is open and timeout hasn't passed
            Any exception from func (after updating circuit state)
        """
        async with self._lock:
            if not self._should_attempt():
                reset_at = None
                if self._last_failure_time:
                    reset_at = self._last_failure_time + timedelta(seconds=self.timeout)

                raise CircuitOpenError(
                    f"Circuit breaker '{self.name}' is open",
                    reset_at=reset_at,
                    failure_count=self._failure_count,
                )

            if self._state == CircuitState.OPEN:
                logger.info(f"Circuit '{self.name}' transitioning to HALF_OPEN")
                self._state = CircuitState.HALF_OPEN
                self._success_count = 0

        try:
            result = await func(*args, **kwargs)
        except self.counted_exceptions as e:
            await self._on_failure(e)
            raise

        await self._on_success()
        return result

    async def _on_success(self):
        async with self._lock:
            self._failure_count = 0

            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.success_threshold:
                    logger.info(
                        f"Circuit '{self.name}' closing after "
                        f"{self._success_count} successes"
                    )
                    self._state = CircuitState.CLOSED
                    self._success_count = 0

    async def _on_failure(self, exception: Exception):
        async with self._lock:
            self._failure_count += 1
            self._last_failure_time = datetime.now(timezone.utc)

            if self._state == CircuitState.HALF_OPEN:
                logger.warning(
                    f"Circuit '{self.name}' reopening after test failure: {exception}"
                )
                self._state = CircuitState.OPEN

            elif self._state == CircuitState.CLOSED:
                if self._failure_count >= self.failure_threshold:
                    logger.warning(
                        f"Circuit '{self.name}' opening after "
                        f"{self._failure_count} failures"
                    )
                    self._state = CircuitState.OPEN

    def reset(self):
        """Manually reset the circuit breaker to closed state."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time = None
        logger.info(f"Circuit '{self.name}' manually reset")

    def get_status(self) -> dict[str, Any]:
        """Get circuit breaker status for monitoring."""
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "failure_threshold": self.failure_threshold,
            "timeout_seconds": self.timeout,
            "last_failure_at": (
                self._last_failure_time.isoformat()
                if self._last_failure_time
                else None
            ),
        }


# ============================================
# Concurrent Processing Patterns
# ============================================

@dataclass
class Settled(Generic[T]):
    """Outcome of one item of a fan-out: either a value or an error."""
    item: Any
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class BatchBudgetExceeded(asyncio.TimeoutError):
    """Set as the error of items cancelled because the batch ran out of time."""


async def gather_settled(
    items: Iterable[Any],
    processor: Callable[[Any], Awaitable[T]],
    max_concurrent: int = 10,
    budget_seconds: Optional[float] = None,
) -> list[Settled[T]]:
    """Process items concurrently and wait for every one of them to settle.

    One item's failure never cancels its siblings. When ``budget_seconds``
    elapses, items still running or waiting for a slot are cancelled and
    reported with a BatchBudgetExceeded error. If the calling task itself is
    cancelled, every outstanding item is cancelled before the cancellation
    propagates.

    Args:
        items: Items to process
        processor: Async function applied to each item
        max_concurrent: Maximum concurrent operations
        budget_seconds: Overall deadline for the whole batch (None = no limit)

    Returns:
        One Settled per input item, in input order

    Example:
        outcomes = await gather_settled(assistants, push_instructions,
                                        max_concurrent=5, budget_seconds=60)
        failed = [o for o in outcomes if not o.ok]
    """
    items = list(items)
    if not items:
        return []

    semaphore = asyncio.Semaphore(max(1, max_concurrent))

    async def bounded_processor(item: Any) -> T:
        async with semaphore:
            return await processor(item)

    tasks = [asyncio.ensure_future(bounded_processor(item)) for item in items]
    try:
        _, pending = await asyncio.wait(tasks, timeout=budget_seconds)
        if pending:
            logger.warning(
                f"Batch budget of {budget_seconds}s exhausted, "
                f"cancelling {len(pending)} outstanding call(s)"
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()

    outcomes: list[Settled[T]] = []
    for item, task in zip(items, tasks):
        if task.cancelled():
            outcomes.append(Settled(
                item=item,
                error=BatchBudgetExceeded(
                    f"Cancelled after batch budget of {budget_seconds}s"
                ),
            ))
        elif task.exception() is not None:
            outcomes.append(Settled(item=item, error=task.exception()))
        else:
            outcomes.append(Settled(item=item, value=task.result()))
    return outcomes


# ============================================
# Exports
# ============================================

__all__ = [
    # Retry
    "retry_async",
    "with_timeout",
    "DEFAULT_RETRYABLE_EXCEPTIONS",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitState",
    # Concurrent Processing
    "Settled",
    "BatchBudgetExceeded",
    "gather_settled",
]
