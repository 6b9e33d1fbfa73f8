"""Bounded retry with capped exponential backoff for backend calls."""

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Coroutine, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY_MS = 1000
DEFAULT_MAX_DELAY_MS = 5000


@dataclass(frozen=True)
class FetchResult:
    """Outcome of a backend call: ``data`` on success, ``error`` on failure."""

    data: Any = None
    error: Optional[Exception] = None
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return self.error is None


def backoff_delay(
    attempt_index: int,
    base_delay_ms: float = DEFAULT_BASE_DELAY_MS,
    max_delay_ms: float = DEFAULT_MAX_DELAY_MS,
) -> float:
    """Milliseconds to wait after the failed attempt ``attempt_index`` (0-based)."""
    return min(base_delay_ms * (2 ** attempt_index), max_delay_ms)


def _is_retryable(error: Exception) -> bool:
    return getattr(error, "retryable", True)


async def retry(
    operation: Callable[[], Awaitable[FetchResult]],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay_ms: float = DEFAULT_BASE_DELAY_MS,
    max_delay_ms: float = DEFAULT_MAX_DELAY_MS,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    description: str = "operation",
) -> FetchResult:
    """
    Run ``operation`` until it returns a result without an error.

    A result whose error is marked non-retryable ends the sequence early.
    Waiting is a suspension, so other tasks keep running between attempts,
    and every call keeps its own attempt counter.

    Args:
        operation: Zero-argument coroutine factory returning a FetchResult
        max_attempts: Total number of attempts, at least one
        base_delay_ms: Delay after the first failed attempt
        max_delay_ms: Upper bound for any single delay
        sleep: Coroutine used to wait, takes seconds
        description: Name used in log messages

    Returns:
        The first successful result, or the last failed one
    """
    attempts = max(1, max_attempts)
    result = FetchResult()

    for attempt in range(attempts):
        result = replace(await operation(), attempts=attempt + 1)
        if result.ok:
            if attempt:
                logger.info(f"{description} succeeded on attempt {attempt + 1}")
            return result

        if not _is_retryable(result.error):
            logger.warning(f"{description} failed with non-retryable error: {result.error}")
            return result

        if attempt < attempts - 1:
            delay = backoff_delay(attempt, base_delay_ms, max_delay_ms)
            logger.warning(
                f"{description} failed (attempt {attempt + 1}/{attempts}): {result.error}; "
                f"retrying in {delay:.0f}ms"
            )
            await sleep(delay / 1000)

    logger.error(f"{description} failed after {attempts} attempt(s): {result.error}")
    return result


class InFlightRequests:
    """
    One cancellable task per request key.

    Starting a request for a key cancels the one already running for it, and
    ``is_current`` tells a finishing task whether its result still applies.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task] = {}

    def start(self, key: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Schedule ``coro`` as the current request for ``key``."""
        previous = self._tasks.get(key)
        if previous is not None and not previous.done():
            logger.debug(f"Cancelling superseded request {key}")
            previous.cancel()

        task = asyncio.ensure_future(coro)
        self._tasks[key] = task
        task.add_done_callback(lambda done: self._forget(key, done))
        return task

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]

    def is_current(self, key: str, task: Optional[asyncio.Task] = None) -> bool:
        """True if ``task`` (default: the running task) is the latest request for ``key``."""
        if task is None:
            task = asyncio.current_task()
        return task is not None and self._tasks.get(key) is task

    def cancel(self, key: str) -> None:
        task = self._tasks.pop(key, None)
        if task is not None and not task.done():
            task.cancel()

    def cancel_all(self) -> None:
        for key in list(self._tasks):
            self.cancel(key)

    def __contains__(self, key: str) -> bool:
        return key in self._tasks
