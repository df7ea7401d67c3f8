"""
Quota-aware retry for generative API calls.

Every outbound call goes through RetryingCaller.execute(). Quota failures
(HTTP 429 / RESOURCE_EXHAUSTED) are waited out, preferring the delay the
server suggests and falling back to exponential backoff. Each scheduled retry
is published on a RetryEventBus so the console can show live countdowns.

Usage:
    bus = RetryEventBus()
    caller = RetryingCaller(bus)

    with bus.subscribed(lambda call_id, wait_ms: print(call_id, wait_ms)):
        text = await caller.execute(lambda: client.generate(...), "script-gen")
"""

import asyncio
import logging
from contextlib import contextmanager
from typing import Awaitable, Callable, Iterator, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
)

from .config import RetryPolicy
from .errors import ErrorKind, RetriesExhausted, classify, extract_retry_delay_ms

logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryCallback = Callable[[str, int], None]


def compute_wait_ms(
    error: BaseException,
    attempt_index: int,
    policy: Optional[RetryPolicy] = None,
) -> int:
    """
    Wait before the next attempt.

    Args:
        error: The quota failure that ended the attempt
        attempt_index: 0-based index of the failed attempt
        policy: Backoff constants

    Returns:
        Server-suggested delay plus the safety margin, or exponential backoff
    """
    policy = policy or RetryPolicy()
    suggested = extract_retry_delay_ms(error)
    if suggested:
        return suggested + policy.safety_margin_ms
    return min(policy.max_delay_ms, policy.base_delay_ms * 2 ** attempt_index)


class RetryEventBus:
    """
    Observer set for retry notifications.

    Observers are called with (call_id, wait_ms) whenever a call is about to
    back off. A failing observer is logged and skipped.
    """

    def __init__(self):
        self._callbacks: list[RetryCallback] = []

    def __len__(self) -> int:
        return len(self._callbacks)

    def subscribe(self, callback: RetryCallback) -> Callable[[], None]:
        """Register an observer. Returns a disposer that unsubscribes it."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

        def dispose():
            self.unsubscribe(callback)

        return dispose

    def unsubscribe(self, callback: RetryCallback):
        """Remove an observer. Removing an unknown observer is a no-op."""
        try:
            self._callbacks.remove(callback)
        except ValueError:
            pass

    @contextmanager
    def subscribed(self, callback: RetryCallback) -> Iterator[RetryCallback]:
        """Keep an observer registered for the duration of a with-block."""
        dispose = self.subscribe(callback)
        try:
            yield callback
        finally:
            dispose()

    def publish(self, call_id: str, wait_ms: int):
        """Notify every currently registered observer."""
        for callback in list(self._callbacks):
            if callback not in self._callbacks:
                continue  # Unsubscribed by an earlier observer
            try:
                callback(call_id, wait_ms)
            except Exception as e:
                logger.error(f"Retry observer failed for [{call_id}]: {e}")


class RetryingCaller:
    """
    Executes remote operations with quota-aware retries.

    Fatal errors propagate unchanged on the first failure. When every
    attempt hits the quota, RetriesExhausted is raised with the last
    underlying error as its cause.
    """

    def __init__(
        self,
        bus: Optional[RetryEventBus] = None,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.bus = bus if bus is not None else RetryEventBus()
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    def _wait(self, retry_state: RetryCallState) -> float:
        error = retry_state.outcome.exception()
        wait_ms = compute_wait_ms(error, retry_state.attempt_number - 1, self.policy)
        return wait_ms / 1000

    def _announce(self, call_id: str, max_attempts: int) -> Callable[[RetryCallState], None]:
        def before_sleep(retry_state: RetryCallState):
            wait_ms = round(retry_state.next_action.sleep * 1000)
            logger.warning(
                f"Quota exhausted for [{call_id}] "
                f"(attempt {retry_state.attempt_number}/{max_attempts}), "
                f"backing off {wait_ms / 1000:.1f}s"
            )
            self.bus.publish(call_id, wait_ms)

        return before_sleep

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        call_id: str = "global",
        max_attempts: Optional[int] = None,
    ) -> T:
        """
        Run an operation, waiting out quota failures.

        Args:
            operation: Zero-argument coroutine function
            call_id: Groups retry notifications; no effect on retry logic
            max_attempts: Attempt budget (defaults to the policy's)

        Returns:
            The operation's result

        Raises:
            RetriesExhausted: Every attempt failed with a quota error
            Exception: Any non-quota error from the operation, unchanged
        """
        max_attempts = max_attempts or self.policy.max_attempts

        retrying = AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            retry=retry_if_exception(lambda e: classify(e) == ErrorKind.QUOTA),
            wait=self._wait,
            before_sleep=self._announce(call_id, max_attempts),
            sleep=self._sleep,
        )

        try:
            return await retrying(operation)
        except RetryError as e:
            last_error = e.last_attempt.exception()
            logger.error(f"Retries exhausted for [{call_id}] after {max_attempts} attempts")
            raise RetriesExhausted(call_id, max_attempts, last_error) from last_error
