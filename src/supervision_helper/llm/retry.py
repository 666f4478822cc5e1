"""Bounded exponential-backoff retry for rate-limited generation calls."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from ..errors import is_rate_limit_error
from ..models.schemas import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]


class RetryingInvoker:
    """Runs one async operation, retrying only on rate-limit failures.

    The delay before retry ``i + 1`` is ``backoff_base * 2**i`` seconds plus
    a random jitter in ``[0, jitter)``. Every other failure is re-raised on
    its first occurrence, and the last rate-limit error is re-raised once the
    attempts are exhausted.
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        sleep: SleepFn = asyncio.sleep,
    ):
        """Initialize the invoker.

        Args:
            policy: Default retry policy (3 attempts, 2s base, 1s jitter)
            sleep: Awaitable sleep used between attempts
        """
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    async def invoke(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: Optional[RetryPolicy] = None,
    ) -> T:
        """Execute ``operation`` under the retry policy.

        Args:
            operation: Zero-argument callable returning an awaitable
            policy: Per-call override of the default policy

        Returns:
            The operation's result
        """
        policy = policy or self.policy

        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=wait_exponential(multiplier=policy.backoff_base, exp_base=2)
            + wait_random(0, policy.jitter),
            retry=retry_if_exception(is_rate_limit_error),
            before_sleep=self._make_logger(policy),
            sleep=self._sleep,
            reraise=True,
        )
        # tenacity only awaits coroutine functions; a lambda returning an
        # awaitable would otherwise be treated as a sync call
        async def attempt() -> T:
            return await operation()

        return await retrying(attempt)

    @staticmethod
    def _make_logger(policy: RetryPolicy) -> Callable[[RetryCallState], None]:
        def log_retry(retry_state: RetryCallState) -> None:
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            logger.warning(
                f"Generation service rate limit hit. Retrying in {round(delay * 1000)}ms... "
                f"(Attempt {retry_state.attempt_number}/{policy.max_attempts})"
            )

        return log_retry
