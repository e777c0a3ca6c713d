import asyncio
import logging
import random
from typing import Awaitable, Callable, NamedTuple, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

#: Growth factor range applied to the delay after each failed attempt
BACKOFF_FACTOR_MIN = 1.5
BACKOFF_FACTOR_MAX = 2.0


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    max_retries: int,
    initial_delay: float,
    max_delay: float,
    retry_on: Optional[Callable[[Exception], bool]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Await `operation` until it succeeds, retrying with jittered exponential backoff.

    The operation is attempted at most ``max_retries + 1`` times. After each
    failure the delay grows by a random factor in [1.5, 2.0] and is capped at
    ``max_delay``. An error rejected by ``retry_on`` is raised immediately;
    when retries run out the most recent error is raised.
    """
    delay = initial_delay
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as ex:
            if retry_on is not None and not retry_on(ex):
                logger.debug(f"Not retrying non-retryable error: {ex}")
                raise
            if attempt >= max_retries:
                logger.error(f"Operation failed after {attempt + 1} attempts: {ex}")
                raise
            attempt += 1
            logger.warning(
                f"Attempt {attempt}/{max_retries + 1} failed: {ex}. "
                f"Retrying in {delay:.2f}s"
            )
            await sleep(delay)
            delay = min(max_delay, delay * random.uniform(BACKOFF_FACTOR_MIN, BACKOFF_FACTOR_MAX))


class RetryPolicy(NamedTuple):
    """Bounds for `retry_with_backoff`."""

    max_retries: int
    initial_delay: float
    max_delay: float

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        retry_on: Optional[Callable[[Exception], bool]] = None,
    ) -> T:
        return await retry_with_backoff(
            operation,
            max_retries=self.max_retries,
            initial_delay=self.initial_delay,
            max_delay=self.max_delay,
            retry_on=retry_on,
        )
