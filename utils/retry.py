import logging
import typing

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
)

import exception

LOGGER = logging.getLogger(__name__)

T = typing.TypeVar("T")


def retry_policy(max_retries: int, delay: float, double: bool = False) -> AsyncRetrying:
    """
    Retry transient network failures `max_retries` times after the first attempt.

    With `double` the wait starts at `delay` and doubles after each failure.
    """
    wait = wait_exponential(multiplier=delay, exp_base=2) if double else wait_fixed(delay)
    return AsyncRetrying(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait,
        retry=retry_if_exception_type(exception.TransientNetworkError),
        before_sleep=before_sleep_log(LOGGER, logging.WARNING),
        reraise=True,
    )


async def with_retry(
    func: typing.Callable[[], typing.Awaitable[T]],
    max_retries: int,
    delay: float,
    double: bool = False,
) -> T:
    async for attempt in retry_policy(max_retries, delay, double):
        with attempt:
            return await func()
    raise AssertionError("unreachable")
