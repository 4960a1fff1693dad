"""
Retry helpers for remote provider calls.

``retry`` keeps calling a function until it succeeds or a wall-clock budget
runs out, sleeping an exponentially growing, jittered delay between
attempts. ``with_secondary_rate_limit_retry`` honours provider cooldowns
exactly, bounded by both a timeout and an attempt cap. ``retry_with_backoff``
is the decorator form used on adapter methods.
"""

import functools
import logging
import random
import time
from typing import Callable, Optional, Tuple, Type, TypeVar

from sources.exceptions import RetryTimeoutException, SecondaryRateLimitException

logger = logging.getLogger(__name__)

T = TypeVar("T")

MIN_DELAY = 0.01
MAX_DELAY = 5.0
BACKOFF_FACTOR = 1.5


class Backoff:
    """
    Exponential backoff duration generator with optional jitter.

    Each call to :meth:`duration` returns the delay for the next attempt and
    advances the internal counter. Instances are meant to live for a single
    retry loop and are never shared.
    """

    def __init__(
        self,
        min_delay: float = MIN_DELAY,
        max_delay: float = MAX_DELAY,
        factor: float = BACKOFF_FACTOR,
        jitter: bool = True,
    ):
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.factor = factor
        self.jitter = jitter
        self.attempt = 0

    def for_attempt(self, attempt: int) -> float:
        """Return the delay for a zero-based attempt number, without side effects."""
        if self.min_delay >= self.max_delay:
            return self.max_delay
        try:
            delay = self.min_delay * (self.factor**attempt)
        except OverflowError:
            return self.max_delay
        if self.jitter:
            delay = random.random() * (delay - self.min_delay) + self.min_delay
        return min(max(delay, self.min_delay), self.max_delay)

    def duration(self) -> float:
        delay = self.for_attempt(self.attempt)
        self.attempt += 1
        return delay

    def reset(self) -> None:
        self.attempt = 0


def retry(
    timeout: float,
    fn: Callable[[int], T],
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
) -> T:
    """
    Call ``fn`` until it succeeds or ``timeout`` seconds have elapsed.

    ``fn`` receives the attempt number, starting at 1. With a timeout of 0 it
    is called exactly once. The deadline is checked before each attempt after
    the first, so an attempt that has started always runs to completion.

    :param timeout: Wall-clock budget in seconds, measured from entry.
    :param fn: Callable invoked with the attempt number.
    :param retry_on: Exception types that trigger another attempt. Anything
                     else propagates immediately.
    :return: Whatever ``fn`` returns on success.
    :raises RetryTimeoutException: With the last error as ``cause``.
    """
    attempt = 1

    if timeout <= 0:
        try:
            return fn(attempt)
        except retry_on as e:
            raise RetryTimeoutException(cause=e, attempts=attempt) from e

    backoff = Backoff()
    deadline = time.monotonic() + timeout
    last_error: Optional[BaseException] = None

    while True:
        if attempt > 1 and time.monotonic() >= deadline:
            break

        try:
            return fn(attempt)
        except retry_on as e:
            last_error = e

        delay = backoff.duration()
        logger.debug(f"Attempt {attempt} failed ({last_error}); retrying in {delay:.3f}s")
        attempt += 1
        time.sleep(delay)

    raise RetryTimeoutException(
        cause=last_error, attempts=attempt - 1
    ) from last_error


def with_secondary_rate_limit_retry(
    timeout: float,
    max_attempts: int,
    fn: Callable[[], T],
) -> T:
    """
    Call ``fn``, sleeping out secondary rate limits between attempts.

    A :class:`SecondaryRateLimitException` makes the call wait exactly the
    provider supplied ``retry_after`` before trying again. Any other error
    propagates untouched. The loop gives up with a
    :class:`RetryTimeoutException` once ``max_attempts`` calls were rate
    limited or ``timeout`` seconds have passed, whichever comes first.

    :param timeout: Wall-clock budget in seconds.
    :param max_attempts: Maximum number of rate-limited attempts.
    :param fn: Zero-argument callable performing the remote call.
    :return: Whatever ``fn`` returns on success.
    """
    deadline = time.monotonic() + timeout
    attempts = 0

    while True:
        attempts += 1
        try:
            return fn()
        except SecondaryRateLimitException as e:
            last_error = e
            logger.warning(
                f"Secondary rate limit hit (attempt {attempts}/{max_attempts}); "
                f"sleeping {e.retry_after}s"
            )
            time.sleep(e.retry_after)

        if attempts >= max_attempts:
            raise RetryTimeoutException(
                "reached retry limit", cause=last_error, attempts=attempts
            ) from last_error

        if time.monotonic() >= deadline:
            break

    raise RetryTimeoutException(cause=last_error, attempts=attempts) from last_error


def retry_with_backoff(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    backoff_factor: float = 2.0,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Decorator retrying a function with jittered exponential backoff.

    :param max_retries: Retries after the first call before giving up.
    :param initial_delay: Minimum delay between attempts, in seconds.
    :param max_delay: Maximum delay between attempts, in seconds.
    :param backoff_factor: Growth factor applied per attempt.
    :param exceptions: Exception types that are retried.
    :raises RetryTimeoutException: Once ``max_retries`` is exhausted.
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> T:
            backoff = Backoff(
                min_delay=initial_delay,
                max_delay=max_delay,
                factor=backoff_factor,
            )
            attempt = 0
            while True:
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt >= max_retries:
                        raise RetryTimeoutException(
                            f"{func.__name__} failed after {max_retries} retries",
                            cause=e,
                        ) from e
                    delay = backoff.duration()
                    logger.warning(
                        f"{func.__name__} failed ({e}); retry {attempt + 1}/{max_retries} "
                        f"in {delay:.2f}s"
                    )
                    attempt += 1
                    time.sleep(delay)

        return wrapper

    return decorator
