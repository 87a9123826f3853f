"""Retry with exponential backoff for step execution on a host.

Retries are a property of the step, not of the engine: a step declares a
``RetryConfig`` in its metadata and the host runner wraps the step's run in
``execute_with_retry`` before recording a failure.

Examples
--------
Basic usage::

    config = RetryConfig(max_retries=3, delay=2.0)
    output = await execute_with_retry(lambda: step.run(ctx, host), config)
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from fleetdag.kernel.exceptions import ValidationError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable


@dataclass(frozen=True, slots=True)
class RetryConfig:
    """Configuration for retry behavior with exponential backoff.

    Parameters
    ----------
    max_retries : int
        Total number of attempts. 1 means a single attempt.
    delay : float
        Initial delay in seconds before the first retry.
    backoff : float
        Multiplier applied to the delay after each retry.
    max_delay : float
        Maximum delay cap in seconds.
    """

    max_retries: int = 1
    delay: float = 1.0
    backoff: float = 2.0
    max_delay: float = 60.0

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ValidationError("max_retries", "must be at least 1", value=self.max_retries)
        if self.delay < 0:
            raise ValidationError("delay", "must not be negative", value=self.delay)

    @property
    def has_retries(self) -> bool:
        """Whether this config enables retries (max_retries > 1)."""
        return self.max_retries > 1

    def compute_delay(self, attempt: int) -> float:
        """Compute the delay after a failed attempt (1-indexed).

        Examples
        --------
        >>> cfg = RetryConfig(delay=1.0, backoff=2.0, max_delay=10.0)
        >>> cfg.compute_delay(1)
        1.0
        >>> cfg.compute_delay(3)
        4.0
        >>> cfg.compute_delay(10)
        10.0
        """
        return min(self.delay * (self.backoff ** (attempt - 1)), self.max_delay)


NO_RETRY = RetryConfig()


async def execute_with_retry(
    fn: Callable[[], Awaitable[Any]],
    config: RetryConfig,
    *,
    on_retry: Callable[[int, int, Exception, float], Any] | None = None,
) -> Any:
    """Execute an async callable with retry and exponential backoff.

    Parameters
    ----------
    fn : Callable[[], Awaitable[Any]]
        Zero-argument async callable to execute.
    config : RetryConfig
        Retry configuration.
    on_retry : callable, optional
        Called before each retry sleep with
        ``(attempt, max_retries, error, delay)``.

    Returns
    -------
    Any
        The return value of *fn*.

    Raises
    ------
    Exception
        The error of the last attempt once all attempts are exhausted.
        ``asyncio.CancelledError`` is never retried.
    """
    for attempt in range(1, config.max_retries + 1):
        try:
            return await fn()
        except Exception as exc:
            if attempt >= config.max_retries:
                raise
            delay = config.compute_delay(attempt)
            if on_retry is not None:
                on_retry(attempt, config.max_retries, exc, delay)
            await asyncio.sleep(delay)
    return None  # pragma: no cover
