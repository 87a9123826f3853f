"""Timing helpers shared by the engine, node dispatcher and host runner."""

import time
from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime


class Timer:
    """Lightweight timer that tracks elapsed milliseconds and wall-clock start.

    Examples
    --------
    >>> with node_timer() as t:
    ...     pass
    >>> assert t.duration_ms >= 0
    """

    __slots__ = ("_start", "started_at")

    def __init__(self) -> None:
        self._start = time.perf_counter()
        self.started_at = datetime.now()

    @property
    def duration_ms(self) -> float:
        """Elapsed time in milliseconds since the timer started."""
        return (time.perf_counter() - self._start) * 1000

    @property
    def duration_str(self) -> str:
        """Elapsed time in seconds, formatted with 2 decimal places."""
        return f"{self.duration_ms / 1000:.2f}s"


@contextmanager
def node_timer() -> Generator[Timer, None, None]:
    """Time an operation; the yielded Timer stays readable after the block."""
    yield Timer()
