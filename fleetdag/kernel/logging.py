"""Centralized logging configuration for fleetdag using Loguru.

Provides consistent logging across the engine with support for:
- Multiple output formats (console, JSON, structured, rich)
- Environment-based configuration
- Run correlation ids carried through contextvars
- Idempotent configuration

Examples
--------
Basic usage:

>>> from fleetdag.kernel.logging import get_logger
>>> logger = get_logger(__name__)
>>> logger.info("Graph started", graph="create-cluster")

Configure logging globally::

    from fleetdag.kernel.logging import configure_logging
    configure_logging(level="DEBUG", format="rich")
"""

import contextvars
import logging
import os
import sys
from contextlib import suppress
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    import types

    from loguru import Logger

from loguru import logger
from rich.logging import RichHandler

LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
LogFormat = Literal["console", "json", "structured", "rich", "dual"]

_CURRENT_CONFIG: dict | None = None
_HANDLER_IDS: list[int] = []

# Correlation ID for the current run
correlation_id: contextvars.ContextVar[str] = contextvars.ContextVar("correlation_id", default="-")


def _rich_handler(include_timestamp: bool) -> RichHandler:
    return RichHandler(
        rich_tracebacks=True,
        markup=True,
        show_time=include_timestamp,
        show_level=True,
        show_path=True,
    )


def configure_logging(
    level: LogLevel = "INFO",
    format: LogFormat = "structured",
    output_file: str | Path | None = None,
    use_color: bool = True,
    include_timestamp: bool = True,
    force_reconfigure: bool = False,
    enable_stdlib_bridge: bool = False,
    backtrace: bool = True,
    diagnose: bool = False,
) -> None:
    """Configure global logging for fleetdag.

    Calling it again with the same settings is a no-op.

    Parameters
    ----------
    level : LogLevel, default="INFO"
        Minimum log level to output.
    format : LogFormat, default="structured"
        Output format:
        - "console": plain single-line output
        - "json": serialized records for log aggregation
        - "structured": Loguru format with optional colors
        - "rich": Rich console handler
        - "dual": Rich to stderr plus JSON to stdout
    output_file : str | Path | None, default=None
        Optional file path to write JSON logs to, rotated at 10 MB.
    use_color : bool, default=True
        Use ANSI colors in the structured format (disabled for non-TTY).
    include_timestamp : bool, default=True
        Include timestamp in log output.
    force_reconfigure : bool, default=False
        Reconfigure even if the settings did not change.
    enable_stdlib_bridge : bool, default=False
        Route stdlib ``logging`` records (e.g. from SSH libraries) through Loguru.
    backtrace : bool, default=True
        Extend tracebacks beyond the catching frame.
    diagnose : bool, default=False
        Show variable values in tracebacks. Keep off when steps handle secrets.
    """
    global _CURRENT_CONFIG

    current_config = {
        "level": level,
        "format": format,
        "output_file": str(output_file) if output_file else None,
        "use_color": use_color,
        "include_timestamp": include_timestamp,
        "enable_stdlib_bridge": enable_stdlib_bridge,
        "backtrace": backtrace,
        "diagnose": diagnose,
    }

    if not force_reconfigure and current_config == _CURRENT_CONFIG:
        return

    # Only remove handlers we added, pytest and others may have their own
    for handler_id in _HANDLER_IDS:
        with suppress(ValueError):
            logger.remove(handler_id)
    _HANDLER_IDS.clear()

    if format == "dual":
        _HANDLER_IDS.append(
            logger.add(
                sink=_rich_handler(include_timestamp),
                level=level,
                format="{message}",
                backtrace=backtrace,
                diagnose=diagnose,
            )
        )
        _HANDLER_IDS.append(
            logger.add(
                sink=sys.stdout,
                level=level,
                serialize=True,
                backtrace=backtrace,
                diagnose=diagnose,
            )
        )

    elif format == "rich":
        _HANDLER_IDS.append(
            logger.add(
                sink=_rich_handler(include_timestamp),
                level=level,
                format="{message}",
                backtrace=backtrace,
                diagnose=diagnose,
            )
        )

    elif format == "json":
        _HANDLER_IDS.append(
            logger.add(
                sink=sys.stderr,
                level=level,
                serialize=True,
                backtrace=backtrace,
                diagnose=diagnose,
            )
        )

    elif format == "structured":
        colorize = use_color and sys.stderr.isatty()
        timestamp_fmt = "<green>{time:YYYY-MM-DD HH:mm:ss}</green> " if include_timestamp else ""
        color_level = "<level>{level: <8}</level>" if colorize else "{level: <8}"
        structured_format = (
            f"{timestamp_fmt}[{color_level}]"
            "<cyan>{name}:{function}:{line}</cyan> | <level>{message}</level>"
        )
        _HANDLER_IDS.append(
            logger.add(
                sink=sys.stderr,
                level=level,
                format=structured_format,
                colorize=colorize,
                backtrace=backtrace,
                diagnose=diagnose,
            )
        )

    else:  # console
        timestamp_fmt = "{time:YYYY-MM-DD HH:mm:ss} " if include_timestamp else ""
        console_format = f"{timestamp_fmt}{{level: <8}} | {{name}} | {{message}}"
        _HANDLER_IDS.append(
            logger.add(
                sink=sys.stderr,
                level=level,
                format=console_format,
                colorize=False,
                backtrace=backtrace,
                diagnose=diagnose,
            )
        )

    if output_file:
        output_path = Path(output_file)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        _HANDLER_IDS.append(
            logger.add(
                sink=output_path,
                level=level,
                serialize=True,
                rotation="10 MB",
                retention="1 week",
                compression="zip",
                backtrace=backtrace,
                diagnose=diagnose,
            )
        )

    if enable_stdlib_bridge:
        enable_stdlib_logging_bridge()

    _CURRENT_CONFIG = current_config


@lru_cache(maxsize=256)
def get_logger(name: str) -> "Logger":
    """Get a logger bound with the given module name.

    Parameters
    ----------
    name : str
        Logger name, typically ``__name__`` of the calling module.

    Returns
    -------
    loguru.Logger
        Logger bound with ``module=name``.

    Notes
    -----
    If configure_logging() has not been called yet, the defaults come from
    ``FLEETDAG_LOG_LEVEL`` and ``FLEETDAG_LOG_FORMAT``.
    """
    _ensure_configured()
    return logger.bind(module=name)


def get_logger_for_host(component: str, host_name: str) -> "Logger":
    """Get a logger for work happening on one host.

    Examples
    --------
    >>> log = get_logger_for_host("step", "master-1")
    >>> log.info("Restarting kubelet")
    """
    _ensure_configured()
    return logger.bind(module=f"fleetdag.{component}", host=host_name, cid=get_correlation_id())


def enable_stdlib_logging_bridge() -> None:
    """Redirect stdlib ``logging`` records to Loguru."""

    class InterceptHandler(logging.Handler):
        def emit(self, record: logging.LogRecord) -> None:
            level: str | int
            try:
                level = logger.level(record.levelname).name
            except ValueError:
                level = record.levelno

            # Find the caller that originated the record
            frame: types.FrameType | None = sys._getframe(6)
            depth = 6
            while frame and frame.f_code.co_filename == logging.__file__:
                frame = frame.f_back
                depth += 1

            logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)


def set_correlation_id(cid: str) -> None:
    """Set correlation ID for the current context."""
    correlation_id.set(cid)


def get_correlation_id() -> str:
    """Get the current correlation ID, ``"-"`` when unset.

    Examples
    --------
    >>> clear_correlation_id()
    >>> get_correlation_id()
    '-'
    """
    return correlation_id.get()


def clear_correlation_id() -> None:
    """Clear the correlation ID for the current context."""
    correlation_id.set("-")


def _ensure_configured() -> None:
    if _CURRENT_CONFIG is None:
        level = os.getenv("FLEETDAG_LOG_LEVEL", "INFO").upper()
        format_type = os.getenv("FLEETDAG_LOG_FORMAT", "structured").lower()
        configure_logging(level=level, format=format_type)  # type: ignore[arg-type]
