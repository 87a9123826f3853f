"""Configuration data models for fleetdag."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from fleetdag.kernel.exceptions import ValidationError

DEFAULT_MAX_CONCURRENT_NODES = 10
DEFAULT_MAX_CONCURRENT_HOSTS = 10


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Logging configuration.

    Examples
    --------
    TOML configuration:

    ```toml
    [tool.fleetdag.logging]
    level = "DEBUG"
    format = "rich"
    ```

    Environment variable overrides:

    ```bash
    export FLEETDAG_LOG_LEVEL=DEBUG
    export FLEETDAG_LOG_FORMAT=json
    export FLEETDAG_LOG_FILE=/var/log/fleetdag/run.log
    ```
    """

    level: Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["console", "json", "structured", "dual", "rich"] = "structured"
    output_file: str | None = None
    use_color: bool = True
    include_timestamp: bool = True
    enable_stdlib_bridge: bool = False
    backtrace: bool = True
    diagnose: bool = False


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """Executor limits.

    Attributes
    ----------
    max_concurrent_nodes : int, default=10
        Nodes dispatched at the same time across the graph.
    max_concurrent_hosts : int, default=10
        Host runs at the same time within one node.
    default_host_timeout : float | None, default=None
        Per-attempt timeout for steps that declare none.
    run_timeout : float | None, default=None
        Whole-run time limit; when it expires the run is cancelled.
    """

    max_concurrent_nodes: int = DEFAULT_MAX_CONCURRENT_NODES
    max_concurrent_hosts: int = DEFAULT_MAX_CONCURRENT_HOSTS
    default_host_timeout: float | None = None
    run_timeout: float | None = None

    def __post_init__(self) -> None:
        if self.max_concurrent_nodes < 1:
            raise ValidationError(
                "max_concurrent_nodes", "must be at least 1", value=self.max_concurrent_nodes
            )
        if self.max_concurrent_hosts < 1:
            raise ValidationError(
                "max_concurrent_hosts", "must be at least 1", value=self.max_concurrent_hosts
            )
        for name in ("default_host_timeout", "run_timeout"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ValidationError(name, "must be positive", value=value)


@dataclass(frozen=True, slots=True)
class FleetDAGConfig:
    """Complete configuration."""

    engine: EngineConfig = field(default_factory=EngineConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    offline: bool = False
    settings: dict[str, Any] = field(default_factory=dict)
