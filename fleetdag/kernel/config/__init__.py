"""Configuration loading and management for fleetdag."""

from fleetdag.kernel.config.loader import (
    ConfigLoader,
    clear_config_cache,
    get_default_config,
    load_config,
)
from fleetdag.kernel.config.models import EngineConfig, FleetDAGConfig, LoggingConfig

__all__ = [
    "ConfigLoader",
    "EngineConfig",
    "FleetDAGConfig",
    "LoggingConfig",
    "clear_config_cache",
    "get_default_config",
    "load_config",
]
