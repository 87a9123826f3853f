"""Configuration loader for fleetdag.

Supports two config sources:

1. **kind: Config YAML**: loaded via explicit path or the
   ``FLEETDAG_CONFIG_PATH`` env var.
2. **pyproject.toml [tool.fleetdag]**: auto-discovery fallback.

String values may reference environment variables as ``${VAR}`` or
``${VAR:default}``. ``FLEETDAG_*`` variables override individual settings.

Example ``fleetdag.yaml``::

    kind: Config
    spec:
      offline: false
      engine:
        max_concurrent_nodes: 20
        run_timeout: ${FLEETDAG_RUN_TIMEOUT:3600}
      logging:
        level: INFO
        format: rich
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import fields, replace
from functools import lru_cache
from pathlib import Path
from typing import Any, TypeVar

import yaml

from fleetdag.kernel.config.models import EngineConfig, FleetDAGConfig, LoggingConfig
from fleetdag.kernel.exceptions import ConfigurationError, ValidationError
from fleetdag.kernel.logging import get_logger

_TRUTHY_VALUES = frozenset({"true", "1", "yes", "on", "enabled"})
_FALSY_VALUES = frozenset({"false", "0", "no", "off", "disabled"})

_ENGINE_ENV = {
    "FLEETDAG_MAX_CONCURRENT_NODES": ("max_concurrent_nodes", int),
    "FLEETDAG_MAX_CONCURRENT_HOSTS": ("max_concurrent_hosts", int),
    "FLEETDAG_HOST_TIMEOUT": ("default_host_timeout", float),
    "FLEETDAG_RUN_TIMEOUT": ("run_timeout", float),
}
_LOGGING_ENV = {
    "FLEETDAG_LOG_LEVEL": ("level", str.upper),
    "FLEETDAG_LOG_FORMAT": ("format", str.lower),
    "FLEETDAG_LOG_FILE": ("output_file", str),
    "FLEETDAG_LOG_COLOR": ("use_color", "bool"),
    "FLEETDAG_LOG_STDLIB_BRIDGE": ("enable_stdlib_bridge", "bool"),
    "FLEETDAG_LOG_DIAGNOSE": ("diagnose", "bool"),
}

logger = get_logger(__name__)
C = TypeVar("C")


def _parse_bool_env(value: str) -> bool:
    """Parse a boolean environment variable value.

    Raises
    ------
    ValueError
        If value is not a recognized boolean string.

    Examples
    --------
    >>> _parse_bool_env("Yes")
    True
    >>> _parse_bool_env("off")
    False
    """
    normalized = value.lower().strip()
    if normalized in _TRUTHY_VALUES:
        return True
    if normalized in _FALSY_VALUES:
        return False
    expected = sorted(_TRUTHY_VALUES | _FALSY_VALUES)
    raise ValueError(f"Invalid boolean value: {value!r}. Expected one of: {expected}")


class ConfigLoader:
    """Loads fleetdag configuration files."""

    ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::([^}]*))?\}")

    def load_config_file(self, path: str | Path | None = None) -> FleetDAGConfig:
        """Load configuration from YAML or pyproject.toml.

        Raises
        ------
        FileNotFoundError
            If no configuration file can be found.
        ConfigurationError
            If the file is not a valid configuration.
        """
        config_path = self._find_config_file(path)
        return _load_and_parse_cached(str(config_path.absolute()))

    def _load_and_parse(self, config_path: Path) -> FleetDAGConfig:
        logger.info("Loading configuration from {path}", path=config_path)
        if config_path.suffix in (".yaml", ".yml"):
            data = self._load_yaml_config(config_path)
        else:
            data = self._load_toml_config(config_path)
        return self._parse_config(self._substitute_env_vars(data))

    def _load_yaml_config(self, config_path: Path) -> dict[str, Any]:
        with config_path.open("r", encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigurationError(config_path.name, f"invalid YAML: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(
                config_path.name, f"expected a mapping, got {type(data).__name__}"
            )
        kind = data.get("kind")
        if kind != "Config":
            raise ConfigurationError(
                config_path.name, f"YAML config must use 'kind: Config', got 'kind: {kind}'"
            )
        spec = data.get("spec") or {}
        if not isinstance(spec, dict):
            raise ConfigurationError(config_path.name, "'spec' must be a mapping")
        return spec

    def _load_toml_config(self, config_path: Path) -> dict[str, Any]:
        with config_path.open("rb") as f:
            try:
                data = tomllib.load(f)
            except tomllib.TOMLDecodeError as e:
                raise ConfigurationError(config_path.name, f"invalid TOML: {e}") from e

        if "tool" in data or config_path.name == "pyproject.toml":
            section = data.get("tool", {}).get("fleetdag", {})
            if not section:
                logger.warning(
                    "No [tool.fleetdag] section in {path}, using defaults", path=config_path
                )
            return section
        return data

    def _find_config_file(self, path: str | Path | None) -> Path:
        """Find the configuration file.

        Discovery order:
        1. Explicit path argument
        2. ``FLEETDAG_CONFIG_PATH`` env var
        3. ``fleetdag.yaml`` in CWD
        4. ``pyproject.toml`` with ``[tool.fleetdag]`` in CWD or a parent
        """
        if path:
            config_path = Path(path)
            if not config_path.exists():
                raise FileNotFoundError(f"Configuration file not found: {config_path}")
            return config_path

        if env_path := os.getenv("FLEETDAG_CONFIG_PATH"):
            config_path = Path(env_path)
            if config_path.exists():
                logger.debug("Using config from FLEETDAG_CONFIG_PATH: {}", config_path)
                return config_path
            logger.warning("FLEETDAG_CONFIG_PATH set but file not found: {}", config_path)

        if Path("fleetdag.yaml").exists():
            return Path("fleetdag.yaml")

        current = Path.cwd()
        while True:
            pyproject = current / "pyproject.toml"
            if pyproject.exists():
                with pyproject.open("rb") as f:
                    data = tomllib.load(f)
                if "fleetdag" in data.get("tool", {}):
                    return pyproject
            if current == current.parent:
                break
            current = current.parent

        raise FileNotFoundError(
            "No configuration file found. Provide a kind: Config YAML path, "
            "set FLEETDAG_CONFIG_PATH, or add [tool.fleetdag] to pyproject.toml"
        )

    def _substitute_env_vars(self, data: Any) -> Any:
        """Recursively replace ``${VAR}`` / ``${VAR:default}`` in strings.

        Unset variables without a default keep their placeholder.
        """
        if isinstance(data, str):

            def replacer(match: re.Match[str]) -> str:
                var_name, default = match.group(1), match.group(2)
                value = os.environ.get(var_name, default)
                if value is None:
                    logger.debug(
                        "Environment variable ${{{var_name}}} not found, keeping placeholder",
                        var_name=var_name,
                    )
                    return match.group(0)
                return value

            return self.ENV_VAR_PATTERN.sub(replacer, data)

        if isinstance(data, dict):
            return {key: self._substitute_env_vars(value) for key, value in data.items()}

        if isinstance(data, list):
            return [self._substitute_env_vars(item) for item in data]

        return data

    def _parse_config(self, data: dict[str, Any]) -> FleetDAGConfig:
        engine_data = data.get("engine") or {}
        logging_data = data.get("logging") or {}
        if not isinstance(engine_data, dict) or not isinstance(logging_data, dict):
            raise ConfigurationError("config", "'engine' and 'logging' must be mappings")

        offline = data.get("offline", False)
        if isinstance(offline, str):
            offline = _parse_bool_env(offline)
        if env_offline := os.getenv("FLEETDAG_OFFLINE"):
            offline = _parse_bool_env(env_offline)

        settings = data.get("settings") or {}
        return FleetDAGConfig(
            engine=self._parse_engine_config(engine_data),
            logging=self._parse_logging_config(logging_data),
            offline=bool(offline),
            settings=dict(settings),
        )

    def _parse_engine_config(self, engine_data: dict[str, Any]) -> EngineConfig:
        config = _build(EngineConfig, engine_data, "engine")
        return _apply_env_overrides(config, _ENGINE_ENV)

    def _parse_logging_config(self, logging_data: dict[str, Any]) -> LoggingConfig:
        config = _build(LoggingConfig, logging_data, "logging")
        return _apply_env_overrides(config, _LOGGING_ENV)


def _build(cls: type[C], data: dict[str, Any], section: str) -> C:
    known = {f.name for f in fields(cls)}  # type: ignore[arg-type]
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError(section, f"unknown keys {unknown}, expected {sorted(known)}")
    try:
        return cls(**{k: _coerce(cls, k, v) for k, v in data.items()})
    except (ValidationError, ValueError, TypeError) as e:
        raise ConfigurationError(section, str(e)) from e


def _coerce(cls: type, key: str, value: Any) -> Any:
    """Convert env-substituted strings to the field's scalar type."""
    if not isinstance(value, str):
        return value
    default = next(f.default for f in fields(cls) if f.name == key)
    if isinstance(default, bool):
        return _parse_bool_env(value)
    if isinstance(default, int):
        return int(value)
    if key.endswith("timeout"):
        return float(value) if value.lower() not in ("", "none", "null") else None
    return value


def _apply_env_overrides(config: C, mapping: dict[str, tuple[str, Any]]) -> C:
    overrides: dict[str, Any] = {}
    for env_name, (attr, convert) in mapping.items():
        raw = os.getenv(env_name)
        if raw is None:
            continue
        try:
            overrides[attr] = _parse_bool_env(raw) if convert == "bool" else convert(raw)
        except ValueError as e:
            logger.warning("Invalid {env} value: {error}", env=env_name, error=e)
    if not overrides:
        return config
    try:
        return replace(config, **overrides)  # type: ignore[type-var]
    except ValidationError as e:
        raise ConfigurationError("environment", str(e)) from e


@lru_cache(maxsize=32)
def _load_and_parse_cached(path_str: str) -> FleetDAGConfig:
    return ConfigLoader()._load_and_parse(Path(path_str))


def load_config(path: str | Path | None = None) -> FleetDAGConfig:
    """Load configuration from file, or return defaults when none is found.

    Examples
    --------
    Example usage::

        config = load_config("fleetdag.yaml")
        engine = GraphEngine.from_config(config.engine)
    """
    try:
        return ConfigLoader().load_config_file(path)
    except FileNotFoundError:
        if path:
            raise
        logger.info("No configuration file found, using defaults")
        return get_default_config()


def clear_config_cache() -> None:
    """Forget parsed configuration files (e.g. after editing them in tests)."""
    _load_and_parse_cached.cache_clear()


def get_default_config() -> FleetDAGConfig:
    """Defaults with environment overrides applied."""
    loader = ConfigLoader()
    return loader._parse_config({})
