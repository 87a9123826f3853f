"""Table-backed bill of materials.

The table maps a component to cluster version patterns. A pattern is an
exact version (``v1.28.2``), a minor series (``v1.28``) or ``*``. The most
specific match wins.

Example ``bom.yaml``::

    etcd:
      v1.28: {version: v3.5.9, checksum: "sha256:..."}
      "*": {version: v3.5.12}
    containerd:
      "*": {version: 1.7.13}
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from fleetdag.kernel.exceptions import ConfigurationError, ResourceNotFoundError
from fleetdag.kernel.ports.bom import ComponentVersion

WILDCARD = "*"


def _normalize(version: str) -> str:
    return version if version.startswith("v") else f"v{version}"


def _minor_series(version: str) -> str:
    """``v1.28.2`` -> ``v1.28``.

    Examples
    --------
    >>> _minor_series("1.28.2")
    'v1.28'
    """
    parts = _normalize(version).split(".")
    return ".".join(parts[:2])


class StaticBOM:
    """In-memory ``BOMResolver``.

    Examples
    --------
    >>> bom = StaticBOM({"etcd": {"v1.28": {"version": "v3.5.9"}}})
    >>> bom.resolve("etcd", "v1.28.4").version
    'v3.5.9'
    """

    def __init__(self, table: Mapping[str, Mapping[str, Mapping[str, Any] | str]]) -> None:
        self._table: dict[str, dict[str, ComponentVersion]] = {}
        for component, versions in table.items():
            entries: dict[str, ComponentVersion] = {}
            for pattern, entry in versions.items():
                if isinstance(entry, str):
                    entry = {"version": entry}
                if "version" not in entry:
                    raise ConfigurationError("bom", f"{component}/{pattern} has no 'version'")
                key = pattern if pattern == WILDCARD else _normalize(pattern)
                entries[key] = ComponentVersion(
                    component=component,
                    version=str(entry["version"]),
                    checksum=str(entry.get("checksum", "")),
                    url=str(entry.get("url", "")),
                )
            self._table[component] = entries

    @classmethod
    def from_yaml(cls, path: str | Path) -> StaticBOM:
        with Path(path).open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigurationError("bom", f"{path} must contain a mapping")
        return cls(data)

    def components(self) -> list[str]:
        return sorted(self._table)

    def resolve(self, component: str, cluster_version: str) -> ComponentVersion:
        """Return the most specific entry for ``cluster_version``.

        Raises
        ------
        ResourceNotFoundError
            If the component is unknown or no pattern matches.
        """
        entries = self._table.get(component)
        if entries is None:
            raise ResourceNotFoundError("component", component, self.components())

        version = _normalize(cluster_version)
        for key in (version, _minor_series(version), WILDCARD):
            if key in entries:
                return entries[key]
        raise ResourceNotFoundError(
            f"{component} version for cluster", cluster_version, sorted(entries)
        )
