"""Bill-of-materials port: which component version ships with a cluster version.

BOM lookups stay outside the engine. Planners resolve versions while
planning and bake them into the steps they create.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True, slots=True)
class ComponentVersion:
    """A resolved component artifact."""

    component: str
    version: str
    checksum: str = ""
    url: str = ""


@runtime_checkable
class BOMResolver(Protocol):
    """Resolve component versions for a cluster version."""

    def resolve(self, component: str, cluster_version: str) -> ComponentVersion:
        """Return the component version to install with ``cluster_version``.

        Raises
        ------
        ResourceNotFoundError
            If the component or the cluster version is unknown.
        """
        ...
