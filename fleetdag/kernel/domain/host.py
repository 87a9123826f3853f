"""Host abstraction.

The engine only needs a stable display name for every host; it never opens
connections itself. Transports live in steps.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable


@runtime_checkable
class Host(Protocol):
    """A machine a step can target. Must be hashable."""

    @property
    def name(self) -> str:
        """Stable, unique display name of the host."""
        ...


@dataclass(frozen=True, slots=True)
class StaticHost:
    """Host defined by inventory data.

    Examples
    --------
    >>> h = StaticHost("master-1", "10.0.0.11", roles=frozenset({"master", "etcd"}))
    >>> h.has_role("etcd")
    True
    """

    name: str
    address: str = ""
    roles: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        object.__setattr__(self, "roles", frozenset(self.roles))

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def __str__(self) -> str:
        return self.name


def host_names(hosts: tuple[Host, ...] | list[Host]) -> list[str]:
    """Names of hosts in their given order."""
    return [h.name for h in hosts]
