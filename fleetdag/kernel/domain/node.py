"""Execution nodes: one step bound to one or more hosts."""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, NewType

if TYPE_CHECKING:
    from fleetdag.kernel.domain.host import Host
    from fleetdag.kernel.domain.step import Step

NodeID = NewType("NodeID", str)

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def new_node_id(name: str) -> NodeID:
    """Generate a fresh node id that still reads well in logs.

    Examples
    --------
    >>> new_node_id("Install etcd").startswith("install-etcd-")
    True
    """
    slug = _SLUG_RE.sub("-", name.lower()).strip("-") or "node"
    return NodeID(f"{slug}-{uuid.uuid4().hex[:12]}")


@dataclass(slots=True)
class ExecutionNode:
    """A step to run on a set of hosts.

    ``id`` is left empty by planners and assigned when the node is added to a
    fragment. A node with several hosts fans out across them when dispatched.
    """

    name: str
    step: Step
    hosts: tuple[Host, ...]
    id: NodeID = field(default=NodeID(""))

    def __post_init__(self) -> None:
        # Host results are keyed by name, so each host appears once
        unique: dict[str, Host] = {}
        for host in self.hosts:
            unique.setdefault(host.name, host)
        self.hosts = tuple(unique.values())

    @property
    def step_name(self) -> str:
        return self.step.meta.name

    @property
    def ignore_error(self) -> bool:
        return self.step.meta.ignore_error

    def __repr__(self) -> str:
        hosts = ", ".join(h.name for h in self.hosts)
        return f"ExecutionNode(id={self.id!r}, name={self.name!r}, hosts=[{hosts}])"
