"""Structural validation of execution fragments.

Validation runs before any step executes. Every error raised here is a
planner defect, so the engine refuses to start instead of running part of a
broken graph.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import Enum, auto
from typing import TYPE_CHECKING, TypeVar

from fleetdag.kernel.exceptions import (
    CycleDetectedError,
    GraphStructureError,
    InvalidNodeError,
    MissingDependencyError,
)
from fleetdag.kernel.logging import get_logger

if TYPE_CHECKING:
    from fleetdag.kernel.domain.fragment import ExecutionFragment
    from fleetdag.kernel.domain.node import NodeID

logger = get_logger(__name__)
K = TypeVar("K")


class Color(Enum):
    """Colors for DFS cycle detection."""

    WHITE = auto()  # Unvisited
    GRAY = auto()  # On the current path
    BLACK = auto()  # Done


def detect_cycle(graph: Mapping[K, Iterable[K]]) -> list[K] | None:
    """Find a cycle with a depth-first walk using three-state coloring.

    Parameters
    ----------
    graph : Mapping[K, Iterable[K]]
        Node to the nodes it depends on. Unknown targets are ignored.

    Returns
    -------
    list | None
        The cycle as a path whose first node is repeated at the end, or None.

    Examples
    --------
    >>> detect_cycle({"a": {"b"}, "b": {"c"}, "c": {"a"}})
    ['a', 'b', 'c', 'a']
    >>> detect_cycle({"a": {"b"}, "b": set()}) is None
    True
    """
    colors = dict.fromkeys(graph, Color.WHITE)

    for root in graph:
        if colors[root] != Color.WHITE:
            continue

        path: list[K] = [root]
        stack = [iter(sorted(graph[root], key=str))]
        colors[root] = Color.GRAY

        while stack:
            dep = next(stack[-1], None)
            if dep is None:
                stack.pop()
                colors[path.pop()] = Color.BLACK
                continue
            if dep not in colors:
                continue
            if colors[dep] == Color.GRAY:
                # Back edge
                return path[path.index(dep) :] + [dep]
            if colors[dep] == Color.WHITE:
                colors[dep] = Color.GRAY
                path.append(dep)
                stack.append(iter(sorted(graph[dep], key=str)))

    return None


def _check_hosts(fragment: ExecutionFragment) -> None:
    hostless = sorted(node.name for node in fragment.nodes.values() if not node.hosts)
    if hostless:
        raise InvalidNodeError(f"Nodes without hosts in '{fragment.name}': {hostless}")


def _check_dangling_edges(fragment: ExecutionFragment) -> None:
    problems: list[str] = []
    for node_id, deps in fragment.dependencies.items():
        if node_id not in fragment.nodes:
            problems.append(f"edge target '{node_id}' is not a node")
            continue
        name = fragment.nodes[node_id].name
        problems.extend(
            f"node '{name}' depends on missing node '{dep}'"
            for dep in sorted(deps)
            if dep not in fragment.nodes
        )
    if problems:
        raise MissingDependencyError(f"Invalid edges in '{fragment.name}': " + "; ".join(problems))


def _check_entry_exit(fragment: ExecutionFragment) -> None:
    entries, exits = fragment.compute_entry_and_exit_nodes()
    if fragment.entry_nodes != entries:
        raise GraphStructureError(
            f"Entry nodes of '{fragment.name}' are stale: recorded {fragment.entry_nodes}, "
            f"actual {entries}. Call calculate_entry_and_exit_nodes() after editing edges."
        )
    if fragment.exit_nodes != exits:
        raise GraphStructureError(
            f"Exit nodes of '{fragment.name}' are stale: recorded {fragment.exit_nodes}, "
            f"actual {exits}. Call calculate_entry_and_exit_nodes() after editing edges."
        )


def _check_cycles(fragment: ExecutionFragment) -> None:
    graph = {node_id: fragment.dependencies.get(node_id, set()) for node_id in fragment.nodes}
    cycle = detect_cycle(graph)
    if cycle is not None:
        names = [fragment.nodes[node_id].name for node_id in cycle]
        raise CycleDetectedError(
            f"Cycle detected in '{fragment.name}': {' -> '.join(names)}", cycle=names
        )


def topological_layers(fragment: ExecutionFragment) -> list[list[NodeID]]:
    """Group nodes into layers ordered by distance from the entry set.

    Nodes in one layer have no edges between them. Within a layer nodes are
    ordered by ``(name, id)`` so runs are reproducible. Assumes the fragment
    already passed cycle detection.

    Examples
    --------
    For A -> B -> D and A -> C -> D the layers are ``[[A], [B, C], [D]]``.
    """
    in_degrees = {n: len(fragment.dependencies.get(n, ())) for n in fragment.nodes}
    dependents = fragment.dependents_map()

    def order(node_id: NodeID) -> tuple[str, str]:
        return (fragment.nodes[node_id].name, node_id)

    layers: list[list[NodeID]] = []
    current = sorted((n for n, d in in_degrees.items() if d == 0), key=order)
    while current:
        layers.append(current)
        ready: list[NodeID] = []
        for node_id in current:
            for dependent in dependents[node_id]:
                in_degrees[dependent] -= 1
                if in_degrees[dependent] == 0:
                    ready.append(dependent)
        current = sorted(ready, key=order)

    placed = sum(len(layer) for layer in layers)
    if placed != len(fragment.nodes):
        raise CycleDetectedError(
            f"Cycle detected in '{fragment.name}': {len(fragment.nodes) - placed} node(s) "
            "never become ready"
        )
    return layers


def validate_fragment(fragment: ExecutionFragment) -> list[list[NodeID]]:
    """Validate a fragment and return its topological layers.

    Raises
    ------
    InvalidNodeError
        If a node targets no hosts.
    MissingDependencyError
        If an edge references an id that is not a node.
    GraphStructureError
        If the recorded entry/exit nodes do not match the edges.
    CycleDetectedError
        If the dependency relation contains a cycle.
    """
    _check_hosts(fragment)
    _check_dangling_edges(fragment)
    _check_entry_exit(fragment)
    _check_cycles(fragment)
    layers = topological_layers(fragment)
    logger.debug(
        "Validated graph '{graph}': {nodes} nodes in {layers} layers",
        graph=fragment.name,
        nodes=len(fragment.nodes),
        layers=len(layers),
    )
    return layers
