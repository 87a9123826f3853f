"""Execution fragments and the composition algebra planners use.

A fragment is a small, self-contained execution graph: a set of nodes plus
the dependency edges between them. Every task plans one fragment; modules and
pipelines compose those fragments into the graph the engine runs. Ordering
lives exclusively in edges, so independently written planners combine safely.

Composition operations
----------------------
- ``merge`` / ``|=`` / ``merge_fragments``: disjoint union.
- ``link``: full join from one group of nodes to another.
- ``chain_fragments``: sequence fragments, each entry set waiting on the
  previous exit set.
- ``add_barrier``: a no-op node that gives later stages one join point.
- ``chain_per_host``: one-host-at-a-time rollout.

Examples
--------
Example usage::

    fragment = ExecutionFragment("etcd")
    backup = fragment.add_node(ExecutionNode("backup etcd", BackupStep(), etcd_hosts))
    upgrade = fragment.add_node(ExecutionNode("upgrade etcd", UpgradeStep(), etcd_hosts))
    fragment.add_dependency(backup, upgrade)
    assert fragment.entry_nodes == [backup]
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Iterable, Iterator, Sequence
from typing import TYPE_CHECKING

from fleetdag.kernel.domain.node import ExecutionNode, NodeID, new_node_id
from fleetdag.kernel.domain.step import NoOpStep
from fleetdag.kernel.exceptions import (
    CycleDetectedError,
    DuplicateNodeError,
    InvalidNodeError,
    MissingDependencyError,
    ResourceNotFoundError,
)

if TYPE_CHECKING:
    from fleetdag.kernel.domain.host import Host

NodeRef = str | Iterable[str]


def _as_ids(ref: NodeRef) -> list[NodeID]:
    if isinstance(ref, str):
        return [NodeID(ref)]
    return [NodeID(r) for r in ref]


class ExecutionFragment:
    """Nodes plus their dependency edges.

    ``dependencies[n]`` is the set of node ids ``n`` waits for. Entry nodes
    have no dependencies, exit nodes have no dependents. Both lists are
    derived from the edges and kept sorted; they are recomputed lazily after
    ``add_node`` / ``add_dependency`` and eagerly by
    ``calculate_entry_and_exit_nodes``. Code that edits ``dependencies``
    directly must call ``calculate_entry_and_exit_nodes`` afterwards.
    """

    __slots__ = ("name", "nodes", "dependencies", "_entry_nodes", "_exit_nodes", "_dirty")

    def __init__(self, name: str) -> None:
        self.name = name
        self.nodes: dict[NodeID, ExecutionNode] = {}
        self.dependencies: dict[NodeID, set[NodeID]] = {}
        self._entry_nodes: list[NodeID] = []
        self._exit_nodes: list[NodeID] = []
        self._dirty = False

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    def add_node(self, node: ExecutionNode) -> NodeID:
        """Add a node and return its id.

        Raises
        ------
        InvalidNodeError
            If the node has no hosts.
        DuplicateNodeError
            If a node with the same id is already present.
        """
        if not node.hosts:
            raise InvalidNodeError(
                f"Node '{node.name}' in fragment '{self.name}' must target at least one host"
            )
        if not node.id:
            node.id = new_node_id(node.name)
        if node.id in self.nodes:
            raise DuplicateNodeError(
                f"Node id '{node.id}' ({node.name}) already exists in fragment '{self.name}'"
            )

        self.nodes[node.id] = node
        self.dependencies.setdefault(node.id, set())
        self._dirty = True
        return node.id

    def add_dependency(self, from_: NodeRef, to: NodeRef) -> None:
        """Make every node in ``to`` depend on all nodes in ``from_``.

        Either side may be a single id or an iterable of ids. Adding an edge
        that already exists is a no-op.

        Raises
        ------
        MissingDependencyError
            If any id is not part of this fragment. Nothing is added.
        CycleDetectedError
            If a node would depend on itself. Nothing is added.
        """
        sources = _as_ids(from_)
        targets = _as_ids(to)

        unknown = sorted({i for i in (*sources, *targets) if i not in self.nodes})
        if unknown:
            raise MissingDependencyError(
                f"Fragment '{self.name}' has no node(s) {unknown} to connect"
            )
        for target in targets:
            if target in sources:
                name = self.nodes[target].name
                raise CycleDetectedError(
                    f"Cycle detected: node '{name}' cannot depend on itself",
                    cycle=(name, name),
                )

        for target in targets:
            deps = self.dependencies.setdefault(target, set())
            for source in sources:
                if source not in deps:
                    deps.add(source)
                    self._dirty = True

    def calculate_entry_and_exit_nodes(self) -> None:
        """Recompute entry and exit nodes from the dependency map."""
        self._entry_nodes, self._exit_nodes = self.compute_entry_and_exit_nodes()
        self._dirty = False

    def compute_entry_and_exit_nodes(self) -> tuple[list[NodeID], list[NodeID]]:
        """Return freshly computed ``(entry_nodes, exit_nodes)`` without storing them."""
        has_dependents: set[NodeID] = set()
        for node_id in self.nodes:
            has_dependents.update(self.dependencies.get(node_id, ()))

        entries = sorted(n for n in self.nodes if not self.dependencies.get(n))
        exits = sorted(n for n in self.nodes if n not in has_dependents)
        return entries, exits

    @property
    def entry_nodes(self) -> list[NodeID]:
        if self._dirty:
            self.calculate_entry_and_exit_nodes()
        return list(self._entry_nodes)

    @property
    def exit_nodes(self) -> list[NodeID]:
        if self._dirty:
            self.calculate_entry_and_exit_nodes()
        return list(self._exit_nodes)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_dependencies(self, node_id: NodeID) -> frozenset[NodeID]:
        return frozenset(self.dependencies.get(node_id, ()))

    def get_dependents(self, node_id: NodeID) -> set[NodeID]:
        return {n for n, deps in self.dependencies.items() if node_id in deps}

    def dependents_map(self) -> dict[NodeID, set[NodeID]]:
        """Reverse of ``dependencies``: node id to the ids waiting on it."""
        dependents: defaultdict[NodeID, set[NodeID]] = defaultdict(set)
        for node_id, deps in self.dependencies.items():
            for dep in deps:
                dependents[dep].add(node_id)
        return {n: dependents.get(n, set()) for n in self.nodes}

    def nodes_by_name(self, name: str) -> list[ExecutionNode]:
        return [node for node in self.nodes.values() if node.name == name]

    def node_by_name(self, name: str) -> ExecutionNode:
        """Return the only node called ``name``.

        Raises
        ------
        ResourceNotFoundError
            If no node has that name.
        """
        matches = self.nodes_by_name(name)
        if not matches:
            available = sorted({n.name for n in self.nodes.values()})
            raise ResourceNotFoundError("node", name, available)
        return matches[0]

    @property
    def is_empty(self) -> bool:
        return not self.nodes

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self.nodes

    def __iter__(self) -> Iterator[ExecutionNode]:
        return iter(self.nodes.values())

    def __repr__(self) -> str:
        edges = sum(len(d) for d in self.dependencies.values())
        return f"ExecutionFragment(name={self.name!r}, nodes={len(self.nodes)}, edges={edges})"

    # ------------------------------------------------------------------
    # Composition
    # ------------------------------------------------------------------

    def merge(self, other: ExecutionFragment) -> ExecutionFragment:
        """Merge ``other`` into this fragment (disjoint union).

        Returns
        -------
        ExecutionFragment
            Self, for chaining.

        Raises
        ------
        DuplicateNodeError
            If both fragments contain the same node id. This always points at
            a planner bug, so nothing is merged.
        """
        overlap = self.nodes.keys() & other.nodes.keys()
        if overlap:
            raise DuplicateNodeError(
                f"Cannot merge fragment '{other.name}' into '{self.name}': "
                f"duplicate node id(s) {sorted(overlap)}"
            )

        for node_id, node in other.nodes.items():
            self.nodes[node_id] = node
            self.dependencies[node_id] = set(other.dependencies.get(node_id, ()))
        self._dirty = True
        return self

    def __ior__(self, other: ExecutionFragment) -> ExecutionFragment:
        return self.merge(other)

    def link(self, from_ids: Iterable[NodeID], to_ids: Iterable[NodeID]) -> None:
        """Make every node of ``to_ids`` wait for every node of ``from_ids``.

        An empty side leaves the fragment unchanged.
        """
        sources = list(from_ids)
        targets = list(to_ids)
        if sources and targets:
            self.add_dependency(sources, targets)

    def add_barrier(self, name: str, after: Iterable[NodeID], hosts: Sequence[Host]) -> NodeID:
        """Add a no-op node that waits for all of ``after``.

        Parameters
        ----------
        name : str
            Barrier node name.
        after : Iterable[NodeID]
            Nodes the barrier joins. May be empty.
        hosts : Sequence[Host]
            Hosts the barrier is bound to, usually the control host.

        Returns
        -------
        NodeID
            Id of the new barrier node.
        """
        barrier_id = self.add_node(ExecutionNode(name, NoOpStep(name), tuple(hosts)))
        self.link(after, [barrier_id])
        return barrier_id


def merge_fragments(name: str, *fragments: ExecutionFragment) -> ExecutionFragment:
    """Return a new fragment that is the disjoint union of ``fragments``.

    Examples
    --------
    Example usage::

        control_plane = merge_fragments("control-plane", etcd, apiserver, scheduler)
    """
    merged = ExecutionFragment(name)
    for fragment in fragments:
        merged.merge(fragment)
    merged.calculate_entry_and_exit_nodes()
    return merged


def chain_fragments(name: str, *fragments: ExecutionFragment) -> ExecutionFragment:
    """Return a new fragment running ``fragments`` one after another.

    Every entry node of a fragment waits for every exit node of the previous
    non-empty fragment. Empty fragments are passed over.
    """
    chained = ExecutionFragment(name)
    previous_exits: list[NodeID] = []
    for fragment in fragments:
        if fragment.is_empty:
            continue
        entries = fragment.entry_nodes
        exits = fragment.exit_nodes
        chained.merge(fragment)
        chained.link(previous_exits, entries)
        previous_exits = exits
    chained.calculate_entry_and_exit_nodes()
    return chained


def chain_per_host(
    name: str,
    hosts: Iterable[Host],
    plan_host: Callable[[Host], ExecutionFragment],
    *,
    barrier: bool = True,
) -> ExecutionFragment:
    """Plan one fragment per host and run the hosts strictly one at a time.

    ``plan_host`` returns the host's private chain, for example
    backup → distribute → restart → verify. The previous host's terminal node
    is linked to every entry node of the next host's chain. When a chain ends
    in several nodes and ``barrier`` is set, a barrier on that host becomes
    the terminal node, so exactly one edge crosses between hosts.

    Examples
    --------
    Example usage::

        def renew_on(host):
            f = ExecutionFragment(f"renew-{host.name}")
            ids = [f.add_node(ExecutionNode(s.meta.name, s, (host,))) for s in steps]
            for a, b in itertools.pairwise(ids):
                f.add_dependency(a, b)
            return f

        rollout = chain_per_host("renew-certs", masters, renew_on)
    """
    chained = ExecutionFragment(name)
    previous_terminals: list[NodeID] = []
    for host in hosts:
        host_fragment = plan_host(host)
        if host_fragment.is_empty:
            continue
        entries = host_fragment.entry_nodes
        exits = host_fragment.exit_nodes
        chained.merge(host_fragment)
        chained.link(previous_terminals, entries)

        if len(exits) > 1 and barrier:
            previous_terminals = [chained.add_barrier(f"{name}: {host.name} done", exits, (host,))]
        else:
            previous_terminals = exits
    chained.calculate_entry_and_exit_nodes()
    return chained
