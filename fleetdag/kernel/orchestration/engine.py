"""Graph engine: executes an execution fragment across the fleet.

The engine walks the topological layers of a validated fragment. Within a
layer every node whose dependencies are satisfied is dispatched concurrently
(bounded by ``max_concurrent_nodes``) and fans out across its hosts
(bounded per node by ``max_concurrent_hosts``). A layer finishes only when
every node in it is terminal, so for each edge X -> Y, Y starts after X
ended.

A failing node never stops branches that do not depend on it. Its
transitive dependents are marked skipped with a message naming the failed
prerequisite, unless its step declares ``ignore_error``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from fleetdag.kernel.config.models import (
    DEFAULT_MAX_CONCURRENT_HOSTS,
    DEFAULT_MAX_CONCURRENT_NODES,
    EngineConfig,
)
from fleetdag.kernel.context.execution_context import ExecutionScope
from fleetdag.kernel.domain.results import (
    GraphExecutionResult,
    HostResult,
    NodeResult,
    SkipReason,
    Status,
)
from fleetdag.kernel.exceptions import ConfigurationError
from fleetdag.kernel.logging import get_logger
from fleetdag.kernel.orchestration.aggregation import aggregate_graph_status, dependency_satisfied
from fleetdag.kernel.orchestration.components.host_runner import HostRunner
from fleetdag.kernel.orchestration.components.node_dispatcher import NodeDispatcher
from fleetdag.kernel.orchestration.events import (
    GraphCompleted,
    GraphStarted,
    LayerCompleted,
    NodeSkipped,
    ObserverManager,
    notify_observer,
)
from fleetdag.kernel.utils.node_timer import Timer
from fleetdag.kernel.validation.graph_validator import validate_fragment

if TYPE_CHECKING:
    from fleetdag.kernel.context.run_context import RunContext
    from fleetdag.kernel.domain.fragment import ExecutionFragment
    from fleetdag.kernel.domain.node import ExecutionNode, NodeID

logger = get_logger(__name__)


@dataclass(slots=True)
class _RunState:
    """Mutable bookkeeping of one ``execute`` call."""

    fragment: ExecutionFragment
    ctx: RunContext
    result: GraphExecutionResult
    dependents: dict[NodeID, set[NodeID]]
    node_semaphore: asyncio.Semaphore
    in_flight: set[asyncio.Task[None]] = field(default_factory=set)
    stop: asyncio.Event = field(default_factory=asyncio.Event)
    cancel_reason: str | None = None
    interrupted: bool = False

    def node_result(self, node_id: NodeID) -> NodeResult:
        return self.result.node_results[node_id]

    @property
    def cancelled(self) -> bool:
        """Cancelled by the caller or stopped by this run's timeout."""
        return self.stop.is_set() or self.ctx.cancelled


class GraphEngine:
    """Executes execution fragments with bounded concurrency.

    Parameters
    ----------
    max_concurrent_nodes : int, default=10
        Nodes dispatched at the same time across the graph.
    max_concurrent_hosts : int, default=10
        Host runs at the same time within one node.
    default_host_timeout : float | None
        Per-attempt timeout for steps that declare none.
    run_timeout : float | None
        Whole-run limit. When it expires the run stops as if ``ctx.cancel()``
        had been called, but the caller's context is left untouched.
    observer_manager : ObserverManager | None
        Receives progress events.

    Examples
    --------
    Example usage::

        engine = GraphEngine(max_concurrent_nodes=20)
        result = await engine.execute(fragment, RunContext(hosts=inventory))
        if result.status == Status.FAILED:
            ...
    """

    def __init__(
        self,
        max_concurrent_nodes: int = DEFAULT_MAX_CONCURRENT_NODES,
        max_concurrent_hosts: int = DEFAULT_MAX_CONCURRENT_HOSTS,
        default_host_timeout: float | None = None,
        run_timeout: float | None = None,
        observer_manager: ObserverManager | None = None,
    ) -> None:
        if max_concurrent_nodes < 1:
            raise ConfigurationError("engine", "max_concurrent_nodes must be at least 1")
        if max_concurrent_hosts < 1:
            raise ConfigurationError("engine", "max_concurrent_hosts must be at least 1")

        self.max_concurrent_nodes = max_concurrent_nodes
        self.max_concurrent_hosts = max_concurrent_hosts
        self.run_timeout = run_timeout
        self.observer_manager = observer_manager
        self._dispatcher = NodeDispatcher(
            HostRunner(default_timeout=default_host_timeout),
            max_concurrent_hosts=max_concurrent_hosts,
            observer_manager=observer_manager,
        )

    @classmethod
    def from_config(
        cls, config: EngineConfig, observer_manager: ObserverManager | None = None
    ) -> GraphEngine:
        return cls(
            max_concurrent_nodes=config.max_concurrent_nodes,
            max_concurrent_hosts=config.max_concurrent_hosts,
            default_host_timeout=config.default_host_timeout,
            run_timeout=config.run_timeout,
            observer_manager=observer_manager,
        )

    async def execute(
        self,
        fragment: ExecutionFragment,
        ctx: RunContext,
        *,
        dry_run: bool = False,
        timeout: float | None = None,
    ) -> GraphExecutionResult:
        """Validate and execute ``fragment``.

        Parameters
        ----------
        fragment : ExecutionFragment
            The composed graph.
        ctx : RunContext
            Run context; its cancel event stops the run.
        dry_run : bool, default=False
            Validate and record every node as skipped without running anything.
        timeout : float | None
            Overrides the engine's ``run_timeout`` for this call.

        Returns
        -------
        GraphExecutionResult
            Finalized result. Node failures are reported here, not raised.

        Raises
        ------
        DirectedGraphError
            If the fragment is structurally invalid. Nothing has run.
        """
        layers = validate_fragment(fragment)

        result = GraphExecutionResult(
            graph_name=fragment.name, run_id=ctx.run_id, dry_run=dry_run
        )
        for node_id, node in fragment.nodes.items():
            result.node_results[node_id] = NodeResult(
                node_id=node_id,
                node_name=node.name,
                step_name=node.step_name,
                hosts=[h.name for h in node.hosts],
            )

        state = _RunState(
            fragment=fragment,
            ctx=ctx,
            result=result,
            dependents=fragment.dependents_map(),
            node_semaphore=asyncio.Semaphore(self.max_concurrent_nodes),
        )
        timer = Timer()

        with ExecutionScope(run_id=ctx.run_id):
            logger.info(
                "Executing graph '{graph}' ({nodes} nodes, {layers} layers){mode}",
                graph=fragment.name,
                nodes=len(fragment.nodes),
                layers=len(layers),
                mode=" in dry-run mode" if dry_run else "",
            )
            await notify_observer(
                self.observer_manager,
                GraphStarted(
                    name=fragment.name,
                    run_id=ctx.run_id,
                    total_nodes=len(fragment.nodes),
                    total_layers=len(layers),
                    dry_run=dry_run,
                ),
            )

            try:
                if dry_run:
                    self._record_dry_run(state, layers)
                else:
                    await self._execute_layers(state, layers, timeout)
            except BaseException:
                # Leave a consistent result behind before propagating
                self._skip_remaining(state, "Run aborted", SkipReason.CANCELLED)
                if not result.is_finalized:
                    result.finalize(Status.FAILED)
                raise

            status = aggregate_graph_status(result.node_results.values())
            if state.interrupted:
                result.cancelled = True
                status = Status.FAILED
            result.finalize(status)

            logger.info(
                "Graph '{graph}' finished: {status} in {duration} ({summary})",
                graph=fragment.name,
                status=status.value,
                duration=timer.duration_str,
                summary=result.summary(),
            )
            await notify_observer(
                self.observer_manager,
                GraphCompleted(
                    name=fragment.name,
                    run_id=ctx.run_id,
                    status=status,
                    duration_ms=timer.duration_ms,
                    summary=result.summary(),
                    cancel_reason=state.cancel_reason if state.interrupted else None,
                ),
            )
        return result

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _execute_layers(
        self, state: _RunState, layers: list[list[NodeID]], timeout: float | None
    ) -> None:
        watcher = asyncio.create_task(
            self._watch_cancellation(state, timeout if timeout is not None else self.run_timeout),
            name=f"cancel-watch:{state.fragment.name}",
        )
        try:
            for index, layer in enumerate(layers, start=1):
                layer_timer = Timer()
                await asyncio.gather(
                    *(self._process_node(state, node_id, index) for node_id in layer)
                )
                await notify_observer(
                    self.observer_manager,
                    LayerCompleted(
                        layer_index=index,
                        duration_ms=layer_timer.duration_ms,
                        nodes=[state.fragment.nodes[n].name for n in layer],
                    ),
                )
        finally:
            watcher.cancel()
            await asyncio.gather(watcher, return_exceptions=True)

    async def _watch_cancellation(self, state: _RunState, timeout: float | None) -> None:
        """Wait for a cancel request or the run timeout, then interrupt host runs."""
        try:
            async with asyncio.timeout(timeout):
                await state.ctx.cancel_event.wait()
            state.cancel_reason = "cancel requested"
        except TimeoutError:
            state.cancel_reason = f"run timeout of {timeout}s exceeded"
            state.stop.set()

        logger.warning(
            "Cancelling graph '{graph}': {reason}",
            graph=state.fragment.name,
            reason=state.cancel_reason,
        )
        for task in list(state.in_flight):
            task.cancel()

    async def _process_node(self, state: _RunState, node_id: NodeID, layer_index: int) -> None:
        node = state.fragment.nodes[node_id]
        node_result = state.node_result(node_id)

        if node_result.status == Status.SKIPPED:
            # Already skipped by a failed prerequisite
            await self._notify_skipped(node, node_result, layer_index)
            return

        if state.cancelled:
            await self._skip_cancelled(state, node, layer_index)
            return

        blocker = self._find_unsatisfied_dependency(state, node_id)
        if blocker is not None:
            message = self._prerequisite_message(state, blocker)
            await self._skip_node(state, node, SkipReason.DEPENDENCY, message, layer_index)
            self._cascade_skip(state, node_id, blocker)
            return

        async with state.node_semaphore:
            if state.cancelled:
                await self._skip_cancelled(state, node, layer_index)
                return
            await self._dispatcher.dispatch(
                node,
                state.ctx,
                node_result,
                layer_index=layer_index,
                in_flight=state.in_flight,
                stop=state.stop,
            )

        if any(hr.cancelled for hr in node_result.host_results.values()):
            state.interrupted = True

        if node_result.status == Status.FAILED:
            if node.ignore_error:
                logger.warning(
                    "Node '{node}' failed but tolerates errors, dependents continue",
                    node=node.name,
                )
            else:
                self._cascade_skip(state, node_id, node_id)

    def _find_unsatisfied_dependency(self, state: _RunState, node_id: NodeID) -> NodeID | None:
        for dep_id in sorted(state.fragment.dependencies.get(node_id, ())):
            dep_result = state.node_result(dep_id)
            if not dependency_satisfied(dep_result, state.fragment.nodes[dep_id].ignore_error):
                return dep_id
        return None

    @staticmethod
    def _prerequisite_message(state: _RunState, failed_id: NodeID) -> str:
        failed = state.fragment.nodes[failed_id]
        return f"Skipped due to failed prerequisite '{failed.name}' ({failed_id})"

    def _cascade_skip(self, state: _RunState, origin: NodeID, failed_id: NodeID) -> None:
        """Mark every pending transitive dependent of ``origin`` as skipped."""
        message = self._prerequisite_message(state, failed_id)
        stack = list(state.dependents.get(origin, ()))
        while stack:
            dependent = stack.pop()
            dependent_result = state.node_result(dependent)
            if dependent_result.status != Status.PENDING:
                continue
            self._mark_skipped(state, dependent, SkipReason.DEPENDENCY, message)
            logger.info(
                "Skipping '{node}': {message}",
                node=dependent_result.node_name,
                message=message,
            )
            stack.extend(state.dependents.get(dependent, ()))

    async def _skip_cancelled(
        self, state: _RunState, node: ExecutionNode, layer_index: int
    ) -> None:
        state.interrupted = True
        message = f"Skipped: run cancelled ({state.cancel_reason or 'cancel requested'})"
        await self._skip_node(state, node, SkipReason.CANCELLED, message, layer_index)

    async def _skip_node(
        self,
        state: _RunState,
        node: ExecutionNode,
        reason: SkipReason,
        message: str,
        layer_index: int,
    ) -> None:
        self._mark_skipped(state, node.id, reason, message)
        await self._notify_skipped(node, state.node_result(node.id), layer_index)

    async def _notify_skipped(
        self, node: ExecutionNode, node_result: NodeResult, layer_index: int
    ) -> None:
        await notify_observer(
            self.observer_manager,
            NodeSkipped(
                node_id=node.id,
                name=node.name,
                layer_index=layer_index,
                reason=node_result.skip_reason or SkipReason.DEPENDENCY,
                message=node_result.message,
            ),
        )

    @staticmethod
    def _mark_skipped(
        state: _RunState, node_id: NodeID, reason: SkipReason, message: str
    ) -> None:
        node_result = state.node_result(node_id)
        now = datetime.now()
        node_result.status = Status.SKIPPED
        node_result.skip_reason = reason
        node_result.message = message
        node_result.end_time = now
        node_result.host_results = {
            host: HostResult(
                host_name=host,
                status=Status.SKIPPED,
                skip_reason=reason,
                message=message,
                end_time=now,
            )
            for host in node_result.hosts
        }

    def _skip_remaining(self, state: _RunState, message: str, reason: SkipReason) -> None:
        for node_id, node_result in state.result.node_results.items():
            if node_result.status == Status.PENDING:
                self._mark_skipped(state, node_id, reason, message)

    def _record_dry_run(self, state: _RunState, layers: list[list[NodeID]]) -> None:
        for index, layer in enumerate(layers, start=1):
            for node_id in layer:
                node = state.fragment.nodes[node_id]
                hosts = ", ".join(h.name for h in node.hosts)
                logger.info(
                    "[dry-run] layer {layer}: '{node}' ({step}) on {hosts}",
                    layer=index,
                    node=node.name,
                    step=node.step_name,
                    hosts=hosts,
                )
                self._mark_skipped(
                    state,
                    node_id,
                    SkipReason.DRY_RUN,
                    f"Dry run: would run '{node.step_name}' on {hosts}",
                )
