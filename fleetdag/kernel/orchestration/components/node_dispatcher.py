"""Fan one node out across its hosts and aggregate the outcome.

Every host run is its own ``asyncio.Task`` registered in the engine's
in-flight set, so a cancellation request can interrupt exactly the host runs
that are still executing.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import TYPE_CHECKING

from fleetdag.kernel.config.models import DEFAULT_MAX_CONCURRENT_HOSTS
from fleetdag.kernel.domain.results import HostResult, NodeResult, Status
from fleetdag.kernel.logging import get_logger
from fleetdag.kernel.orchestration.aggregation import aggregate_node_status, summarize_node
from fleetdag.kernel.orchestration.events import (
    HostCompleted,
    NodeCompleted,
    NodeStarted,
    ObserverManager,
    notify_observer,
)
from fleetdag.kernel.utils.node_timer import Timer

if TYPE_CHECKING:
    from fleetdag.kernel.context.run_context import RunContext
    from fleetdag.kernel.domain.host import Host
    from fleetdag.kernel.domain.node import ExecutionNode
    from fleetdag.kernel.orchestration.components.host_runner import HostRunner

logger = get_logger(__name__)


def mark_host_cancelled(result: HostResult, message: str) -> None:
    now = datetime.now()
    result.status = Status.FAILED
    result.cancelled = True
    result.message = message
    result.start_time = result.start_time or now
    result.end_time = now


class NodeDispatcher:
    """Runs one node on all of its hosts with bounded concurrency.

    Parameters
    ----------
    host_runner : HostRunner
        Executes the step on a single host.
    max_concurrent_hosts : int
        Upper bound of simultaneous host runs for one node.
    observer_manager : ObserverManager | None
        Receives ``NodeStarted``, ``HostCompleted`` and ``NodeCompleted``.
    """

    def __init__(
        self,
        host_runner: HostRunner,
        max_concurrent_hosts: int = DEFAULT_MAX_CONCURRENT_HOSTS,
        observer_manager: ObserverManager | None = None,
    ) -> None:
        self.host_runner = host_runner
        self.max_concurrent_hosts = max_concurrent_hosts
        self.observer_manager = observer_manager

    async def dispatch(
        self,
        node: ExecutionNode,
        ctx: RunContext,
        node_result: NodeResult,
        *,
        layer_index: int,
        in_flight: set[asyncio.Task[None]],
        stop: asyncio.Event | None = None,
    ) -> NodeResult:
        """Run ``node`` on every host and return its aggregated result.

        Parameters
        ----------
        node : ExecutionNode
            Node to run.
        ctx : RunContext
            Context of the run.
        node_result : NodeResult
            Result record to fill in place.
        layer_index : int
            Layer the node belongs to (1-indexed), for events.
        in_flight : set[asyncio.Task[None]]
            Registry of running host tasks, used for cancellation.
        stop : asyncio.Event | None
            Set when the run stops without cancelling ``ctx``, e.g. on a run
            timeout. Hosts that have not started yet are then not started.
        """
        timer = Timer()
        node_result.status = Status.RUNNING
        node_result.start_time = timer.started_at
        node_result.host_results = {h.name: HostResult(host_name=h.name) for h in node.hosts}

        await notify_observer(
            self.observer_manager,
            NodeStarted(
                node_id=node.id,
                name=node.name,
                layer_index=layer_index,
                hosts=tuple(h.name for h in node.hosts),
            ),
        )

        host_semaphore = asyncio.Semaphore(self.max_concurrent_hosts)
        tasks: list[asyncio.Task[None]] = []
        for host in node.hosts:
            task = asyncio.create_task(
                self._run_host(node, host, ctx, node_result, host_semaphore, stop),
                name=f"{node.name}@{host.name}",
            )
            in_flight.add(task)
            task.add_done_callback(in_flight.discard)
            tasks.append(task)

        outcomes = await asyncio.gather(*tasks, return_exceptions=True)

        for host, outcome in zip(node.hosts, outcomes, strict=True):
            host_result = node_result.host_results[host.name]
            if isinstance(outcome, Exception):
                logger.opt(exception=outcome).error(
                    "Unexpected error running '{node}' on '{host}'", node=node.name, host=host.name
                )
                host_result.status = Status.FAILED
                host_result.message = f"Internal error: {outcome}"
                host_result.end_time = host_result.end_time or datetime.now()
            elif not host_result.status.is_terminal:
                mark_host_cancelled(host_result, "Cancelled before completion")

        status, reason = aggregate_node_status(node_result.host_results.values(), len(node.hosts))
        node_result.status = status
        node_result.skip_reason = reason
        node_result.end_time = datetime.now()
        node_result.message = summarize_node(node_result)

        await notify_observer(
            self.observer_manager,
            NodeCompleted(
                node_id=node.id,
                name=node.name,
                layer_index=layer_index,
                status=status,
                duration_ms=timer.duration_ms,
                message=node_result.message,
            ),
        )
        return node_result

    async def _run_host(
        self,
        node: ExecutionNode,
        host: Host,
        ctx: RunContext,
        node_result: NodeResult,
        host_semaphore: asyncio.Semaphore,
        stop: asyncio.Event | None = None,
    ) -> None:
        host_result = node_result.host_results[host.name]
        try:
            async with host_semaphore:
                if ctx.cancelled or (stop is not None and stop.is_set()):
                    mark_host_cancelled(host_result, "Cancelled before start")
                else:
                    await self.host_runner.run(node, host, ctx, host_result)
        except asyncio.CancelledError:
            mark_host_cancelled(host_result, "Cancelled while running")
            raise

        # Progress only; the final status is set once every host finished
        node_result.status, _ = aggregate_node_status(
            node_result.host_results.values(), len(node.hosts)
        )
        await notify_observer(
            self.observer_manager,
            HostCompleted(
                node_id=node.id,
                name=node.name,
                host=host.name,
                status=host_result.status,
                message=host_result.message,
            ),
        )
