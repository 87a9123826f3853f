"""Pipelines: ordered modules planned into one execution graph and run."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

from fleetdag.kernel.domain.fragment import ExecutionFragment, chain_fragments
from fleetdag.kernel.exceptions import PlanningError
from fleetdag.kernel.logging import get_logger
from fleetdag.kernel.orchestration.engine import GraphEngine
from fleetdag.kernel.utils.node_timer import Timer

if TYPE_CHECKING:
    from fleetdag.kernel.context.run_context import RunContext
    from fleetdag.kernel.domain.results import GraphExecutionResult
    from fleetdag.planning.module import Module

logger = get_logger(__name__)


class Pipeline:
    """An ordered list of modules, e.g. "create cluster" or "renew certificates".

    Module fragments are chained: every entry node of a module waits for the
    exit nodes of the previous module that planned any work.

    Examples
    --------
    Example usage::

        pipeline = Pipeline("create-cluster", [preflight, etcd, control_plane, cni])
        result = await pipeline.run(RunContext(hosts=inventory, control_host=bastion))
    """

    def __init__(self, name: str, modules: Sequence[Module], description: str = "") -> None:
        self.name = name
        self.modules = list(modules)
        self.description = description

    def plan(self, ctx: RunContext) -> ExecutionFragment:
        """Plan all modules into one graph.

        Raises
        ------
        PlanningError
            If a module fails to plan or module fragments collide.
        """
        pipeline_ctx = ctx.for_pipeline(self.name)
        timer = Timer()

        fragments = [module.plan(pipeline_ctx) for module in self.modules]
        try:
            graph = chain_fragments(self.name, *fragments)
        except Exception as e:
            raise PlanningError(self.name, f"cannot compose module fragments: {e}") from e

        logger.info(
            "Planned pipeline '{pipeline}': {nodes} node(s) from {modules} module(s) in {duration}",
            pipeline=self.name,
            nodes=len(graph),
            modules=sum(1 for f in fragments if not f.is_empty),
            duration=timer.duration_str,
        )
        return graph

    async def run(
        self,
        ctx: RunContext,
        engine: GraphEngine | None = None,
        *,
        dry_run: bool = False,
    ) -> GraphExecutionResult:
        """Plan and execute the pipeline.

        Planning and validation errors are raised before any step runs;
        step failures are reported in the returned result.
        """
        graph = self.plan(ctx)
        return await (engine or GraphEngine()).execute(graph, ctx, dry_run=dry_run)

    def __repr__(self) -> str:
        return f"Pipeline(name={self.name!r}, modules={[m.name for m in self.modules]})"
