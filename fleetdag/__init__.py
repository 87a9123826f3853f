"""fleetdag: execution graphs for multi-host infrastructure changes.

Independent planners (tasks) each describe a slice of work as an execution
fragment. Modules and pipelines compose the fragments into one graph, which
the engine validates and runs across the fleet with bounded concurrency.
"""

# Version is defined in pyproject.toml and read dynamically
try:
    from importlib.metadata import version

    __version__ = version("fleetdag")
except Exception:
    __version__ = "0.0.0.dev0"  # Fallback for source checkouts

from fleetdag.kernel import (
    BaseStep,
    BaseTask,
    ExecutionFragment,
    ExecutionNode,
    FleetDAGError,
    GraphEngine,
    GraphExecutionResult,
    RunContext,
    StaticHost,
    Status,
    StepMeta,
    StepOutput,
)
from fleetdag.planning import Module, Pipeline
from fleetdag.stdlib import FunctionStep, StaticBOM

__all__ = [
    "BaseStep",
    "BaseTask",
    "ExecutionFragment",
    "ExecutionNode",
    "FleetDAGError",
    "FunctionStep",
    "GraphEngine",
    "GraphExecutionResult",
    "Module",
    "Pipeline",
    "RunContext",
    "StaticBOM",
    "StaticHost",
    "Status",
    "StepMeta",
    "StepOutput",
    "__version__",
]
