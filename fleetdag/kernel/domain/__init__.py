"""Domain layer exports: hosts, steps, nodes, fragments and results."""

from fleetdag.kernel.domain.fragment import ExecutionFragment
from fleetdag.kernel.domain.host import Host, StaticHost
from fleetdag.kernel.domain.node import ExecutionNode, NodeID
from fleetdag.kernel.domain.results import (
    GraphExecutionResult,
    HostResult,
    NodeResult,
    SkipReason,
    Status,
)
from fleetdag.kernel.domain.step import BaseStep, NoOpStep, Step, StepMeta, StepOutput

__all__ = [
    "BaseStep",
    "ExecutionFragment",
    "ExecutionNode",
    "GraphExecutionResult",
    "Host",
    "HostResult",
    "NoOpStep",
    "NodeID",
    "NodeResult",
    "SkipReason",
    "StaticHost",
    "Status",
    "Step",
    "StepMeta",
    "StepOutput",
]
