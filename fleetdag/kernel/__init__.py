"""fleetdag kernel: the public API of the execution-graph engine.

Planners, steps and applications import from here. The exports are grouped
by concern:

- Domain types (hosts, steps, nodes, fragments, results)
- Composition algebra
- Validation
- Execution
- Context and caches
- Ports
- Configuration
- Exceptions
- Logging
"""

from fleetdag.kernel.config.loader import clear_config_cache, load_config
from fleetdag.kernel.config.models import EngineConfig, FleetDAGConfig, LoggingConfig
from fleetdag.kernel.context.cache import CacheKey, CacheScope, ScopedCache
from fleetdag.kernel.context.run_context import RunContext, StepContext
from fleetdag.kernel.domain.fragment import (
    ExecutionFragment,
    chain_fragments,
    chain_per_host,
    merge_fragments,
)
from fleetdag.kernel.domain.host import Host, StaticHost
from fleetdag.kernel.domain.node import ExecutionNode, NodeID, new_node_id
from fleetdag.kernel.domain.results import (
    GraphExecutionResult,
    HostResult,
    NodeResult,
    SkipReason,
    Status,
)
from fleetdag.kernel.domain.step import BaseStep, NoOpStep, Step, StepMeta, StepOutput

from fleetdag.kernel.exceptions import (
    ConfigurationError,
    CycleDetectedError,
    DirectedGraphError,
    DuplicateNodeError,
    FleetDAGError,
    GraphStructureError,
    InvalidNodeError,
    MissingDependencyError,
    OrchestratorError,
    PlanningError,
    ResourceNotFoundError,
    StepExecutionError,
    StepTimeoutError,
    TypeMismatchError,
    ValidationError,
)
from fleetdag.kernel.logging import configure_logging, get_logger

from fleetdag.kernel.orchestration.engine import GraphEngine
from fleetdag.kernel.ports.bom import BOMResolver, ComponentVersion
from fleetdag.kernel.ports.task import BaseTask, Task
from fleetdag.kernel.utils.retry import RetryConfig
from fleetdag.kernel.validation.graph_validator import topological_layers, validate_fragment

__all__ = [
    # Domain
    "BaseStep",
    "ExecutionFragment",
    "ExecutionNode",
    "GraphExecutionResult",
    "Host",
    "HostResult",
    "NoOpStep",
    "NodeID",
    "NodeResult",
    "RetryConfig",
    "SkipReason",
    "StaticHost",
    "Status",
    "Step",
    "StepMeta",
    "StepOutput",
    "new_node_id",
    # Composition
    "chain_fragments",
    "chain_per_host",
    "merge_fragments",
    # Validation
    "topological_layers",
    "validate_fragment",
    # Execution
    "GraphEngine",
    # Context
    "CacheKey",
    "CacheScope",
    "RunContext",
    "ScopedCache",
    "StepContext",
    # Ports
    "BOMResolver",
    "BaseTask",
    "ComponentVersion",
    "Task",
    # Configuration
    "EngineConfig",
    "FleetDAGConfig",
    "LoggingConfig",
    "clear_config_cache",
    "load_config",
    # Exceptions
    "ConfigurationError",
    "CycleDetectedError",
    "DirectedGraphError",
    "DuplicateNodeError",
    "FleetDAGError",
    "GraphStructureError",
    "InvalidNodeError",
    "MissingDependencyError",
    "OrchestratorError",
    "PlanningError",
    "ResourceNotFoundError",
    "StepExecutionError",
    "StepTimeoutError",
    "TypeMismatchError",
    "ValidationError",
    # Logging
    "configure_logging",
    "get_logger",
]
