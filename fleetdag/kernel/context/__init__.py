"""Run context, scoped caches and log correlation variables."""

from fleetdag.kernel.context.cache import CacheKey, CacheScope, ScopedCache
from fleetdag.kernel.context.execution_context import (
    ExecutionScope,
    get_current_host,
    get_current_node,
    get_run_id,
)
from fleetdag.kernel.context.run_context import RunContext, StepContext

__all__ = [
    "CacheKey",
    "CacheScope",
    "ExecutionScope",
    "RunContext",
    "ScopedCache",
    "StepContext",
    "get_current_host",
    "get_current_node",
    "get_run_id",
]
