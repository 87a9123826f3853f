"""Core exception hierarchy for fleetdag.

All fleetdag exceptions inherit from FleetDAGError so callers can catch the
whole family at once. Graph structure errors are planner defects and are
raised before any step runs; step errors stay local to one host and end up in
that host's result instead of propagating.
"""

from __future__ import annotations

from collections.abc import Sequence

# ============================================================================
# Base Exception
# ============================================================================


class FleetDAGError(Exception):
    """Base exception for all fleetdag errors."""

    pass


# ============================================================================
# Configuration & Validation Errors
# ============================================================================


class ConfigurationError(FleetDAGError):
    """Raised when configuration is invalid or missing.

    Examples
    --------
    Example usage::

        raise ConfigurationError("engine", "max_concurrent_nodes must be positive")
    """

    def __init__(self, component: str, reason: str) -> None:
        super().__init__(f"Configuration error in '{component}': {reason}")
        self.component = component
        self.reason = reason


class ValidationError(FleetDAGError):
    """Raised when a value fails a field-level constraint.

    Examples
    --------
    Example usage::

        raise ValidationError("max_retries", "must be at least 1", value=0)
    """

    def __init__(self, field: str, constraint: str, value: object = None) -> None:
        if value is not None:
            msg = f"Validation failed for '{field}': {constraint} (got {value!r})"
        else:
            msg = f"Validation failed for '{field}': {constraint}"
        super().__init__(msg)
        self.field = field
        self.constraint = constraint
        self.value = value


class TypeMismatchError(FleetDAGError):
    """Raised when a value has an unexpected type.

    Examples
    --------
    Example usage::

        raise TypeMismatchError("cache key 'etcd_ready'", bool, str)
    """

    def __init__(
        self, field: str, expected: type | str, actual: type | str, value: object = None
    ) -> None:
        exp_str = expected.__name__ if isinstance(expected, type) else str(expected)
        act_str = actual.__name__ if isinstance(actual, type) else str(actual)

        if value is not None:
            msg = f"Type mismatch for '{field}': expected {exp_str}, got {act_str} ({value!r})"
        else:
            msg = f"Type mismatch for '{field}': expected {exp_str}, got {act_str}"
        super().__init__(msg)
        self.field = field
        self.expected = expected
        self.actual = actual
        self.value = value


class ResourceNotFoundError(FleetDAGError):
    """Raised when a required resource cannot be found.

    Examples
    --------
    Example usage::

        raise ResourceNotFoundError("component", "etcd", ["containerd", "kubelet"])
    """

    def __init__(
        self, resource_type: str, resource_id: str, available: Sequence[str] | None = None
    ) -> None:
        msg = f"{resource_type.title()} '{resource_id}' not found"
        if available:
            available = list(available)
            msg += f". Available: {', '.join(available[:5])}"
            if len(available) > 5:
                msg += f" ... and {len(available) - 5} more"
        super().__init__(msg)
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.available = available


# ============================================================================
# Planning Errors
# ============================================================================


class PlanningError(FleetDAGError):
    """Raised when a task, module or pipeline fails to produce its fragment.

    Planning errors are fatal for the whole run: nothing has been executed
    yet, so the caller gets the error instead of a partial result.
    """

    def __init__(self, planner: str, reason: str) -> None:
        super().__init__(f"Planning failed in '{planner}': {reason}")
        self.planner = planner
        self.reason = reason


# ============================================================================
# Graph Structure Errors
# ============================================================================


class DirectedGraphError(FleetDAGError):
    """Base exception for execution graph structure errors."""

    __slots__ = ()


class CycleDetectedError(DirectedGraphError):
    """Raised when the dependency relation contains a cycle.

    Attributes
    ----------
    cycle : tuple[str, ...]
        Names of the nodes on the cycle, first node repeated at the end.
    """

    def __init__(self, message: str, cycle: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.cycle = tuple(cycle)


class MissingDependencyError(DirectedGraphError):
    """Raised when an edge references a node id that is not in the fragment."""

    __slots__ = ()


class DuplicateNodeError(DirectedGraphError):
    """Raised when a node id is added twice or two merged fragments collide."""

    __slots__ = ()


class InvalidNodeError(DirectedGraphError):
    """Raised when a node cannot be executed as declared (e.g. no hosts)."""

    __slots__ = ()


class GraphStructureError(DirectedGraphError):
    """Raised when a fragment's entry/exit bookkeeping is stale."""

    __slots__ = ()


# ============================================================================
# Execution Errors
# ============================================================================


class OrchestratorError(FleetDAGError):
    """Raised when the engine itself is misused.

    Examples
    --------
    Example usage::

        raise OrchestratorError("Result 'create-cluster' is already finalized")
    """

    pass


class StepExecutionError(FleetDAGError):
    """Raised by a step when running on one host fails.

    Carries the captured command output so it lands in the host result.

    Examples
    --------
    Example usage::

        raise StepExecutionError("systemctl restart etcd exited 1", stderr=err)
    """

    def __init__(self, message: str, stdout: str = "", stderr: str = "") -> None:
        super().__init__(message)
        self.stdout = stdout
        self.stderr = stderr


class StepTimeoutError(StepExecutionError):
    """Raised when a step exceeds its per-host timeout."""

    def __init__(self, step_name: str, timeout: float) -> None:
        super().__init__(f"Step '{step_name}' timed out after {timeout}s")
        self.step_name = step_name
        self.timeout = timeout
