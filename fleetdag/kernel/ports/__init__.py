"""Ports: the narrow interfaces planners and resolvers implement."""

from fleetdag.kernel.ports.bom import BOMResolver, ComponentVersion
from fleetdag.kernel.ports.task import BaseTask, Task

__all__ = ["BOMResolver", "BaseTask", "ComponentVersion", "Task"]
