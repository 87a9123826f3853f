"""Ready-made steps and resolvers."""

from fleetdag.stdlib.bom.static_bom import StaticBOM
from fleetdag.stdlib.steps.function_step import FunctionStep

__all__ = ["FunctionStep", "StaticBOM"]
