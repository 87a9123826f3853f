"""Planning layer: modules group tasks, pipelines chain modules."""

from fleetdag.planning.module import Module
from fleetdag.planning.pipeline import Pipeline

__all__ = ["Module", "Pipeline"]
