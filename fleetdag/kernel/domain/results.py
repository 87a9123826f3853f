"""Execution results: per host, per node and per graph.

The ``GraphExecutionResult`` is the single source of truth for a run. It is
created when a run starts, filled in place while nodes complete, and
finalized exactly once. Models are pydantic so a result can be saved as JSON
or YAML and rendered later (see ``fleetdag report``).
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from fleetdag.kernel.exceptions import OrchestratorError


class Status(StrEnum):
    """Lifecycle status of a host run, a node or a whole graph."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (Status.SUCCESS, Status.FAILED, Status.SKIPPED)


class SkipReason(StrEnum):
    """Why something was skipped."""

    PRECHECK = "precheck"
    DEPENDENCY = "dependency"
    CANCELLED = "cancelled"
    DRY_RUN = "dry_run"


class HostResult(BaseModel):
    """Outcome of one step on one host."""

    host_name: str
    status: Status = Status.PENDING
    skip_reason: SkipReason | None = None
    message: str = ""
    stdout: str = ""
    stderr: str = ""
    start_time: datetime | None = None
    end_time: datetime | None = None
    attempts: int = 0
    cancelled: bool = False

    @property
    def duration_seconds(self) -> float | None:
        if self.start_time is None or self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds()


class NodeResult(BaseModel):
    """Outcome of one node, aggregated from its host results."""

    node_id: str
    node_name: str
    step_name: str = ""
    hosts: list[str] = Field(default_factory=list)
    status: Status = Status.PENDING
    skip_reason: SkipReason | None = None
    message: str = ""
    start_time: datetime | None = None
    end_time: datetime | None = None
    host_results: dict[str, HostResult] = Field(default_factory=dict)

    @property
    def duration_seconds(self) -> float | None:
        if self.start_time is None or self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds()

    def failed_hosts(self) -> list[HostResult]:
        return [hr for hr in self.host_results.values() if hr.status == Status.FAILED]


class GraphExecutionResult(BaseModel):
    """Outcome of one execution of a graph.

    Examples
    --------
    Example usage::

        result = await engine.execute(fragment, ctx)
        if result.status == Status.FAILED:
            for node in result.failed_nodes():
                print(node.node_name, node.message)
        Path("run.json").write_text(result.to_json())
    """

    graph_name: str
    run_id: str = ""
    start_time: datetime = Field(default_factory=datetime.now)
    end_time: datetime | None = None
    status: Status = Status.PENDING
    dry_run: bool = False
    cancelled: bool = False
    node_results: dict[str, NodeResult] = Field(default_factory=dict)

    @property
    def is_finalized(self) -> bool:
        return self.end_time is not None

    def finalize(self, status: Status, end_time: datetime | None = None) -> None:
        """Set the final status and end time.

        Raises
        ------
        OrchestratorError
            If the result was already finalized.
        """
        if self.is_finalized:
            raise OrchestratorError(f"Result of graph '{self.graph_name}' is already finalized")
        self.status = status
        self.end_time = end_time or datetime.now()

    def nodes_with_status(self, status: Status) -> list[NodeResult]:
        return [nr for nr in self.node_results.values() if nr.status == status]

    def failed_nodes(self) -> list[NodeResult]:
        return self.nodes_with_status(Status.FAILED)

    def skipped_nodes(self) -> list[NodeResult]:
        return self.nodes_with_status(Status.SKIPPED)

    def succeeded_nodes(self) -> list[NodeResult]:
        return self.nodes_with_status(Status.SUCCESS)

    def result_for(self, node_name: str) -> NodeResult:
        """Return the first node result with the given node name.

        Raises
        ------
        KeyError
            If no node has that name.
        """
        for node_result in self.node_results.values():
            if node_result.node_name == node_name:
                return node_result
        raise KeyError(node_name)

    def summary(self) -> dict[str, int]:
        """Count nodes per status.

        Examples
        --------
        >>> GraphExecutionResult(graph_name="g").summary()["total"]
        0
        """
        counts = {status.value: 0 for status in Status}
        for node_result in self.node_results.values():
            counts[node_result.status.value] += 1
        counts["total"] = len(self.node_results)
        return counts

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_json(self, indent: int | None = 2) -> str:
        return self.model_dump_json(indent=indent)

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.model_dump(mode="json"), sort_keys=False)

    @classmethod
    def from_json(cls, data: str | bytes) -> GraphExecutionResult:
        return cls.model_validate_json(data)

    @classmethod
    def from_yaml(cls, data: str) -> GraphExecutionResult:
        loaded: Any = yaml.safe_load(data)
        return cls.model_validate(loaded)

    def save(self, path: str | Path) -> Path:
        """Write the result to ``path``; ``.yaml``/``.yml`` selects YAML, otherwise JSON."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        if target.suffix in (".yaml", ".yml"):
            target.write_text(self.to_yaml(), encoding="utf-8")
        else:
            target.write_text(self.to_json(), encoding="utf-8")
        return target

    @classmethod
    def load(cls, path: str | Path) -> GraphExecutionResult:
        source = Path(path)
        text = source.read_text(encoding="utf-8")
        if source.suffix in (".yaml", ".yml"):
            return cls.from_yaml(text)
        return cls.from_json(text)
