"""Execution events for progress reporting.

The engine sends these to an optional observer manager, i.e. any object
with ``async notify(event)``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from fleetdag.kernel.logging import get_logger

if TYPE_CHECKING:
    from fleetdag.kernel.domain.results import SkipReason, Status

logger = get_logger(__name__)


@dataclass(slots=True)
class Event:
    """Base class for all events, provides timestamp."""

    timestamp: datetime = field(default_factory=datetime.now, init=False)

    def log_message(self) -> str:
        return f"{self.__class__.__name__} at {self.timestamp.isoformat()}"


@dataclass(slots=True)
class GraphStarted(Event):
    name: str
    run_id: str
    total_nodes: int
    total_layers: int
    dry_run: bool = False

    def log_message(self) -> str:
        mode = " (dry run)" if self.dry_run else ""
        return (
            f"Graph '{self.name}' started{mode}: "
            f"{self.total_nodes} nodes in {self.total_layers} layers"
        )


@dataclass(slots=True)
class GraphCompleted(Event):
    name: str
    run_id: str
    status: Status
    duration_ms: float
    summary: dict[str, int] = field(default_factory=dict)
    cancel_reason: str | None = None

    def log_message(self) -> str:
        suffix = f" (cancelled: {self.cancel_reason})" if self.cancel_reason else ""
        return (
            f"Graph '{self.name}' finished with status {self.status.value} "
            f"in {self.duration_ms / 1000:.2f}s{suffix}"
        )


@dataclass(slots=True)
class NodeStarted(Event):
    node_id: str
    name: str
    layer_index: int
    hosts: tuple[str, ...] = ()

    def log_message(self) -> str:
        hosts = len(self.hosts)
        return f"Node '{self.name}' started on {hosts} host(s) in layer {self.layer_index}"


@dataclass(slots=True)
class HostCompleted(Event):
    node_id: str
    name: str
    host: str
    status: Status
    message: str = ""

    def log_message(self) -> str:
        return f"Node '{self.name}' on '{self.host}': {self.status.value} {self.message}".rstrip()


@dataclass(slots=True)
class NodeCompleted(Event):
    """A dispatched node reached a terminal status (success, failed or precheck-skipped)."""

    node_id: str
    name: str
    layer_index: int
    status: Status
    duration_ms: float
    message: str = ""

    def log_message(self) -> str:
        return (
            f"Node '{self.name}' {self.status.value} in {self.duration_ms / 1000:.2f}s"
            f"{': ' + self.message if self.message else ''}"
        )


@dataclass(slots=True)
class NodeSkipped(Event):
    """A node was never dispatched."""

    node_id: str
    name: str
    layer_index: int
    reason: SkipReason
    message: str = ""

    def log_message(self) -> str:
        return f"Node '{self.name}' skipped ({self.reason.value}): {self.message}"


@dataclass(slots=True)
class LayerCompleted(Event):
    layer_index: int
    duration_ms: float
    nodes: list[str] = field(default_factory=list)

    def log_message(self) -> str:
        return (
            f"Layer {self.layer_index} completed: {len(self.nodes)} node(s) "
            f"in {self.duration_ms / 1000:.2f}s"
        )


@runtime_checkable
class ObserverManager(Protocol):
    async def notify(self, event: Any) -> None: ...


async def notify_observer(observer_manager: ObserverManager | None, event: Event) -> None:
    """Deliver ``event`` if an observer manager is configured.

    A failing observer is logged and does not interrupt the run.
    """
    if observer_manager is None:
        return
    try:
        await observer_manager.notify(event)
    except Exception as e:
        logger.warning(
            "Observer failed on {event}: {error}", event=type(event).__name__, error=e
        )
