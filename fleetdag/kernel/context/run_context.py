"""Runtime context handed to planners and steps.

``RunContext`` carries the whole capability set of a run: the inventory,
the control host, offline mode, scoped caches, logging and cancellation.
Planners receive views narrowed to their pipeline, module or task through
``for_pipeline`` / ``for_module`` / ``for_task``; steps receive a
``StepContext`` from ``for_host``. Views share the run's caches and
cancellation event.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from fleetdag.kernel.context.cache import CacheScope, ScopedCache
from fleetdag.kernel.exceptions import ConfigurationError
from fleetdag.kernel.logging import get_logger, get_logger_for_host

if TYPE_CHECKING:
    from loguru import Logger

    from fleetdag.kernel.config.models import FleetDAGConfig
    from fleetdag.kernel.domain.host import Host


def _run_cache() -> ScopedCache:
    return ScopedCache(CacheScope.RUN, "run")


def _first_scope(*caches: ScopedCache | None) -> ScopedCache:
    """First cache that is set. Empty caches are falsy, so no `or` chains."""
    return next(c for c in caches if c is not None)


def host_has_role(host: Host, role: str) -> bool:
    roles = getattr(host, "roles", ())
    return role in roles


@dataclass(slots=True)
class RunContext:
    """Everything planners and steps may use during one run.

    Examples
    --------
    Example usage::

        ctx = RunContext(hosts=inventory, control_host=bastion)
        module_ctx = ctx.for_pipeline("create-cluster").for_module("etcd")
        masters = module_ctx.hosts_by_role("master")
    """

    hosts: tuple[Host, ...] = ()
    control_host: Host | None = None
    offline: bool = False
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    run_cache: ScopedCache = field(default_factory=_run_cache)
    scope_name: str = ""
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    _pipeline_cache: ScopedCache | None = None
    _module_cache: ScopedCache | None = None
    _task_cache: ScopedCache | None = None

    def __post_init__(self) -> None:
        self.hosts = tuple(self.hosts)

    @classmethod
    def from_config(
        cls,
        config: FleetDAGConfig,
        hosts: tuple[Host, ...] = (),
        control_host: Host | None = None,
        **kwargs: Any,
    ) -> RunContext:
        """Create a context whose run-wide switches come from ``config``."""
        return cls(hosts=hosts, control_host=control_host, offline=config.offline, **kwargs)

    # ------------------------------------------------------------------
    # Inventory
    # ------------------------------------------------------------------

    def hosts_by_role(self, role: str) -> list[Host]:
        """Hosts carrying ``role``, in inventory order. Unknown roles give []."""
        return [h for h in self.hosts if host_has_role(h, role)]

    def host_by_name(self, name: str) -> Host | None:
        return next((h for h in self.hosts if h.name == name), None)

    def require_control_host(self) -> Host:
        """Return the control host.

        Raises
        ------
        ConfigurationError
            If the run has no control host.
        """
        if self.control_host is None:
            raise ConfigurationError("context", "no control host configured for this run")
        return self.control_host

    # ------------------------------------------------------------------
    # Caches
    # ------------------------------------------------------------------

    @property
    def pipeline_cache(self) -> ScopedCache:
        if self._pipeline_cache is None:
            raise ConfigurationError("context", "no pipeline scope, use ctx.for_pipeline(name)")
        return self._pipeline_cache

    @property
    def module_cache(self) -> ScopedCache:
        if self._module_cache is None:
            raise ConfigurationError("context", "no module scope, use ctx.for_module(name)")
        return self._module_cache

    @property
    def task_cache(self) -> ScopedCache:
        if self._task_cache is None:
            raise ConfigurationError("context", "no task scope, use ctx.for_task(name)")
        return self._task_cache

    @property
    def cache(self) -> ScopedCache:
        """The narrowest cache of this view."""
        return _first_scope(
            self._task_cache, self._module_cache, self._pipeline_cache, self.run_cache
        )

    # ------------------------------------------------------------------
    # Narrowed views
    # ------------------------------------------------------------------

    def for_pipeline(self, name: str) -> RunContext:
        return replace(
            self,
            scope_name=name,
            _pipeline_cache=self.run_cache.child(CacheScope.PIPELINE, name),
            _module_cache=None,
            _task_cache=None,
        )

    def for_module(self, name: str) -> RunContext:
        parent = _first_scope(self._pipeline_cache, self.run_cache)
        return replace(
            self,
            scope_name=name,
            _module_cache=parent.child(CacheScope.MODULE, name),
            _task_cache=None,
        )

    def for_task(self, name: str) -> RunContext:
        parent = _first_scope(self._module_cache, self._pipeline_cache, self.run_cache)
        return replace(
            self,
            scope_name=name,
            _task_cache=parent.child(CacheScope.TASK, name),
        )

    def for_host(self, host: Host) -> StepContext:
        return StepContext(run=self, host=host)

    # ------------------------------------------------------------------
    # Cancellation & logging
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Stop dispatching new work and cancel in-flight host runs."""
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    @property
    def logger(self) -> Logger:
        return get_logger("fleetdag.run").bind(run_id=self.run_id, scope=self.scope_name or "-")


@dataclass(frozen=True, slots=True)
class StepContext:
    """View of a run handed to a step executing on one host."""

    run: RunContext
    host: Host

    @property
    def offline(self) -> bool:
        return self.run.offline

    @property
    def control_host(self) -> Host | None:
        return self.run.control_host

    @property
    def cancelled(self) -> bool:
        return self.run.cancelled

    @property
    def cache(self) -> ScopedCache:
        return self.run.cache

    @property
    def run_cache(self) -> ScopedCache:
        return self.run.run_cache

    def hosts_by_role(self, role: str) -> list[Host]:
        return self.run.hosts_by_role(role)

    @property
    def logger(self) -> Logger:
        return get_logger_for_host("step", self.host.name).bind(
            run_id=self.run.run_id, scope=self.run.scope_name or "-"
        )
