"""Task port: independent planners that each emit one execution fragment."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from fleetdag.kernel.context.run_context import RunContext, host_has_role
from fleetdag.kernel.domain.fragment import ExecutionFragment
from fleetdag.kernel.domain.node import ExecutionNode, NodeID
from fleetdag.kernel.exceptions import PlanningError
from fleetdag.kernel.logging import get_logger

if TYPE_CHECKING:
    from fleetdag.kernel.domain.host import Host
    from fleetdag.kernel.domain.step import Step

logger = get_logger(__name__)


@runtime_checkable
class Task(Protocol):
    """Planner capability.

    ``plan`` must be free of side effects on hosts: it only reads the
    context and returns a fragment.
    """

    @property
    def name(self) -> str: ...

    @property
    def description(self) -> str: ...

    def is_required(self, ctx: RunContext) -> bool: ...

    def plan(self, ctx: RunContext) -> ExecutionFragment: ...


class BaseTask(ABC):
    """Base for tasks that target hosts by role.

    Parameters
    ----------
    name : str
        Task name, also the name of its fragment.
    description : str
        Human readable summary.
    roles : Sequence[str]
        Roles whose hosts the task runs on. Empty means every host.
    host_filter : Callable[[Host], bool] | None
        Extra predicate applied after role selection.

    Examples
    --------
    Example usage::

        class InstallEtcd(BaseTask):
            def __init__(self):
                super().__init__("install-etcd", "Install etcd binaries", roles=["etcd"])

            def plan(self, ctx):
                fragment = self.new_fragment()
                hosts = self.require_hosts(ctx)
                download = self.add_step(fragment, DownloadEtcd(), [ctx.require_control_host()])
                install = self.add_step(fragment, InstallBinaries(), hosts)
                fragment.add_dependency(download, install)
                return fragment
    """

    def __init__(
        self,
        name: str,
        description: str = "",
        roles: Sequence[str] = (),
        host_filter: Callable[[Host], bool] | None = None,
    ) -> None:
        self._name = name
        self._description = description
        self.roles = tuple(roles)
        self.host_filter = host_filter

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    def target_hosts(self, ctx: RunContext) -> list[Host]:
        """Hosts with any of the task's roles, in inventory order, filtered."""
        if self.roles:
            hosts = [h for h in ctx.hosts if any(host_has_role(h, r) for r in self.roles)]
        else:
            hosts = list(ctx.hosts)
        if self.host_filter is not None:
            hosts = [h for h in hosts if self.host_filter(h)]
        return hosts

    def require_hosts(self, ctx: RunContext) -> list[Host]:
        """Like ``target_hosts`` but an empty selection is a planning error.

        Raises
        ------
        PlanningError
            If no host matches the task's roles.
        """
        hosts = self.target_hosts(ctx)
        if not hosts:
            raise PlanningError(self._name, f"no hosts found for roles {list(self.roles)}")
        return hosts

    def is_required(self, ctx: RunContext) -> bool:
        """Required when at least one host matches the task's roles."""
        if not self.roles:
            return True
        required = bool(self.target_hosts(ctx))
        if not required:
            logger.info(
                "Task '{task}' not required: no hosts with roles {roles}",
                task=self._name,
                roles=list(self.roles),
            )
        return required

    def new_fragment(self) -> ExecutionFragment:
        return ExecutionFragment(self._name)

    def add_step(
        self,
        fragment: ExecutionFragment,
        step: Step,
        hosts: Sequence[Host],
        name: str | None = None,
    ) -> NodeID:
        """Bind ``step`` to ``hosts`` as a new node of ``fragment``."""
        node_name = name or f"{self._name}: {step.meta.name}"
        return fragment.add_node(ExecutionNode(node_name, step, tuple(hosts)))

    @abstractmethod
    def plan(self, ctx: RunContext) -> ExecutionFragment:
        """Return this task's fragment."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self._name!r}, roles={list(self.roles)})"
