"""Modules group related tasks (e.g. everything needed for etcd)."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING

from fleetdag.kernel.domain.fragment import (
    ExecutionFragment,
    chain_fragments,
    merge_fragments,
)
from fleetdag.kernel.exceptions import PlanningError
from fleetdag.kernel.logging import get_logger

if TYPE_CHECKING:
    from fleetdag.kernel.context.run_context import RunContext
    from fleetdag.kernel.ports.task import Task

logger = get_logger(__name__)


class Module:
    """A named group of tasks planned into one fragment.

    Sibling tasks are merged disjointly, so they only order against each
    other through edges they declare themselves. With ``sequential=True``
    every task waits for the previous task's exit nodes.

    Parameters
    ----------
    name : str
        Module name, also the name of its fragment.
    tasks : Sequence[Task]
        Tasks in declaration order.
    description : str
        Human readable summary.
    sequential : bool, default=False
        Chain the task fragments instead of merging them side by side.
    enabled : bool | Callable[[RunContext], bool], default=True
        Static flag or predicate deciding whether the module contributes work.

    Examples
    --------
    Example usage::

        etcd = Module(
            "etcd",
            [GenerateEtcdCerts(), InstallEtcd(), ConfigureEtcd()],
            sequential=True,
        )
        fragment = etcd.plan(ctx)
    """

    def __init__(
        self,
        name: str,
        tasks: Sequence[Task],
        description: str = "",
        sequential: bool = False,
        enabled: bool | Callable[[RunContext], bool] = True,
    ) -> None:
        self.name = name
        self.tasks = list(tasks)
        self.description = description
        self.sequential = sequential
        self._enabled = enabled

    def is_enabled(self, ctx: RunContext) -> bool:
        if callable(self._enabled):
            return bool(self._enabled(ctx))
        return self._enabled

    def plan(self, ctx: RunContext) -> ExecutionFragment:
        """Plan every required task and compose their fragments.

        Raises
        ------
        PlanningError
            If any task fails to plan. The original error is chained.
        """
        module_ctx = ctx.for_module(self.name)
        if not self.is_enabled(module_ctx):
            logger.info("Module '{module}' disabled, nothing to plan", module=self.name)
            return ExecutionFragment(self.name)

        fragments: list[ExecutionFragment] = []
        for task in self.tasks:
            task_ctx = module_ctx.for_task(task.name)
            try:
                if not task.is_required(task_ctx):
                    logger.info(
                        "Task '{task}' in module '{module}' not required, skipping",
                        task=task.name,
                        module=self.name,
                    )
                    continue
                fragment = task.plan(task_ctx)
            except PlanningError:
                raise
            except Exception as e:
                raise PlanningError(f"{self.name}/{task.name}", str(e)) from e

            if fragment.is_empty:
                logger.debug("Task '{task}' planned no work", task=task.name)
                continue
            logger.debug(
                "Planned task '{task}': {nodes} node(s)", task=task.name, nodes=len(fragment)
            )
            fragments.append(fragment)

        compose = chain_fragments if self.sequential else merge_fragments
        try:
            return compose(self.name, *fragments)
        except Exception as e:
            raise PlanningError(self.name, f"cannot compose task fragments: {e}") from e

    def __repr__(self) -> str:
        return f"Module(name={self.name!r}, tasks={[t.name for t in self.tasks]})"
