"""Tests for the task port and BaseTask helpers."""

import pytest

from fleetdag.kernel.context.run_context import RunContext
from fleetdag.kernel.domain.step import NoOpStep
from fleetdag.kernel.exceptions import PlanningError
from fleetdag.kernel.ports.task import BaseTask, Task


class InstallEtcd(BaseTask):
    def __init__(self, **kwargs) -> None:
        super().__init__("install-etcd", "Install etcd binaries", roles=["etcd"], **kwargs)

    def plan(self, ctx: RunContext):
        fragment = self.new_fragment()
        download = self.add_step(fragment, NoOpStep("download"), [ctx.require_control_host()])
        install = self.add_step(fragment, NoOpStep("install"), self.require_hosts(ctx))
        fragment.add_dependency(download, install)
        return fragment


class EverywhereTask(BaseTask):
    def plan(self, ctx: RunContext):
        fragment = self.new_fragment()
        self.add_step(fragment, NoOpStep("sysctl"), self.target_hosts(ctx), name="tune kernel")
        return fragment


class TestBaseTask:
    def test_satisfies_task_protocol(self) -> None:
        assert isinstance(InstallEtcd(), Task)

    def test_target_hosts_by_role(self, ctx: RunContext) -> None:
        assert [h.name for h in InstallEtcd().target_hosts(ctx)] == ["m1", "m2"]

    def test_no_roles_targets_every_host(self, ctx: RunContext) -> None:
        task = EverywhereTask("tune")
        assert [h.name for h in task.target_hosts(ctx)] == ["m1", "m2", "w1"]
        assert task.is_required(RunContext())

    def test_host_filter_applies_after_roles(self, ctx: RunContext) -> None:
        task = InstallEtcd(host_filter=lambda h: h.name != "m2")
        assert [h.name for h in task.target_hosts(ctx)] == ["m1"]

    def test_not_required_without_matching_hosts(self, ctx: RunContext, control_host) -> None:
        assert InstallEtcd().is_required(ctx)
        assert not InstallEtcd().is_required(RunContext(hosts=(control_host,)))

    def test_require_hosts_raises_planning_error(self, control_host) -> None:
        with pytest.raises(PlanningError, match="install-etcd") as exc_info:
            InstallEtcd().require_hosts(RunContext(hosts=(control_host,)))
        assert exc_info.value.planner == "install-etcd"

    def test_plan_names_nodes_after_task_and_step(self, ctx: RunContext) -> None:
        fragment = InstallEtcd().plan(ctx)

        assert fragment.name == "install-etcd"
        download = fragment.node_by_name("install-etcd: download")
        install = fragment.node_by_name("install-etcd: install")
        assert [h.name for h in download.hosts] == ["bastion"]
        assert fragment.get_dependencies(install.id) == {download.id}

    def test_explicit_node_name(self, ctx: RunContext) -> None:
        fragment = EverywhereTask("tune").plan(ctx)
        assert [n.name for n in fragment] == ["tune kernel"]

    def test_repr(self) -> None:
        assert repr(InstallEtcd()) == "InstallEtcd(name='install-etcd', roles=['etcd'])"
