"""Tests for Module planning."""

import pytest

from fleetdag.kernel.context.cache import CacheKey
from fleetdag.kernel.context.run_context import RunContext
from fleetdag.kernel.domain.fragment import ExecutionFragment
from fleetdag.kernel.domain.step import NoOpStep
from fleetdag.kernel.exceptions import PlanningError
from fleetdag.kernel.ports.task import BaseTask
from fleetdag.planning.module import Module

CERTS_PRESENT = CacheKey("certs_present", bool)


class RoleTask(BaseTask):
    """Plans one no-op step per configured step name on its role's hosts."""

    def __init__(self, name: str, roles=(), steps=("run",)) -> None:
        super().__init__(name, roles=roles)
        self.steps = steps
        self.seen_scope: str | None = None

    def plan(self, ctx: RunContext) -> ExecutionFragment:
        self.seen_scope = ctx.scope_name
        fragment = self.new_fragment()
        previous = None
        for step_name in self.steps:
            node_id = self.add_step(fragment, NoOpStep(step_name), self.target_hosts(ctx))
            if previous is not None:
                fragment.add_dependency(previous, node_id)
            previous = node_id
        return fragment


class EmptyTask(BaseTask):
    def plan(self, ctx: RunContext) -> ExecutionFragment:
        return self.new_fragment()


class BrokenTask(BaseTask):
    def __init__(self, error: Exception) -> None:
        super().__init__("broken")
        self.error = error

    def plan(self, ctx: RunContext) -> ExecutionFragment:
        raise self.error


class FlagWriter(BaseTask):
    def plan(self, ctx: RunContext) -> ExecutionFragment:
        ctx.module_cache.set(CERTS_PRESENT, True)
        return self.new_fragment()


class FlagReader(BaseTask):
    def __init__(self) -> None:
        super().__init__("reader")
        self.flag: bool | None = None

    def plan(self, ctx: RunContext) -> ExecutionFragment:
        self.flag = ctx.cache.get(CERTS_PRESENT)
        return self.new_fragment()


class TestModule:
    def test_siblings_are_merged_without_edges(self, ctx: RunContext) -> None:
        module = Module("etcd", [RoleTask("certs", ["etcd"]), RoleTask("binaries", ["etcd"])])

        fragment = module.plan(ctx)

        assert fragment.name == "etcd"
        assert len(fragment) == 2
        assert all(not deps for deps in fragment.dependencies.values())
        assert len(fragment.entry_nodes) == 2

    def test_sequential_chains_tasks(self, ctx: RunContext) -> None:
        module = Module(
            "etcd",
            [RoleTask("certs", ["etcd"], steps=("gen", "copy")), RoleTask("start", ["etcd"])],
            sequential=True,
        )

        fragment = module.plan(ctx)

        copy = fragment.node_by_name("certs: copy")
        start = fragment.node_by_name("start: run")
        assert fragment.get_dependencies(start.id) == {copy.id}
        assert fragment.entry_nodes == [fragment.node_by_name("certs: gen").id]

    def test_not_required_task_is_skipped(self, ctx: RunContext) -> None:
        gpu = RoleTask("gpu-driver", ["gpu"])
        module = Module("nodes", [gpu, RoleTask("kubelet", ["worker"])])

        fragment = module.plan(ctx)

        assert [n.name for n in fragment] == ["kubelet: run"]
        assert gpu.seen_scope is None

    def test_empty_fragments_are_dropped(self, ctx: RunContext) -> None:
        module = Module("m", [EmptyTask("noop"), RoleTask("real")], sequential=True)
        assert len(module.plan(ctx)) == 1

    def test_tasks_plan_in_their_own_scope(self, ctx: RunContext) -> None:
        task = RoleTask("certs")
        Module("etcd", [task]).plan(ctx.for_pipeline("create"))
        assert task.seen_scope == "certs"

    def test_module_cache_is_shared_between_tasks(self, ctx: RunContext) -> None:
        reader = FlagReader()
        Module("pki", [FlagWriter("writer"), reader]).plan(ctx.for_pipeline("renew"))
        assert reader.flag is True

    def test_disabled_module_plans_nothing(self, ctx: RunContext) -> None:
        task = RoleTask("certs")
        assert Module("etcd", [task], enabled=False).plan(ctx).is_empty
        assert task.seen_scope is None

    def test_enabled_predicate_sees_context(self, ctx: RunContext, control_host) -> None:
        module = Module("ha", [RoleTask("keepalived")], enabled=lambda c: len(c.hosts) > 1)
        assert not module.plan(ctx).is_empty
        assert module.plan(RunContext(hosts=(control_host,))).is_empty

    def test_task_error_is_wrapped(self, ctx: RunContext) -> None:
        module = Module("etcd", [BrokenTask(KeyError("cluster_version"))])

        with pytest.raises(PlanningError, match="etcd/broken") as exc_info:
            module.plan(ctx)
        assert isinstance(exc_info.value.__cause__, KeyError)

    def test_planning_error_passes_through(self, ctx: RunContext) -> None:
        original = PlanningError("install-etcd", "no hosts found for roles ['etcd']")
        with pytest.raises(PlanningError) as exc_info:
            Module("etcd", [BrokenTask(original)]).plan(ctx)
        assert exc_info.value is original

    def test_repr(self) -> None:
        assert repr(Module("etcd", [RoleTask("a"), RoleTask("b")])) == (
            "Module(name='etcd', tasks=['a', 'b'])"
        )
