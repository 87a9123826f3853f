"""Tests for GraphEngine: scheduling, failure isolation, cancellation and dry runs."""

import asyncio

import pytest

from fleetdag.kernel.config.models import EngineConfig
from fleetdag.kernel.context.run_context import RunContext
from fleetdag.kernel.domain.fragment import ExecutionFragment, chain_per_host
from fleetdag.kernel.domain.host import StaticHost
from fleetdag.kernel.domain.node import ExecutionNode, NodeID
from fleetdag.kernel.domain.results import SkipReason, Status
from fleetdag.kernel.domain.step import BaseStep, StepMeta, StepOutput
from fleetdag.kernel.exceptions import (
    ConfigurationError,
    CycleDetectedError,
    StepExecutionError,
)
from fleetdag.kernel.orchestration.engine import GraphEngine
from fleetdag.kernel.orchestration.events import (
    GraphCompleted,
    GraphStarted,
    HostCompleted,
    LayerCompleted,
    NodeCompleted,
    NodeSkipped,
    NodeStarted,
)

BASTION = StaticHost("bastion", roles=frozenset({"control"}))
M1 = StaticHost("m1", roles=frozenset({"master"}))
M2 = StaticHost("m2", roles=frozenset({"master"}))


class ScriptedStep(BaseStep):
    """Step whose outcome is scripted per host and whose runs are logged."""

    def __init__(
        self,
        name: str,
        *,
        fail_on: tuple[str, ...] = (),
        done_on: tuple[str, ...] = (),
        delay: float = 0.0,
        log: list | None = None,
        **meta,
    ) -> None:
        super().__init__(StepMeta(name, **meta))
        self.fail_on = set(fail_on)
        self.done_on = set(done_on)
        self.delay = delay
        self.log = log if log is not None else []
        self.calls: list[str] = []

    async def precheck(self, ctx, host) -> bool:
        return host.name in self.done_on

    async def run(self, ctx, host) -> StepOutput:
        loop = asyncio.get_running_loop()
        started = loop.time()
        self.calls.append(host.name)
        await asyncio.sleep(self.delay)
        self.log.append((self.meta.name, host.name, started, loop.time()))
        if host.name in self.fail_on:
            raise StepExecutionError(f"{self.meta.name} failed on {host.name}", stderr="boom")
        return StepOutput(stdout=f"{self.meta.name} ok")


class ConcurrencyGauge(BaseStep):
    """Records the highest number of simultaneously running host executions."""

    def __init__(self, name: str, counter: dict[str, int], delay: float = 0.02) -> None:
        super().__init__(StepMeta(name))
        self.counter = counter
        self.delay = delay

    async def run(self, ctx, host) -> StepOutput:
        self.counter["active"] += 1
        self.counter["peak"] = max(self.counter["peak"], self.counter["active"])
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.counter["active"] -= 1
        return StepOutput()


class RecordingObserver:
    def __init__(self) -> None:
        self.events: list = []

    async def notify(self, event) -> None:
        self.events.append(event)


def add(fragment: ExecutionFragment, step: BaseStep, *hosts: StaticHost) -> NodeID:
    return fragment.add_node(ExecutionNode(step.meta.name, step, hosts or (M1,)))


@pytest.fixture
def run_ctx() -> RunContext:
    return RunContext(hosts=(M1, M2), control_host=BASTION, run_id="run-1")


class TestGraphEngine:
    @pytest.mark.asyncio
    async def test_empty_graph_succeeds(self, run_ctx: RunContext) -> None:
        result = await GraphEngine().execute(ExecutionFragment("empty"), run_ctx)

        assert result.status == Status.SUCCESS
        assert result.node_results == {}
        assert result.is_finalized

    @pytest.mark.asyncio
    async def test_linear_chain(self, run_ctx: RunContext) -> None:
        log: list = []
        fragment = ExecutionFragment("chain")
        a = add(fragment, ScriptedStep("a", log=log))
        b = add(fragment, ScriptedStep("b", log=log))
        c = add(fragment, ScriptedStep("c", log=log))
        fragment.add_dependency(a, b)
        fragment.add_dependency(b, c)

        result = await GraphEngine().execute(fragment, run_ctx)

        assert result.status == Status.SUCCESS
        assert result.run_id == "run-1"
        assert [entry[0] for entry in log] == ["a", "b", "c"]
        assert result.node_results[c].host_results["m1"].stdout == "c ok"

    @pytest.mark.asyncio
    async def test_failure_skips_dependents_only(self, run_ctx: RunContext) -> None:
        fragment = ExecutionFragment("propagation")
        a = add(fragment, ScriptedStep("A"))
        b_step = ScriptedStep("B", fail_on=("m1",))
        b = add(fragment, b_step)
        c_step = ScriptedStep("C")
        c = add(fragment, c_step)
        d = add(fragment, ScriptedStep("D"))
        fragment.add_dependency(a, b)
        fragment.add_dependency(b, c)

        result = await GraphEngine().execute(fragment, run_ctx)

        assert result.node_results[a].status == Status.SUCCESS
        assert result.node_results[b].status == Status.FAILED
        assert result.node_results[d].status == Status.SUCCESS
        skipped = result.node_results[c]
        assert skipped.status == Status.SKIPPED
        assert skipped.skip_reason == SkipReason.DEPENDENCY
        assert skipped.message == f"Skipped due to failed prerequisite 'B' ({b})"
        assert skipped.host_results["m1"].status == Status.SKIPPED
        assert c_step.calls == []
        assert result.status == Status.FAILED

    @pytest.mark.asyncio
    async def test_skip_cascades_transitively(self, run_ctx: RunContext) -> None:
        fragment = ExecutionFragment("cascade")
        root = add(fragment, ScriptedStep("root", fail_on=("m1",)))
        ids = [add(fragment, ScriptedStep(f"n{i}")) for i in range(4)]
        fragment.add_dependency(root, ids[0])
        for before, after in zip(ids, ids[1:]):
            fragment.add_dependency(before, after)

        result = await GraphEngine().execute(fragment, run_ctx)

        for node_id in ids:
            node_result = result.node_results[node_id]
            assert node_result.status == Status.SKIPPED
            assert "'root'" in node_result.message

    @pytest.mark.asyncio
    async def test_extract_install_configure(self, run_ctx: RunContext) -> None:
        fragment = ExecutionFragment("deploy")
        extract = add(fragment, ScriptedStep("Extract"), BASTION)
        install = add(fragment, ScriptedStep("Install", fail_on=("m1",)), M1, M2)
        configure = add(fragment, ScriptedStep("ConfigureService"), M1, M2)
        fragment.add_dependency(extract, install)
        fragment.add_dependency(install, configure)

        result = await GraphEngine().execute(fragment, run_ctx)

        assert result.node_results[extract].status == Status.SUCCESS
        install_result = result.node_results[install]
        assert install_result.status == Status.FAILED
        assert install_result.host_results["m1"].status == Status.FAILED
        assert install_result.host_results["m1"].stderr == "boom"
        assert install_result.host_results["m2"].status == Status.SUCCESS
        assert result.node_results[configure].status == Status.SKIPPED
        assert result.status == Status.FAILED

    @pytest.mark.asyncio
    async def test_dependents_start_after_dependencies_end(self, run_ctx: RunContext) -> None:
        log: list = []
        fragment = ExecutionFragment("diamond")
        a = add(fragment, ScriptedStep("a", delay=0.02, log=log), M1, M2)
        b = add(fragment, ScriptedStep("b", delay=0.01, log=log))
        c = add(fragment, ScriptedStep("c", delay=0.03, log=log), M2)
        d = add(fragment, ScriptedStep("d", log=log), M1, M2)
        fragment.add_dependency(a, [b, c])
        fragment.add_dependency([b, c], d)

        await GraphEngine().execute(fragment, run_ctx)

        def window(name: str) -> tuple[float, float]:
            runs = [entry for entry in log if entry[0] == name]
            return min(r[2] for r in runs), max(r[3] for r in runs)

        for before, after in [("a", "b"), ("a", "c"), ("b", "d"), ("c", "d")]:
            assert window(after)[0] >= window(before)[1]

    @pytest.mark.asyncio
    async def test_rolling_chain_runs_one_host_at_a_time(self, run_ctx: RunContext) -> None:
        log: list = []
        m3 = StaticHost("m3", roles=frozenset({"master"}))

        def renew_on(host: StaticHost) -> ExecutionFragment:
            f = ExecutionFragment(f"renew-{host.name}")
            backup = add(f, ScriptedStep("backup", delay=0.01, log=log), host)
            restart = add(f, ScriptedStep("restart", delay=0.01, log=log), host)
            verify = add(f, ScriptedStep("verify", log=log), host)
            f.add_dependency(backup, [restart, verify])
            return f

        fragment = chain_per_host("renew-certs", [M1, M2, m3], renew_on)
        result = await GraphEngine().execute(fragment, run_ctx)

        assert result.status == Status.SUCCESS
        spans = []
        for host in ("m1", "m2", "m3"):
            runs = [entry for entry in log if entry[1] == host]
            assert len(runs) == 3
            spans.append((min(r[2] for r in runs), max(r[3] for r in runs)))
        for (_, earlier_end), (later_start, _) in zip(spans, spans[1:]):
            assert later_start >= earlier_end

    @pytest.mark.asyncio
    async def test_repeated_host_in_node_runs_once(self, run_ctx: RunContext) -> None:
        step = ScriptedStep("a")
        fragment = ExecutionFragment("dupes")
        a = add(fragment, step, M1, M1)
        b = add(fragment, ScriptedStep("b"))
        fragment.add_dependency(a, b)

        result = await GraphEngine().execute(fragment, run_ctx)

        assert step.calls == ["m1"]
        assert result.node_results[a].status == Status.SUCCESS
        assert result.node_results[b].status == Status.SUCCESS
        assert result.status == Status.SUCCESS

    @pytest.mark.asyncio
    async def test_unrelated_nodes_overlap(self, run_ctx: RunContext) -> None:
        counter = {"active": 0, "peak": 0}
        fragment = ExecutionFragment("parallel")
        for name in ("x", "y", "z"):
            add(fragment, ConcurrencyGauge(name, counter, delay=0.05))

        await GraphEngine().execute(fragment, run_ctx)

        assert counter["peak"] == 3

    @pytest.mark.asyncio
    async def test_node_concurrency_limit(self, run_ctx: RunContext) -> None:
        counter = {"active": 0, "peak": 0}
        fragment = ExecutionFragment("bounded")
        for name in ("x", "y", "z"):
            add(fragment, ConcurrencyGauge(name, counter))

        result = await GraphEngine(max_concurrent_nodes=1).execute(fragment, run_ctx)

        assert counter["peak"] == 1
        assert result.status == Status.SUCCESS

    @pytest.mark.asyncio
    async def test_host_concurrency_limit(self, run_ctx: RunContext) -> None:
        counter = {"active": 0, "peak": 0}
        fleet = [StaticHost(f"w{i}") for i in range(5)]
        fragment = ExecutionFragment("fan-out")
        add(fragment, ConcurrencyGauge("fanout", counter), *fleet)

        result = await GraphEngine(max_concurrent_hosts=2).execute(fragment, run_ctx)

        assert counter["peak"] == 2
        assert len(result.result_for("fanout").host_results) == 5

    @pytest.mark.asyncio
    async def test_precheck_satisfied_everywhere_lets_dependents_run(
        self, run_ctx: RunContext
    ) -> None:
        fragment = ExecutionFragment("idempotent")
        done_step = ScriptedStep("install", done_on=("m1", "m2"))
        install = add(fragment, done_step, M1, M2)
        restart_step = ScriptedStep("restart")
        restart = add(fragment, restart_step, M1, M2)
        fragment.add_dependency(install, restart)

        result = await GraphEngine().execute(fragment, run_ctx)

        assert result.node_results[install].status == Status.SKIPPED
        assert result.node_results[install].skip_reason == SkipReason.PRECHECK
        assert done_step.calls == []
        assert result.node_results[restart].status == Status.SUCCESS
        assert sorted(restart_step.calls) == ["m1", "m2"]
        assert result.status == Status.SUCCESS

    @pytest.mark.asyncio
    async def test_partial_precheck_is_success(self, run_ctx: RunContext) -> None:
        fragment = ExecutionFragment("mixed")
        step = ScriptedStep("install", done_on=("m1",))
        node_id = add(fragment, step, M1, M2)

        result = await GraphEngine().execute(fragment, run_ctx)

        node_result = result.node_results[node_id]
        assert node_result.status == Status.SUCCESS
        assert node_result.message == "Succeeded on 1 host(s), already satisfied on 1"
        assert step.calls == ["m2"]

    @pytest.mark.asyncio
    async def test_ignore_error_keeps_dependents_running(self, run_ctx: RunContext) -> None:
        fragment = ExecutionFragment("tolerant")
        cleanup = add(fragment, ScriptedStep("cleanup", fail_on=("m1",), ignore_error=True))
        install_step = ScriptedStep("install")
        install = add(fragment, install_step)
        fragment.add_dependency(cleanup, install)

        result = await GraphEngine().execute(fragment, run_ctx)

        assert result.node_results[cleanup].status == Status.FAILED
        assert result.node_results[install].status == Status.SUCCESS
        assert install_step.calls == ["m1"]
        assert result.status == Status.FAILED

    @pytest.mark.asyncio
    async def test_invalid_graph_runs_nothing(self, run_ctx: RunContext) -> None:
        fragment = ExecutionFragment("cyclic")
        a_step = ScriptedStep("a")
        a = add(fragment, a_step)
        b = add(fragment, ScriptedStep("b"))
        fragment.add_dependency(a, b)
        fragment.add_dependency(b, a)

        with pytest.raises(CycleDetectedError):
            await GraphEngine().execute(fragment, run_ctx)
        assert a_step.calls == []

    @pytest.mark.asyncio
    async def test_dry_run_executes_nothing(self, run_ctx: RunContext) -> None:
        fragment = ExecutionFragment("plan-only")
        first = ScriptedStep("first")
        second = ScriptedStep("second")
        a = add(fragment, first, M1, M2)
        b = add(fragment, second)
        fragment.add_dependency(a, b)

        result = await GraphEngine().execute(fragment, run_ctx, dry_run=True)

        assert first.calls == [] and second.calls == []
        assert result.dry_run
        assert result.status == Status.SKIPPED
        for node_result in result.node_results.values():
            assert node_result.skip_reason == SkipReason.DRY_RUN
            assert node_result.message.startswith("Dry run: would run")
        assert set(result.node_results[a].host_results) == {"m1", "m2"}


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_interrupts_in_flight_hosts(self, run_ctx: RunContext) -> None:
        fragment = ExecutionFragment("long")
        slow = add(fragment, ScriptedStep("slow", delay=10), M1, M2)
        after_step = ScriptedStep("after")
        after = add(fragment, after_step)
        fragment.add_dependency(slow, after)

        async def cancel_soon() -> None:
            await asyncio.sleep(0.05)
            run_ctx.cancel()

        canceller = asyncio.create_task(cancel_soon())
        result = await asyncio.wait_for(GraphEngine().execute(fragment, run_ctx), timeout=5)
        await canceller

        assert result.cancelled
        assert result.status == Status.FAILED
        slow_result = result.node_results[slow]
        assert slow_result.status == Status.FAILED
        for host_result in slow_result.host_results.values():
            assert host_result.cancelled
            assert host_result.status == Status.FAILED
        assert result.node_results[after].status == Status.SKIPPED
        assert after_step.calls == []

    @pytest.mark.asyncio
    async def test_completed_nodes_stay_successful(self, run_ctx: RunContext) -> None:
        fragment = ExecutionFragment("partial")
        quick = add(fragment, ScriptedStep("quick"))
        slow = add(fragment, ScriptedStep("slow", delay=10))
        fragment.add_dependency(quick, slow)

        result = await GraphEngine().execute(fragment, run_ctx, timeout=0.1)

        assert result.node_results[quick].status == Status.SUCCESS
        assert result.node_results[slow].status == Status.FAILED
        assert result.cancelled
        assert not run_ctx.cancelled

    @pytest.mark.asyncio
    async def test_run_timeout_from_engine(self, run_ctx: RunContext) -> None:
        fragment = ExecutionFragment("hang")
        add(fragment, ScriptedStep("hang", delay=10))

        result = await GraphEngine(run_timeout=0.05).execute(fragment, run_ctx)

        assert result.cancelled
        assert result.status == Status.FAILED

    @pytest.mark.asyncio
    async def test_context_reusable_after_run_timeout(self, run_ctx: RunContext) -> None:
        hanging = ExecutionFragment("hang")
        add(hanging, ScriptedStep("hang", delay=10))
        first = await GraphEngine().execute(hanging, run_ctx, timeout=0.05)

        quick = ExecutionFragment("quick")
        step = ScriptedStep("quick")
        add(quick, step, M1, M2)
        second = await GraphEngine().execute(quick, run_ctx)

        assert first.cancelled
        assert first.status == Status.FAILED
        assert not run_ctx.cancelled
        assert not second.cancelled
        assert second.status == Status.SUCCESS
        assert sorted(step.calls) == ["m1", "m2"]

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, run_ctx: RunContext) -> None:
        fragment = ExecutionFragment("never")
        step = ScriptedStep("a")
        a = add(fragment, step)
        b = add(fragment, ScriptedStep("b"))
        fragment.add_dependency(a, b)
        run_ctx.cancel()

        result = await GraphEngine().execute(fragment, run_ctx)

        assert step.calls == []
        for node_result in result.node_results.values():
            assert node_result.status == Status.SKIPPED
            assert node_result.skip_reason == SkipReason.CANCELLED
        assert result.cancelled
        assert result.status == Status.FAILED


class TestEvents:
    @pytest.mark.asyncio
    async def test_event_sequence(self, run_ctx: RunContext) -> None:
        observer = RecordingObserver()
        fragment = ExecutionFragment("observed")
        a = add(fragment, ScriptedStep("a"), M1, M2)
        b = add(fragment, ScriptedStep("b", fail_on=("m1",)))
        c = add(fragment, ScriptedStep("c"))
        fragment.add_dependency(a, b)
        fragment.add_dependency(b, c)

        await GraphEngine(observer_manager=observer).execute(fragment, run_ctx)

        kinds = [type(e) for e in observer.events]
        assert kinds[0] is GraphStarted
        assert kinds[-1] is GraphCompleted
        assert kinds.count(NodeStarted) == 2
        assert kinds.count(NodeCompleted) == 2
        assert kinds.count(HostCompleted) == 3
        assert kinds.count(LayerCompleted) == 3
        skipped = [e for e in observer.events if isinstance(e, NodeSkipped)]
        assert [e.name for e in skipped] == ["c"]
        assert observer.events[-1].status == Status.FAILED

    @pytest.mark.asyncio
    async def test_failing_observer_does_not_break_run(self, run_ctx: RunContext) -> None:
        class BrokenObserver:
            async def notify(self, event) -> None:
                raise RuntimeError("dashboard offline")

        fragment = ExecutionFragment("resilient")
        add(fragment, ScriptedStep("a"))

        result = await GraphEngine(observer_manager=BrokenObserver()).execute(fragment, run_ctx)

        assert result.status == Status.SUCCESS


class TestConfiguration:
    def test_rejects_zero_limits(self) -> None:
        with pytest.raises(ConfigurationError):
            GraphEngine(max_concurrent_nodes=0)
        with pytest.raises(ConfigurationError):
            GraphEngine(max_concurrent_hosts=0)

    def test_from_config(self) -> None:
        engine = GraphEngine.from_config(
            EngineConfig(max_concurrent_nodes=3, max_concurrent_hosts=4, run_timeout=60)
        )
        assert engine.max_concurrent_nodes == 3
        assert engine.max_concurrent_hosts == 4
        assert engine.run_timeout == 60
