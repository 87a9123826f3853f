"""Tests for NodeDispatcher: fan-out, host limits and stop handling."""

import asyncio

import pytest

from fleetdag.kernel.config.models import DEFAULT_MAX_CONCURRENT_HOSTS, EngineConfig
from fleetdag.kernel.context.run_context import RunContext
from fleetdag.kernel.domain.host import StaticHost
from fleetdag.kernel.domain.node import ExecutionNode
from fleetdag.kernel.domain.results import NodeResult, Status
from fleetdag.kernel.domain.step import BaseStep, StepMeta, StepOutput
from fleetdag.kernel.orchestration.components.host_runner import HostRunner
from fleetdag.kernel.orchestration.components.node_dispatcher import NodeDispatcher

M1 = StaticHost("m1")
M2 = StaticHost("m2")


class CountingStep(BaseStep):
    def __init__(self) -> None:
        super().__init__(StepMeta("count"))
        self.hosts: list[str] = []

    async def run(self, ctx, host) -> StepOutput:
        self.hosts.append(host.name)
        return StepOutput()


async def dispatch(node: ExecutionNode, **kwargs) -> NodeResult:
    result = NodeResult(node_id=node.id, node_name=node.name, step_name=node.step_name)
    await NodeDispatcher(HostRunner()).dispatch(
        node,
        RunContext(hosts=node.hosts),
        result,
        layer_index=1,
        in_flight=set(),
        **kwargs,
    )
    return result


class TestNodeDispatcher:
    def test_default_host_limit_matches_engine_config(self) -> None:
        dispatcher = NodeDispatcher(HostRunner())
        assert dispatcher.max_concurrent_hosts == DEFAULT_MAX_CONCURRENT_HOSTS
        assert dispatcher.max_concurrent_hosts == EngineConfig().max_concurrent_hosts

    @pytest.mark.asyncio
    async def test_runs_every_host(self) -> None:
        step = CountingStep()
        result = await dispatch(ExecutionNode("count", step, (M1, M2)))

        assert sorted(step.hosts) == ["m1", "m2"]
        assert result.status == Status.SUCCESS

    @pytest.mark.asyncio
    async def test_stopped_run_starts_no_hosts(self) -> None:
        stop = asyncio.Event()
        stop.set()
        step = CountingStep()

        result = await dispatch(ExecutionNode("count", step, (M1, M2)), stop=stop)

        assert step.hosts == []
        assert result.status == Status.FAILED
        for host_result in result.host_results.values():
            assert host_result.cancelled
            assert host_result.message == "Cancelled before start"
