"""Shared fixtures for the fleetdag test suite.

- hosts / control_host: a small static inventory
- ctx: a RunContext over that inventory
- clean_env: removes FLEETDAG_* variables and clears the config cache
"""

import os

import pytest

from fleetdag.kernel.config.loader import clear_config_cache
from fleetdag.kernel.context.run_context import RunContext
from fleetdag.kernel.domain.host import StaticHost


@pytest.fixture
def control_host() -> StaticHost:
    return StaticHost("bastion", "10.0.0.2", roles=frozenset({"control"}))


@pytest.fixture
def hosts() -> list[StaticHost]:
    return [
        StaticHost("m1", "10.0.0.11", roles=frozenset({"master", "etcd"})),
        StaticHost("m2", "10.0.0.12", roles=frozenset({"master", "etcd"})),
        StaticHost("w1", "10.0.0.21", roles=frozenset({"worker"})),
    ]


@pytest.fixture
def ctx(hosts: list[StaticHost], control_host: StaticHost) -> RunContext:
    return RunContext(hosts=tuple(hosts), control_host=control_host, run_id="test-run")


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch):
    """Isolate tests from FLEETDAG_* variables of the developer's shell."""
    for name in list(os.environ):
        if name.startswith("FLEETDAG_"):
            monkeypatch.delenv(name, raising=False)
    clear_config_cache()
    yield
    clear_config_cache()
