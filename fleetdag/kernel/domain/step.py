"""Step capability: the unit of work a node runs on each of its hosts.

Steps are opaque to the engine. It only calls ``precheck``, ``run`` and,
after a failure, ``rollback``, and reads the ``meta`` record.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from fleetdag.kernel.utils.retry import NO_RETRY, RetryConfig

if TYPE_CHECKING:
    from fleetdag.kernel.context.run_context import StepContext
    from fleetdag.kernel.domain.host import Host


@dataclass(frozen=True, slots=True)
class StepMeta:
    """Descriptive and policy metadata of a step.

    Attributes
    ----------
    name : str
        Display name, used in results and logs.
    description : str
        Human readable summary.
    ignore_error : bool
        When True, a failure of this step does not block its dependents.
    retry : RetryConfig
        Per-host retry policy applied before recording a failure.
    timeout : float | None
        Per-host time limit in seconds for one attempt of ``run``.
    """

    name: str
    description: str = ""
    ignore_error: bool = False
    retry: RetryConfig = NO_RETRY
    timeout: float | None = None


@dataclass(frozen=True, slots=True)
class StepOutput:
    """What a step reports after running on one host."""

    success: bool = True
    stdout: str = ""
    stderr: str = ""
    message: str = ""


@runtime_checkable
class Step(Protocol):
    """Protocol every step implements."""

    @property
    def meta(self) -> StepMeta: ...

    async def precheck(self, ctx: StepContext, host: Host) -> bool:
        """Return True when the desired state already holds on ``host``."""
        ...

    async def run(self, ctx: StepContext, host: Host) -> StepOutput: ...

    async def rollback(self, ctx: StepContext, host: Host) -> None:
        """Undo this step's partial effects on ``host`` after a failed run."""
        ...


class BaseStep:
    """Convenience base with no-op precheck and rollback.

    Subclasses implement ``run``.

    Examples
    --------
    Example usage::

        class RestartKubelet(BaseStep):
            def __init__(self) -> None:
                super().__init__(StepMeta("restart-kubelet", retry=RetryConfig(3)))

            async def run(self, ctx, host):
                ...
                return StepOutput(stdout=out)
    """

    def __init__(self, meta: StepMeta) -> None:
        self._meta = meta

    @property
    def meta(self) -> StepMeta:
        return self._meta

    async def precheck(self, ctx: StepContext, host: Host) -> bool:
        return False

    async def run(self, ctx: StepContext, host: Host) -> StepOutput:
        raise NotImplementedError(f"Step '{self._meta.name}' does not implement run()")

    async def rollback(self, ctx: StepContext, host: Host) -> None:
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self._meta.name!r})"


class NoOpStep(BaseStep):
    """Always succeeds without touching the host. Used for barriers."""

    def __init__(self, name: str = "barrier", description: str = "Synchronization point") -> None:
        super().__init__(StepMeta(name=name, description=description))

    async def run(self, ctx: StepContext, host: Host) -> StepOutput:
        return StepOutput(success=True, message="no-op")
