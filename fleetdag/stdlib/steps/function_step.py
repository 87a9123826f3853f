"""FunctionStep: wrap a plain callable as a step.

Synchronous callables run in the default thread pool with the current
context copied, so blocking SSH libraries do not stall the event loop and
log correlation still works.
"""

from __future__ import annotations

import asyncio
import contextvars
import functools
import inspect
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from fleetdag.kernel.domain.step import BaseStep, StepMeta, StepOutput
from fleetdag.kernel.exceptions import TypeMismatchError

if TYPE_CHECKING:
    from fleetdag.kernel.context.run_context import StepContext
    from fleetdag.kernel.domain.host import Host

StepCallable = Callable[["StepContext", "Host"], Any]


async def _call(fn: StepCallable, ctx: StepContext, host: Host) -> Any:
    if inspect.iscoroutinefunction(fn):
        return await fn(ctx, host)
    loop = asyncio.get_running_loop()
    call_ctx = contextvars.copy_context()
    return await loop.run_in_executor(None, functools.partial(call_ctx.run, fn, ctx, host))


class FunctionStep(BaseStep):
    """Step backed by callables taking ``(ctx, host)``.

    ``fn`` may return a ``StepOutput``, a string (taken as stdout), ``None``
    (success) or ``False`` (failure). Raising marks the attempt failed.

    Examples
    --------
    >>> step = FunctionStep("noop", lambda ctx, host: None)
    >>> step.meta.name
    'noop'

    Example usage::

        def restart(ctx, host):
            return ssh(host).run("systemctl restart kubelet")

        step = FunctionStep(
            "restart-kubelet",
            restart,
            precheck=lambda ctx, host: kubelet_healthy(host),
            retry=RetryConfig(max_retries=3, delay=5),
        )
    """

    def __init__(
        self,
        name: str,
        fn: StepCallable,
        *,
        precheck: StepCallable | None = None,
        rollback: StepCallable | None = None,
        description: str = "",
        **meta_options: Any,
    ) -> None:
        super().__init__(StepMeta(name=name, description=description, **meta_options))
        self.fn = fn
        self._precheck = precheck
        self._rollback = rollback

    async def precheck(self, ctx: StepContext, host: Host) -> bool:
        if self._precheck is None:
            return False
        return bool(await _call(self._precheck, ctx, host))

    async def run(self, ctx: StepContext, host: Host) -> StepOutput:
        value = await _call(self.fn, ctx, host)
        if value is None or value is True:
            return StepOutput(success=True)
        if value is False:
            return StepOutput(success=False, message=f"Step '{self.meta.name}' returned False")
        if isinstance(value, StepOutput):
            return value
        if isinstance(value, str):
            return StepOutput(success=True, stdout=value)
        raise TypeMismatchError(
            f"return value of step '{self.meta.name}'", "StepOutput | str | bool | None", type(value)
        )

    async def rollback(self, ctx: StepContext, host: Host) -> None:
        if self._rollback is not None:
            await _call(self._rollback, ctx, host)
