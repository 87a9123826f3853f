"""Run one step on one host.

Lifecycle per host:

1. ``precheck``: an error fails the host; True records the host as skipped
   because the desired state already holds.
2. ``run``: retried per the step's ``RetryConfig``, each attempt bounded by
   the step timeout (or the engine default). A ``StepOutput`` with
   ``success=False`` counts as a failed attempt.
3. On final failure, ``rollback`` is attempted for this host only. A rollback
   failure is appended to the host's message.

Errors never escape: they end up in the ``HostResult``. Only
``asyncio.CancelledError`` propagates, so the caller can record cancellation.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import TYPE_CHECKING

from fleetdag.kernel.context.execution_context import ExecutionScope
from fleetdag.kernel.domain.results import HostResult, SkipReason, Status
from fleetdag.kernel.exceptions import StepExecutionError, StepTimeoutError
from fleetdag.kernel.logging import get_logger
from fleetdag.kernel.utils.node_timer import Timer
from fleetdag.kernel.utils.retry import execute_with_retry

if TYPE_CHECKING:
    from fleetdag.kernel.context.run_context import RunContext, StepContext
    from fleetdag.kernel.domain.host import Host
    from fleetdag.kernel.domain.node import ExecutionNode
    from fleetdag.kernel.domain.step import Step, StepOutput

logger = get_logger(__name__)

PRECHECK_SATISFIED_MESSAGE = "Skipped: precheck condition already met"


class HostRunner:
    """Executes a node's step on a single host and records the outcome.

    Parameters
    ----------
    default_timeout : float | None
        Per-attempt timeout in seconds for steps that declare none.
    """

    def __init__(self, default_timeout: float | None = None) -> None:
        self.default_timeout = default_timeout

    async def run(
        self, node: ExecutionNode, host: Host, ctx: RunContext, result: HostResult
    ) -> HostResult:
        """Run ``node``'s step on ``host``, filling ``result`` in place."""
        step = node.step
        step_ctx = ctx.for_host(host)
        timer = Timer()

        result.status = Status.RUNNING
        result.start_time = timer.started_at

        with ExecutionScope(node=node.name, host=host.name):
            try:
                try:
                    already_done = await step.precheck(step_ctx, host)
                except Exception as e:
                    logger.warning(
                        "Precheck failed for '{node}' on '{host}': {error}",
                        node=node.name,
                        host=host.name,
                        error=e,
                    )
                    result.status = Status.FAILED
                    result.message = f"Precheck failed: {e}"
                    return result

                if already_done:
                    logger.info(
                        "Precheck satisfied for '{node}' on '{host}', skipping",
                        node=node.name,
                        host=host.name,
                    )
                    result.status = Status.SKIPPED
                    result.skip_reason = SkipReason.PRECHECK
                    result.message = PRECHECK_SATISFIED_MESSAGE
                    return result

                await self._run_with_retry(node, step, step_ctx, host, result)
                if result.status == Status.FAILED:
                    await self._rollback(node, step, step_ctx, host, result)
                return result
            finally:
                result.end_time = datetime.now()
                logger.debug(
                    "Host run of '{node}' on '{host}' ended {status} after {duration}",
                    node=node.name,
                    host=host.name,
                    status=result.status.value,
                    duration=timer.duration_str,
                )

    async def _run_with_retry(
        self,
        node: ExecutionNode,
        step: Step,
        step_ctx: StepContext,
        host: Host,
        result: HostResult,
    ) -> None:
        meta = step.meta
        timeout = meta.timeout if meta.timeout is not None else self.default_timeout

        async def attempt() -> StepOutput:
            result.attempts += 1
            try:
                async with asyncio.timeout(timeout):
                    output = await step.run(step_ctx, host)
            except TimeoutError as e:
                if timeout is None:
                    raise
                raise StepTimeoutError(meta.name, timeout) from e
            if not output.success:
                raise StepExecutionError(
                    output.message or f"Step '{meta.name}' reported failure",
                    stdout=output.stdout,
                    stderr=output.stderr,
                )
            return output

        def on_retry(attempt_no: int, max_retries: int, error: Exception, delay: float) -> None:
            logger.warning(
                "'{node}' on '{host}' failed (attempt {attempt}/{max}): {error}. "
                "Retrying in {delay:.1f}s",
                node=node.name,
                host=host.name,
                attempt=attempt_no,
                max=max_retries,
                error=error,
                delay=delay,
            )

        try:
            output = await execute_with_retry(attempt, meta.retry, on_retry=on_retry)
        except Exception as e:
            result.status = Status.FAILED
            result.message = str(e) or type(e).__name__
            if isinstance(e, StepExecutionError):
                result.stdout = e.stdout
                result.stderr = e.stderr
            logger.error(
                "'{node}' failed on '{host}' after {attempts} attempt(s): {error}",
                node=node.name,
                host=host.name,
                attempts=result.attempts,
                error=result.message,
            )
            return

        result.status = Status.SUCCESS
        result.stdout = output.stdout
        result.stderr = output.stderr
        result.message = output.message or "Step completed successfully"

    async def _rollback(
        self,
        node: ExecutionNode,
        step: Step,
        step_ctx: StepContext,
        host: Host,
        result: HostResult,
    ) -> None:
        try:
            await step.rollback(step_ctx, host)
        except Exception as e:
            logger.error(
                "Rollback of '{node}' on '{host}' failed: {error}",
                node=node.name,
                host=host.name,
                error=e,
            )
            result.message += f"; rollback failed: {e}"
