"""Async-safe execution context for log correlation.

The engine sets the run id, and the host runner sets the node and host
names, in context variables. They propagate through ``asyncio`` tasks and
into ``run_in_executor`` calls made with ``contextvars.copy_context()``, so
log records emitted deep inside a step can be attributed without passing
names around.
"""

from __future__ import annotations

from contextvars import ContextVar, Token
from typing import Any

from fleetdag.kernel.logging import set_correlation_id

_run_id_context: ContextVar[str | None] = ContextVar("run_id", default=None)
_current_node_context: ContextVar[str | None] = ContextVar("current_node", default=None)
_current_host_context: ContextVar[str | None] = ContextVar("current_host", default=None)


def set_run_id(run_id: str | None) -> Token[str | None]:
    if run_id is not None:
        set_correlation_id(run_id)
    return _run_id_context.set(run_id)


def get_run_id() -> str | None:
    return _run_id_context.get()


def set_current_node(node_name: str | None) -> Token[str | None]:
    return _current_node_context.set(node_name)


def get_current_node() -> str | None:
    return _current_node_context.get()


def set_current_host(host_name: str | None) -> Token[str | None]:
    return _current_host_context.set(host_name)


def get_current_host() -> str | None:
    return _current_host_context.get()


def log_context() -> dict[str, Any]:
    """Current correlation fields, ready for ``logger.bind(**log_context())``."""
    return {
        "run_id": _run_id_context.get(),
        "node": _current_node_context.get(),
        "host": _current_host_context.get(),
    }


class ExecutionScope:
    """Context manager setting run / node / host variables and restoring them.

    Examples
    --------
    Example usage::

        with ExecutionScope(run_id=result.run_id, node=node.name, host=host.name):
            await step.run(ctx, host)
    """

    __slots__ = ("_values", "_tokens")

    def __init__(
        self, run_id: str | None = None, node: str | None = None, host: str | None = None
    ) -> None:
        self._values = (run_id, node, host)
        self._tokens: list[tuple[ContextVar[str | None], Token[str | None]]] = []

    def __enter__(self) -> ExecutionScope:
        run_id, node, host = self._values
        if run_id is not None:
            self._tokens.append((_run_id_context, set_run_id(run_id)))
        if node is not None:
            self._tokens.append((_current_node_context, _current_node_context.set(node)))
        if host is not None:
            self._tokens.append((_current_host_context, _current_host_context.set(host)))
        return self

    def __exit__(self, *exc_info: object) -> None:
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()
