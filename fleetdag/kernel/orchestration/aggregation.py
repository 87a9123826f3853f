"""Status aggregation: host results into node status, node results into graph status.

All functions here are pure. The node dispatcher calls them again every time
a host result arrives to report progress, so they must give the same answer
for the same inputs no matter how often they run.

Node rule
---------
1. Some host not terminal yet: ``running`` (``pending`` if nothing reported).
2. Any host ``failed``: ``failed``.
3. Every host ``skipped``: ``skipped``; the skip reason is shared by the hosts
   (``precheck`` when every host was already in the desired state).
4. Otherwise: ``success``. Hosts whose precheck was satisfied count as done.

Graph rule
----------
``failed`` if any node failed, else ``skipped`` if the graph is non-empty and
every node was skipped, else ``success``. An empty graph succeeds.
"""

from __future__ import annotations

from collections.abc import Iterable

from fleetdag.kernel.domain.results import HostResult, NodeResult, SkipReason, Status


def aggregate_node_status(
    host_results: Iterable[HostResult], expected_hosts: int
) -> tuple[Status, SkipReason | None]:
    """Aggregate host results of one node.

    Parameters
    ----------
    host_results : Iterable[HostResult]
        Results reported so far, at most one per host.
    expected_hosts : int
        Number of hosts the node is bound to.

    Returns
    -------
    tuple[Status, SkipReason | None]
        Node status and, for ``skipped``, the reason.

    Examples
    --------
    >>> ok = HostResult(host_name="m1", status=Status.SUCCESS)
    >>> done = HostResult(host_name="m2", status=Status.SKIPPED, skip_reason=SkipReason.PRECHECK)
    >>> aggregate_node_status([ok, done], expected_hosts=2)
    (<Status.SUCCESS: 'success'>, None)
    >>> aggregate_node_status([ok], expected_hosts=2)
    (<Status.RUNNING: 'running'>, None)
    """
    results = list(host_results)
    reported = [hr for hr in results if hr.status != Status.PENDING]
    terminal = [hr for hr in reported if hr.status.is_terminal]

    if len(terminal) < expected_hosts:
        return (Status.RUNNING if reported else Status.PENDING), None

    if any(hr.status == Status.FAILED for hr in terminal):
        return Status.FAILED, None

    if all(hr.status == Status.SKIPPED for hr in terminal):
        reasons = {hr.skip_reason for hr in terminal}
        reason = reasons.pop() if len(reasons) == 1 else None
        return Status.SKIPPED, reason or SkipReason.PRECHECK

    return Status.SUCCESS, None


def aggregate_graph_status(node_results: Iterable[NodeResult]) -> Status:
    """Aggregate node statuses into the graph status.

    Examples
    --------
    >>> aggregate_graph_status([])
    <Status.SUCCESS: 'success'>
    """
    statuses = [nr.status for nr in node_results]
    if Status.FAILED in statuses:
        return Status.FAILED
    if statuses and all(s == Status.SKIPPED for s in statuses):
        return Status.SKIPPED
    return Status.SUCCESS


def dependency_satisfied(result: NodeResult, ignore_error: bool) -> bool:
    """Whether a finished dependency lets its dependents run.

    A dependency counts as satisfied when it succeeded, when every host's
    precheck reported the work as already done, or when it failed but its
    step tolerates failure. Any other skip blocks dependents.
    """
    if result.status == Status.SUCCESS:
        return True
    if result.status == Status.SKIPPED:
        return result.skip_reason == SkipReason.PRECHECK
    if result.status == Status.FAILED:
        return ignore_error
    return False


def summarize_node(result: NodeResult) -> str:
    """One-line, human readable description of a node's host outcomes."""
    hosts = list(result.host_results.values())
    failed = [hr.host_name for hr in hosts if hr.status == Status.FAILED]
    succeeded = [hr.host_name for hr in hosts if hr.status == Status.SUCCESS]
    satisfied = [
        hr.host_name
        for hr in hosts
        if hr.status == Status.SKIPPED and hr.skip_reason == SkipReason.PRECHECK
    ]

    if result.status == Status.FAILED:
        first = next(hr for hr in hosts if hr.status == Status.FAILED)
        return f"Failed on {len(failed)}/{len(hosts)} host(s) {failed}: {first.message}"
    if result.status == Status.SKIPPED and result.skip_reason == SkipReason.PRECHECK:
        return "Skipped: precheck condition already met on all hosts"
    if result.status == Status.SUCCESS:
        msg = f"Succeeded on {len(succeeded)} host(s)"
        if satisfied:
            msg += f", already satisfied on {len(satisfied)}"
        return msg
    return result.message
