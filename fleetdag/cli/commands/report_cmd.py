"""Render a saved GraphExecutionResult (JSON or YAML)."""

from pathlib import Path

import typer
import yaml
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from fleetdag.kernel.domain.results import GraphExecutionResult, NodeResult, Status

console = Console()

_STATUS_STYLE = {
    Status.SUCCESS: "green",
    Status.FAILED: "bold red",
    Status.SKIPPED: "yellow",
    Status.RUNNING: "cyan",
    Status.PENDING: "dim",
}


def _styled(status: Status) -> str:
    style = _STATUS_STYLE.get(status, "white")
    return f"[{style}]{status.value}[/{style}]"


def _duration(seconds: float | None) -> str:
    return "-" if seconds is None else f"{seconds:.2f}s"


def _summary_panel(result: GraphExecutionResult) -> Panel:
    summary = result.summary()
    flags = []
    if result.dry_run:
        flags.append("dry run")
    if result.cancelled:
        flags.append("cancelled")
    lines = [
        f"[bold]Graph:[/bold] {result.graph_name}",
        f"[bold]Run:[/bold] {result.run_id or '-'}",
        f"[bold]Status:[/bold] {_styled(result.status)}"
        + (f" ({', '.join(flags)})" if flags else ""),
        f"[bold]Started:[/bold] {result.start_time.isoformat(timespec='seconds')}",
        (
            f"[bold]Nodes:[/bold] {summary['total']} total, "
            f"[green]{summary['success']} succeeded[/green], "
            f"[red]{summary['failed']} failed[/red], "
            f"[yellow]{summary['skipped']} skipped[/yellow]"
        ),
    ]
    return Panel("\n".join(lines), title="Run summary", expand=False)


def _node_table(nodes: list[NodeResult]) -> Table:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Node")
    table.add_column("Step")
    table.add_column("Hosts")
    table.add_column("Status")
    table.add_column("Duration", justify="right")
    table.add_column("Message", overflow="fold")
    for node in nodes:
        table.add_row(
            node.node_name,
            node.step_name,
            ", ".join(node.hosts),
            _styled(node.status),
            _duration(node.duration_seconds),
            node.message,
        )
    return table


def _host_failures_table(nodes: list[NodeResult]) -> Table:
    table = Table(show_header=True, header_style="bold red", title="Host failures")
    table.add_column("Node")
    table.add_column("Host")
    table.add_column("Attempts", justify="right")
    table.add_column("Message", overflow="fold")
    table.add_column("stderr", overflow="fold")
    for node in nodes:
        for host in node.failed_hosts():
            table.add_row(
                node.node_name,
                host.host_name,
                str(host.attempts),
                host.message,
                host.stderr.strip()[-500:],
            )
    return table


def report(
    ctx: typer.Context,
    result_file: Path = typer.Argument(..., help="Saved result (.json, .yaml or .yml)"),
    failed_only: bool = typer.Option(
        False, "--failed-only", "-f", help="Only show failed and skipped nodes"
    ),
) -> None:
    """Render a run result and exit 1 when the run failed."""
    if not result_file.exists():
        console.print(f"[red]Result file not found: {result_file}[/red]")
        raise typer.Exit(2)

    try:
        result = GraphExecutionResult.load(result_file)
    except (ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Cannot read result file {result_file}: {e}[/red]")
        raise typer.Exit(2) from e

    if ctx.obj and ctx.obj.get("output_format") == "json":
        typer.echo(result.to_json())
    else:
        nodes = sorted(
            result.node_results.values(),
            key=lambda n: (n.start_time or n.end_time or result.start_time, n.node_name),
        )
        if failed_only:
            nodes = [n for n in nodes if n.status in (Status.FAILED, Status.SKIPPED)]

        console.print(_summary_panel(result))
        if nodes:
            console.print(_node_table(nodes))
        failed = [n for n in nodes if n.status == Status.FAILED]
        if failed:
            console.print(_host_failures_table(failed))

    if result.status == Status.FAILED:
        raise typer.Exit(1)
