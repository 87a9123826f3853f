"""fleetdag CLI - Main entrypoint."""

import typer
from rich.console import Console

from fleetdag.cli.commands import config_cmd, report_cmd
from fleetdag.kernel.logging import configure_logging

app = typer.Typer(
    name="fleetdag",
    help="fleetdag - Execution graphs for multi-host infrastructure changes.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=False,
)

console = Console()

app.command("report", help="Render a saved run result")(report_cmd.report)
app.add_typer(config_cmd.app, name="config", help="Configuration management")


def _version_callback(value: bool) -> None:
    if value:
        from fleetdag import __version__

        console.print(f"[bold blue]fleetdag[/bold blue] version [green]{__version__}[/green]")
        raise typer.Exit()


@app.callback()
def callback(
    ctx: typer.Context,
    *,
    config: str | None = typer.Option(
        None, "--config", "-c", help="Path to a kind: Config YAML or pyproject.toml"
    ),
    json_out: bool = typer.Option(False, "--json", help="Output machine-readable JSON"),
    log_level: str = typer.Option(
        "warning", "--log-level", help="Log level: debug|info|warning|error"
    ),
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """fleetdag CLI.

    Global flags are parsed here and stored on `ctx.obj` for subcommands.
    """
    if ctx.obj is None:
        ctx.obj = {}
    ctx.obj.update({
        "config_path": config,
        "output_format": "json" if json_out else "pretty",
    })

    configure_logging(level=log_level.upper(), format="rich")  # type: ignore[arg-type]


def main() -> None:
    """Main CLI entrypoint."""
    app()


if __name__ == "__main__":
    main()
