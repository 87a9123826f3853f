"""Configuration management commands."""

import json
from dataclasses import asdict

import typer
from rich.console import Console
from rich.table import Table

from fleetdag.kernel.config.loader import load_config
from fleetdag.kernel.exceptions import ConfigurationError

app = typer.Typer(help="Configuration management commands")
console = Console()


@app.command("show")
def show_config(
    ctx: typer.Context,
    key: str | None = typer.Argument(None, help="Dotted key, e.g. engine.run_timeout"),
) -> None:
    """Show the effective configuration or a single key."""
    path = ctx.obj.get("config_path") if ctx.obj else None
    try:
        config = asdict(load_config(path))
    except (FileNotFoundError, ConfigurationError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from e

    if key:
        value: object = config
        for part in key.split("."):
            if not isinstance(value, dict) or part not in value:
                console.print(f"[red]Unknown configuration key: {key}[/red]")
                raise typer.Exit(1)
            value = value[part]
        typer.echo(json.dumps(value, default=str) if isinstance(value, dict) else str(value))
        return

    if ctx.obj and ctx.obj.get("output_format") == "json":
        typer.echo(json.dumps(config, default=str, indent=2))
        return

    table = Table(show_header=True, header_style="bold magenta", title="Effective configuration")
    table.add_column("Key")
    table.add_column("Value")
    for section in ("engine", "logging"):
        for name, value in config[section].items():
            table.add_row(f"{section}.{name}", str(value))
    table.add_row("offline", str(config["offline"]))
    for name, value in sorted(config["settings"].items()):
        table.add_row(f"settings.{name}", str(value))
    console.print(table)
