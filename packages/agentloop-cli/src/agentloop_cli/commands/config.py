from __future__ import annotations

import dataclasses
from pathlib import Path

import typer
from rich.syntax import Syntax
from rich.table import Table

from agentloop_cli._runtime import console, load_config

config_app = typer.Typer(
    name="config",
    help="View agentloop configuration",
    invoke_without_command=True,
)


def _config_files() -> list[tuple[str, Path]]:
    project_path = Path.cwd() / ".agentloop" / "config.toml"
    if not project_path.exists():
        project_path = Path.cwd() / "agentloop.toml"
    return [
        ("Global", Path.home() / ".agentloop" / "config.toml"),
        ("Project", project_path),
    ]


@config_app.callback(invoke_without_command=True)
def config_command(ctx: typer.Context) -> None:
    """Show the merged configuration, section by section."""
    if ctx.invoked_subcommand is not None:
        return

    config = load_config()
    console.print(f"[bold]Project:[/bold] {config.project_name}")
    for field in dataclasses.fields(config):
        section = getattr(config, field.name)
        if not dataclasses.is_dataclass(section):
            continue
        table = Table(title=field.name, show_header=False, title_justify="left")
        table.add_column("Key", style="cyan")
        table.add_column("Value")
        for key, value in dataclasses.asdict(section).items():
            table.add_row(key, str(value))
        console.print(table)


@config_app.command("files")
def config_files() -> None:
    """Print the config files that contribute to the merged configuration."""
    found = False
    for label, path in _config_files():
        if not path.exists():
            continue
        found = True
        console.print(f"[bold]{label}[/bold] ({path}):")
        console.print(Syntax(path.read_text(), "toml", theme="monokai"))
        console.print()
    if not found:
        console.print("[yellow]No config files found; using defaults.[/yellow]")
