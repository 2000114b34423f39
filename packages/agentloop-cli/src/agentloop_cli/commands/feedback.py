"""Feedback inspection commands."""
from __future__ import annotations

from typing import TYPE_CHECKING

import typer
from rich.table import Table

from agentloop_cli._runtime import console, run

if TYPE_CHECKING:
    from agentloop_optimizer.feedback import FeedbackStats
    from agentloop_runtime.context import RuntimeContext

feedback_app = typer.Typer(no_args_is_help=True)


@feedback_app.command("stats")
def feedback_stats(
    agent_id: str = typer.Argument(..., help="Agent id"),
    days: int = typer.Option(30, "--days", "-d", help="Window in days"),
) -> None:
    """Show feedback counts and rates for an agent."""
    from agentloop_optimizer.feedback import FeedbackCollector

    async def _stats(ctx: RuntimeContext) -> FeedbackStats:
        collector = FeedbackCollector(ctx.records, ctx.config.feedback)
        return await collector.get_feedback_stats(agent_id, days)

    stats = run(_stats)

    table = Table(
        title=f"Feedback for {agent_id} (last {days} days)",
        show_header=True,
        header_style="bold cyan",
    )
    table.add_column("Type", style="bold")
    table.add_column("Count", justify="right")
    for type_, count in stats.by_type.items():
        table.add_row(type_, str(count))
    console.print(table)
    console.print(
        f"[bold]Total:[/bold] {stats.total}  "
        f"[green]positive {stats.positive_rate:.0%}[/green]  "
        f"[red]negative {stats.negative_rate:.0%}[/red]  "
        f"[yellow]edits {stats.edit_rate:.0%}[/yellow]"
    )
