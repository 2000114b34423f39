"""Insight report command."""
from __future__ import annotations

import time
from typing import TYPE_CHECKING

import typer
from rich.table import Table

from agentloop_cli._runtime import console, fmt_time, run, truncate

if TYPE_CHECKING:
    from agentloop_core.types import AgentInsight
    from agentloop_runtime.context import RuntimeContext


def insights_command(
    agent_id: str = typer.Argument(..., help="Agent id"),
    days: int = typer.Option(7, "--days", "-d", help="Window in days"),
) -> None:
    """Cluster recent conversations and report patterns, anomalies, opportunities."""
    from agentloop_optimizer.insights import InsightsEngine

    since = time.time() - days * 86_400

    async def _generate(ctx: RuntimeContext) -> AgentInsight:
        return await InsightsEngine(ctx.records).generate_insights(agent_id, since)

    insight = run(_generate, status="Generating insights...")
    console.print(
        f"[bold]Insights for {agent_id}[/bold] "
        f"({fmt_time(insight.period_start)} → {fmt_time(insight.period_end)})"
    )
    if not insight.clusters:
        console.print("[yellow]No traces in this window.[/yellow]")
        return

    patterns = Table(title="Patterns", header_style="bold cyan")
    patterns.add_column("Cluster", style="bold")
    patterns.add_column("Size", justify="right")
    patterns.add_column("Satisfaction", justify="right")
    patterns.add_column("Tools")
    patterns.add_column("Recommendation")
    for p in insight.patterns:
        patterns.add_row(
            truncate(p["label"], 40),
            str(p["frequency"]),
            f"{p['avg_satisfaction']:.1f}",
            ", ".join(p["common_tools"]) or "-",
            p["recommendation"],
        )
    console.print(patterns)

    if insight.anomalies:
        anomalies = Table(title="Anomalies", header_style="bold red")
        anomalies.add_column("Type")
        anomalies.add_column("Severity")
        anomalies.add_column("Trace")
        anomalies.add_column("Description")
        for a in insight.anomalies:
            anomalies.add_row(a["type"], a["severity"], a["trace_id"], a["description"])
        console.print(anomalies)

    for o in insight.opportunities:
        console.print(f"[green]Opportunity ({o['type']}):[/green] {o['suggestion']}")
