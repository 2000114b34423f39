"""Run an optimization pass for an agent."""
from __future__ import annotations

from typing import TYPE_CHECKING

import typer
from rich.panel import Panel
from rich.table import Table

from agentloop_cli._runtime import console, run, truncate

if TYPE_CHECKING:
    from agentloop_optimizer.types import OptimizationResult
    from agentloop_runtime.context import RuntimeContext


def optimize_command(
    agent_id: str = typer.Argument(..., help="Agent id"),
    triggered_by: str = typer.Option(
        "manual", "--triggered-by", help="Label recorded on the run"
    ),
) -> None:
    """Mine corrections, generate prompt variations and start an A/B test."""
    from agentloop_optimizer.ab_testing import ABTestManager
    from agentloop_optimizer.feedback import FeedbackCollector
    from agentloop_optimizer.optimizer import AutoOptimizer

    async def _optimize(ctx: RuntimeContext) -> OptimizationResult:
        cfg = ctx.config
        optimizer = AutoOptimizer(
            ctx.records,
            ctx.llm,
            config=cfg.optimizer,
            ab_tests=ABTestManager(ctx.records, cfg.abtest),
            collector=FeedbackCollector(
                ctx.records, cfg.feedback, optimizer_config=cfg.optimizer
            ),
        )
        return await optimizer.optimize_agent(agent_id, triggered_by=triggered_by)

    result = run(_optimize, with_llm=True, status="Optimizing...")

    patterns = Table(title="Edit patterns", header_style="bold cyan")
    patterns.add_column("Pattern")
    patterns.add_column("Category")
    patterns.add_column("Frequency", justify="right")
    for p in result.edit_patterns:
        patterns.add_row(truncate(p.pattern), p.category.value, str(p.frequency))
    console.print(patterns)

    scores = Table(title="Variations", header_style="bold cyan")
    scores.add_column("Variation", style="bold")
    scores.add_column("Score", justify="right")
    scores.add_column("Improvements", justify="right")
    for r in result.test_results:
        scores.add_row(r.variation_id, f"{r.score:.1f}", str(len(r.improvements)))
    console.print(scores)

    console.print(Panel(
        f"{result.recommendation}\n\n"
        f"[bold]A/B test:[/bold] {result.ab_test_id}\n"
        f"[bold]Run:[/bold]     {result.run_id}",
        title=f"Best: {result.best_variation.id}",
        border_style="green",
    ))
