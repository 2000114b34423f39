"""A/B test commands: list, show, select, cancel."""
from __future__ import annotations

from typing import TYPE_CHECKING

import typer
from agentloop_core.types import Variant
from rich.panel import Panel
from rich.table import Table

from agentloop_cli._runtime import console, fmt_time, run, truncate

if TYPE_CHECKING:
    from agentloop_core.types import ABTest
    from agentloop_optimizer.ab_testing import ABTestManager
    from agentloop_runtime.context import RuntimeContext

abtest_app = typer.Typer(no_args_is_help=True)


def _manager(ctx: RuntimeContext) -> ABTestManager:
    from agentloop_optimizer.ab_testing import ABTestManager

    return ABTestManager(ctx.records, ctx.config.abtest)


def _show(test: ABTest) -> None:
    winner = test.winning_variant.value if test.winning_variant else "-"
    lines = [
        f"[bold]Agent:[/bold]    {test.agent_id}",
        f"[bold]Status:[/bold]   {test.status.value}"
        + (f" ({test.end_reason})" if test.end_reason else ""),
        f"[bold]Split:[/bold]    {test.traffic_split:.0%} to B",
        f"[bold]Winner:[/bold]   {winner}",
        f"[bold]A:[/bold]        {test.variant_a_score:.1f} over {test.variant_a_traces} traces",
        f"[bold]B:[/bold]        {test.variant_b_score:.1f} over {test.variant_b_traces} traces",
        f"[bold]Started:[/bold]  {fmt_time(test.started_at)}",
        f"[bold]Ended:[/bold]    {fmt_time(test.ended_at)}",
        "",
        f"[bold]Prompt A:[/bold] {truncate(test.variant_a_prompt, 200)}",
        f"[bold]Prompt B:[/bold] {truncate(test.variant_b_prompt, 200)}",
    ]
    console.print(Panel("\n".join(lines), title=f"A/B test {test.id}", border_style="cyan"))


@abtest_app.command("list")
def abtest_list(
    agent_id: str = typer.Argument(..., help="Agent id"),
    limit: int = typer.Option(10, "--limit", "-n"),
) -> None:
    """List an agent's A/B tests, newest first."""

    async def _list(ctx: RuntimeContext) -> list[ABTest]:
        return await _manager(ctx).get_tests(agent_id, limit)

    tests = run(_list)
    if not tests:
        console.print(f"[yellow]No A/B tests for {agent_id}.[/yellow]")
        raise typer.Exit(0)

    table = Table(title=f"A/B tests for {agent_id}", header_style="bold cyan")
    table.add_column("Id", style="bold")
    table.add_column("Status")
    table.add_column("A (n)", justify="right")
    table.add_column("B (n)", justify="right")
    table.add_column("Winner", justify="center")
    table.add_column("Started")
    for t in tests:
        table.add_row(
            t.id,
            t.status.value,
            f"{t.variant_a_score:.1f} ({t.variant_a_traces})",
            f"{t.variant_b_score:.1f} ({t.variant_b_traces})",
            t.winning_variant.value if t.winning_variant else "-",
            fmt_time(t.started_at),
        )
    console.print(table)


@abtest_app.command("show")
def abtest_show(test_id: str = typer.Argument(..., help="A/B test id")) -> None:
    """Show one A/B test in detail."""

    async def _get(ctx: RuntimeContext) -> ABTest:
        return await _manager(ctx).get_test(test_id)

    _show(run(_get))


@abtest_app.command("select")
def abtest_select(
    test_id: str = typer.Argument(..., help="A/B test id"),
    winner: Variant = typer.Argument(..., help="Winning variant (A or B)"),
) -> None:
    """Conclude a test with a manually chosen winner. B is rolled out."""

    async def _select(ctx: RuntimeContext) -> ABTest:
        return await _manager(ctx).select_winner(test_id, winner)

    test = run(_select)
    console.print(f"[green]✓[/green] Variant {winner.value} selected for {test.id}")
    _show(test)


@abtest_app.command("cancel")
def abtest_cancel(test_id: str = typer.Argument(..., help="A/B test id")) -> None:
    """Cancel a running test without a winner."""

    async def _cancel(ctx: RuntimeContext) -> ABTest:
        return await _manager(ctx).cancel_test(test_id)

    test = run(_cancel)
    console.print(f"[green]✓[/green] A/B test {test.id} cancelled")
