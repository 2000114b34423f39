"""Safe-mode confirmation commands."""
from __future__ import annotations

from typing import TYPE_CHECKING

import typer
from rich.table import Table

from agentloop_cli._runtime import console, fmt_time, run, truncate

if TYPE_CHECKING:
    from agentloop_core.types import PendingAction
    from agentloop_runtime.context import RuntimeContext

pending_app = typer.Typer(no_args_is_help=True)


@pending_app.command("list")
def pending_list(agent_id: str = typer.Argument(..., help="Agent id")) -> None:
    """List tool calls awaiting confirmation."""
    from agentloop_optimizer.confirmations import ConfirmationGate

    async def _list(ctx: RuntimeContext) -> list[PendingAction]:
        return await ConfirmationGate(ctx.records).list_pending(agent_id)

    actions = run(_list)
    if not actions:
        console.print(f"[dim]Nothing pending for {agent_id}.[/dim]")
        return

    table = Table(title=f"Pending actions for {agent_id}", header_style="bold cyan")
    table.add_column("Id", style="bold")
    table.add_column("Tool")
    table.add_column("Input")
    table.add_column("Created")
    for a in actions:
        table.add_row(a.id, a.tool_name, truncate(a.tool_input), fmt_time(a.created_at))
    console.print(table)


@pending_app.command("resolve")
def pending_resolve(
    action_id: str = typer.Argument(..., help="Pending action id"),
    approve: bool = typer.Option(..., "--approve/--reject"),
    user_id: str | None = typer.Option(None, "--user", help="Resolving user id"),
) -> None:
    """Approve or reject a held tool call."""
    from agentloop_optimizer.confirmations import ConfirmationGate

    async def _resolve(ctx: RuntimeContext) -> PendingAction:
        return await ConfirmationGate(ctx.records).resolve(action_id, approve, user_id)

    action = run(_resolve)
    console.print(f"[green]✓[/green] {action.tool_name} ({action.id}) {action.status.value}")
