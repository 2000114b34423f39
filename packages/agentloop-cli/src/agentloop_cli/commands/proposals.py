"""Self-modification commands: analyze an agent, list and review proposals."""
from __future__ import annotations

from typing import TYPE_CHECKING

import typer
from agentloop_core.types import ProposalStatus
from rich.panel import Panel
from rich.table import Table

from agentloop_cli._runtime import console, fmt_time, run, truncate

if TYPE_CHECKING:
    from agentloop_core.types import ModificationProposal
    from agentloop_optimizer.self_modifier import SelfModificationResult, SelfModifier
    from agentloop_runtime.context import RuntimeContext

proposals_app = typer.Typer(no_args_is_help=True)


def _modifier(ctx: RuntimeContext) -> SelfModifier:
    from agentloop_optimizer.self_modifier import SelfModifier

    return SelfModifier(ctx.records, ctx.llm, ctx.config.self_modifier)


def _proposal_table(title: str, proposals: list[ModificationProposal]) -> Table:
    table = Table(title=title, header_style="bold cyan")
    table.add_column("Id", style="bold")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Current → Proposed")
    table.add_column("Created")
    for p in proposals:
        table.add_row(
            p.id,
            p.type.value,
            p.status.value,
            f"{truncate(p.current, 30)} → {truncate(p.proposed, 30)}",
            fmt_time(p.created_at),
        )
    return table


@proposals_app.command("analyze")
def proposals_analyze(agent_id: str = typer.Argument(..., help="Agent id")) -> None:
    """Audit an agent's recent performance and propose modifications."""

    async def _analyze(ctx: RuntimeContext) -> SelfModificationResult:
        return await _modifier(ctx).propose_modifications(agent_id)

    result = run(_analyze, with_llm=True, status="Analyzing...")
    a = result.analysis
    console.print(Panel(
        "\n".join([
            f"[bold]Conversations:[/bold]  {a.total_conversations}",
            f"[bold]Success rate:[/bold]   {a.success_rate:.0%}",
            f"[bold]Satisfaction:[/bold]   {a.avg_satisfaction:.1f}/5",
            f"[bold]Avg cost:[/bold]       ${a.avg_cost:.3f}",
            f"[bold]Hallucination:[/bold]  {a.hallucination_rate:.0%}",
            f"[bold]Failures:[/bold]       {', '.join(a.common_failures) or '-'}",
            f"[bold]Complaints:[/bold]     {', '.join(a.top_user_complaints) or '-'}",
        ]),
        title=f"Performance: {agent_id}",
        border_style="cyan",
    ))
    if result.proposals:
        console.print(_proposal_table("Proposals", result.proposals))
    console.print(f"\n{result.recommendation}")


@proposals_app.command("list")
def proposals_list(
    agent_id: str = typer.Argument(..., help="Agent id"),
    status: ProposalStatus | None = typer.Option(
        None, "--status", "-s", help="Only proposals with this status"
    ),
) -> None:
    """List an agent's modification proposals."""

    async def _list(ctx: RuntimeContext) -> list[ModificationProposal]:
        return await _modifier(ctx).get_proposals(agent_id, status)

    proposals = run(_list)
    if not proposals:
        console.print(f"[yellow]No proposals for {agent_id}.[/yellow]")
        raise typer.Exit(0)
    console.print(_proposal_table(f"Proposals for {agent_id}", proposals))


@proposals_app.command("apply")
def proposals_apply(
    proposal_id: str = typer.Argument(..., help="Proposal id"),
    approve: bool = typer.Option(
        ..., "--approve/--reject", help="Approve and apply, or reject"
    ),
) -> None:
    """Review a pending proposal. Approval applies it immediately."""

    async def _apply(ctx: RuntimeContext) -> ModificationProposal:
        return await _modifier(ctx).apply_modification(proposal_id, approve)

    proposal = run(_apply)
    verb = "applied" if approve else "rejected"
    console.print(
        f"[green]✓[/green] Proposal {proposal.id} ({proposal.type.value}) {verb}"
    )
