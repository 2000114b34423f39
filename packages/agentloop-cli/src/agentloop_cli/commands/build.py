"""Draft a new agent from a natural-language description."""
from __future__ import annotations

from typing import TYPE_CHECKING

import typer
from rich.panel import Panel
from rich.table import Table

from agentloop_cli._runtime import console, run

if TYPE_CHECKING:
    from agentloop_optimizer.agent_builder import BuiltAgent
    from agentloop_runtime.context import RuntimeContext


def build_command(
    agent_id: str = typer.Argument(..., help="Id for the new agent"),
    description: str = typer.Argument(..., help="What the agent should do"),
    requirement: list[str] = typer.Option(
        [], "--requirement", "-r", help="Extra requirement (repeatable)"
    ),
    save: bool = typer.Option(False, "--save", help="Store the drafted agent"),
    offline: bool = typer.Option(
        False, "--offline", help="Use keyword analysis instead of the LLM"
    ),
) -> None:
    """Analyze a description and draft an agent config."""
    from agentloop_optimizer.agent_builder import AgentBuilder

    async def _build(ctx: RuntimeContext) -> BuiltAgent:
        if save and await ctx.records.find_agent(agent_id) is not None:
            msg = f"Agent {agent_id!r} already exists"
            raise ValueError(msg)
        built = await AgentBuilder(ctx.llm).build_agent(
            agent_id, description, requirements=requirement or None
        )
        if save:
            await ctx.records.save_agent(built.config)
        return built

    built = run(_build, with_llm=not offline, status="Drafting agent...")
    intent, config = built.intent, built.config

    table = Table(title=intent.agent_name, header_style="bold cyan", show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Category", intent.category.value)
    table.add_row("Data sources", ", ".join(intent.data_sources) or "-")
    table.add_row("Output", intent.output_format)
    table.add_row("Model", config.model.value)
    table.add_row("Temperature", f"{config.temperature:.1f}")
    table.add_row("Tools", ", ".join(config.tools))
    console.print(table)
    console.print(Panel(config.system_prompt, title="System prompt", border_style="cyan"))
    if save:
        console.print(f"[green]✓[/green] Saved agent {agent_id}")
