"""Shared plumbing for commands: config loading, context lifecycle, errors."""
from __future__ import annotations

import asyncio
import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, NoReturn, TypeVar

import typer
from agentloop_core.config import AgentLoopConfig
from agentloop_core.errors import AgentLoopError
from agentloop_core.logging import setup_logging
from rich.console import Console
from rich.panel import Panel

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from agentloop_runtime.context import RuntimeContext

T = TypeVar("T")

console = Console()


def load_config(project_dir: Path | None = None) -> AgentLoopConfig:
    """Load the merged global + project configuration."""
    try:
        return AgentLoopConfig.load(project_dir or Path.cwd())
    except AgentLoopError as exc:
        _fail(exc)


async def _with_context(
    fn: Callable[[RuntimeContext], Awaitable[T]], *, with_llm: bool
) -> T:
    from agentloop_runtime.builder import RuntimeBuilder

    config = load_config()
    ctx = await RuntimeBuilder(config, with_llm=with_llm).build()
    try:
        return await fn(ctx)
    finally:
        await ctx.close()


def _fail(exc: BaseException) -> NoReturn:
    console.print(Panel(
        f"[red]{type(exc).__name__}: {exc}[/red]",
        title="Error",
        border_style="red",
    ))
    raise typer.Exit(1)


def run(
    fn: Callable[[RuntimeContext], Awaitable[T]],
    *,
    with_llm: bool = False,
    status: str | None = None,
) -> T:
    """Run ``fn`` against a freshly built runtime context.

    Domain errors are rendered as an error panel and exit with status 1.
    """
    setup_logging(level="WARNING")
    try:
        if status is None:
            return asyncio.run(_with_context(fn, with_llm=with_llm))
        with console.status(f"[bold cyan]{status}[/bold cyan]", spinner="dots"):
            return asyncio.run(_with_context(fn, with_llm=with_llm))
    except (AgentLoopError, ValueError) as exc:
        _fail(exc)


def fmt_time(ts: float | None) -> str:
    if ts is None:
        return "-"
    return datetime.datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M")


def truncate(text: Any, width: int = 60) -> str:
    text = str(text)
    return text if len(text) <= width else text[: width - 3] + "..."
