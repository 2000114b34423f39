from __future__ import annotations

import typer

from agentloop_cli.commands.abtest import abtest_app
from agentloop_cli.commands.build import build_command
from agentloop_cli.commands.config import config_app
from agentloop_cli.commands.feedback import feedback_app
from agentloop_cli.commands.insights import insights_command
from agentloop_cli.commands.optimize import optimize_command
from agentloop_cli.commands.pending import pending_app
from agentloop_cli.commands.proposals import proposals_app

app = typer.Typer(
    name="agentloop",
    help="agentloop: agent runtime with a continuous optimization loop",
    no_args_is_help=True,
)

app.add_typer(config_app, name="config", help="View configuration")
app.add_typer(feedback_app, name="feedback", help="Inspect user feedback")
app.add_typer(abtest_app, name="abtest", help="Manage prompt A/B tests")
app.add_typer(
    proposals_app,
    name="proposals",
    help="Audit agents and review modification proposals",
)
app.add_typer(pending_app, name="pending", help="Confirm held tool calls")
app.command("optimize")(optimize_command)
app.command("insights")(insights_command)
app.command("build")(build_command)


@app.command()
def version() -> None:
    """Show the agentloop version."""
    from agentloop_core import __version__
    from rich.console import Console

    Console().print(f"agentloop {__version__}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
