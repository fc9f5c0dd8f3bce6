"""
Ibex CLI - Main application entry point.

This module sets up the Typer CLI application with all subcommands.
"""

import logging
import sys

import typer
from rich.console import Console

from ibex import __version__
from ibex.cli import attic, doctor, init_cmd, records, sync, tx, workspace
from ibex.core.config.env import load_layered_env

# Help panel names for command grouping
PANEL_RECORDS = "Work with Records"
PANEL_SYNC = "Sync and Stage"
PANEL_MAINTAIN = "Maintain"

console = Console()

app = typer.Typer(
    name="ibex",
    help="Git-backed issue records that sync without a server",
    no_args_is_help=False,
    invoke_without_command=True,
    context_settings={"help_option_names": ["--help", "-h"]},
)


@app.callback()
def main(
    ctx: typer.Context,
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug output with detailed logging",
    ),
) -> None:
    """
    Ibex - serverless issue records on a git branch.

    Records live on a dedicated branch checked out in a hidden worktree.
    Every clone edits locally and runs 'ibex sync' to exchange changes;
    concurrent edits merge field by field.

    Quick Start:
        1. ibex init                  # Create the record worktree
        2. ibex create "Title"        # Create a record
        3. ibex sync                  # Share it

    Staging:
        ibex save --outbox            # Stage records locally
        ibex import --outbox          # Bring them back
        ibex tx begin NAME            # Group changes
    """
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    # Precedence: OS env > project .env > user .env
    load_layered_env()

    ctx.obj = {"debug": debug}

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(0)


# =============================================================================
# Work with Records
# =============================================================================

app.command(name="init", rich_help_panel=PANEL_RECORDS)(init_cmd.init)
app.command(name="create", rich_help_panel=PANEL_RECORDS)(records.create)
app.command(name="update", rich_help_panel=PANEL_RECORDS)(records.update)
app.command(name="show", rich_help_panel=PANEL_RECORDS)(records.show)
app.command(name="list", rich_help_panel=PANEL_RECORDS)(records.list_records)


# =============================================================================
# Sync and Stage
# =============================================================================

app.command(name="sync", rich_help_panel=PANEL_SYNC)(sync.sync)
app.command(name="save", rich_help_panel=PANEL_SYNC)(workspace.save)
app.command(name="import", rich_help_panel=PANEL_SYNC)(workspace.import_workspace)
app.add_typer(workspace.app, name="workspace", rich_help_panel=PANEL_SYNC)
app.add_typer(tx.app, name="tx", rich_help_panel=PANEL_SYNC)


# =============================================================================
# Maintain
# =============================================================================

app.add_typer(attic.app, name="attic", rich_help_panel=PANEL_MAINTAIN)
app.command(name="doctor", rich_help_panel=PANEL_MAINTAIN)(doctor.doctor)


@app.command(rich_help_panel=PANEL_MAINTAIN)
def version() -> None:
    """Show ibex version and exit."""
    console.print(f"ibex version {__version__}")
    raise typer.Exit(0)


def cli_main() -> None:
    """Main CLI entry point."""
    app()


__all__ = ["app", "cli_main"]
