"""
Ibex CLI - Transaction commands.

Group record changes on a short-lived branch so they become visible on the
record branch all at once, or not at all.
"""

import typer
from rich.console import Console

from ibex.cli.context import open_project
from ibex.cli.errors import ExitCode, print_error
from ibex.core.git import GitError
from ibex.core.worktree import (
    NoActiveTransactionError,
    TransactionActiveError,
    TransactionError,
    TransactionManager,
    WorktreeBusyError,
    WorktreeHealthError,
)

console = Console()
app = typer.Typer(
    name="tx",
    help="Group record changes into an all-or-nothing transaction",
    no_args_is_help=True,
)


def _fail(e: Exception) -> None:
    if isinstance(e, TransactionActiveError):
        print_error(str(e), solution="ibex tx commit  or  ibex tx abort")
        raise typer.Exit(ExitCode.USER_ERROR)
    if isinstance(e, NoActiveTransactionError):
        print_error(str(e), solution="ibex tx begin NAME")
        raise typer.Exit(ExitCode.USER_ERROR)
    if isinstance(e, WorktreeBusyError):
        print_error(str(e), solution="Wait for the other ibex command to finish")
        raise typer.Exit(ExitCode.BUSY)
    if isinstance(e, WorktreeHealthError):
        print_error("Record worktree needs repair", reason=e.health.message, solution="ibex doctor --fix")
        raise typer.Exit(ExitCode.GENERAL_ERROR)
    print_error("Transaction failed", reason=str(e))
    raise typer.Exit(ExitCode.GENERAL_ERROR)


@app.command()
def begin(name: str = typer.Argument(..., help="Transaction name")) -> None:
    """
    Start a transaction.

    Pending changes are committed to the record branch first; everything
    written afterwards stays on the transaction branch until commit.
    """
    manager = TransactionManager(open_project().worktree)
    try:
        state = manager.begin(name)
    except (TransactionError, WorktreeBusyError, WorktreeHealthError, GitError) as e:
        _fail(e)
    console.print(f"[green]Began transaction[/green] {state.name} [dim]({state.branch})[/dim]")


@app.command()
def commit(
    message: str = typer.Option("Commit transaction", "--message", "-m", help="Commit message"),
) -> None:
    """Merge the transaction into the record branch."""
    manager = TransactionManager(open_project().worktree)
    try:
        active = manager.active()
        tip = manager.commit(message)
    except (TransactionError, WorktreeBusyError, WorktreeHealthError, GitError) as e:
        _fail(e)
    short = tip[:8] if tip else "unchanged"
    console.print(f"[green]Committed transaction[/green] {active.name if active else ''} [dim]({short})[/dim]")
    console.print("[dim]Run 'ibex sync' to share the changes[/dim]")


@app.command()
def abort() -> None:
    """Discard the transaction and every change made inside it."""
    manager = TransactionManager(open_project().worktree)
    try:
        active = manager.active()
        manager.abort()
    except (TransactionError, WorktreeBusyError, WorktreeHealthError, GitError) as e:
        _fail(e)
    console.print(f"[yellow]Aborted transaction[/yellow] {active.name if active else ''}")


@app.command()
def status() -> None:
    """Show the active transaction, if any."""
    manager = TransactionManager(open_project().worktree)
    try:
        active = manager.active()
    except TransactionError as e:
        _fail(e)
    if active is None:
        console.print("[dim]No active transaction[/dim]")
        return
    console.print(f"[bold]{active.name}[/bold] on {active.branch}")
    console.print(f"  [dim]base:[/dim] {active.base_sha[:8]}  [dim]started:[/dim] {active.started_at.isoformat()}")
