"""
Ibex CLI - Doctor command.

Diagnose and optionally fix the record worktree and local sync state.
"""

import typer
from rich.console import Console
from rich.panel import Panel

from ibex.cli.context import open_project
from ibex.cli.errors import ExitCode
from ibex.core.git import GitError
from ibex.core.records import RecordStore
from ibex.core.sync import SyncStateStore
from ibex.core.workspace import OUTBOX, WorkspaceStore
from ibex.core.worktree import (
    DataWorktree,
    TransactionError,
    TransactionManager,
    WorktreeHealthError,
    WorktreeStatus,
)

console = Console()


def check_worktree(worktree: DataWorktree, fix: bool) -> int:
    """
    Check worktree health, repairing it when ``fix`` is set.

    Returns:
        Number of unresolved issues
    """
    try:
        active = TransactionManager(worktree).active()
    except TransactionError as e:
        console.print(f"[red]✗[/red] {e}")
        return 1
    expected = active.branch if active else None
    health = worktree.check_health(expected_branch=expected)
    if health.healthy:
        console.print(f"[green]✓[/green] Record worktree on {health.branch} at {(health.commit or '')[:8]}")
        return 0

    console.print(f"[yellow]![/yellow] Record worktree is {health.status.value}: {health.message}")
    if not fix:
        console.print("  [dim]Run 'ibex doctor --fix' to repair[/dim]")
        return 1
    if active is not None and health.status is WorktreeStatus.WRONG_BRANCH:
        console.print("  [dim]A transaction is active; finish it with 'ibex tx commit' or 'ibex tx abort'[/dim]")
        return 1
    try:
        repaired = worktree.repair()
    except (GitError, WorktreeHealthError) as e:
        console.print(f"[red]✗[/red] Repair failed: {e}")
        return 1
    if repaired.healthy:
        console.print("[green]✓[/green] Record worktree repaired")
        return 0
    console.print(f"[red]✗[/red] Still {repaired.status.value}: {repaired.message}")
    return 1


def check_records(store: RecordStore) -> int:
    loaded = store.load_all()
    for error in loaded.errors:
        console.print(f"[red]✗[/red] Unreadable record {error.path}: {error}")
    if not loaded.errors:
        console.print(f"[green]✓[/green] {len(loaded.records)} record(s) readable")
    return len(loaded.errors)


def doctor(
    fix: bool = typer.Option(False, "--fix", help="Repair what can be repaired"),
) -> None:
    """
    Diagnose the record worktree and local sync state.

    Examples:
        ibex doctor
        ibex doctor --fix
    """
    project = open_project(require_initialized=False)
    console.print(Panel("[bold]ibex doctor[/bold]", expand=False))

    issues = check_worktree(project.worktree, fix)
    if project.worktree.check_health().status is not WorktreeStatus.MISSING:
        issues += check_records(project.worktree.store)

    state = SyncStateStore(project.root).load()
    remote = state.remote(project.config.sync.remote)
    if remote.last_failure:
        kind = f" ({remote.last_failure_kind})" if remote.last_failure_kind else ""
        console.print(f"[yellow]![/yellow] Last sync failed{kind}: {remote.last_failure}")
    elif remote.last_synced_sha:
        console.print(f"[green]✓[/green] Last synced {remote.last_synced_sha[:8]}")

    if WorkspaceStore(project.root).exists(OUTBOX):
        console.print("[yellow]![/yellow] The outbox holds unsent records; 'ibex sync' imports it once a push succeeds")

    if issues:
        console.print(f"\n[yellow]{issues} issue(s) found[/yellow]")
        raise typer.Exit(ExitCode.GENERAL_ERROR)
    console.print("\n[green]No issues found[/green]")
