"""
Ibex CLI - Workspace commands.

Save the working copy into a named workspace (or the outbox), import it
back, and manage saved workspaces.
"""

import typer
from rich.console import Console
from rich.table import Table

from ibex.cli.context import open_project, writable_store
from ibex.cli.errors import ExitCode, print_error
from ibex.core.sync import SyncStateStore
from ibex.core.sync.baseline import last_known_remote
from ibex.core.workspace import OUTBOX, WorkspaceError, WorkspaceNotFoundError, WorkspaceStore, validate_name

console = Console()
app = typer.Typer(
    name="workspace",
    help="Manage saved workspaces",
    no_args_is_help=True,
)


def _workspace_name(name: str | None, outbox: bool) -> str:
    if outbox and name:
        print_error("Pass either a workspace name or --outbox, not both")
        raise typer.Exit(ExitCode.USER_ERROR)
    if not outbox and not name:
        print_error("Missing workspace name", solution="ibex save NAME  or  ibex save --outbox")
        raise typer.Exit(ExitCode.USER_ERROR)
    try:
        return validate_name(OUTBOX if outbox else name)
    except WorkspaceError as e:
        print_error(str(e))
        raise typer.Exit(ExitCode.USER_ERROR)


def save(
    name: str | None = typer.Argument(None, help="Workspace name"),
    outbox: bool = typer.Option(False, "--outbox", help="Save into the outbox"),
    updates_only: bool = typer.Option(
        False,
        "--updates-only",
        help="Save only records that differ from the last known remote state",
    ),
) -> None:
    """
    Save the working copy's records into a workspace.

    Pending record changes are committed locally first (not pushed).

    Examples:
        ibex save before-refactor
        ibex save --outbox --updates-only
    """
    workspace = _workspace_name(name, outbox)
    project = open_project()
    store = WorkspaceStore(project.root)
    baseline = last_known_remote(project.worktree, SyncStateStore(project.root).load())
    if updates_only and not baseline.known:
        console.print("[yellow]No known remote state; saving every record[/yellow]")

    with writable_store(project, f"save {workspace}") as records:
        project.worktree.commit_changes(f"Record local changes before saving {workspace}")
        result = store.save(
            workspace,
            records.data_dir,
            updates_only=updates_only,
            baseline=baseline.records,
            source_revision=project.worktree.checked_out_sha(),
        )

    console.print(
        f"[green]Saved[/green] {result.saved} record(s) to {workspace} "
        f"({result.new} new, {result.updated} updated, {result.unchanged} unchanged)"
    )
    if result.skipped_unmodified:
        console.print(f"[dim]Skipped {result.skipped_unmodified} unmodified record(s)[/dim]")
    if result.conflicts:
        console.print(f"[yellow]{len(result.conflicts)} field conflict(s) archived in the workspace attic[/yellow]")
    for error in result.errors:
        console.print(f"[red]✗[/red] {error}")
    if result.errors:
        raise typer.Exit(ExitCode.GENERAL_ERROR)


def import_workspace(
    name: str | None = typer.Argument(None, help="Workspace name"),
    outbox: bool = typer.Option(False, "--outbox", help="Import the outbox"),
    clear_on_success: bool = typer.Option(
        False,
        "--clear-on-success",
        help="Delete the workspace once its records are committed",
    ),
) -> None:
    """
    Merge a workspace into the working copy and commit it locally.

    Examples:
        ibex import before-refactor
        ibex import --outbox --clear-on-success
    """
    workspace = _workspace_name(name, outbox)
    project = open_project()
    store = WorkspaceStore(project.root)

    try:
        with writable_store(project, f"import {workspace}") as records:
            result = store.import_into(
                workspace,
                records.data_dir,
                commit=project.worktree.commit_changes,
                clear_on_success=clear_on_success,
                records_at=project.worktree.known_records_at,
            )
    except WorkspaceNotFoundError as e:
        print_error(str(e), solution="ibex workspace list")
        raise typer.Exit(ExitCode.USER_ERROR)

    console.print(
        f"[green]Imported[/green] {workspace}: {result.new} new, {result.updated} updated, "
        f"{result.unchanged} unchanged"
    )
    if result.conflicts:
        console.print(f"[yellow]{len(result.conflicts)} field conflict(s) archived in the attic[/yellow]")
    if result.cleared:
        console.print(f"[dim]Deleted workspace {workspace}[/dim]")
    for error in result.errors:
        console.print(f"[red]✗[/red] {error}")
    if result.errors:
        raise typer.Exit(ExitCode.GENERAL_ERROR)
    console.print("[dim]Run 'ibex sync' to share the imported records[/dim]")


@app.command(name="list")
def list_workspaces() -> None:
    """List saved workspaces."""
    project = open_project(require_initialized=False)
    workspaces = WorkspaceStore(project.root).list()
    if not workspaces:
        console.print("[dim]No workspaces[/dim]")
        return

    table = Table(title="Workspaces")
    table.add_column("Name", style="cyan")
    table.add_column("Records", style="green")
    table.add_column("Path", style="dim")
    for info in workspaces:
        table.add_row(info.name, str(info.record_count), str(info.path))
    console.print(table)


@app.command()
def delete(
    name: str = typer.Argument(..., help="Workspace name"),
    force: bool = typer.Option(False, "--force", "-f", help="Do not ask for confirmation"),
) -> None:
    """Delete a saved workspace."""
    project = open_project(require_initialized=False)
    store = WorkspaceStore(project.root)
    try:
        exists = store.exists(name)
    except WorkspaceError as e:
        print_error(str(e))
        raise typer.Exit(ExitCode.USER_ERROR)
    if not exists:
        print_error(f"Workspace '{name}' does not exist", solution="ibex workspace list")
        raise typer.Exit(ExitCode.USER_ERROR)
    if not force and not typer.confirm(f"Delete workspace {name}?"):
        raise typer.Exit(ExitCode.SUCCESS)
    store.delete(name)
    console.print(f"[green]Deleted[/green] workspace {name}")
