"""
Ibex CLI - Attic commands.

Browse the values discarded by last-write-wins merges.
"""

import json
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from ibex.cli.context import open_project
from ibex.cli.errors import ExitCode, print_error
from ibex.core.attic import AtticStore
from ibex.core.records import IdMapping

console = Console()
app = typer.Typer(
    name="attic",
    help="Inspect conflict losers kept by sync",
    no_args_is_help=True,
)


def _record_id(data_dir: Path, key: str | None) -> str | None:
    if key is None:
        return None
    return IdMapping.load(data_dir).resolve(key) or key


@app.command(name="list")
def list_entries(
    record: str | None = typer.Argument(None, help="Only entries for this record"),
) -> None:
    """
    List attic entries, oldest first.

    Examples:
        ibex attic list
        ibex attic list a1b2
    """
    project = open_project()
    data_dir = project.worktree.data_dir
    entries = AtticStore(data_dir).list(_record_id(data_dir, record))
    if not entries:
        console.print("[dim]The attic is empty[/dim]")
        return

    mapping = IdMapping.load(data_dir)
    table = Table(title="Attic")
    table.add_column("Record", style="cyan")
    table.add_column("When", style="dim")
    table.add_column("Fields", style="magenta")
    table.add_column("Kept", style="green")
    table.add_column("Discarded", style="red")
    for entry in entries:
        table.add_row(
            mapping.short_for(entry.record_id) or entry.record_id,
            entry.timestamp.isoformat(timespec="seconds"),
            ", ".join(entry.fields) or entry.field,
            entry.winner_source,
            entry.loser_source,
        )
    console.print(table)


@app.command()
def show(
    record: str = typer.Argument(..., help="Record id or short id"),
    index: int = typer.Option(-1, "--index", "-i", help="Entry index for the record (default: newest)"),
) -> None:
    """Show the discarded snapshot of one attic entry."""
    project = open_project()
    data_dir = project.worktree.data_dir
    entries = AtticStore(data_dir).list(_record_id(data_dir, record))
    if not entries:
        print_error(f"No attic entries for {record}", solution="ibex attic list")
        raise typer.Exit(ExitCode.USER_ERROR)
    try:
        entry = entries[index]
    except IndexError:
        print_error(f"{record} has {len(entries)} attic entr{'y' if len(entries) == 1 else 'ies'}")
        raise typer.Exit(ExitCode.USER_ERROR)

    console.print(f"[bold]{entry.record_id}[/bold] at {entry.timestamp.isoformat()}")
    console.print(f"  [dim]kept:[/dim] {entry.winner_source}  [dim]discarded:[/dim] {entry.loser_source}")
    if entry.fields:
        console.print(f"  [dim]fields:[/dim] {', '.join(entry.fields)}")
    console.print_json(json.dumps(entry.lost_value, default=str))
