"""
Ibex CLI - Record commands.

Create, update, show and list records in the record worktree. Changes stay
local until the next ``ibex sync``.
"""

import logging

import typer
from rich.console import Console
from rich.table import Table

from ibex.cli.context import Project, open_project, writable_store
from ibex.cli.errors import ExitCode, print_error
from ibex.core.records import (
    IdMapping,
    Record,
    RecordKind,
    RecordStatus,
    generate_record_id,
    utc_now,
)

logger = logging.getLogger(__name__)
console = Console()


def _resolve(project: Project, key: str) -> str:
    mapping = IdMapping.load(project.worktree.data_dir)
    record_id = mapping.resolve(key)
    if record_id is None and project.worktree.store.exists(key):
        record_id = key
    if record_id is None:
        print_error(f"No record matches '{key}'", solution="ibex list")
        raise typer.Exit(ExitCode.USER_ERROR)
    return record_id


def create(
    title: str = typer.Argument(..., help="One-line summary"),
    kind: RecordKind = typer.Option(RecordKind.TASK, "--kind", "-k", help="Record kind"),
    priority: int = typer.Option(2, "--priority", "-p", min=0, max=4, help="Priority 0 (highest) to 4"),
    label: list[str] = typer.Option([], "--label", "-l", help="Label (repeatable)"),
    description: str | None = typer.Option(None, "--description", "-d", help="Description text"),
    assignee: str | None = typer.Option(None, "--assignee", "-a", help="Assignee"),
    parent: str | None = typer.Option(None, "--parent", help="Parent record id"),
) -> None:
    """
    Create a new record.

    Examples:
        ibex create "Fix login redirect" --kind bug -p 1
        ibex create "Write docs" -l docs -l good-first-issue
    """
    project = open_project()
    parent_id = _resolve(project, parent) if parent else None
    with writable_store(project, "create record") as store:
        mapping = IdMapping.load(store.data_dir)
        record_id = generate_record_id()
        short_id = mapping.assign(record_id)
        record = Record(
            id=record_id,
            short_id=short_id,
            title=title,
            kind=kind,
            priority=priority,
            labels=label,
            description=description,
            assignee=assignee,
            parent_id=parent_id,
        )
        store.write(record)
        mapping.save(store.data_dir)

    logger.debug("Created %s (%s)", record_id, short_id)
    console.print(f"[green]Created[/green] {short_id}: {title}")


def update(
    key: str = typer.Argument(..., help="Short id or stable id"),
    title: str | None = typer.Option(None, "--title", help="New title"),
    status: RecordStatus | None = typer.Option(None, "--status", "-s", help="New status"),
    priority: int | None = typer.Option(None, "--priority", "-p", min=0, max=4, help="New priority"),
    add_label: list[str] = typer.Option([], "--add-label", help="Label to add (repeatable)"),
    remove_label: list[str] = typer.Option([], "--remove-label", help="Label to remove (repeatable)"),
    assignee: str | None = typer.Option(None, "--assignee", "-a", help="New assignee"),
    notes: str | None = typer.Option(None, "--notes", help="Replace notes"),
    reason: str | None = typer.Option(None, "--reason", help="Close reason (with --status closed)"),
) -> None:
    """
    Update fields of an existing record.

    Examples:
        ibex update a1b2 --status in_progress
        ibex update a1b2 --status closed --reason "fixed in 1.2"
        ibex update a1b2 --add-label urgent --remove-label later
    """
    project = open_project()
    record_id = _resolve(project, key)
    with writable_store(project, "update record") as store:
        record = store.read(record_id)
        if record is None:
            print_error(f"Record {key} is not in the working copy")
            raise typer.Exit(ExitCode.USER_ERROR)

        changes: dict[str, object] = {}
        if title is not None:
            changes["title"] = title
        if priority is not None:
            changes["priority"] = priority
        if assignee is not None:
            changes["assignee"] = assignee
        if notes is not None:
            changes["notes"] = notes
        if add_label or remove_label:
            labels = (set(record.labels) | set(add_label)) - set(remove_label)
            changes["labels"] = sorted(labels)
        if status is not None and status is not record.status:
            changes["status"] = status
            if status is RecordStatus.CLOSED:
                changes["closed_at"] = utc_now()
                changes["close_reason"] = reason
            else:
                changes["closed_at"] = None
                changes["close_reason"] = None

        if not changes:
            console.print("[yellow]Nothing to update[/yellow]")
            return
        updated = record.touch(**changes)
        store.write(updated)

    console.print(f"[green]Updated[/green] {updated.short_id or updated.id}")


def show(key: str = typer.Argument(..., help="Short id or stable id")) -> None:
    """Show one record."""
    project = open_project()
    record = project.worktree.store.read(_resolve(project, key))
    if record is None:
        print_error(f"Record {key} is not in the working copy")
        raise typer.Exit(ExitCode.USER_ERROR)

    console.print(f"[bold]{record.short_id or record.id}[/bold] {record.title}")
    console.print(f"  [dim]id:[/dim] {record.id}")
    console.print(f"  [dim]status:[/dim] {record.status.value}  [dim]priority:[/dim] P{record.priority}")
    console.print(f"  [dim]kind:[/dim] {record.kind.value}  [dim]version:[/dim] {record.version}")
    if record.labels:
        console.print(f"  [dim]labels:[/dim] {', '.join(record.labels)}")
    if record.assignee:
        console.print(f"  [dim]assignee:[/dim] {record.assignee}")
    if record.external_issue_url:
        console.print(f"  [dim]external:[/dim] {record.external_issue_url}")
    if record.description:
        console.print()
        console.print(record.description)
    if record.notes:
        console.print()
        console.print("[dim]Notes:[/dim]")
        console.print(record.notes)


def list_records(
    status: RecordStatus | None = typer.Option(None, "--status", "-s", help="Filter by status"),
    label: str | None = typer.Option(None, "--label", "-l", help="Filter by label"),
    all_records: bool = typer.Option(False, "--all", help="Include closed records"),
) -> None:
    """List records in the working copy."""
    project = open_project()
    loaded = project.worktree.store.load_all()
    for error in loaded.errors:
        console.print(f"[yellow]Skipping unreadable record:[/yellow] {error.path}")

    records = sorted(loaded.records.values(), key=lambda r: (r.priority, r.created_at))
    if status is not None:
        records = [r for r in records if r.status is status]
    elif not all_records:
        records = [r for r in records if r.status is not RecordStatus.CLOSED]
    if label:
        records = [r for r in records if label in r.labels]

    if not records:
        console.print("[dim]No records[/dim]")
        return

    table = Table(title="Records")
    table.add_column("ID", style="cyan")
    table.add_column("P", style="magenta")
    table.add_column("Status", style="green")
    table.add_column("Title")
    table.add_column("Labels", style="blue")
    for record in records:
        table.add_row(
            record.short_id or record.id,
            str(record.priority),
            record.status.value,
            record.title,
            ", ".join(record.labels),
        )
    console.print(table)
