"""
Ibex CLI - Sync command.

Runs the full sync: external pull, docs, records push-retry, external push.
"""

import typer
from rich.console import Console
from rich.table import Table

from ibex.cli.context import open_project
from ibex.cli.errors import ExitCode, print_error
from ibex.core.docs import DocCache
from ibex.core.git import GitError
from ibex.core.sync import SyncStateStore
from ibex.core.sync.orchestrator import SyncOrchestrator, SyncReport, resolve_capabilities
from ibex.core.worktree import TransactionActiveError, WorktreeBusyError, WorktreeHealthError

console = Console()


def _print_report(report: SyncReport, verbose: bool) -> None:
    if verbose:
        table = Table(title="Sync phases")
        table.add_column("Phase", style="cyan")
        table.add_column("Result")
        table.add_column("Details", style="dim")
        for phase in report.phases:
            if phase.skipped:
                result = "[dim]skipped[/dim]"
            elif phase.ok:
                result = "[green]ok[/green]"
            else:
                result = f"[red]failed[/red] ({phase.failure_kind.value if phase.failure_kind else 'error'})"
            table.add_row(phase.phase.value, result, phase.message)
        console.print(table)

    if report.staged is not None:
        console.print(f"[yellow]Staged {report.staged.saved} record(s) in the outbox[/yellow]")
    if report.outbox_import is not None:
        cleared = " and cleared" if report.outbox_import.cleared else ""
        console.print(f"[green]Imported outbox{cleared}[/green] ({report.outbox_import.changed} record(s))")

    hint = report.attic_hint()
    if hint:
        console.print(f"[yellow]![/yellow] {hint}")

    if report.ok:
        console.print(f"[green]✓[/green] {report.message()}")
        return

    for phase in report.phases:
        if not phase.ok:
            console.print(f"[red]✗ {phase.phase.value}:[/red] {phase.message}")
    step = report.next_step()
    if step:
        console.print(f"[cyan]→ Try:[/cyan] {step}")


def sync(
    ctx: typer.Context,
    no_auto_save: bool = typer.Option(
        False,
        "--no-auto-save",
        help="Do not stage local changes in the outbox when the remote refuses the push",
    ),
    no_outbox: bool = typer.Option(
        False,
        "--no-outbox",
        help="Do not import a pending outbox after a successful push",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show per-phase results"),
) -> None:
    """
    Sync records with the remote record branch.

    Commits local changes, merges concurrent remote changes field by field,
    and pushes with retry. Conflicts never abort a sync; losing values are
    kept in the attic.

    Examples:
        ibex sync                 # Full sync
        ibex sync -v              # Show each phase
        ibex sync --no-auto-save  # Never stage into the outbox
    """
    project = open_project(require_initialized=False)
    config = project.config
    doc_cache = None
    if config.docs.files:
        doc_cache = DocCache(project.root, config.docs.files, timeout=config.docs.timeout_seconds)

    orchestrator = SyncOrchestrator(
        project.worktree,
        config,
        resolve_capabilities(config),
        SyncStateStore(project.root),
        doc_cache=doc_cache,
        auto_stage=False if no_auto_save else None,
        import_outbox=False if no_outbox else None,
    )

    try:
        report = orchestrator.run()
    except TransactionActiveError as e:
        print_error(str(e), solution="ibex tx commit  or  ibex tx abort")
        raise typer.Exit(ExitCode.USER_ERROR)
    except WorktreeBusyError as e:
        print_error(str(e), solution="Wait for the other ibex command to finish")
        raise typer.Exit(ExitCode.BUSY)
    except WorktreeHealthError as e:
        print_error("Record worktree needs repair", reason=e.health.message, solution="ibex doctor --fix")
        raise typer.Exit(ExitCode.GENERAL_ERROR)
    except GitError as e:
        print_error("Sync failed", reason=str(e), solution="ibex doctor")
        raise typer.Exit(ExitCode.GENERAL_ERROR)

    debug = bool(ctx.obj and ctx.obj.get("debug"))
    _print_report(report, verbose or debug)
    if not report.ok:
        raise typer.Exit(ExitCode.GENERAL_ERROR)
