"""
Ibex CLI - Init command.

Create the record branch worktree, reusing a remote record branch when one
exists.
"""

import json

import typer
from rich.console import Console

from ibex.cli.context import open_project
from ibex.cli.errors import ExitCode, print_error
from ibex.core.config.loader import get_default_config, get_project_config_path
from ibex.core.git import GitError
from ibex.core.worktree import WorktreeBusyError, WorktreeHealthError, WorktreeLock

console = Console()


def init(
    write_config: bool = typer.Option(
        False,
        "--write-config",
        help="Also write .ibex/config.json with the default settings",
    ),
) -> None:
    """
    Initialize ibex in the current repository.

    Examples:
        ibex init
        ibex init --write-config
    """
    project = open_project(require_initialized=False)
    try:
        with WorktreeLock(project.root, "init"):
            health = project.worktree.init_worktree()
    except WorktreeBusyError as e:
        print_error(str(e), solution="Wait for the other ibex command to finish")
        raise typer.Exit(ExitCode.BUSY)
    except WorktreeHealthError as e:
        print_error("Record worktree needs repair", reason=e.health.message, solution="ibex doctor --fix")
        raise typer.Exit(ExitCode.GENERAL_ERROR)
    except GitError as e:
        print_error("Could not create the record worktree", reason=str(e))
        raise typer.Exit(ExitCode.GENERAL_ERROR)

    console.print(f"[green]✓[/green] Record branch {project.worktree.branch} checked out at {health.path}")

    if write_config:
        config_path = get_project_config_path(project.root)
        if config_path.exists():
            console.print(f"[dim]{config_path} already exists; left unchanged[/dim]")
        else:
            config_path.parent.mkdir(parents=True, exist_ok=True)
            config_path.write_text(json.dumps(get_default_config(), indent=2) + "\n", encoding="utf-8")
            console.print(f"[green]✓[/green] Wrote {config_path}")
