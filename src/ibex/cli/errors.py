"""
Standardized error handling and exit codes for the ibex CLI.
"""

from enum import IntEnum

from rich.console import Console

console = Console(stderr=True)


class ExitCode(IntEnum):
    """Standard exit codes for ibex CLI operations."""

    SUCCESS = 0
    """Operation completed successfully."""

    GENERAL_ERROR = 1
    """Generic error, including a sync with a failed phase."""

    USER_ERROR = 2
    """User input or project setup error (actionable by user)."""

    BUSY = 3
    """Another operation holds the record worktree."""

    SIGINT = 130
    """Terminated by SIGINT (Ctrl+C) - Unix standard."""


def print_error(
    problem: str,
    *,
    reason: str | None = None,
    solution: str | None = None,
) -> None:
    """
    Print a standardized error message with actionable guidance.

    Args:
        problem: Brief description of what went wrong
        reason: Optional explanation of why it happened
        solution: Optional command or action to fix it

    Example:
        >>> print_error(
        ...     "Not inside a git repository",
        ...     solution="cd into your project, then run: ibex init",
        ... )
    """
    console.print(f"[red]Error:[/red] {problem}")
    if reason:
        console.print(f"[dim]{reason}[/dim]")
    if solution:
        console.print(f"[cyan]→ Try:[/cyan] {solution}")


def print_not_initialized_error() -> None:
    """Print error when the record worktree has not been set up."""
    print_error(
        "ibex is not initialized in this repository",
        reason="The record branch worktree does not exist yet",
        solution="ibex init",
    )
