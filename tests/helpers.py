"""Small helpers shared by the test modules."""

import subprocess
from datetime import datetime, timedelta, timezone
from pathlib import Path

from ibex.core.git import GitBackend
from ibex.core.worktree import DataWorktree

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def later(minutes: int) -> datetime:
    return T0 + timedelta(minutes=minutes)


def git(*args: str, cwd: Path) -> str:
    result = subprocess.run(["git", *args], cwd=cwd, capture_output=True, text=True, check=True)
    return result.stdout.strip()


def configure_user(repo: Path) -> None:
    git("config", "user.email", "test@example.com", cwd=repo)
    git("config", "user.name", "Test User", cwd=repo)
    git("config", "commit.gpgsign", "false", cwd=repo)


def open_worktree(project: Path) -> DataWorktree:
    return DataWorktree(project, GitBackend(project, timeout=30))
