"""
Project path layout.

    <project>/.ibex/
        config.json
        state.json
        transaction.json
        worktree.lock
        docs/
        workspaces/<name>/
        data-sync-worktree/.ibex/data-sync/
"""

from __future__ import annotations

from pathlib import Path

IBEX_DIR = ".ibex"
WORKTREE_DIR = "data-sync-worktree"
DATA_DIR = ".ibex/data-sync"
WORKSPACES_DIR = "workspaces"
DOCS_DIR = "docs"
STATE_FILE = "state.json"
TRANSACTION_FILE = "transaction.json"
LOCK_FILE = "worktree.lock"
CONFIG_FILE = "config.json"

# Entries that must stay out of the user's branch
GITIGNORE_ENTRIES = (
    f"{WORKTREE_DIR}/",
    f"{WORKSPACES_DIR}/",
    STATE_FILE,
    TRANSACTION_FILE,
    LOCK_FILE,
)


def find_project_root(start: Path | None = None) -> Path | None:
    """Walk up from ``start`` to the nearest directory containing ``.git``."""
    current = (start or Path.cwd()).resolve()
    for candidate in (current, *current.parents):
        if (candidate / ".git").exists():
            return candidate
    return None


def ibex_dir(project_dir: Path) -> Path:
    return project_dir / IBEX_DIR


def worktree_path(project_dir: Path) -> Path:
    return ibex_dir(project_dir) / WORKTREE_DIR


def data_dir(project_dir: Path) -> Path:
    """Record data root inside the record-branch worktree."""
    return worktree_path(project_dir) / DATA_DIR


def workspaces_dir(project_dir: Path) -> Path:
    return ibex_dir(project_dir) / WORKSPACES_DIR


def docs_dir(project_dir: Path) -> Path:
    return ibex_dir(project_dir) / DOCS_DIR


def ensure_gitignore(project_dir: Path) -> bool:
    """Add local-only entries to ``.ibex/.gitignore``; returns True if changed."""
    path = ibex_dir(project_dir) / ".gitignore"
    path.parent.mkdir(parents=True, exist_ok=True)
    existing = path.read_text(encoding="utf-8").splitlines() if path.exists() else []
    missing = [e for e in GITIGNORE_ENTRIES if e not in existing]
    if not missing:
        return False
    path.write_text("\n".join(existing + missing) + "\n", encoding="utf-8")
    return True
