"""
Pytest configuration and shared fixtures.

Provides git repositories (a bare remote plus clones), record factories, and
isolation from the developer's own ibex config and environment.
"""

from collections.abc import Callable
from pathlib import Path

import pytest
from helpers import T0, configure_user, git, open_worktree

from ibex.core.config import clear_cache
from ibex.core.records import Record, generate_record_id
from ibex.core.worktree import DataWorktree

# ==============================================================================
# Isolation
# ==============================================================================


@pytest.fixture(autouse=True)
def isolated_config(tmp_path_factory, monkeypatch):
    """Keep tests away from the user's config, .env files and gh auth."""
    config_home = tmp_path_factory.mktemp("xdg")
    monkeypatch.setenv("XDG_CONFIG_HOME", str(config_home))
    monkeypatch.setenv("IBEX_EXTERNAL_ENABLED", "false")
    for var in (
        "IBEX_SYNC_BRANCH",
        "IBEX_SYNC_REMOTE",
        "IBEX_MAX_PUSH_ATTEMPTS",
        "IBEX_NETWORK_TIMEOUT",
        "IBEX_STRICT_MERGE",
    ):
        monkeypatch.delenv(var, raising=False)
    clear_cache()
    yield
    clear_cache()


# ==============================================================================
# Git Fixtures
# ==============================================================================


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """Create a temporary git repository with an initial commit."""
    repo = tmp_path / "repo"
    repo.mkdir()
    git("init", "-q", cwd=repo)
    configure_user(repo)
    (repo / "README.md").write_text("# Test Repo\n")
    git("add", "README.md", cwd=repo)
    git("commit", "-q", "-m", "Initial commit", cwd=repo)
    return repo


@pytest.fixture
def remote_repo(tmp_path: Path) -> Path:
    """A bare repository seeded with one commit on the default branch."""
    bare = tmp_path / "remote.git"
    git("init", "-q", "--bare", str(bare), cwd=tmp_path)

    seed = tmp_path / "seed"
    git("clone", "-q", str(bare), str(seed), cwd=tmp_path)
    configure_user(seed)
    (seed / "README.md").write_text("# Shared\n")
    git("add", "README.md", cwd=seed)
    git("commit", "-q", "-m", "Initial commit", cwd=seed)
    git("push", "-q", "origin", "HEAD", cwd=seed)
    return bare


@pytest.fixture
def make_clone(tmp_path: Path, remote_repo: Path) -> Callable[[str], Path]:
    """Factory for clones of ``remote_repo``."""

    def _clone(name: str) -> Path:
        path = tmp_path / name
        git("clone", "-q", str(remote_repo), str(path), cwd=tmp_path)
        configure_user(path)
        return path

    return _clone


@pytest.fixture
def worktree(git_repo: Path) -> DataWorktree:
    """An initialized record worktree in a repo without a remote."""
    wt = open_worktree(git_repo)
    wt.init_worktree()
    return wt


# ==============================================================================
# Record Fixtures
# ==============================================================================


@pytest.fixture
def make_record() -> Callable[..., Record]:
    """Factory for records with deterministic timestamps."""

    def _make(**overrides) -> Record:
        data = {
            "id": generate_record_id(),
            "title": "Fix login redirect",
            "created_at": T0,
            "updated_at": T0,
        }
        data.update(overrides)
        return Record(**data)

    return _make
