"""
Tests for the ibex command line.

Each test runs in a real clone of a bare remote with the CLI invoked
through Typer's CliRunner.
"""

import json
from collections.abc import Callable
from pathlib import Path

import pytest
from helpers import git, open_worktree
from typer.testing import CliRunner

from ibex import __version__
from ibex.cli import app
from ibex.core.paths import data_dir
from ibex.core.records import IdMapping
from ibex.core.workspace import WorkspaceStore

runner = CliRunner()


def invoke(*args: str):
    return runner.invoke(app, list(args))


def only_short_id(project: Path) -> str:
    mapping = IdMapping.load(data_dir(project))
    assert len(mapping.ids) == 1
    return next(iter(mapping.ids))


@pytest.fixture
def project(make_clone: Callable[[str], Path], monkeypatch: pytest.MonkeyPatch) -> Path:
    path = make_clone("work")
    monkeypatch.chdir(path)
    return path


@pytest.fixture
def initialized(project: Path) -> Path:
    result = invoke("init")
    assert result.exit_code == 0, result.output
    return project


class TestBasics:
    """Tests for help, version and project discovery."""

    def test_no_args_shows_help(self, project: Path) -> None:
        result = invoke()
        assert result.exit_code == 0
        assert "sync" in result.output

    def test_version(self, project: Path) -> None:
        result = invoke("version")
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_outside_repository(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        empty = tmp_path / "empty"
        empty.mkdir()
        monkeypatch.chdir(empty)
        assert invoke("list").exit_code == 2

    def test_not_initialized(self, project: Path) -> None:
        result = invoke("list")
        assert result.exit_code == 2
        assert "ibex init" in result.output


class TestInit:
    """Tests for ibex init."""

    def test_init(self, initialized: Path) -> None:
        assert "ibex-sync" in git("branch", "--list", "ibex-sync", cwd=initialized)
        assert (data_dir(initialized) / "meta.yml").exists()

    def test_write_config(self, project: Path) -> None:
        result = invoke("init", "--write-config")
        assert result.exit_code == 0, result.output
        config = json.loads((project / ".ibex" / "config.json").read_text())
        assert config["sync"]["branch"] == "ibex-sync"


class TestRecordCommands:
    """Tests for create, update, show and list."""

    def test_create_and_list(self, initialized: Path) -> None:
        result = invoke("create", "Fix login", "--kind", "bug", "-p", "1", "-l", "ui")
        assert result.exit_code == 0, result.output
        short = only_short_id(initialized)
        assert short in result.output

        listing = invoke("list")
        assert listing.exit_code == 0
        assert "Fix login" in listing.output

    def test_update_and_show(self, initialized: Path) -> None:
        invoke("create", "Fix login")
        short = only_short_id(initialized)

        result = invoke("update", short, "--status", "closed", "--reason", "done", "--add-label", "ui")
        assert result.exit_code == 0, result.output

        shown = invoke("show", short)
        assert "closed" in shown.output
        assert "ui" in shown.output
        assert "version: 2" in shown.output
        assert "No records" in invoke("list").output
        assert "Fix login" in invoke("list", "--all").output

    def test_update_without_changes(self, initialized: Path) -> None:
        invoke("create", "Fix login")
        result = invoke("update", only_short_id(initialized))
        assert result.exit_code == 0
        assert "Nothing to update" in result.output

    def test_unknown_record(self, initialized: Path) -> None:
        assert invoke("show", "zzzz").exit_code == 2


class TestSyncCommand:
    """Tests for ibex sync."""

    def test_sync_publishes_records(self, initialized: Path, remote_repo: Path) -> None:
        invoke("create", "Fix login")

        result = invoke("sync")

        assert result.exit_code == 0, result.output
        assert "sent 1 new" in result.output
        assert "refs/heads/ibex-sync" in git("ls-remote", str(remote_repo), cwd=initialized)

    def test_second_sync_has_nothing_to_do(self, initialized: Path) -> None:
        invoke("sync")
        result = invoke("sync", "--verbose")
        assert result.exit_code == 0
        assert "records" in result.output

    def test_sync_refused_during_transaction(self, initialized: Path) -> None:
        assert invoke("tx", "begin", "bulk").exit_code == 0
        result = invoke("sync")
        assert result.exit_code == 2
        assert "bulk" in result.output


class TestWorkspaceCommands:
    """Tests for save, import and workspace management."""

    def test_save_list_import(self, initialized: Path) -> None:
        invoke("create", "Fix login")

        saved = invoke("save", "backup")
        assert saved.exit_code == 0, saved.output
        assert "Saved 1 record(s)" in saved.output
        assert "backup" in invoke("workspace", "list").output

        imported = invoke("import", "backup", "--clear-on-success")
        assert imported.exit_code == 0, imported.output
        assert "No workspaces" in invoke("workspace", "list").output

    def test_save_commits_and_records_revision(self, initialized: Path) -> None:
        """Saved copies remember the local commit they came from."""
        invoke("create", "Fix login")

        assert invoke("save", "backup").exit_code == 0

        worktree = open_worktree(initialized)
        record_id = IdMapping.load(data_dir(initialized)).resolve(only_short_id(initialized))
        assert WorkspaceStore(initialized).base_revisions("backup") == {record_id: worktree.head()}
        assert record_id in worktree.records_at(worktree.head()).records

    def test_invalid_name(self, initialized: Path) -> None:
        assert invoke("save", "Not/Valid").exit_code == 2

    def test_name_and_outbox_conflict(self, initialized: Path) -> None:
        assert invoke("save", "backup", "--outbox").exit_code == 2

    def test_import_missing(self, initialized: Path) -> None:
        assert invoke("import", "nothing-here").exit_code == 2

    def test_delete(self, initialized: Path) -> None:
        invoke("save", "backup")
        result = invoke("workspace", "delete", "backup", "--force")
        assert result.exit_code == 0
        assert "No workspaces" in invoke("workspace", "list").output


class TestTransactionCommands:
    """Tests for ibex tx."""

    def test_abort_discards(self, initialized: Path) -> None:
        assert invoke("tx", "begin", "bulk").exit_code == 0
        invoke("create", "Temporary one")
        invoke("create", "Temporary two")
        assert "bulk" in invoke("tx", "status").output

        result = invoke("tx", "abort")

        assert result.exit_code == 0
        assert "No records" in invoke("list").output
        assert "No active transaction" in invoke("tx", "status").output

    def test_commit_keeps(self, initialized: Path) -> None:
        invoke("tx", "begin", "bulk")
        invoke("create", "Kept")
        result = invoke("tx", "commit", "-m", "Add kept")
        assert result.exit_code == 0, result.output
        assert "Kept" in invoke("list").output
        assert "Add kept" in git("log", "--format=%s", "ibex-sync", cwd=initialized)

    def test_commit_without_transaction(self, initialized: Path) -> None:
        assert invoke("tx", "commit").exit_code == 2


class TestMaintenanceCommands:
    """Tests for attic and doctor."""

    def test_empty_attic(self, initialized: Path) -> None:
        result = invoke("attic", "list")
        assert result.exit_code == 0
        assert "The attic is empty" in result.output

    def test_doctor_healthy(self, initialized: Path) -> None:
        result = invoke("doctor")
        assert result.exit_code == 0, result.output
        assert "No issues found" in result.output

    def test_doctor_fixes_wrong_branch(self, initialized: Path) -> None:
        git("checkout", "-q", "-b", "stray", cwd=initialized / ".ibex" / "data-sync-worktree")
        assert invoke("doctor").exit_code == 1
        assert invoke("doctor", "--fix").exit_code == 0
        assert invoke("doctor").exit_code == 0
