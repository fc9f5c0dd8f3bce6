"""
Tests for named workspaces: save, import, list and delete.
"""

from pathlib import Path

import pytest
from helpers import later

from ibex.core.attic import AtticStore
from ibex.core.records import IdMapping, RecordStore
from ibex.core.records.storage import ensure_layout
from ibex.core.workspace import (
    OUTBOX,
    WorkspaceNameError,
    WorkspaceNotFoundError,
    WorkspaceStore,
    validate_name,
)


@pytest.fixture
def project(tmp_path: Path) -> Path:
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    path = tmp_path / "data"
    ensure_layout(path)
    return path


@pytest.fixture
def workspaces(project: Path) -> WorkspaceStore:
    return WorkspaceStore(project)


class TestNames:
    """Tests for workspace name validation."""

    @pytest.mark.parametrize("name", ["outbox", "backup-2024.05", "a_b"])
    def test_valid(self, name: str) -> None:
        assert validate_name(name) == name

    @pytest.mark.parametrize("name", ["", "..", "../escape", "Upper", "-leading", "a/b"])
    def test_invalid(self, name: str) -> None:
        with pytest.raises(WorkspaceNameError):
            validate_name(name)


class TestSave:
    """Tests for WorkspaceStore.save."""

    def test_save_copies_records_and_mapping(self, workspaces: WorkspaceStore, data_dir: Path, make_record) -> None:
        store = RecordStore(data_dir)
        records = [make_record(), make_record()]
        for record in records:
            store.write(record)
        IdMapping({"ab12": records[0].id}).save(data_dir)

        result = workspaces.save("backup", data_dir)

        assert result.new == 2
        assert result.saved == 2
        saved = RecordStore(workspaces.path("backup"))
        assert saved.ids() == sorted(r.id for r in records)
        assert saved.read_bytes(records[0].id) == store.read_bytes(records[0].id)
        assert IdMapping.load(workspaces.path("backup")).resolve("ab12") == records[0].id

    def test_updates_only_skips_records_matching_baseline(
        self, workspaces: WorkspaceStore, data_dir: Path, make_record
    ) -> None:
        store = RecordStore(data_dir)
        untouched = make_record(title="Untouched")
        edited = make_record(title="Edited locally")
        created = make_record(title="Brand new")
        for record in (untouched, edited, created):
            store.write(record)
        baseline = {untouched.id: untouched, edited.id: edited.model_copy(update={"title": "Remote title"})}

        result = workspaces.save(OUTBOX, data_dir, updates_only=True, baseline=baseline)

        assert result.skipped_unmodified == 1
        assert result.new == 2
        assert sorted(RecordStore(workspaces.path(OUTBOX)).ids()) == sorted([edited.id, created.id])

    def test_unreadable_source_is_reported(self, workspaces: WorkspaceStore, data_dir: Path, make_record) -> None:
        RecordStore(data_dir).write(make_record())
        (data_dir / "records" / "rec-broken.md").write_text("nothing here\n")
        result = workspaces.save("backup", data_dir)
        assert result.new == 1
        assert len(result.errors) == 1


class TestImport:
    """Tests for WorkspaceStore.import_into."""

    @pytest.fixture
    def staged(self, workspaces: WorkspaceStore, tmp_path: Path, make_record):
        source = tmp_path / "source"
        ensure_layout(source)
        record = make_record(title="Staged")
        RecordStore(source).write(record)
        workspaces.save(OUTBOX, source)
        return record

    def test_import_writes_and_commits(self, workspaces: WorkspaceStore, data_dir: Path, staged) -> None:
        messages: list[str] = []

        def commit(message: str) -> str:
            messages.append(message)
            return "abc123"

        result = workspaces.import_into(OUTBOX, data_dir, commit)

        assert result.new == 1
        assert result.commit_sha == "abc123"
        assert messages == ["Import workspace outbox"]
        assert RecordStore(data_dir).read(staged.id).title == "Staged"
        assert workspaces.exists(OUTBOX)

    def test_clear_on_success_deletes_after_commit(self, workspaces: WorkspaceStore, data_dir: Path, staged) -> None:
        result = workspaces.import_into(OUTBOX, data_dir, lambda message: None, clear_on_success=True)
        assert result.cleared
        assert not workspaces.exists(OUTBOX)

    def test_failed_commit_keeps_workspace(self, workspaces: WorkspaceStore, data_dir: Path, staged) -> None:
        def commit(message: str) -> str:
            raise RuntimeError("disk full")

        with pytest.raises(RuntimeError):
            workspaces.import_into(OUTBOX, data_dir, commit, clear_on_success=True)
        assert workspaces.exists(OUTBOX)

    def test_import_errors_keep_workspace(self, workspaces: WorkspaceStore, data_dir: Path, staged) -> None:
        (workspaces.path(OUTBOX) / "records" / "rec-broken.md").write_text("nothing here\n")
        result = workspaces.import_into(OUTBOX, data_dir, lambda message: None, clear_on_success=True)
        assert result.new == 1
        assert result.errors
        assert not result.cleared
        assert workspaces.exists(OUTBOX)

    def test_missing_workspace(self, workspaces: WorkspaceStore, data_dir: Path) -> None:
        with pytest.raises(WorkspaceNotFoundError):
            workspaces.import_into("nope", data_dir, lambda message: None)

    def test_save_keeps_source_revision(self, workspaces: WorkspaceStore, tmp_path: Path, make_record) -> None:
        source = tmp_path / "source"
        ensure_layout(source)
        record = make_record(title="Staged")
        RecordStore(source).write(record)

        workspaces.save(OUTBOX, source, source_revision="rev1")
        assert workspaces.base_revisions(OUTBOX) == {record.id: "rev1"}

        RecordStore(source).write(record.touch(now=later(1), title="Edited"))
        workspaces.save(OUTBOX, source)
        assert workspaces.base_revisions(OUTBOX) == {}

    def test_import_merges_against_saved_revision(
        self, workspaces: WorkspaceStore, data_dir: Path, tmp_path: Path, make_record
    ) -> None:
        """A newer local edit wins over an untouched staged copy without a conflict."""
        source = tmp_path / "source"
        ensure_layout(source)
        record = make_record(title="Staged")
        RecordStore(source).write(record)
        workspaces.save(OUTBOX, source, source_revision="rev1")
        RecordStore(data_dir).write(record.touch(now=later(5), title="Newer title"))
        requested: list[str] = []

        def records_at(revision: str):
            requested.append(revision)
            return {record.id: record}

        result = workspaces.import_into(OUTBOX, data_dir, lambda message: None, records_at=records_at)

        assert result.unchanged == 1
        assert result.conflicts == []
        assert requested == ["rev1"]
        assert RecordStore(data_dir).read(record.id).title == "Newer title"
        assert AtticStore(data_dir).list() == []

    def test_import_without_revision_uses_last_write_wins(
        self, workspaces: WorkspaceStore, data_dir: Path, staged
    ) -> None:
        RecordStore(data_dir).write(staged.touch(now=later(5), title="Newer title"))

        result = workspaces.import_into(OUTBOX, data_dir, lambda message: None, records_at=lambda revision: {})

        assert [c.field for c in result.conflicts] == ["title"]
        assert RecordStore(data_dir).read(staged.id).title == "Newer title"
        assert AtticStore(data_dir).list(staged.id)[0].lost_value["title"] == "Staged"


class TestListAndDelete:
    """Tests for listing and deleting workspaces."""

    def test_list(self, workspaces: WorkspaceStore, data_dir: Path, make_record) -> None:
        RecordStore(data_dir).write(make_record())
        workspaces.save("one", data_dir)
        workspaces.save("two", data_dir)
        assert [(w.name, w.record_count) for w in workspaces.list()] == [("one", 1), ("two", 1)]

    def test_list_empty(self, workspaces: WorkspaceStore) -> None:
        assert workspaces.list() == []

    def test_delete(self, workspaces: WorkspaceStore, data_dir: Path) -> None:
        workspaces.save("one", data_dir)
        workspaces.delete("one")
        assert not workspaces.exists("one")
        with pytest.raises(WorkspaceNotFoundError):
            workspaces.delete("one")
