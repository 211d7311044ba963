"""Tests for the rollback utility."""

import json

import pytest

from revmigrate.loaders.memory import MemoryStore
from revmigrate.services.rollback import CLEAR_ORDER, RollbackManager


@pytest.fixture
def populated(store, user_id, new_id):
    """Store holding a user, a thing and two reviews of it."""
    thing_id = new_id()
    store.insert_rows("things", [{
        "id": thing_id,
        "created_by": user_id,
        "_rev_id": new_id(),
        "_rev_user": user_id,
        "_rev_date": "2020-01-01T00:00:00Z",
    }])
    store.insert_rows("reviews", [
        {
            "id": new_id(),
            "thing_id": thing_id,
            "created_by": user_id,
            "star_rating": 3,
            "_rev_id": new_id(),
            "_rev_user": user_id,
            "_rev_date": "2020-01-01T00:00:00Z",
        }
        for _ in range(2)
    ])
    return store


class TestClear:
    """Clearing every migrated table."""

    def test_clears_in_reverse_dependency_order(self, populated, report_dir):
        result = RollbackManager(populated, str(report_dir)).clear()

        assert [t["table"] for t in result.tables] == [k.target_table for k in CLEAR_ORDER]
        assert result.tables[0]["table"] == "thing_files"
        assert result.tables[-1]["table"] == "users"
        assert result.tables_cleared == 3
        assert result.records_deleted == 4
        assert result.success
        for table in ("users", "things", "reviews"):
            assert populated.count(table) == 0

    def test_statuses(self, populated, report_dir):
        result = RollbackManager(populated, str(report_dir)).clear()

        statuses = {t["table"]: t["status"] for t in result.tables}
        assert statuses["reviews"] == "cleared"
        assert statuses["blog_posts"] == "empty"

    def test_dry_run_only_counts(self, populated, report_dir):
        result = RollbackManager(populated, str(report_dir)).clear(dry_run=True)

        assert result.dry_run
        assert result.records_deleted == 4
        assert populated.count("reviews") == 2
        assert populated.count("users") == 1

    def test_single_table_by_source_name(self, store, new_id, user_id, report_dir):
        store.insert_rows("invite_links", [{"id": new_id(), "created_by": user_id}])

        result = RollbackManager(store, str(report_dir)).clear(table="invite_link")

        assert [t["table"] for t in result.tables] == ["invite_links"]
        assert store.count("invite_links") == 0
        assert store.count("users") == 1

    def test_unknown_table_rejected(self, store, report_dir):
        with pytest.raises(ValueError):
            RollbackManager(store, str(report_dir)).clear(table="nonsense")

    def test_missing_tables_skipped(self, report_dir):
        partial = MemoryStore().connect()
        partial.create_table("users")

        result = RollbackManager(partial, str(report_dir)).clear()

        statuses = {t["table"]: t["status"] for t in result.tables}
        assert statuses["users"] == "empty"
        assert statuses["reviews"] == "missing"
        assert result.success

    def test_error_stops_rollback(self, populated, report_dir):
        populated.disconnect()

        result = RollbackManager(populated, str(report_dir)).clear()

        assert not result.success
        assert len(result.errors) == 1
        assert result.errors[0]["type"] == "table_clear_error"
        assert result.errors[0]["table"] == "thing_files"
        assert result.tables == []


class TestBackupAndReport:
    """Backup restoration and rollback reports."""

    def test_restore_backup_not_available(self, store, report_dir):
        with pytest.raises(NotImplementedError):
            RollbackManager(store, str(report_dir)).restore_backup("backup.sql")

    def test_save_report(self, populated, report_dir):
        manager = RollbackManager(populated, str(report_dir))
        result = manager.clear(dry_run=True)

        path = manager.save_report(result)

        assert path.parent == report_dir
        assert path.name.startswith("rollback-report-")
        report = json.loads(path.read_text())
        assert report["summary"] == {
            "tablesCleared": 3,
            "recordsDeleted": 4,
            "errorsEncountered": 0,
            "success": True,
        }
        assert report["rollback"]["options"] == {"dry_run": True, "table": None}
