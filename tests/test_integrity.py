"""Tests for post-migration integrity validation."""

from datetime import timedelta

import pytest

from revmigrate.extractors.json_export import JSONExportSource
from revmigrate.loaders.memory import MemoryStore
from revmigrate.models.entities import EntityKind
from revmigrate.models.migration import MigrationRun
from revmigrate.models.record import ReconciliationDrop, ReconciliationRepair, Severity
from revmigrate.services.integrity import IntegrityValidator
from revmigrate.services.transformer import Transformer


@pytest.fixture
def transformer():
    return Transformer()


@pytest.fixture
def source_factory(write_export):
    def build(tables):
        return JSONExportSource(write_export(tables), seed=7).connect()
    return build


def load(store, transformer, kind, documents):
    rows = [transformer.transform_record(kind, doc) for doc in documents]
    store.insert_rows(kind.target_table, rows)
    return rows


def issues_for(report, check, table=None):
    return [i for i in report.issues if i.check == check and (table is None or i.table == table)]


class TestCounts:
    """Record count comparison."""

    def test_equal_counts_pass(self, source_factory, store, transformer, docs):
        users = docs.users(3)
        load(store, transformer, EntityKind.USER, users)
        validator = IntegrityValidator(source_factory({"users": users}), store, transformer)

        report = validator.validate([EntityKind.USER])

        assert report.passed
        assert report.checks["counts"]["users"]["difference"] == 0
        assert issues_for(report, "counts") == []

    def test_single_missing_record_tolerated(self, source_factory, store, transformer, docs):
        users = docs.users(3)
        load(store, transformer, EntityKind.USER, users[:2])
        validator = IntegrityValidator(source_factory({"users": users}), store, transformer)

        report = validator.validate([EntityKind.USER])

        assert report.passed
        issue = issues_for(report, "counts", "users")[0]
        assert issue.severity == Severity.WARNING
        assert issue.category == "info"

    def test_large_difference_is_an_error(self, source_factory, store, transformer, docs):
        users = docs.users(4)
        load(store, transformer, EntityKind.USER, users[:1])
        validator = IntegrityValidator(source_factory({"users": users}), store, transformer)

        report = validator.validate([EntityKind.USER])

        assert not report.passed
        issue = issues_for(report, "counts", "users")[0]
        assert issue.severity == Severity.ERROR
        assert issue.category == "integrity_mismatch"
        assert issue.details == {"difference": 3, "allowed": 1}
        assert "sample" not in report.checks

    def test_dropped_records_widen_tolerance(self, source_factory, store, transformer, docs, new_id):
        users = docs.users(4)
        load(store, transformer, EntityKind.USER, users[:1])
        run = MigrationRun()
        run.drops = [ReconciliationDrop("users", new_id(), "id", None) for _ in range(2)]
        validator = IntegrityValidator(source_factory({"users": users}), store, transformer)

        report = validator.validate([EntityKind.USER], run)

        assert report.passed
        assert report.checks["counts"]["users"]["allowed"] == 3

    def test_join_difference_is_informational(self, source_factory, store, transformer, docs, user_id, new_id):
        team = docs.team(user_id)
        load(store, transformer, EntityKind.TEAM, [team])
        memberships = [
            {"teams_id": team["id"], "users_id": user_id},
            {"teams_id": new_id(), "users_id": user_id},
            {"teams_id": new_id(), "users_id": user_id},
        ]
        load(store, transformer, EntityKind.TEAM_MEMBER, memberships[:1])
        source = source_factory({"teams_users_membership": memberships})
        validator = IntegrityValidator(source, store, transformer, join_tolerance=0)

        report = validator.validate([EntityKind.TEAM_MEMBER])

        assert report.passed
        issue = issues_for(report, "counts", "team_members")[0]
        assert issue.severity == Severity.WARNING
        assert issue.category == "info"
        assert issue.details["difference"] == 2

    def test_missing_source_table_noted(self, source_factory, store, transformer, docs):
        validator = IntegrityValidator(source_factory({"users": []}), store, transformer)

        report = validator.validate([EntityKind.REVIEW])

        issue = issues_for(report, "counts", "reviews")[0]
        assert issue.severity == Severity.WARNING
        assert report.passed


class TestSample:
    """Field-by-field comparison of sampled records."""

    def test_matching_rows(self, source_factory, store, transformer, docs):
        users = docs.users(3)
        load(store, transformer, EntityKind.USER, users)
        validator = IntegrityValidator(source_factory({"users": users}), store, transformer)

        report = validator.validate([EntityKind.USER])

        assert report.checks["sample"]["users"] == {"checked": 3, "mismatched": 0}

    def test_changed_field_reported(self, source_factory, store, transformer, docs):
        user = docs.user(name="Carol")
        row = transformer.transform_record(EntityKind.USER, user)
        row["display_name"] = "Caroline"
        store.insert_rows("users", [row])
        validator = IntegrityValidator(source_factory({"users": [user]}), store, transformer)

        report = validator.validate([EntityKind.USER])

        assert not report.passed
        issue = issues_for(report, "sample", "users")[0]
        assert issue.category == "integrity_mismatch"
        assert user["id"] in issue.message
        assert "display_name" in issue.message
        assert report.checks["sample"]["users"]["mismatched"] == 1

    def test_multilingual_difference_is_a_warning(self, source_factory, store, transformer, docs, user_id):
        thing = docs.thing(user_id, label={"en": "A Book"})
        row = transformer.transform_record(EntityKind.THING, thing)
        row["label"] = {"en": "Another Book"}
        store.insert_rows("things", [row])
        validator = IntegrityValidator(source_factory({"things": [thing]}), store, transformer)

        report = validator.validate([EntityKind.THING])

        assert report.passed
        assert issues_for(report, "sample", "things")[0].severity == Severity.WARNING

    def test_revision_date_within_a_second_matches(self, source_factory, store, transformer, docs, user_id):
        thing = docs.thing(user_id)
        row = transformer.transform_record(EntityKind.THING, thing)
        row["_rev_date"] = row["_rev_date"] + timedelta(milliseconds=500)
        store.insert_rows("things", [row])
        validator = IntegrityValidator(source_factory({"things": [thing]}), store, transformer)

        report = validator.validate([EntityKind.THING])

        assert issues_for(report, "sample", "things") == []

    def test_revision_date_drift_reported(self, source_factory, store, transformer, docs, user_id):
        thing = docs.thing(user_id)
        row = transformer.transform_record(EntityKind.THING, thing)
        row["_rev_date"] = row["_rev_date"] + timedelta(seconds=5)
        store.insert_rows("things", [row])
        validator = IntegrityValidator(source_factory({"things": [thing]}), store, transformer)

        report = validator.validate([EntityKind.THING])

        assert "Revision date mismatch" in issues_for(report, "sample", "things")[0].message

    def test_relinked_archived_revision_matches(self, source_factory, store, transformer, docs, user_id, new_id):
        archived = docs.thing(user_id, _oldRevOf=new_id())
        current = docs.thing(user_id)
        rows = [transformer.transform_record(EntityKind.THING, doc) for doc in (archived, current)]
        rows[0]["_old_rev_of"] = new_id()
        rows[1]["_old_rev_of"] = new_id()
        store.insert_rows("things", rows)
        validator = IntegrityValidator(source_factory({"things": [archived, current]}), store, transformer)

        report = validator.validate([EntityKind.THING])

        issues = issues_for(report, "sample", "things")
        assert len(issues) == 1
        assert current["id"] in issues[0].message
        assert "_old_rev_of mismatch" in issues[0].message

    def test_repaired_field_not_compared(self, source_factory, store, transformer, docs, user_id, new_id):
        ghost = new_id()
        thing = docs.thing(user_id, _revUser=ghost)
        row = transformer.transform_record(EntityKind.THING, thing)
        row["_rev_user"] = user_id
        store.insert_rows("things", [row])
        source = source_factory({"things": [thing]})
        validator = IntegrityValidator(source, store, transformer)

        unaware = validator.validate([EntityKind.THING])
        run = MigrationRun()
        run.repairs = [ReconciliationRepair("things", thing["id"], "_rev_user", ghost, user_id)]
        aware = validator.validate([EntityKind.THING], run)

        assert not unaware.passed
        assert aware.passed

    def test_skipped_record_is_a_warning(self, source_factory, store, transformer, docs):
        users = docs.users(2)
        load(store, transformer, EntityKind.USER, users[:1])
        validator = IntegrityValidator(source_factory({"users": users}), store, transformer)

        report = validator.validate([EntityKind.USER])

        missing = [i for i in issues_for(report, "sample", "users") if "not found" in i.message]
        assert len(missing) == 1
        assert missing[0].severity == Severity.WARNING


class TestConstraints:
    """Rules the schema cannot express."""

    def test_duplicate_canonical_names(self, store, new_id):
        store.insert_rows("users", [
            {"id": new_id(), "display_name": "Dana", "canonical_name": "dana"},
            {"id": new_id(), "display_name": "DANA", "canonical_name": "dana"},
        ])

        report = IntegrityValidator(None, store).validate([EntityKind.USER])

        issue = issues_for(report, "constraints", "users")[0]
        assert issue.severity == Severity.ERROR
        assert issue.details["values"] == ["dana"]

    def test_star_rating_out_of_range(self, store, transformer, docs, user_id):
        thing = docs.thing(user_id)
        load(store, transformer, EntityKind.THING, [thing])
        load(store, transformer, EntityKind.REVIEW, [docs.review(user_id, thing["id"], starRating=9)])

        report = IntegrityValidator(None, store).validate([EntityKind.REVIEW])

        assert not report.passed
        assert "1 reviews with invalid star ratings" in issues_for(report, "constraints", "reviews")[0].message

    def test_things_without_urls_is_a_warning(self, store, transformer, docs, user_id):
        load(store, transformer, EntityKind.THING, [docs.thing(user_id, urls=[])])

        report = IntegrityValidator(None, store).validate([EntityKind.THING])

        assert report.passed
        assert issues_for(report, "constraints", "things")[0].severity == Severity.WARNING


class TestSchema:
    """Structural checks on the target store."""

    def test_complete_schema_passes(self, store):
        report = IntegrityValidator(None, store).validate_schema()

        assert report.passed
        assert report.checks["schema"]["tables"] == {"expected": 15, "found": 15}

    def test_empty_store_reports_everything_missing(self):
        empty = MemoryStore().connect()

        report = IntegrityValidator(None, empty).validate_schema()

        assert not report.passed
        messages = [i.message for i in report.issues]
        assert "Missing table: things" in messages
        assert "Missing critical index: idx_things_current" in messages
        assert "Missing foreign key constraint: reviews_thing_id_fkey" in messages
        assert report.checks["schema"]["tables"]["found"] == 0
