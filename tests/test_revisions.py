"""Tests for the revision engine."""

from datetime import datetime, timezone

import pytest

from revmigrate.errors import InvalidStateError, StaleRevisionError, ValidationError
from revmigrate.models.entities import EntityKind
from revmigrate.services.indexer import BaseIndexer
from revmigrate.services.revisions import RevisionEngine, normalize_tags


class RecordingIndexer(BaseIndexer):
    def __init__(self):
        self.indexed = []
        self.deleted = []

    def index_entity(self, kind, row):
        self.indexed.append(row["id"])

    def delete_entity(self, kind, id):
        self.deleted.append(id)


class FailingIndexer(BaseIndexer):
    def index_entity(self, kind, row):
        raise RuntimeError("search service down")

    def delete_entity(self, kind, id):
        raise RuntimeError("search service down")


@pytest.fixture
def engine(store):
    return RevisionEngine(store)


def create_thing(engine, user_id, label="A Book"):
    draft = engine.create_first_revision(EntityKind.THING, user_id, "create")
    draft.update({
        "label": {"en": label},
        "urls": ["https://example.com/book"],
        "created_on": datetime.now(timezone.utc),
        "created_by": user_id,
    })
    return engine.save(draft)


def edit_thing(engine, current, user_id, label):
    draft = engine.new_revision(current, user_id, "edit")
    draft.set("label", {"en": label})
    return engine.save(draft)


def current_rows(store, lineage_ids):
    return [
        row for row in store.select_rows("things", {"id": lineage_ids})
        if row["_old_rev_of"] is None
    ]


class TestNormalizeTags:
    """Tests for tag normalization."""

    def test_none_is_empty(self):
        assert normalize_tags(None) == []

    def test_single_string(self):
        assert normalize_tags("create") == ["create"]

    def test_sequence(self):
        assert normalize_tags(("delete", "spam")) == ["delete", "spam"]


class TestCreateFirstRevision:
    """Tests for starting a lineage."""

    def test_draft_has_identity_and_stamp(self, engine, user_id):
        draft = engine.create_first_revision(EntityKind.TEAM, user_id, ["create"])

        assert draft.id
        assert draft.rev_id
        assert draft.rev_user == user_id
        assert draft.rev_tags == ["create"]
        assert isinstance(draft.rev_date, datetime)
        assert draft.is_current
        assert not draft.is_deleted
        assert not draft.persisted

    def test_draft_has_schema_defaults(self, engine, user_id):
        draft = engine.create_first_revision(EntityKind.TEAM, user_id)

        assert draft.get("mod_approval_to_join") is False
        assert draft.get("only_mods_can_blog") is False

    def test_non_versioned_kind_rejected(self, engine, user_id):
        with pytest.raises(InvalidStateError):
            engine.create_first_revision(EntityKind.USER, user_id)

    def test_invalid_actor_rejected(self, engine):
        with pytest.raises(ValidationError) as exc_info:
            engine.create_first_revision(EntityKind.THING, "not-a-uuid")

        assert exc_info.value.fields == ["_rev_user"]


class TestSave:
    """Tests for persisting drafts."""

    def test_save_first_revision(self, engine, store, user_id):
        thing = create_thing(engine, user_id)

        assert thing.persisted
        row = store.get_row("things", thing.id)
        assert row["label"] == {"en": "A Book"}
        assert row["_old_rev_of"] is None

    def test_validation_error_lists_every_field(self, engine, store, user_id):
        draft = engine.create_first_revision(EntityKind.REVIEW, user_id, "create")
        draft.update({
            "title": {"xx": "Unknown language"},
            "star_rating": 9,
            "created_on": datetime.now(timezone.utc),
            "created_by": user_id,
        })

        with pytest.raises(ValidationError) as exc_info:
            engine.save(draft)

        fields = set(exc_info.value.fields)
        assert {"thing_id", "title.xx", "star_rating"} <= fields
        assert store.count("reviews") == 0

    def test_save_twice_rejected(self, engine, user_id):
        thing = create_thing(engine, user_id)

        with pytest.raises(InvalidStateError):
            engine.save(thing)

    def test_new_revision_supersedes_predecessor(self, engine, store, user_id):
        first = create_thing(engine, user_id)
        second = edit_thing(engine, first, user_id, "A Better Book")

        old_row = store.get_row("things", first.id)
        assert old_row["_old_rev_of"] == second.id
        assert store.get_row("things", second.id)["_old_rev_of"] is None

    def test_stale_draft_rejected_without_writing(self, engine, store, user_id):
        first = create_thing(engine, user_id)
        draft_a = engine.new_revision(first, user_id, "edit")
        draft_b = engine.new_revision(first, user_id, "edit")
        engine.save(draft_a)

        with pytest.raises(StaleRevisionError):
            engine.save(draft_b)

        assert store.count("things") == 2
        assert store.get_row("things", draft_b.id) is None


class TestNewRevision:
    """Tests for branching revisions."""

    def test_old_revision_rejected_and_store_unchanged(self, engine, store, user_id):
        first = create_thing(engine, user_id)
        edit_thing(engine, first, user_id, "Second")
        before = store.select_rows("things")

        stale = engine.get_history(EntityKind.THING, first.id)[-1]
        assert not stale.is_current
        with pytest.raises(InvalidStateError):
            engine.new_revision(stale, user_id, "edit")

        assert store.select_rows("things") == before

    def test_deleted_revision_rejected(self, engine, user_id):
        thing = create_thing(engine, user_id)
        deleted = engine.mark_deleted(thing, user_id)

        with pytest.raises(InvalidStateError):
            engine.new_revision(deleted, user_id, "edit")

    def test_content_is_copied(self, engine, user_id):
        thing = create_thing(engine, user_id, "Copied")
        draft = engine.new_revision(thing, user_id, "edit")

        assert draft.get("label") == {"en": "Copied"}
        assert draft.id != thing.id
        assert draft.rev_id != thing.rev_id
        assert draft.predecessor_id == thing.id


class TestLineage:
    """Tests for lineage queries."""

    def test_three_edits_and_delete(self, engine, user_id):
        first = create_thing(engine, user_id, "One")
        second = edit_thing(engine, first, user_id, "Two")
        third = edit_thing(engine, second, user_id, "Three")
        deleted = engine.mark_deleted(third, user_id, "spam")

        history = engine.get_history(EntityKind.THING, first.id)
        assert [r.id for r in history] == [deleted.id, third.id, second.id, first.id]

        assert engine.get_current(EntityKind.THING, first.id) is None
        current = engine.get_current_including_deleted(EntityKind.THING, first.id)
        assert current.id == deleted.id
        assert current.is_deleted
        assert current.rev_tags == ["delete", "spam"]
        assert current.get("label") == {"en": "Three"}

    def test_exactly_one_current_row_per_lineage(self, engine, store, user_id):
        revisions = [create_thing(engine, user_id, "v0")]
        for n in range(1, 5):
            revisions.append(edit_thing(engine, revisions[-1], user_id, f"v{n}"))
            ids = [r.id for r in revisions]
            assert len(current_rows(store, ids)) == 1

    def test_current_from_any_revision_id(self, engine, user_id):
        first = create_thing(engine, user_id, "One")
        second = edit_thing(engine, first, user_id, "Two")

        assert engine.get_current(EntityKind.THING, first.id).id == second.id
        assert engine.get_current(EntityKind.THING, second.id).id == second.id

    def test_unknown_id(self, engine, new_id):
        assert engine.get_current(EntityKind.THING, new_id()) is None
        assert engine.get_history(EntityKind.THING, new_id()) == []

    def test_list_current_excludes_old_and_deleted(self, engine, user_id):
        kept = create_thing(engine, user_id, "Kept")
        edited = edit_thing(engine, kept, user_id, "Kept, edited")
        removed = create_thing(engine, user_id, "Removed")
        engine.mark_deleted(removed, user_id)

        ids = [r.id for r in engine.list_current(EntityKind.THING)]
        assert ids == [edited.id]

        with_deleted = engine.list_current(EntityKind.THING, include_deleted=True)
        assert len(with_deleted) == 2


class TestIndexing:
    """Tests for search index notifications."""

    def test_only_live_revisions_are_indexed(self, store, user_id):
        indexer = RecordingIndexer()
        engine = RevisionEngine(store, indexer=indexer)

        first = create_thing(engine, user_id)
        second = edit_thing(engine, first, user_id, "Edited")
        deleted = engine.mark_deleted(second, user_id)

        assert indexer.indexed == [first.id, second.id]
        assert first.id in indexer.deleted
        assert deleted.id in indexer.deleted
        assert deleted.id not in indexer.indexed

    def test_unindexed_kind_not_sent(self, store, user_id):
        indexer = RecordingIndexer()
        engine = RevisionEngine(store, indexer=indexer)

        draft = engine.create_first_revision(EntityKind.TEAM, user_id, "create")
        draft.update({"created_by": user_id, "created_on": datetime.now(timezone.utc)})
        engine.save(draft)

        assert indexer.indexed == []

    def test_indexer_failure_does_not_undo_save(self, store, user_id):
        engine = RevisionEngine(store, indexer=FailingIndexer())

        thing = create_thing(engine, user_id)

        assert store.get_row("things", thing.id) is not None
