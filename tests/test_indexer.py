"""Tests for search index maintenance."""

from datetime import datetime, timezone

import pytest

from revmigrate.models.entities import EntityKind
from revmigrate.services.indexer import (
    HTTPSearchIndexer,
    NullIndexer,
    should_index,
    strip_html,
    strip_html_from_array_values,
)


class FakeResponse:
    def __init__(self, status_code=200):
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise RuntimeError(f"HTTP {self.status_code}")


class FakeSession:
    """Records requests instead of sending them."""

    def __init__(self, status_code=200):
        self.status_code = status_code
        self.calls = []

    def put(self, url, json=None, params=None, timeout=None):
        self.calls.append(("PUT", url, json, params))
        return FakeResponse(self.status_code)

    def delete(self, url, timeout=None):
        self.calls.append(("DELETE", url, None, None))
        return FakeResponse(self.status_code)


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def indexer(session):
    indexer = HTTPSearchIndexer("http://search:9200/", index="reviews-test")
    indexer._session = session
    return indexer


class TestHelpers:

    def test_should_index(self):
        assert should_index({"_old_rev_of": None, "_rev_deleted": False})
        assert not should_index({"_old_rev_of": "abc", "_rev_deleted": False})
        assert not should_index({"_old_rev_of": None, "_rev_deleted": True})

    def test_strip_html(self):
        assert strip_html({"en": "<p>Really <em>great</em></p>"}) == {"en": "Really great"}
        assert strip_html(None) is None

    def test_strip_html_from_array_values(self):
        value = {"en": ["<b>Book</b>", "Tome"]}
        assert strip_html_from_array_values(value) == {"en": ["Book", "Tome"]}


class TestDocuments:
    """Index document shapes."""

    def test_thing_document(self):
        row = {
            "created_on": datetime(2020, 1, 1, tzinfo=timezone.utc),
            "label": {"en": "<i>A Book</i>"},
            "aliases": {"en": ["<b>The Book</b>"]},
            "metadata": {"authors": [{"en": "Jane <br>Doe"}], "subtitle": {"en": "Part one"}},
            "urls": ["https://example.com/book"],
        }

        document = HTTPSearchIndexer.thing_document(row)

        assert document["createdOn"] == "2020-01-01T00:00:00+00:00"
        assert document["label"] == {"en": "A Book"}
        assert document["aliases"] == {"en": ["The Book"]}
        assert document["authors"] == [{"en": "Jane Doe"}]
        assert document["subtitle"] == {"en": "Part one"}
        assert document["description"] is None
        assert document["type"] == "thing"
        assert document["joined"] == "thing"

    def test_review_document(self):
        row = {"thing_id": "t1", "html": {"en": "<p>Good</p>"}, "title": {"en": "Fine"}, "star_rating": 4}

        document = HTTPSearchIndexer.review_document(row)

        assert document["text"] == {"en": "Good"}
        assert document["starRating"] == 4
        assert document["joined"] == {"name": "review", "parent": "t1"}


class TestHTTPSearchIndexer:
    """Requests sent to the search service."""

    def test_index_thing(self, indexer, session):
        indexer.index_entity(EntityKind.THING, {"id": "t1", "label": {"en": "A Book"}})

        method, url, body, params = session.calls[0]
        assert method == "PUT"
        assert url == "http://search:9200/reviews-test/_doc/t1"
        assert body["label"] == {"en": "A Book"}
        assert params == {}

    def test_reviews_routed_by_thing(self, indexer, session):
        indexer.index_entity(EntityKind.REVIEW, {"id": "r1", "thing_id": "t1"})

        assert session.calls[0][3] == {"routing": "t1"}

    def test_old_or_deleted_revisions_skipped(self, indexer, session):
        indexer.index_entity(EntityKind.THING, {"id": "t1", "_old_rev_of": "t2"})
        indexer.index_entity(EntityKind.THING, {"id": "t3", "_rev_deleted": True})

        assert session.calls == []

    def test_unindexed_kind_skipped(self, indexer, session):
        indexer.index_entity(EntityKind.TEAM, {"id": "x"})
        indexer.delete_entity(EntityKind.TEAM, "x")

        assert session.calls == []

    def test_delete(self, indexer, session):
        indexer.delete_entity(EntityKind.THING, "t1")

        assert session.calls == [("DELETE", "http://search:9200/reviews-test/_doc/t1", None, None)]

    def test_delete_missing_document_ignored(self, indexer, session):
        session.status_code = 404
        indexer.delete_entity(EntityKind.THING, "t1")

    def test_server_error_raised(self, indexer, session):
        session.status_code = 500
        with pytest.raises(RuntimeError):
            indexer.index_entity(EntityKind.THING, {"id": "t1"})


def test_null_indexer_handles_nothing():
    indexer = NullIndexer()
    assert not any(indexer.handles(kind) for kind in EntityKind)
