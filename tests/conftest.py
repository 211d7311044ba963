"""Shared fixtures: an in-memory target store and JSON-export sources."""

import json
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from revmigrate.loaders.memory import MemoryStore

REV_DATE = "2020-01-01T00:00:00Z"


def _id() -> str:
    return str(uuid.uuid4())


class SourceDocs:
    """Builders for documents shaped like the legacy document store's."""

    def user(self, id: Optional[str] = None, name: str = "Alice", **extra) -> Dict[str, Any]:
        doc = {
            "id": id or _id(),
            "displayName": name,
            "canonicalName": name.lower(),
            "email": f"{name.lower()}@example.com",
            "registrationDate": REV_DATE,
            "isTrusted": False,
        }
        doc.update(extra)
        return doc

    def revision(self, user_id: str, **extra) -> Dict[str, Any]:
        doc = {
            "_revID": _id(),
            "_revUser": user_id,
            "_revDate": REV_DATE,
            "_revTags": ["create"],
        }
        doc.update(extra)
        return doc

    def thing(self, user_id: str, id: Optional[str] = None, **extra) -> Dict[str, Any]:
        doc = {
            "id": id or _id(),
            "urls": ["https://example.com/book"],
            "label": {"en": "A Book"},
            "createdOn": REV_DATE,
            "createdBy": user_id,
            "originalLanguage": "en",
        }
        doc.update(self.revision(user_id))
        doc.update(extra)
        return doc

    def review(self, user_id: str, thing_id: str, id: Optional[str] = None, **extra) -> Dict[str, Any]:
        doc = {
            "id": id or _id(),
            "thingID": thing_id,
            "title": {"en": "Great"},
            "text": {"en": "Really *great*"},
            "html": {"en": "<p>Really <em>great</em></p>"},
            "starRating": 5,
            "createdOn": REV_DATE,
            "createdBy": user_id,
            "originalLanguage": "en",
        }
        doc.update(self.revision(user_id))
        doc.update(extra)
        return doc

    def team(self, user_id: str, id: Optional[str] = None, **extra) -> Dict[str, Any]:
        doc = {
            "id": id or _id(),
            "name": {"en": "Readers"},
            "createdBy": user_id,
            "createdOn": REV_DATE,
            "modApprovalToJoin": False,
        }
        doc.update(self.revision(user_id))
        doc.update(extra)
        return doc

    def users(self, count: int) -> List[Dict[str, Any]]:
        return [self.user(name=f"user{n:05d}") for n in range(count)]


@pytest.fixture
def new_id():
    """Factory for fresh UUID strings."""
    return _id


@pytest.fixture
def docs() -> SourceDocs:
    return SourceDocs()


@pytest.fixture
def store():
    """Connected memory store with every table created."""
    store = MemoryStore().connect()
    store.apply_schema_migrations()
    yield store
    store.disconnect()


@pytest.fixture
def user_id(store) -> str:
    """Id of a user already present in the target store."""
    id = _id()
    store.insert_rows("users", [{"id": id, "display_name": "Alice", "canonical_name": "alice"}])
    return id


@pytest.fixture
def write_export(tmp_path):
    """Write source tables as a JSON export and return its directory."""
    export = tmp_path / "export"
    export.mkdir()

    def write(tables: Dict[str, List[Any]]) -> str:
        for name, documents in tables.items():
            (export / f"{name}.json").write_text(json.dumps(documents))
        return str(export)

    return write


@pytest.fixture
def report_dir(tmp_path) -> Path:
    return tmp_path / "reports"
