"""Revision engine: append-only lineages with exactly one current row."""

import uuid
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Union

from ..errors import InvalidStateError, StaleRevisionError, ValidationError
from ..loaders.base import BaseTargetStore
from ..models.entities import EntityKind
from ..models.record import FieldViolation
from ..models.revision import Revision
from .indexer import BaseIndexer
from .schema_registry import SchemaRegistry
from .validator import RecordValidator

logger = logging.getLogger(__name__)

Tags = Optional[Union[str, Sequence[str]]]


def normalize_tags(tags: Tags) -> List[str]:
    if tags is None:
        return []
    if isinstance(tags, str):
        return [tags]
    return list(tags)


class RevisionEngine:
    """
    Creates, saves and queries revisions of versioned entities.

    Every edit appends a row. The row it supersedes gets `_old_rev_of`
    set to the new row's id, so each lineage has exactly one row with
    `_old_rev_of` NULL: its current revision. Soft deletion appends a
    revision with `_rev_deleted` set; it stays current but is not live.
    """

    def __init__(
        self,
        store: BaseTargetStore,
        registry: Optional[SchemaRegistry] = None,
        indexer: Optional[BaseIndexer] = None,
        validator: Optional[RecordValidator] = None,
    ):
        """
        Initialize the revision engine.

        Args:
            store: Target store holding the versioned tables
            registry: Schemas to validate drafts against
            indexer: Search indexer notified after commits
            validator: Record validator (defaults to a plain RecordValidator)
        """
        self.store = store
        self.registry = registry or SchemaRegistry()
        self.indexer = indexer
        self.validator = validator or RecordValidator()

    def create_first_revision(self, kind: EntityKind, actor: str, tags: Tags = None) -> Revision:
        """
        Start a new lineage.

        Args:
            kind: Versioned entity kind
            actor: Id of the user creating the entity
            tags: Labels describing the change (e.g. "create")

        Returns:
            Unsaved draft with schema defaults and fresh identity
        """
        self._require_versioned(kind)
        actor = self._check_actor(actor)

        data: Dict[str, Any] = {}
        for name in self.registry.get(kind).content_fields:
            default = self.registry.get(kind).fields[name].default
            if default is not None:
                data[name] = default
        data.update(self._stamp(actor, tags))
        data["id"] = str(uuid.uuid4())
        data["_old_rev_of"] = None
        data["_rev_deleted"] = False
        return Revision(kind=kind, data=data)

    def new_revision(self, current: Revision, actor: str, tags: Tags = None) -> Revision:
        """
        Branch a draft off the current revision.

        Raises:
            InvalidStateError: If `current` is an old or deleted revision
        """
        self._require_versioned(current.kind)
        if not current.is_current:
            raise InvalidStateError(
                f"Cannot create a new revision of {current.kind.value} {current.id}: "
                f"it was superseded by {current.old_rev_of}"
            )
        if current.is_deleted:
            raise InvalidStateError(
                f"Cannot create a new revision of {current.kind.value} {current.id}: it is deleted"
            )
        actor = self._check_actor(actor)

        data = current.copy_data()
        data.update(self._stamp(actor, tags, after=current.rev_date))
        data["id"] = str(uuid.uuid4())
        data["_old_rev_of"] = None
        data["_rev_deleted"] = False
        return Revision(kind=current.kind, data=data, predecessor_id=current.id)

    def save(self, draft: Revision) -> Revision:
        """
        Validate and persist a draft.

        The new row and the update of its predecessor are written in one
        transaction.

        Returns:
            The draft, now persisted

        Raises:
            ValidationError: Listing every invalid field
            StaleRevisionError: If the predecessor is no longer current
        """
        if draft.persisted:
            raise InvalidStateError(f"Revision {draft.id} is already saved")
        schema = self.registry.get(draft.kind)
        self.validator.validate_or_raise(draft.data, schema)

        table = draft.kind.target_table
        with self.store.transaction():
            if draft.predecessor_id:
                updated = self.store.update_rows(
                    table,
                    {"_old_rev_of": draft.id},
                    {"id": draft.predecessor_id, "_old_rev_of": None},
                )
                if updated != 1:
                    raise StaleRevisionError(
                        f"{draft.kind.value} {draft.predecessor_id} is no longer the current revision"
                    )
            self.store.insert_rows(table, [draft.data])

        draft.persisted = True
        logger.debug(f"Saved {draft.kind.value} revision {draft.id} (tags: {draft.rev_tags})")
        self._notify(draft)
        return draft

    def mark_deleted(self, revision: Revision, actor: str, tags: Tags = None) -> Revision:
        """
        Soft-delete a lineage by saving a deleted revision of it.

        Content is carried over unchanged and history is preserved.
        """
        draft = self.new_revision(revision, actor, ["delete"] + normalize_tags(tags))
        draft.set("_rev_deleted", True)
        return self.save(draft)

    def get_current(self, kind: EntityKind, id: str) -> Optional[Revision]:
        """Current revision of the lineage containing `id`, unless deleted."""
        revision = self.get_current_including_deleted(kind, id)
        if revision is None or revision.is_deleted:
            return None
        return revision

    def get_current_including_deleted(self, kind: EntityKind, id: str) -> Optional[Revision]:
        self._require_versioned(kind)
        row = self.store.get_row(kind.target_table, id)
        seen = set()
        while row is not None and row.get("_old_rev_of") is not None:
            if row["id"] in seen:
                raise InvalidStateError(f"Revision cycle in {kind.value} lineage of {id}")
            seen.add(row["id"])
            row = self.store.get_row(kind.target_table, row["_old_rev_of"])
        return self._revision(kind, row) if row else None

    def get_history(self, kind: EntityKind, id: str) -> List[Revision]:
        """
        All revisions of the lineage containing `id`, newest first.
        """
        current = self.get_current_including_deleted(kind, id)
        if current is None:
            return []

        history = [current]
        seen = {current.id}
        next_id = current.id
        while True:
            rows = self.store.select_rows(kind.target_table, {"_old_rev_of": next_id}, limit=2)
            if not rows:
                break
            if len(rows) > 1:
                raise InvalidStateError(f"Revision {next_id} of {kind.value} has more than one predecessor")
            row = rows[0]
            if row["id"] in seen:
                raise InvalidStateError(f"Revision cycle in {kind.value} lineage of {id}")
            seen.add(row["id"])
            history.append(self._revision(kind, row))
            next_id = row["id"]
        return history

    def list_current(
        self,
        kind: EntityKind,
        include_deleted: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Revision]:
        self._require_versioned(kind)
        where: Dict[str, Any] = {"_old_rev_of": None}
        if not include_deleted:
            where["_rev_deleted"] = False
        rows = self.store.select_rows(
            kind.target_table, where, order_by="_rev_date", descending=True, limit=limit, offset=offset
        )
        return [self._revision(kind, row) for row in rows]

    def _notify(self, revision: Revision) -> None:
        if self.indexer is None or not self.indexer.handles(revision.kind):
            return
        try:
            if revision.predecessor_id:
                self.indexer.delete_entity(revision.kind, revision.predecessor_id)
            if revision.is_live:
                self.indexer.index_entity(revision.kind, revision.data)
            else:
                self.indexer.delete_entity(revision.kind, revision.id)
        except Exception as e:
            logger.error(f"Search index update failed for {revision.kind.value} {revision.id}: {e}")

    def _stamp(self, actor: str, tags: Tags, after: Optional[datetime] = None) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        if isinstance(after, datetime) and after.tzinfo is not None and after > now:
            now = after
        return {
            "_rev_id": str(uuid.uuid4()),
            "_rev_user": actor,
            "_rev_date": now,
            "_rev_tags": normalize_tags(tags),
        }

    @staticmethod
    def _check_actor(actor: Any) -> str:
        try:
            return str(uuid.UUID(str(actor)))
        except ValueError as e:
            violation = FieldViolation(
                field="_rev_user",
                message=f"Invalid user id: {actor!r}",
                error_type="invalid_uuid",
                value=actor,
            )
            raise ValidationError("Invalid revision author", [violation]) from e

    @staticmethod
    def _require_versioned(kind: EntityKind) -> None:
        if not kind.versioned:
            raise InvalidStateError(f"{kind.value} is not a versioned entity kind")

    @staticmethod
    def _revision(kind: EntityKind, row: Dict[str, Any]) -> Revision:
        return Revision(kind=kind, data=row, persisted=True)
