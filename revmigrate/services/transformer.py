"""Transformer converting legacy documents into target-table rows."""

import logging
from typing import Any, Callable, Dict, List, Optional
from datetime import datetime, timezone
from dateutil import parser as date_parser

from ..errors import TransformError
from ..models.entities import EntityKind
from ..models.schema import FieldType
from .schema_registry import SchemaRegistry

logger = logging.getLogger(__name__)

# camelCase source field -> snake_case target column, per kind.
FIELD_MAPPINGS: Dict[EntityKind, Dict[str, str]] = {
    EntityKind.USER: {
        "displayName": "display_name",
        "canonicalName": "canonical_name",
        "userMetaID": "user_meta_id",
        "inviteLinkCount": "invite_link_count",
        "registrationDate": "registration_date",
        "showErrorDetails": "show_error_details",
        "isTrusted": "is_trusted",
        "isSiteModerator": "is_site_moderator",
        "isSuperUser": "is_super_user",
        "suppressedNotices": "suppressed_notices",
        "prefersRichTextEditor": "prefers_rich_text_editor",
    },
    EntityKind.USER_META: {
        "originalLanguage": "original_language",
    },
    EntityKind.TEAM: {
        "modApprovalToJoin": "mod_approval_to_join",
        "onlyModsCanBlog": "only_mods_can_blog",
        "createdBy": "created_by",
        "createdOn": "created_on",
        "canonicalSlugName": "canonical_slug_name",
        "originalLanguage": "original_language",
        "confersPermissions": "confers_permissions",
    },
    EntityKind.FILE: {
        "uploadedBy": "uploaded_by",
        "uploadedOn": "uploaded_on",
        "mimeType": "mime_type",
    },
    EntityKind.THING: {
        "originalLanguage": "original_language",
        "canonicalSlugName": "canonical_slug_name",
        "createdOn": "created_on",
        "createdBy": "created_by",
    },
    EntityKind.REVIEW: {
        "thingID": "thing_id",
        "starRating": "star_rating",
        "createdOn": "created_on",
        "createdBy": "created_by",
        "originalLanguage": "original_language",
        "socialImageID": "social_image_id",
        "headerImage": "header_image",
    },
    EntityKind.BLOG_POST: {
        "teamID": "team_id",
        "createdOn": "created_on",
        "createdBy": "created_by",
        "originalLanguage": "original_language",
    },
    EntityKind.INVITE_LINK: {
        "createdBy": "created_by",
        "createdOn": "created_on",
        "usedBy": "used_by",
    },
    EntityKind.TEAM_JOIN_REQUEST: {
        "teamID": "team_id",
        "userID": "user_id",
        "requestDate": "request_date",
        "requestMessage": "request_message",
        "rejectedBy": "rejected_by",
        "rejectionDate": "rejection_date",
        "rejectionMessage": "rejection_message",
        "rejectedUntil": "rejected_until",
    },
    EntityKind.TEAM_SLUG: {
        "teamID": "team_id",
        "createdOn": "created_on",
        "createdBy": "created_by",
    },
    EntityKind.THING_SLUG: {
        "thingID": "thing_id",
        "createdOn": "created_on",
        "baseName": "base_name",
        "createdBy": "created_by",
        "qualifierPart": "qualifier_part",
    },
}

REVISION_FIELD_MAPPINGS = {
    "_revID": "_rev_id",
    "_revUser": "_rev_user",
    "_revDate": "_rev_date",
    "_revTags": "_rev_tags",
    "_oldRevOf": "_old_rev_of",
    "_revDeleted": "_rev_deleted",
}


def parse_datetime(value: Any) -> Any:
    """
    Parse a timestamp from any of the shapes the source produces.

    Handles driver datetimes, ISO strings, and the `$reql_type$: TIME`
    pseudo-type written by JSON exports. Anything else is returned as is.
    """
    if isinstance(value, datetime):
        return value
    if isinstance(value, dict) and value.get("$reql_type$") == "TIME":
        return datetime.fromtimestamp(value["epoch_time"], tz=timezone.utc)
    if isinstance(value, str):
        try:
            return date_parser.isoparse(value)
        except ValueError:
            return value
    return value


class Transformer:
    """
    Maps source-shaped documents to target-shaped rows.

    Stateless apart from the run start time, which stands in for missing
    join timestamps so that transforming the same batch twice gives the
    same rows.
    """

    def __init__(
        self,
        registry: Optional[SchemaRegistry] = None,
        run_started_at: Optional[datetime] = None,
    ):
        """
        Initialize the transformer.

        Args:
            registry: Schemas used to find timestamp columns
            run_started_at: Default for missing join timestamps
        """
        self.registry = registry or SchemaRegistry()
        self.run_started_at = run_started_at or datetime.now(timezone.utc)
        self._datetime_fields = {
            kind: {
                name for name, f in self.registry.get(kind).fields.items()
                if f.type == FieldType.DATETIME
            }
            for kind in EntityKind
        }

    def transform_batch(self, kind: EntityKind, batch: List[Any]) -> List[Dict[str, Any]]:
        """
        Transform a batch of documents of one kind.

        Raises:
            TransformError: On the first document that cannot be transformed
        """
        transformed = []
        for position, record in enumerate(batch):
            try:
                transformed.append(self.transform_record(kind, record))
            except TransformError as e:
                e.message = f"{e.message} (record {position} of batch)"
                e.args = (e.message,)
                logger.error(f"Error transforming record in table {kind.source_table}: {e.message}")
                raise
        return transformed

    def transform_record(self, kind: EntityKind, record: Any) -> Dict[str, Any]:
        """
        Transform one document.

        Args:
            kind: Entity kind of the document
            record: Raw source document

        Returns:
            Target row
        """
        if not isinstance(record, dict):
            raise TransformError(
                f"Invalid record for table {kind.source_table}: expected an object, "
                f"got {type(record).__name__}",
                table=kind.target_table,
            )

        row = TRANSFORMS[kind](self, record)

        for name in self._datetime_fields[kind]:
            if name in row:
                row[name] = parse_datetime(row[name])

        if kind.versioned:
            # column defaults of the versioned tables
            row.setdefault("_rev_deleted", False)
            row.setdefault("_rev_tags", [])

        self.validate_transformed(kind, row)
        return row

    def validate_transformed(self, kind: EntityKind, row: Dict[str, Any]) -> None:
        record_id = row.get("id")
        if not kind.is_join and not record_id:
            raise TransformError(
                f"Missing required id field for table {kind.target_table}",
                table=kind.target_table,
            )
        if kind.versioned:
            for name in ("_rev_id", "_rev_date"):
                if not row.get(name):
                    raise TransformError(
                        f"Missing required {name} field for versioned table {kind.target_table}",
                        table=kind.target_table,
                        record_id=record_id,
                    )

    # Per-kind transforms

    def transform_user(self, record: Dict[str, Any]) -> Dict[str, Any]:
        row = self.apply_field_mappings(EntityKind.USER, record)
        # Legacy field
        row.pop("isEditor", None)
        return row

    def transform_user_meta(self, record: Dict[str, Any]) -> Dict[str, Any]:
        row = self.apply_field_mappings(EntityKind.USER_META, record)
        self._set_ml(row, "bio", record.get("bio"))
        return row

    def transform_team(self, record: Dict[str, Any]) -> Dict[str, Any]:
        row = self.apply_field_mappings(EntityKind.TEAM, record)

        if not row.get("created_on") and record.get("_revDate"):
            row["created_on"] = record["_revDate"]
            logger.info(f"Team {record.get('id')}: created_on backfilled from revision date")
        if not row.get("created_by") and record.get("_revUser"):
            row["created_by"] = record["_revUser"]
            logger.info(f"Team {record.get('id')}: created_by backfilled from revision user")

        self._set_ml(row, "name", record.get("name"))
        self._set_ml(row, "motto", record.get("motto"))
        for name in ("description", "rules"):
            value = self.transform_text_html(record.get(name))
            if value is None:
                row.pop(name, None)
            else:
                row[name] = value
        return row

    def transform_file(self, record: Dict[str, Any]) -> Dict[str, Any]:
        row = self.apply_field_mappings(EntityKind.FILE, record)
        for name in ("description", "creator", "source"):
            self._set_ml(row, name, record.get(name))
        return row

    def transform_thing(self, record: Dict[str, Any]) -> Dict[str, Any]:
        row = self.apply_field_mappings(EntityKind.THING, record)
        self._set_ml(row, "label", record.get("label"))

        aliases = self.transform_ml_string_array(record.get("aliases"))
        if aliases is None:
            row.pop("aliases", None)
        else:
            row["aliases"] = aliases

        metadata = {}
        description = self.transform_ml_string(record.get("description"))
        if description:
            metadata["description"] = description
        subtitle = self.transform_ml_string(record.get("subtitle"))
        if subtitle:
            metadata["subtitle"] = subtitle
        if isinstance(record.get("authors"), list):
            metadata["authors"] = [
                a for a in (self.transform_ml_string(author) for author in record["authors"]) if a
            ]

        for name in ("description", "subtitle", "authors"):
            row.pop(name, None)
        if metadata:
            row["metadata"] = metadata
        return row

    def transform_review(self, record: Dict[str, Any]) -> Dict[str, Any]:
        row = self.apply_field_mappings(EntityKind.REVIEW, record)
        for name in ("title", "text", "html"):
            self._set_ml(row, name, record.get(name))
        return row

    def transform_blog_post(self, record: Dict[str, Any]) -> Dict[str, Any]:
        row = self.apply_field_mappings(EntityKind.BLOG_POST, record)
        self._set_ml(row, "title", record.get("title"))

        post = record.get("post")
        content = post if isinstance(post, dict) else record
        for name in ("text", "html"):
            self._set_ml(row, name, content.get(name))

        row.pop("post", None)
        return row

    def transform_invite_link(self, record: Dict[str, Any]) -> Dict[str, Any]:
        return self.apply_field_mappings(EntityKind.INVITE_LINK, record)

    def transform_team_join_request(self, record: Dict[str, Any]) -> Dict[str, Any]:
        return self.apply_field_mappings(EntityKind.TEAM_JOIN_REQUEST, record)

    def transform_team_slug(self, record: Dict[str, Any]) -> Dict[str, Any]:
        row = self.apply_field_mappings(EntityKind.TEAM_SLUG, record)
        if record.get("name"):
            row["slug"] = record["name"]
        return row

    def transform_thing_slug(self, record: Dict[str, Any]) -> Dict[str, Any]:
        row = self.apply_field_mappings(EntityKind.THING_SLUG, record)
        if record.get("name"):
            row["slug"] = record["name"]
        # thing_slugs has no created_by column
        row.pop("created_by", None)
        return row

    def transform_team_member(self, record: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "team_id": self._pick(record, "teamID", "team_id", "teams_id"),
            "user_id": self._pick(record, "userID", "user_id", "users_id"),
            "joined_on": self._pick(record, "joinedOn", "joined_on") or self.run_started_at,
        }

    def transform_team_moderator(self, record: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "team_id": self._pick(record, "teamID", "team_id", "teams_id"),
            "user_id": self._pick(record, "userID", "user_id", "users_id"),
            "appointed_on": self._pick(record, "appointedOn", "appointed_on") or self.run_started_at,
        }

    def transform_review_team(self, record: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "review_id": self._pick(record, "reviewID", "review_id", "reviews_id"),
            "team_id": self._pick(record, "teamID", "team_id", "teams_id"),
        }

    def transform_thing_file(self, record: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "thing_id": self._pick(record, "thingID", "thing_id", "things_id"),
            "file_id": self._pick(record, "fileID", "file_id", "files_id"),
        }

    # Helpers

    def apply_field_mappings(self, kind: EntityKind, record: Dict[str, Any]) -> Dict[str, Any]:
        """Copy non-null fields, renaming mapped and revision fields."""
        mappings = FIELD_MAPPINGS.get(kind, {})
        row = {}
        for key, value in record.items():
            if value is None:
                continue
            target = mappings.get(key) or REVISION_FIELD_MAPPINGS.get(key) or key
            row[target] = value
        return row

    def transform_ml_string(self, value: Any) -> Optional[Dict[str, Any]]:
        """Multilingual strings share the source shape; only mappings are kept."""
        if not isinstance(value, dict) or not value:
            return None
        return value

    def transform_ml_string_array(self, value: Any) -> Any:
        if isinstance(value, list):
            return [self.transform_ml_string(item) for item in value]
        if isinstance(value, dict) and value:
            return value
        return None

    def transform_text_html(self, value: Any) -> Optional[Dict[str, Any]]:
        """`{text: ml, html: ml}` object, or None if neither part is present."""
        if not isinstance(value, dict):
            return None
        result = {}
        for part in ("text", "html"):
            ml = self.transform_ml_string(value.get(part))
            if ml:
                result[part] = ml
        return result or None

    def _set_ml(self, row: Dict[str, Any], name: str, value: Any) -> None:
        ml = self.transform_ml_string(value)
        if ml is None:
            row.pop(name, None)
        else:
            row[name] = ml

    @staticmethod
    def _pick(record: Dict[str, Any], *names: str) -> Any:
        for name in names:
            if record.get(name):
                return record[name]
        return None


TRANSFORMS: Dict[EntityKind, Callable[[Transformer, Dict[str, Any]], Dict[str, Any]]] = {
    EntityKind.USER: Transformer.transform_user,
    EntityKind.USER_META: Transformer.transform_user_meta,
    EntityKind.TEAM: Transformer.transform_team,
    EntityKind.TEAM_SLUG: Transformer.transform_team_slug,
    EntityKind.FILE: Transformer.transform_file,
    EntityKind.THING: Transformer.transform_thing,
    EntityKind.THING_SLUG: Transformer.transform_thing_slug,
    EntityKind.REVIEW: Transformer.transform_review,
    EntityKind.BLOG_POST: Transformer.transform_blog_post,
    EntityKind.INVITE_LINK: Transformer.transform_invite_link,
    EntityKind.TEAM_JOIN_REQUEST: Transformer.transform_team_join_request,
    EntityKind.TEAM_MEMBER: Transformer.transform_team_member,
    EntityKind.TEAM_MODERATOR: Transformer.transform_team_moderator,
    EntityKind.REVIEW_TEAM: Transformer.transform_review_team,
    EntityKind.THING_FILE: Transformer.transform_thing_file,
}

_untransformed = [k.name for k in EntityKind if k not in TRANSFORMS]
if _untransformed:
    raise RuntimeError(f"Entity kinds without a transform: {_untransformed}")
