"""Schema registry holding the entity schema of every kind."""

import logging
from typing import Dict, List, Optional
from pathlib import Path

from ..models.entities import EntityKind
from ..models.schema import (
    EntitySchema,
    FieldDefinition,
    FieldType,
    LANGUAGE_KEYS,
)

logger = logging.getLogger(__name__)

LICENSES = ["cc-0", "cc-by", "cc-by-sa", "fair-use"]
JOIN_REQUEST_STATUSES = ["pending", "approved", "rejected", "withdrawn"]


def _f(name: str, type: FieldType, **kwargs) -> FieldDefinition:
    return FieldDefinition(name=name, type=type, **kwargs)


def _ml(name: str, max_length: Optional[int] = None, **kwargs) -> FieldDefinition:
    return FieldDefinition(name=name, type=FieldType.ML_STRING, max_length=max_length, **kwargs)


def _language(required: bool = False) -> FieldDefinition:
    return FieldDefinition(
        name="original_language",
        type=FieldType.STRING,
        enum_values=LANGUAGE_KEYS,
        required=required,
    )


def revision_fields() -> Dict[str, FieldDefinition]:
    """The six revision columns every versioned entity carries."""
    return {
        "_rev_id": _f("_rev_id", FieldType.UUID, required=True),
        "_rev_user": _f("_rev_user", FieldType.UUID, required=True),
        "_rev_date": _f("_rev_date", FieldType.DATETIME, required=True),
        "_rev_tags": _f("_rev_tags", FieldType.ARRAY, items=_f("tag", FieldType.STRING)),
        "_old_rev_of": _f("_old_rev_of", FieldType.UUID),
        "_rev_deleted": _f("_rev_deleted", FieldType.BOOLEAN, default=False),
    }


def _schema(
    kind: EntityKind,
    fields: List[FieldDefinition],
    description: str = "",
) -> EntitySchema:
    all_fields = {} if kind.is_join else {"id": _f("id", FieldType.UUID)}
    all_fields.update({f.name: f for f in fields})
    if kind.versioned:
        all_fields.update(revision_fields())
    return EntitySchema(
        name=kind.value,
        description=description,
        fields=all_fields,
        versioned=kind.versioned,
        primary_key="" if kind.is_join else "id",
    )


def builtin_schemas() -> Dict[EntityKind, EntitySchema]:
    """Target-table schemas of all entity kinds."""
    uuid_req = dict(required=True)
    return {
        EntityKind.USER: _schema(EntityKind.USER, [
            _f("display_name", FieldType.STRING, required=True, max_length=128),
            _f("canonical_name", FieldType.STRING, required=True, max_length=128),
            _f("email", FieldType.STRING, max_length=128),
            _f("password", FieldType.STRING),
            _f("user_meta_id", FieldType.UUID),
            _f("invite_link_count", FieldType.INTEGER, default=0),
            _f("registration_date", FieldType.DATETIME),
            _f("show_error_details", FieldType.BOOLEAN, default=False),
            _f("is_trusted", FieldType.BOOLEAN, default=False),
            _f("is_site_moderator", FieldType.BOOLEAN, default=False),
            _f("is_super_user", FieldType.BOOLEAN, default=False),
            _f("suppressed_notices", FieldType.ARRAY, items=_f("notice", FieldType.STRING)),
            _f("prefers_rich_text_editor", FieldType.BOOLEAN, default=False),
        ], "User accounts"),
        EntityKind.USER_META: _schema(EntityKind.USER_META, [
            _ml("bio", max_length=1000),
            _language(),
        ], "Versioned user metadata with multilingual bio"),
        EntityKind.TEAM: _schema(EntityKind.TEAM, [
            _ml("name", max_length=100),
            _ml("motto", max_length=200),
            _f("description", FieldType.TEXT_HTML),
            _f("rules", FieldType.TEXT_HTML),
            _f("mod_approval_to_join", FieldType.BOOLEAN, default=False),
            _f("only_mods_can_blog", FieldType.BOOLEAN, default=False),
            _f("created_by", FieldType.UUID, **uuid_req),
            _f("created_on", FieldType.DATETIME, required=True),
            _f("canonical_slug_name", FieldType.STRING),
            _language(),
            _f("confers_permissions", FieldType.OBJECT),
        ], "Teams for collaborative reviews"),
        EntityKind.TEAM_SLUG: _schema(EntityKind.TEAM_SLUG, [
            _f("team_id", FieldType.UUID, **uuid_req),
            _f("slug", FieldType.STRING, required=True, max_length=255),
            _f("created_on", FieldType.DATETIME),
            _f("created_by", FieldType.UUID),
            _f("name", FieldType.STRING, max_length=255),
        ]),
        EntityKind.FILE: _schema(EntityKind.FILE, [
            _f("name", FieldType.STRING, max_length=512),
            _ml("description"),
            _f("uploaded_by", FieldType.UUID),
            _f("uploaded_on", FieldType.DATETIME),
            _f("mime_type", FieldType.STRING, max_length=255),
            _f("license", FieldType.ENUM, enum_values=LICENSES),
            _ml("creator"),
            _ml("source"),
            _f("completed", FieldType.BOOLEAN, default=False),
        ], "File metadata"),
        EntityKind.THING: _schema(EntityKind.THING, [
            _f("urls", FieldType.ARRAY, items=_f("url", FieldType.STRING)),
            _ml("label", max_length=256),
            _f("aliases", FieldType.ML_STRING_ARRAY, max_length=256),
            _f("metadata", FieldType.OBJECT, properties={
                "description": _ml("description", max_length=512),
                "subtitle": _ml("subtitle", max_length=256),
                "authors": _f("authors", FieldType.ARRAY, items=_ml("author", max_length=256)),
            }),
            _f("sync", FieldType.OBJECT),
            _language(),
            _f("canonical_slug_name", FieldType.STRING),
            _f("created_on", FieldType.DATETIME, required=True),
            _f("created_by", FieldType.UUID, **uuid_req),
        ], "Review subjects"),
        EntityKind.THING_SLUG: _schema(EntityKind.THING_SLUG, [
            _f("thing_id", FieldType.UUID, **uuid_req),
            _f("slug", FieldType.STRING, required=True, max_length=255),
            _f("created_on", FieldType.DATETIME),
            _f("base_name", FieldType.STRING, max_length=255),
            _f("name", FieldType.STRING, max_length=255),
            _f("qualifier_part", FieldType.STRING, max_length=255),
        ]),
        EntityKind.REVIEW: _schema(EntityKind.REVIEW, [
            _f("thing_id", FieldType.UUID, **uuid_req),
            _ml("title", max_length=255),
            _ml("text"),
            _ml("html"),
            _f("star_rating", FieldType.INTEGER, required=True, minimum=1, maximum=5),
            _f("created_on", FieldType.DATETIME, required=True),
            _f("created_by", FieldType.UUID, **uuid_req),
            _language(),
            _f("social_image_id", FieldType.UUID),
            _f("header_image", FieldType.STRING, max_length=512),
        ], "User reviews"),
        EntityKind.BLOG_POST: _schema(EntityKind.BLOG_POST, [
            _f("team_id", FieldType.UUID, **uuid_req),
            _ml("title", max_length=100),
            _ml("text"),
            _ml("html"),
            _f("created_on", FieldType.DATETIME),
            _f("created_by", FieldType.UUID, **uuid_req),
            _language(required=True),
        ], "Team blog posts"),
        EntityKind.INVITE_LINK: _schema(EntityKind.INVITE_LINK, [
            _f("created_by", FieldType.UUID, **uuid_req),
            _f("created_on", FieldType.DATETIME),
            _f("used_by", FieldType.UUID),
        ]),
        EntityKind.TEAM_JOIN_REQUEST: _schema(EntityKind.TEAM_JOIN_REQUEST, [
            _f("team_id", FieldType.UUID, **uuid_req),
            _f("user_id", FieldType.UUID, **uuid_req),
            _f("status", FieldType.ENUM, enum_values=JOIN_REQUEST_STATUSES, default="pending"),
            _f("request_date", FieldType.DATETIME),
            _f("request_message", FieldType.STRING),
            _f("rejected_by", FieldType.UUID),
            _f("rejection_date", FieldType.DATETIME),
            _f("rejection_message", FieldType.STRING),
            _f("rejected_until", FieldType.DATETIME),
        ]),
        EntityKind.TEAM_MEMBER: _schema(EntityKind.TEAM_MEMBER, [
            _f("team_id", FieldType.UUID, **uuid_req),
            _f("user_id", FieldType.UUID, **uuid_req),
            _f("joined_on", FieldType.DATETIME),
        ]),
        EntityKind.TEAM_MODERATOR: _schema(EntityKind.TEAM_MODERATOR, [
            _f("team_id", FieldType.UUID, **uuid_req),
            _f("user_id", FieldType.UUID, **uuid_req),
            _f("appointed_on", FieldType.DATETIME),
        ]),
        EntityKind.REVIEW_TEAM: _schema(EntityKind.REVIEW_TEAM, [
            _f("review_id", FieldType.UUID, **uuid_req),
            _f("team_id", FieldType.UUID, **uuid_req),
        ]),
        EntityKind.THING_FILE: _schema(EntityKind.THING_FILE, [
            _f("thing_id", FieldType.UUID, **uuid_req),
            _f("file_id", FieldType.UUID, **uuid_req),
        ]),
    }


class SchemaRegistry:
    """
    Registry of entity schemas.

    Starts with the built-in schema of every entity kind; individual
    schemas can be replaced from JSON files or programmatically.
    """

    def __init__(self, schemas_dir: Optional[str] = None):
        """
        Initialize the schema registry.

        Args:
            schemas_dir: Directory of JSON schema files overriding built-ins
        """
        self.schemas: Dict[EntityKind, EntitySchema] = builtin_schemas()
        if schemas_dir:
            self.load_schemas_from_directory(schemas_dir)

    def load_schemas_from_directory(self, directory: str) -> int:
        """
        Load all schema files from a directory.

        Each file must carry a "name" equal to a target table name.

        Args:
            directory: Path to directory containing schema JSON files

        Returns:
            Number of schemas loaded
        """
        loaded = 0
        path = Path(directory)

        if not path.exists():
            logger.warning(f"Schema directory does not exist: {directory}")
            return 0

        for file_path in sorted(path.glob("*.json")):
            schema = EntitySchema.from_json_file(str(file_path))
            self.register(EntityKind.from_table(schema.name), schema)
            loaded += 1
            logger.info(f"Loaded schema: {schema.name} from {file_path}")

        return loaded

    def register(self, kind: EntityKind, schema: EntitySchema) -> None:
        """Register (or replace) the schema of a kind."""
        if kind.versioned:
            for name, field_def in revision_fields().items():
                schema.fields.setdefault(name, field_def)
            schema.versioned = True
        self.schemas[kind] = schema

    def get(self, kind: EntityKind) -> EntitySchema:
        return self.schemas[kind]

    def list_schemas(self) -> List[str]:
        return [kind.value for kind in self.schemas]
