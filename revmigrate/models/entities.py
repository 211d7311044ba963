"""Entity kinds and the reference catalogue between them."""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple


class EntityKind(str, Enum):
    """Every record type the data layer stores, one member per target table."""
    USER = "users"
    USER_META = "user_metas"
    TEAM = "teams"
    TEAM_SLUG = "team_slugs"
    FILE = "files"
    THING = "things"
    THING_SLUG = "thing_slugs"
    REVIEW = "reviews"
    BLOG_POST = "blog_posts"
    INVITE_LINK = "invite_links"
    TEAM_JOIN_REQUEST = "team_join_requests"
    TEAM_MEMBER = "team_members"
    TEAM_MODERATOR = "team_moderators"
    REVIEW_TEAM = "review_teams"
    THING_FILE = "thing_files"

    @property
    def spec(self) -> "KindSpec":
        return KIND_SPECS[self]

    @property
    def target_table(self) -> str:
        return self.value

    @property
    def source_table(self) -> str:
        return KIND_SPECS[self].source_table

    @property
    def versioned(self) -> bool:
        return KIND_SPECS[self].versioned

    @property
    def is_join(self) -> bool:
        return KIND_SPECS[self].join

    @property
    def key_columns(self) -> Tuple[str, ...]:
        return KIND_SPECS[self].key_columns

    @classmethod
    def from_table(cls, name: str) -> "EntityKind":
        """
        Resolve a kind from its target table name, source table name or enum name.

        Raises:
            ValueError: If nothing matches
        """
        lookup = name.strip().lower()
        for kind in cls:
            if lookup in (kind.value, kind.source_table, kind.name.lower()):
                return kind
        raise ValueError(f"Unknown entity kind or table: {name}")


@dataclass(frozen=True)
class KindSpec:
    """Static description of one entity kind."""
    source_table: str
    versioned: bool = False
    join: bool = False
    key_columns: Tuple[str, ...] = ("id",)


KIND_SPECS: Dict[EntityKind, KindSpec] = {
    EntityKind.USER: KindSpec("users"),
    EntityKind.USER_META: KindSpec("user_meta", versioned=True),
    EntityKind.TEAM: KindSpec("teams", versioned=True),
    EntityKind.TEAM_SLUG: KindSpec("team_slugs"),
    EntityKind.FILE: KindSpec("files", versioned=True),
    EntityKind.THING: KindSpec("things", versioned=True),
    EntityKind.THING_SLUG: KindSpec("thing_slugs"),
    EntityKind.REVIEW: KindSpec("reviews", versioned=True),
    EntityKind.BLOG_POST: KindSpec("blog_posts", versioned=True),
    EntityKind.INVITE_LINK: KindSpec("invite_link"),
    EntityKind.TEAM_JOIN_REQUEST: KindSpec("team_join_requests"),
    EntityKind.TEAM_MEMBER: KindSpec(
        "teams_users_membership", join=True, key_columns=("team_id", "user_id")
    ),
    EntityKind.TEAM_MODERATOR: KindSpec(
        "teams_users_moderatorship", join=True, key_columns=("team_id", "user_id")
    ),
    EntityKind.REVIEW_TEAM: KindSpec(
        "reviews_teams_team_content", join=True, key_columns=("review_id", "team_id")
    ),
    EntityKind.THING_FILE: KindSpec(
        "files_things_media_usage", join=True, key_columns=("thing_id", "file_id")
    ),
}

# Owners before owned, content before joins. Enum order is the migration order.
MIGRATION_ORDER: List[EntityKind] = list(EntityKind)

VERSIONED_KINDS: List[EntityKind] = [k for k in EntityKind if k.versioned]
JOIN_KINDS: List[EntityKind] = [k for k in EntityKind if k.is_join]

REVISION_FIELDS = (
    "_rev_id",
    "_rev_user",
    "_rev_date",
    "_rev_tags",
    "_old_rev_of",
    "_rev_deleted",
)


class ReferencePolicy(str, Enum):
    """What the reconciler does when a referenced row does not exist."""
    DROP = "drop"  # Required owner; the record cannot exist without it
    NULLIFY = "nullify"  # Optional link; cleared
    FALLBACK = "fallback"  # Replaced by another field of the same record


@dataclass(frozen=True)
class Reference:
    """A foreign key from one kind's column to another kind's rows."""
    field: str
    target: EntityKind
    policy: ReferencePolicy
    fallback_field: Optional[str] = None
    cascade: bool = False

    def constraint_name(self, table: str) -> str:
        return f"{table}_{self.field.lstrip('_')}_fkey"


def _drop(field: str, target: EntityKind, cascade: bool = False) -> Reference:
    return Reference(field, target, ReferencePolicy.DROP, cascade=cascade)


def _nullify(field: str, target: EntityKind) -> Reference:
    return Reference(field, target, ReferencePolicy.NULLIFY)


def _fallback(field: str, target: EntityKind, fallback_field: str) -> Reference:
    return Reference(field, target, ReferencePolicy.FALLBACK, fallback_field=fallback_field)


U = EntityKind.USER

REFERENCES: Dict[EntityKind, List[Reference]] = {
    EntityKind.USER: [],
    EntityKind.USER_META: [_nullify("_rev_user", U)],
    EntityKind.TEAM: [
        _drop("created_by", U),
        _fallback("_rev_user", U, "created_by"),
    ],
    EntityKind.TEAM_SLUG: [
        _drop("team_id", EntityKind.TEAM),
        _nullify("created_by", U),
    ],
    EntityKind.FILE: [
        _nullify("uploaded_by", U),
        _fallback("_rev_user", U, "uploaded_by"),
    ],
    EntityKind.THING: [
        _drop("created_by", U),
        _fallback("_rev_user", U, "created_by"),
    ],
    EntityKind.THING_SLUG: [
        _drop("thing_id", EntityKind.THING),
    ],
    EntityKind.REVIEW: [
        _drop("created_by", U),
        _drop("thing_id", EntityKind.THING),
        _nullify("social_image_id", EntityKind.FILE),
        _fallback("_rev_user", U, "created_by"),
    ],
    EntityKind.BLOG_POST: [
        _drop("created_by", U),
        _nullify("team_id", EntityKind.TEAM),
        _fallback("_rev_user", U, "created_by"),
    ],
    EntityKind.INVITE_LINK: [
        _drop("created_by", U),
        _nullify("used_by", U),
    ],
    EntityKind.TEAM_JOIN_REQUEST: [
        _drop("team_id", EntityKind.TEAM),
        _drop("user_id", U),
        _nullify("rejected_by", U),
    ],
    EntityKind.TEAM_MEMBER: [
        _drop("team_id", EntityKind.TEAM, cascade=True),
        _drop("user_id", U, cascade=True),
    ],
    EntityKind.TEAM_MODERATOR: [
        _drop("team_id", EntityKind.TEAM, cascade=True),
        _drop("user_id", U, cascade=True),
    ],
    EntityKind.REVIEW_TEAM: [
        _drop("review_id", EntityKind.REVIEW, cascade=True),
        _drop("team_id", EntityKind.TEAM, cascade=True),
    ],
    EntityKind.THING_FILE: [
        _drop("thing_id", EntityKind.THING, cascade=True),
        _drop("file_id", EntityKind.FILE, cascade=True),
    ],
}

missing = [k.name for k in EntityKind if k not in KIND_SPECS or k not in REFERENCES]
if missing:
    raise RuntimeError(f"Entity kinds without a catalogue entry: {missing}")
del missing
