"""Data models for the data access layer and migration pipeline."""

from .entities import (
    EntityKind,
    KindSpec,
    Reference,
    ReferencePolicy,
    MIGRATION_ORDER,
    VERSIONED_KINDS,
    JOIN_KINDS,
    REFERENCES,
    REVISION_FIELDS,
)
from .schema import (
    FieldType,
    FieldDefinition,
    EntitySchema,
    VALID_LANGUAGES,
    LANGUAGE_KEYS,
)
from .record import (
    Severity,
    FieldViolation,
    Issue,
    ValidationReport,
    ReconciliationDrop,
    ReconciliationRepair,
    ReconciliationResult,
)
from .revision import Revision
from .migration import (
    MigrationConfig,
    MigrationRun,
    TableStep,
    RunState,
    StepStatus,
)

__all__ = [
    "EntityKind",
    "KindSpec",
    "Reference",
    "ReferencePolicy",
    "MIGRATION_ORDER",
    "VERSIONED_KINDS",
    "JOIN_KINDS",
    "REFERENCES",
    "REVISION_FIELDS",
    "FieldType",
    "FieldDefinition",
    "EntitySchema",
    "VALID_LANGUAGES",
    "LANGUAGE_KEYS",
    "Severity",
    "FieldViolation",
    "Issue",
    "ValidationReport",
    "ReconciliationDrop",
    "ReconciliationRepair",
    "ReconciliationResult",
    "Revision",
    "MigrationConfig",
    "MigrationRun",
    "TableStep",
    "RunState",
    "StepStatus",
]
