"""Service layer for the data access layer and migration pipeline."""

from .schema_registry import SchemaRegistry
from .validator import RecordValidator
from .revisions import RevisionEngine
from .transformer import Transformer
from .reconciler import Reconciler
from .integrity import IntegrityValidator
from .rollback import RollbackManager, RollbackResult
from .reporter import MigrationReporter
from .indexer import BaseIndexer, NullIndexer, HTTPSearchIndexer

__all__ = [
    "SchemaRegistry",
    "RecordValidator",
    "RevisionEngine",
    "Transformer",
    "Reconciler",
    "IntegrityValidator",
    "RollbackManager",
    "RollbackResult",
    "MigrationReporter",
    "BaseIndexer",
    "NullIndexer",
    "HTTPSearchIndexer",
]
