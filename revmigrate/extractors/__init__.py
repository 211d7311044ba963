"""Source stores for the legacy document database."""

from .base import BaseSourceStore
from .rethinkdb_source import RethinkDBSource
from .json_export import JSONExportSource

__all__ = [
    "BaseSourceStore",
    "RethinkDBSource",
    "JSONExportSource",
]
