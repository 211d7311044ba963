"""Target stores for the relational database."""

from .base import BaseTargetStore
from .memory import MemoryStore
from .postgres import PostgresStore

__all__ = [
    "BaseTargetStore",
    "MemoryStore",
    "PostgresStore",
]
