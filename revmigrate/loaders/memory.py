"""In-process target store with the same contract as the PostgreSQL store."""

import copy
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from .base import BaseTargetStore, Where, matches
from ..errors import ConnectivityError, InsertError, QueryError
from ..models.entities import EntityKind, REFERENCES

logger = logging.getLogger(__name__)


class MemoryStore(BaseTargetStore):
    """
    Target store kept in memory.

    Mirrors what the relational schema enforces: primary keys, foreign
    keys on insert, and TRUNCATE ... CASCADE semantics on clear.
    Transactions snapshot every table and restore it if the scope raises.
    Used for previews and tests; raw SQL is not supported.
    """

    name = "memory"

    def __init__(self, namespace: Optional[str] = None, enforce_foreign_keys: bool = True):
        super().__init__(namespace)
        self.enforce_foreign_keys = enforce_foreign_keys
        self._tables: Dict[str, List[Dict[str, Any]]] = {}
        self._indexes: List[str] = []
        self._constraints: List[str] = []
        self._depth = 0

    def connect(self) -> "MemoryStore":
        self._connected = True
        logger.debug("Memory store ready")
        return self

    def disconnect(self) -> None:
        self._connected = False

    def query(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        raise NotImplementedError("The memory store does not execute SQL")

    @contextmanager
    def transaction(self) -> Iterator["MemoryStore"]:
        self._require_connection()
        if self._depth:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        snapshot = copy.deepcopy(self._tables)
        self._depth = 1
        try:
            yield self
        except BaseException:
            self._tables = snapshot
            logger.debug("Transaction rolled back")
            raise
        finally:
            self._depth = 0

    def apply_schema_migrations(self) -> List[str]:
        """Create every entity table with its indexes and foreign keys."""
        self._require_connection()
        created = []
        for kind in EntityKind:
            if self.create_table(kind.target_table):
                created.append(kind.target_table)
            if kind.versioned:
                for index in (f"idx_{kind.value}_current", f"idx_{kind.value}_old_rev_of"):
                    if index not in self._indexes:
                        self._indexes.append(index)
            for ref in REFERENCES[kind]:
                name = ref.constraint_name(kind.target_table)
                if name not in self._constraints:
                    self._constraints.append(name)
        return created

    def create_table(self, table: str) -> bool:
        if table in self._tables:
            return False
        self._tables[table] = []
        return True

    def list_tables(self) -> List[str]:
        return list(self._tables)

    def list_indexes(self) -> List[str]:
        return list(self._indexes)

    def list_constraints(self) -> List[str]:
        return list(self._constraints)

    def count(self, table: str, where: Where = None) -> int:
        return sum(1 for row in self._rows(table) if matches(row, where))

    def insert_rows(self, table: str, rows: List[Dict[str, Any]]) -> int:
        with self.transaction():
            target = self._rows(table)
            kind = self._kind(table)
            for row in rows:
                self._check_row(table, kind, row, target)
                target.append(copy.deepcopy(row))
        return len(rows)

    def update_rows(self, table: str, values: Dict[str, Any], where: Where) -> int:
        updated = 0
        for row in self._rows(table):
            if matches(row, where):
                row.update(copy.deepcopy(values))
                updated += 1
        return updated

    def select_rows(
        self,
        table: str,
        where: Where = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        rows = [copy.deepcopy(row) for row in self._rows(table) if matches(row, where)]
        if order_by:
            rows.sort(key=lambda r: (r.get(order_by) is None, r.get(order_by)), reverse=descending)
        rows = rows[offset:]
        if limit is not None:
            rows = rows[:limit]
        return rows

    def clear_table(self, table: str) -> None:
        self._rows(table)
        for name in self._cascade_targets(table):
            if name in self._tables:
                self._tables[name] = []
                logger.debug(f"Cleared {name}")

    def _cascade_targets(self, table: str) -> List[str]:
        """The table itself plus every table referencing it, transitively."""
        result = [table]
        pending = [table]
        while pending:
            current = pending.pop()
            for kind, refs in REFERENCES.items():
                if any(ref.target.target_table == current for ref in refs):
                    if kind.target_table not in result:
                        result.append(kind.target_table)
                        pending.append(kind.target_table)
        return result

    def _check_row(
        self,
        table: str,
        kind: Optional[EntityKind],
        row: Dict[str, Any],
        existing: List[Dict[str, Any]],
    ) -> None:
        if kind is None:
            return
        key = {column: row.get(column) for column in kind.key_columns}
        if any(value is None for value in key.values()):
            raise InsertError(f'null value in primary key of relation "{table}"', table)
        if any(matches(other, key) for other in existing):
            raise InsertError(
                f'duplicate key value violates unique constraint "{table}_pkey" {key}', table
            )

        if not self.enforce_foreign_keys:
            return
        for ref in REFERENCES[kind]:
            value = row.get(ref.field)
            if value is None:
                continue
            parent = ref.target.target_table
            if not any(other.get("id") == value for other in self._tables.get(parent, [])):
                raise InsertError(
                    f'insert or update on table "{table}" violates foreign key constraint '
                    f'"{ref.constraint_name(table)}": {ref.field}={value} not present in "{parent}"',
                    table,
                )

    def _kind(self, table: str) -> Optional[EntityKind]:
        try:
            return EntityKind(table)
        except ValueError:
            return None

    def _rows(self, table: str) -> List[Dict[str, Any]]:
        self._require_connection()
        if table not in self._tables:
            raise QueryError(f'relation "{self.table_name(table)}" does not exist')
        return self._tables[table]

    def _require_connection(self) -> None:
        if not self._connected:
            raise ConnectivityError("Memory store is not connected", store=self.name)
