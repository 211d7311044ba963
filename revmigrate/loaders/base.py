"""Base interface for target (relational) stores."""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, TypeVar
import logging

logger = logging.getLogger(__name__)

T = TypeVar("T")

Where = Optional[Dict[str, Any]]


class BaseTargetStore(ABC):
    """
    Base class for target stores.

    A target store executes queries and writes against the relational
    store. Table arguments are logical names (e.g. "things"); the store
    resolves them with `table_name()`, which applies the optional namespace.

    `where` filters are column -> value mappings combined with AND. A value
    of None matches NULL and a list matches any of its members.
    """

    name = "target"

    def __init__(self, namespace: Optional[str] = None):
        """
        Initialize the store.

        Args:
            namespace: Optional namespace isolating this store's tables
        """
        self.namespace = namespace
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    @abstractmethod
    def connect(self) -> "BaseTargetStore":
        """
        Connect to the store.

        Raises:
            ConnectivityError: If the store cannot be reached
        """
        pass

    @abstractmethod
    def disconnect(self) -> None:
        pass

    @abstractmethod
    def query(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """
        Execute a parameterized query.

        Args:
            sql: Query text with named parameters (":name")
            params: Parameter values

        Returns:
            Result rows as dictionaries (empty for statements without rows)
        """
        pass

    @abstractmethod
    def transaction(self):
        """
        Context manager scoping an all-or-nothing unit of work.

        Nested use joins the outer transaction. Any exception rolls the
        whole scope back and propagates.
        """
        pass

    @abstractmethod
    def apply_schema_migrations(self) -> List[str]:
        """
        Apply pending schema migrations.

        Returns:
            Names of the migrations applied by this call
        """
        pass

    @abstractmethod
    def list_tables(self) -> List[str]:
        pass

    @abstractmethod
    def count(self, table: str, where: Where = None) -> int:
        pass

    @abstractmethod
    def insert_rows(self, table: str, rows: List[Dict[str, Any]]) -> int:
        """
        Insert rows atomically.

        Returns:
            Number of rows inserted

        Raises:
            InsertError: If a constraint is violated; nothing is inserted
        """
        pass

    @abstractmethod
    def update_rows(self, table: str, values: Dict[str, Any], where: Where) -> int:
        pass

    @abstractmethod
    def select_rows(
        self,
        table: str,
        where: Where = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def clear_table(self, table: str) -> None:
        """Remove every row of a table and of the tables referencing it."""
        pass

    @abstractmethod
    def list_indexes(self) -> List[str]:
        pass

    @abstractmethod
    def list_constraints(self) -> List[str]:
        """Names of the foreign-key constraints in the store."""
        pass

    def table_name(self, name: str) -> str:
        """Resolve a logical table name, applying the namespace if any."""
        if self.namespace:
            return f"{self.namespace}.{name}"
        return name

    def table_exists(self, table: str) -> bool:
        return table in self.list_tables()

    def exists(self, table: str, id: Any) -> bool:
        return self.count(table, {"id": id}) > 0

    def get_row(self, table: str, id: Any) -> Optional[Dict[str, Any]]:
        rows = self.select_rows(table, {"id": id}, limit=1)
        return rows[0] if rows else None

    def duplicate_values(self, table: str, column: str) -> List[Any]:
        """Values of `column` held by more than one row."""
        seen: Dict[Any, int] = {}
        for row in self.select_rows(table):
            value = row.get(column)
            seen[value] = seen.get(value, 0) + 1
        return [value for value, n in seen.items() if n > 1]

    def count_outside_range(self, table: str, column: str, minimum: Any, maximum: Any) -> int:
        return sum(
            1 for row in self.select_rows(table)
            if row.get(column) is not None and not minimum <= row[column] <= maximum
        )

    def count_empty(self, table: str, column: str) -> int:
        """Rows whose array column is NULL or empty."""
        return sum(1 for row in self.select_rows(table) if not row.get(column))

    def run_in_transaction(self, fn: Callable[["BaseTargetStore"], T]) -> T:
        """Call `fn(store)` inside a transaction and return its result."""
        with self.transaction():
            return fn(self)

    def __enter__(self) -> "BaseTargetStore":
        return self.connect()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.disconnect()


def matches(row: Dict[str, Any], where: Where) -> bool:
    """Check a row against a `where` mapping (None = NULL, list = IN)."""
    if not where:
        return True
    for column, expected in where.items():
        actual = row.get(column)
        if expected is None:
            if actual is not None:
                return False
        elif isinstance(expected, (list, tuple, set)):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True
