"""PostgreSQL target store built on SQLAlchemy Core."""

import logging
import re
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from psycopg2.extras import Json
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DataError, DBAPIError, IntegrityError, OperationalError, ProgrammingError

from .base import BaseTargetStore, Where
from ..errors import ConfigurationError, ConnectivityError, InsertError, QueryError

logger = logging.getLogger(__name__)

SQL_DIR = Path(__file__).resolve().parent.parent / "sql"

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def quote_ident(name: str) -> str:
    """Double-quote a column or table identifier."""
    if not _IDENTIFIER.match(name):
        raise QueryError(f"Invalid identifier: {name!r}")
    return f'"{name}"'


def mask_url(url: str) -> str:
    """Hide the password part of a database URL for logging."""
    return re.sub(r"(://[^:/@]+):[^@]*@", r"\1:***@", url)


def adapt_value(value: Any) -> Any:
    """Wrap dict values (and lists of dicts) for JSONB columns."""
    if isinstance(value, dict):
        return Json(value)
    if isinstance(value, list) and any(isinstance(item, dict) for item in value):
        return Json(value)
    return value


def build_where(where: Where, prefix: str = "w") -> Tuple[str, Dict[str, Any]]:
    """
    Build a WHERE clause from a column -> value mapping.

    None becomes IS NULL and a list becomes = ANY(...).

    Returns:
        Tuple of (clause text including "WHERE", bound parameters)
    """
    if not where:
        return "", {}

    clauses = []
    params = {}
    for i, (column, value) in enumerate(where.items()):
        col = quote_ident(column)
        key = f"{prefix}{i}"
        if value is None:
            clauses.append(f"{col} IS NULL")
        elif isinstance(value, (list, tuple, set)):
            clauses.append(f"{col} = ANY(:{key})")
            params[key] = list(value)
        else:
            clauses.append(f"{col} = :{key}")
            params[key] = value
    return "WHERE " + " AND ".join(clauses), params


def build_insert(table: str, columns: List[str]) -> str:
    """INSERT statement with one named parameter per column."""
    cols = ", ".join(quote_ident(c) for c in columns)
    values = ", ".join(f":c{i}" for i in range(len(columns)))
    return f"INSERT INTO {table} ({cols}) VALUES ({values})"


class PostgresStore(BaseTargetStore):
    """
    Target store for PostgreSQL.

    Supports:
    - Pooled connections through a SQLAlchemy engine
    - Transactions that nested operations join
    - Namespacing via a PostgreSQL schema on the search path
    - Versioned SQL schema files tracked in a `migrations` table
    """

    name = "postgres"

    def __init__(
        self,
        url: str,
        namespace: Optional[str] = None,
        pool_size: int = 20,
        statement_timeout_ms: Optional[int] = None,
        migrations_dir: Optional[str] = None,
    ):
        """
        Initialize the PostgreSQL store.

        Args:
            url: SQLAlchemy database URL
            namespace: Schema isolating this store's tables (e.g. per test run)
            pool_size: Connection pool size
            statement_timeout_ms: Server-side statement timeout
            migrations_dir: Directory of numbered .sql schema files
        """
        if namespace and not _IDENTIFIER.match(namespace):
            raise ConfigurationError(f"Invalid namespace: {namespace!r}")
        super().__init__(namespace)
        self.url = url
        self.pool_size = pool_size
        self.statement_timeout_ms = statement_timeout_ms
        self.migrations_dir = Path(migrations_dir) if migrations_dir else SQL_DIR
        self._engine: Optional[Engine] = None
        self._active: Optional[Connection] = None

    @property
    def schema(self) -> str:
        return self.namespace or "public"

    def connect(self) -> "PostgresStore":
        if self._connected:
            return self

        options = []
        if self.namespace:
            options.append(f"-csearch_path={self.namespace},public")
        if self.statement_timeout_ms:
            options.append(f"-cstatement_timeout={self.statement_timeout_ms}")
        connect_args = {"options": " ".join(options)} if options else {}

        try:
            self._engine = create_engine(
                self.url,
                pool_size=self.pool_size,
                max_overflow=10,
                pool_pre_ping=True,
                connect_args=connect_args,
            )
            with self._engine.begin() as conn:
                conn.execute(text("SELECT NOW()"))
                if self.namespace:
                    conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {quote_ident(self.namespace)}"))
        except (OperationalError, DBAPIError) as e:
            self._engine = None
            logger.error(f"Failed to connect to PostgreSQL at {mask_url(self.url)}: {e}")
            raise ConnectivityError(f"PostgreSQL unreachable: {e}", store=self.name) from e

        self._connected = True
        logger.info(f"PostgreSQL connection pool established ({mask_url(self.url)})")
        return self

    def disconnect(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._connected = False
            logger.info("PostgreSQL connection pool closed")

    def table_name(self, name: str) -> str:
        quote_ident(name)
        return super().table_name(name)

    @contextmanager
    def transaction(self) -> Iterator["PostgresStore"]:
        if self._active is not None:
            yield self
            return

        engine = self._require_engine()
        try:
            with engine.begin() as conn:
                self._active = conn
                logger.debug("Transaction started")
                try:
                    yield self
                finally:
                    self._active = None
            logger.debug("Transaction committed")
        except OperationalError as e:
            raise ConnectivityError(f"Transaction aborted: {e}", store=self.name) from e

    @contextmanager
    def _connection(self) -> Iterator[Connection]:
        if self._active is not None:
            yield self._active
        else:
            with self._require_engine().begin() as conn:
                yield conn

    def query(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        start = time.time()
        try:
            with self._connection() as conn:
                result = conn.execute(text(sql), params or {})
                rows = [dict(row._mapping) for row in result] if result.returns_rows else []
        except IntegrityError as e:
            raise InsertError(str(e.orig), self._table_from_sql(sql)) from e
        except OperationalError as e:
            raise ConnectivityError(f"Query failed: {e.orig}", store=self.name) from e
        except (ProgrammingError, DataError) as e:
            logger.error(f"Query error: {e.orig}")
            logger.error(f"Query text: {sql}")
            raise QueryError(str(e.orig)) from e

        logger.debug(f"Query executed in {(time.time() - start) * 1000:.0f}ms: {sql[:100]}")
        return rows

    def apply_schema_migrations(self) -> List[str]:
        """
        Apply every .sql file of the migrations directory not applied yet.

        Files run in name order, each in its own transaction together with
        its bookkeeping row.
        """
        self.query(
            "CREATE TABLE IF NOT EXISTS migrations ("
            " id SERIAL PRIMARY KEY,"
            " filename VARCHAR(255) NOT NULL UNIQUE,"
            " executed_at TIMESTAMP WITH TIME ZONE DEFAULT NOW())"
        )
        executed = {row["filename"] for row in self.query("SELECT filename FROM migrations")}

        applied = []
        for path in sorted(self.migrations_dir.glob("*.sql")):
            if path.name in executed:
                continue
            logger.info(f"Executing schema migration: {path.name}")
            sql = path.read_text(encoding="utf-8")
            with self.transaction():
                try:
                    self._active.exec_driver_sql(sql)
                except (ProgrammingError, DataError) as e:
                    raise QueryError(f"Schema migration {path.name} failed: {e.orig}") from e
                self.query("INSERT INTO migrations (filename) VALUES (:filename)", {"filename": path.name})
            applied.append(path.name)

        if applied:
            logger.info(f"Applied {len(applied)} schema migration(s)")
        else:
            logger.info("Schema is up to date")
        return applied

    def list_tables(self) -> List[str]:
        rows = self.query(
            "SELECT table_name FROM information_schema.tables "
            "WHERE table_schema = :schema AND table_type = 'BASE TABLE'",
            {"schema": self.schema},
        )
        return [row["table_name"] for row in rows]

    def list_indexes(self) -> List[str]:
        rows = self.query(
            "SELECT indexname FROM pg_indexes WHERE schemaname = :schema",
            {"schema": self.schema},
        )
        return [row["indexname"] for row in rows]

    def list_constraints(self) -> List[str]:
        rows = self.query(
            "SELECT c.conname FROM pg_constraint c "
            "JOIN pg_namespace n ON n.oid = c.connamespace "
            "WHERE n.nspname = :schema AND c.contype = 'f'",
            {"schema": self.schema},
        )
        return [row["conname"] for row in rows]

    def count(self, table: str, where: Where = None) -> int:
        clause, params = build_where(where)
        rows = self.query(f"SELECT COUNT(*) AS count FROM {self.table_name(table)} {clause}", params)
        return int(rows[0]["count"])

    def insert_rows(self, table: str, rows: List[Dict[str, Any]]) -> int:
        if not rows:
            return 0
        name = self.table_name(table)
        with self.transaction():
            for row in rows:
                columns = list(row.keys())
                params = {f"c{i}": adapt_value(row[c]) for i, c in enumerate(columns)}
                self.query(build_insert(name, columns), params)
        return len(rows)

    def update_rows(self, table: str, values: Dict[str, Any], where: Where) -> int:
        assignments = ", ".join(f"{quote_ident(c)} = :v{i}" for i, c in enumerate(values))
        params = {f"v{i}": adapt_value(v) for i, v in enumerate(values.values())}
        clause, where_params = build_where(where)
        params.update(where_params)
        rows = self.query(
            f"UPDATE {self.table_name(table)} SET {assignments} {clause} RETURNING 1 AS updated",
            params,
        )
        return len(rows)

    def select_rows(
        self,
        table: str,
        where: Where = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        clause, params = build_where(where)
        sql = f"SELECT * FROM {self.table_name(table)} {clause}"
        if order_by:
            sql += f" ORDER BY {quote_ident(order_by)} {'DESC' if descending else 'ASC'}"
        if limit is not None:
            sql += " LIMIT :limit"
            params["limit"] = limit
        if offset:
            sql += " OFFSET :offset"
            params["offset"] = offset
        return [self._normalize(row) for row in self.query(sql, params)]

    def duplicate_values(self, table: str, column: str) -> List[Any]:
        col = quote_ident(column)
        rows = self.query(
            f"SELECT {col} AS value, COUNT(*) AS count FROM {self.table_name(table)} "
            f"GROUP BY {col} HAVING COUNT(*) > 1"
        )
        return [row["value"] for row in rows]

    def count_outside_range(self, table: str, column: str, minimum: Any, maximum: Any) -> int:
        col = quote_ident(column)
        rows = self.query(
            f"SELECT COUNT(*) AS count FROM {self.table_name(table)} "
            f"WHERE {col} < :minimum OR {col} > :maximum",
            {"minimum": minimum, "maximum": maximum},
        )
        return int(rows[0]["count"])

    def count_empty(self, table: str, column: str) -> int:
        col = quote_ident(column)
        rows = self.query(
            f"SELECT COUNT(*) AS count FROM {self.table_name(table)} "
            f"WHERE {col} IS NULL OR array_length({col}, 1) IS NULL"
        )
        return int(rows[0]["count"])

    def clear_table(self, table: str) -> None:
        self.query(f"TRUNCATE TABLE {self.table_name(table)} CASCADE")
        logger.info(f"Cleared existing data from PostgreSQL table {table}")

    def _normalize(self, row: Dict[str, Any]) -> Dict[str, Any]:
        """Return UUID columns as strings, as the rest of the package expects."""
        normalized = {}
        for key, value in row.items():
            if value is not None and type(value).__name__ == "UUID":
                value = str(value)
            normalized[key] = value
        return normalized

    def _require_engine(self) -> Engine:
        if self._engine is None:
            raise ConnectivityError("PostgreSQL store is not connected", store=self.name)
        return self._engine

    @staticmethod
    def _table_from_sql(sql: str) -> str:
        match = re.search(r"(?:INTO|UPDATE|FROM)\s+([\w.]+)", sql, re.IGNORECASE)
        return match.group(1) if match else ""
