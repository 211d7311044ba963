"""RethinkDB source store."""

import logging
from typing import Any, Dict, List, Optional

from rethinkdb import RethinkDB
from rethinkdb.errors import ReqlDriverError, ReqlError, ReqlTimeoutError

from .base import BaseSourceStore
from ..errors import ConnectivityError, QueryError

logger = logging.getLogger(__name__)


class RethinkDBSource(BaseSourceStore):
    """
    Source store reading a live RethinkDB database.

    Documents come back as stored, with camelCase field names and the
    legacy revision fields (`_revID`, `_revUser`, ...).
    """

    name = "rethinkdb"

    def __init__(
        self,
        host: str = "localhost",
        port: int = 28015,
        database: str = "libreviews",
        timeout: int = 20,
    ):
        """
        Initialize the RethinkDB source.

        Args:
            host: Server host
            port: Client driver port
            database: Database holding the legacy tables
            timeout: Connection timeout in seconds
        """
        super().__init__()
        self.host = host
        self.port = port
        self.database = database
        self.timeout = timeout
        self.r = RethinkDB()
        self._conn = None

    def connect(self) -> "RethinkDBSource":
        if self._conn is not None:
            return self
        try:
            self._conn = self.r.connect(
                host=self.host,
                port=self.port,
                db=self.database,
                timeout=self.timeout,
            )
        except (ReqlDriverError, ReqlTimeoutError) as e:
            logger.error(f"Failed to connect to RethinkDB at {self.host}:{self.port}: {e}")
            raise ConnectivityError(f"RethinkDB unreachable: {e}", store=self.name) from e

        self._connected = True
        logger.info(f"Connected to RethinkDB {self.host}:{self.port}/{self.database}")
        return self

    def disconnect(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            self._connected = False
            logger.info("RethinkDB connection closed")

    def list_tables(self) -> List[str]:
        return list(self._run(self.r.table_list()))

    def count(self, table: str) -> int:
        return int(self._run(self.r.table(table).count()))

    def fetch_batch(
        self,
        table: str,
        offset: int = 0,
        limit: int = 1000,
        order_by: str = "id",
    ) -> List[Dict[str, Any]]:
        return list(self._run(self.batch_query(table, offset, limit, order_by)))

    def batch_query(self, table: str, offset: int, limit: int, order_by: str = "id"):
        """
        ReQL query for one batch.

        Ordering by the primary key goes through its index, so the server
        streams the table instead of sorting it in memory (which is capped
        at the array limit).
        """
        if order_by == "id":
            ordered = self.r.table(table).order_by(index=order_by)
        else:
            ordered = self.r.table(table).order_by(order_by)
        return ordered.skip(offset).limit(limit)

    def fetch_sample(self, table: str, size: int) -> List[Dict[str, Any]]:
        return list(self._run(self.r.table(table).sample(size)))

    def get(self, table: str, id: str) -> Optional[Dict[str, Any]]:
        return self._run(self.r.table(table).get(id))

    def _run(self, query) -> Any:
        if self._conn is None:
            raise ConnectivityError("RethinkDB source is not connected", store=self.name)
        try:
            return query.run(self._conn)
        except (ReqlDriverError, ReqlTimeoutError) as e:
            raise ConnectivityError(f"RethinkDB query failed: {e}", store=self.name) from e
        except ReqlError as e:
            self.add_error(str(e))
            raise QueryError(f"RethinkDB query failed: {e}") from e
