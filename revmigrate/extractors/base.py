"""Base interface for source (document) stores."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, List, Optional
from datetime import datetime
import logging

logger = logging.getLogger(__name__)


class BaseSourceStore(ABC):
    """
    Base class for source stores.

    A source store reads raw documents from the legacy document database
    (or an export of it). Tables are addressed by their source names, and
    documents are returned exactly as stored, in the source's field naming.
    """

    name = "source"

    def __init__(self):
        self._connected = False
        self._errors: List[Dict[str, Any]] = []
        self._warnings: List[str] = []

    @property
    def is_connected(self) -> bool:
        return self._connected

    @abstractmethod
    def connect(self) -> "BaseSourceStore":
        """
        Connect to the source.

        Raises:
            ConnectivityError: If the source cannot be reached
        """
        pass

    @abstractmethod
    def disconnect(self) -> None:
        pass

    @abstractmethod
    def list_tables(self) -> List[str]:
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        pass

    @abstractmethod
    def fetch_batch(
        self,
        table: str,
        offset: int = 0,
        limit: int = 1000,
        order_by: str = "id",
    ) -> List[Dict[str, Any]]:
        """
        Fetch one ordered slice of a table.

        Args:
            table: Source table name
            offset: Number of documents to skip
            limit: Maximum documents to return
            order_by: Field giving a stable order across batches

        Returns:
            Raw documents
        """
        pass

    @abstractmethod
    def fetch_sample(self, table: str, size: int) -> List[Dict[str, Any]]:
        """Return up to `size` documents picked at random."""
        pass

    @abstractmethod
    def get(self, table: str, id: str) -> Optional[Dict[str, Any]]:
        pass

    def table_exists(self, table: str) -> bool:
        return table in self.list_tables()

    def stream(self, table: str, batch_size: int = 1000) -> Iterator[List[Dict[str, Any]]]:
        """
        Stream a table in batches.

        Args:
            table: Source table name
            batch_size: Size of each batch

        Yields:
            Batches of raw documents
        """
        offset = 0

        while True:
            batch = self.fetch_batch(table, offset=offset, limit=batch_size)
            if not batch:
                break

            yield batch
            offset += len(batch)

            if len(batch) < batch_size:
                break

    def add_error(self, message: str, table: Optional[str] = None) -> None:
        """Add an error to the source log."""
        self._errors.append({
            "message": message,
            "table": table,
            "timestamp": datetime.utcnow().isoformat(),
        })
        logger.error(f"Source error: {message}")

    def add_warning(self, message: str) -> None:
        """Add a warning to the source log."""
        self._warnings.append(message)
        logger.warning(f"Source warning: {message}")

    @property
    def errors(self) -> List[Dict[str, Any]]:
        return list(self._errors)

    @property
    def warnings(self) -> List[str]:
        return list(self._warnings)

    def __enter__(self) -> "BaseSourceStore":
        return self.connect()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.disconnect()
