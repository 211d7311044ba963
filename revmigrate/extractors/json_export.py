"""Source store reading a `rethinkdb export` JSON dump."""

import json
import logging
import random
from pathlib import Path
from typing import Any, Dict, List, Optional

from .base import BaseSourceStore
from ..errors import ConnectivityError, QueryError

logger = logging.getLogger(__name__)


class JSONExportSource(BaseSourceStore):
    """
    Source store for JSON exports of the document database.

    Supports:
    - One `<table>.json` file per table holding a JSON array
    - One `<table>.jsonl` file per table holding a document per line
    - The `<dir>/<database>/<table>.json` layout written by `rethinkdb export`
    """

    name = "json-export"

    def __init__(
        self,
        directory: str,
        database: Optional[str] = None,
        encoding: str = "utf-8",
        seed: Optional[int] = None,
    ):
        """
        Initialize the export source.

        Args:
            directory: Export directory
            database: Database sub-directory, if the export has one
            encoding: File encoding
            seed: Seed for sampling, for reproducible samples
        """
        super().__init__()
        self.directory = Path(directory)
        self.database = database
        self.encoding = encoding
        self._random = random.Random(seed)
        self._cache: Dict[str, List[Dict[str, Any]]] = {}

    @property
    def root(self) -> Path:
        if self.database and (self.directory / self.database).is_dir():
            return self.directory / self.database
        return self.directory

    def connect(self) -> "JSONExportSource":
        if not self.root.is_dir():
            raise ConnectivityError(f"Export directory not found: {self.root}", store=self.name)
        self._connected = True
        logger.info(f"Reading JSON export from {self.root}")
        return self

    def disconnect(self) -> None:
        self._cache.clear()
        self._connected = False

    def list_tables(self) -> List[str]:
        tables = set()
        for path in self.root.iterdir():
            if path.suffix.lower() in (".json", ".jsonl") and path.is_file():
                tables.add(path.stem)
        return sorted(tables)

    def count(self, table: str) -> int:
        return len(self._load(table))

    def fetch_batch(
        self,
        table: str,
        offset: int = 0,
        limit: int = 1000,
        order_by: str = "id",
    ) -> List[Dict[str, Any]]:
        documents = self._load(table)
        ordered = sorted(documents, key=lambda d: str(d.get(order_by, "")) if isinstance(d, dict) else "")
        return ordered[offset:offset + limit]

    def fetch_sample(self, table: str, size: int) -> List[Dict[str, Any]]:
        documents = self._load(table)
        if len(documents) <= size:
            return list(documents)
        return self._random.sample(documents, size)

    def get(self, table: str, id: str) -> Optional[Dict[str, Any]]:
        for document in self._load(table):
            if isinstance(document, dict) and document.get("id") == id:
                return document
        return None

    def _load(self, table: str) -> List[Dict[str, Any]]:
        if not self._connected:
            raise ConnectivityError("JSON export source is not connected", store=self.name)
        if table in self._cache:
            return self._cache[table]

        json_path = self.root / f"{table}.json"
        jsonl_path = self.root / f"{table}.jsonl"
        if json_path.exists():
            documents = self._read_json(json_path)
        elif jsonl_path.exists():
            documents = self._read_jsonl(jsonl_path)
        else:
            raise QueryError(f"Table {table} not found in export {self.root}")

        logger.debug(f"Loaded {len(documents)} documents from {table}")
        self._cache[table] = documents
        return documents

    def _read_json(self, file_path: Path) -> List[Dict[str, Any]]:
        try:
            with open(file_path, "r", encoding=self.encoding) as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            self.add_error(f"Invalid JSON in {file_path}: {str(e)}", table=file_path.stem)
            raise QueryError(f"Invalid JSON in {file_path}: {e}") from e

        if isinstance(data, dict):
            # Single document
            return [data]
        if not isinstance(data, list):
            raise QueryError(f"Unexpected JSON structure in {file_path}")
        return data

    def _read_jsonl(self, file_path: Path) -> List[Dict[str, Any]]:
        documents = []
        with open(file_path, "r", encoding=self.encoding) as f:
            for line_num, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    documents.append(json.loads(line))
                except json.JSONDecodeError as e:
                    self.add_error(f"Invalid JSON on line {line_num} of {file_path}: {str(e)}", table=file_path.stem)
                    raise QueryError(f"Invalid JSON on line {line_num} of {file_path}") from e
        return documents
