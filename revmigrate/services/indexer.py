"""Search index maintenance for current, live revisions."""

import re
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..models.entities import EntityKind

logger = logging.getLogger(__name__)

INDEXED_KINDS = (EntityKind.THING, EntityKind.REVIEW)

_TAG = re.compile(r"<[^>]*>")


def strip_html(value: Any) -> Any:
    """Strip tags from every language of a multilingual string."""
    if isinstance(value, dict):
        return {lang: _TAG.sub("", text) if isinstance(text, str) else text for lang, text in value.items()}
    return value


def strip_html_from_array_values(value: Any) -> Any:
    """Strip tags from a multilingual mapping of string lists."""
    if isinstance(value, dict):
        return {
            lang: [_TAG.sub("", t) for t in texts] if isinstance(texts, list) else texts
            for lang, texts in value.items()
        }
    if isinstance(value, list):
        return [strip_html(item) for item in value]
    return value


def should_index(row: Dict[str, Any]) -> bool:
    """Only current, non-deleted revisions belong in the index."""
    return row.get("_old_rev_of") is None and not row.get("_rev_deleted")


class BaseIndexer(ABC):
    """Receives current-and-live rows after they are committed."""

    def handles(self, kind: EntityKind) -> bool:
        return kind in INDEXED_KINDS

    @abstractmethod
    def index_entity(self, kind: EntityKind, row: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    def delete_entity(self, kind: EntityKind, id: str) -> None:
        pass


class NullIndexer(BaseIndexer):
    """Indexer that does nothing; used when no search service is configured."""

    def handles(self, kind: EntityKind) -> bool:
        return False

    def index_entity(self, kind: EntityKind, row: Dict[str, Any]) -> None:
        pass

    def delete_entity(self, kind: EntityKind, id: str) -> None:
        pass


class HTTPSearchIndexer(BaseIndexer):
    """
    Indexer writing to an Elasticsearch-compatible REST endpoint.

    Things and reviews share one index; reviews are children of their
    thing through a `joined` relation and are routed by thing id.
    """

    def __init__(
        self,
        base_url: str,
        index: str = "libreviews",
        timeout: float = 10.0,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
    ):
        """
        Initialize the indexer.

        Args:
            base_url: Search service URL
            index: Index holding things and reviews
            timeout: Request timeout in seconds
            max_retries: Retries for transient HTTP failures
            backoff_factor: Retry backoff factor
        """
        self.base_url = base_url.rstrip("/")
        self.index = index
        self.timeout = timeout
        self._session = self._create_session(max_retries, backoff_factor)

    def _create_session(self, max_retries: int, backoff_factor: float) -> requests.Session:
        """Create a requests session with a retry strategy."""
        session = requests.Session()

        retry_strategy = Retry(
            total=max_retries,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET", "PUT", "DELETE"],
            backoff_factor=backoff_factor,
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)

        session.headers["Content-Type"] = "application/json"
        return session

    def index_entity(self, kind: EntityKind, row: Dict[str, Any]) -> None:
        if not self.handles(kind):
            return
        if not should_index(row):
            logger.debug(f"Skipping indexing of {kind.value} {row.get('id')} - old or deleted revision")
            return

        params = {}
        if kind == EntityKind.REVIEW:
            body = self.review_document(row)
            params["routing"] = row.get("thing_id")
        else:
            body = self.thing_document(row)

        url = f"{self.base_url}/{self.index}/_doc/{row['id']}"
        response = self._session.put(url, json=body, params=params, timeout=self.timeout)
        response.raise_for_status()
        logger.debug(f"Indexed {kind.value} {row['id']}")

    def delete_entity(self, kind: EntityKind, id: str) -> None:
        if not self.handles(kind):
            return
        url = f"{self.base_url}/{self.index}/_doc/{id}"
        response = self._session.delete(url, timeout=self.timeout)
        if response.status_code == 404:
            return
        response.raise_for_status()
        logger.debug(f"Removed {kind.value} {id} from index")

    @staticmethod
    def review_document(row: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "createdOn": _iso(row.get("created_on")),
            "title": strip_html(row.get("title")),
            "text": strip_html(row.get("html")),
            "starRating": row.get("star_rating"),
            "type": "review",
            "joined": {
                "name": "review",
                "parent": row.get("thing_id"),
            },
        }

    @staticmethod
    def thing_document(row: Dict[str, Any]) -> Dict[str, Any]:
        metadata = row.get("metadata") or {}
        authors: Optional[List[Any]] = metadata.get("authors")
        return {
            "createdOn": _iso(row.get("created_on")),
            "label": strip_html(row.get("label")),
            "aliases": strip_html_from_array_values(row.get("aliases")),
            "description": strip_html(metadata.get("description")),
            "subtitle": strip_html(metadata.get("subtitle")),
            "authors": [strip_html(a) for a in authors] if authors else authors,
            "joined": "thing",
            "type": "thing",
            "urls": row.get("urls"),
        }


def _iso(value: Any) -> Any:
    return value.isoformat() if isinstance(value, datetime) else value
