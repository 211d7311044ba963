"""Revision row model."""

import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .entities import EntityKind


@dataclass
class Revision:
    """
    One row of a versioned entity's lineage.

    `data` holds the full row as stored (content columns plus the six
    revision columns). A draft is a Revision that has not been saved yet;
    `predecessor_id` names the row it was branched from, if any.
    """
    kind: EntityKind
    data: Dict[str, Any] = field(default_factory=dict)
    predecessor_id: Optional[str] = None
    persisted: bool = False

    @property
    def id(self) -> Optional[str]:
        return self.data.get("id")

    @property
    def rev_id(self) -> Optional[str]:
        return self.data.get("_rev_id")

    @property
    def rev_user(self) -> Optional[str]:
        return self.data.get("_rev_user")

    @property
    def rev_date(self) -> Optional[datetime]:
        return self.data.get("_rev_date")

    @property
    def rev_tags(self) -> List[str]:
        return list(self.data.get("_rev_tags") or [])

    @property
    def old_rev_of(self) -> Optional[str]:
        return self.data.get("_old_rev_of")

    @property
    def is_current(self) -> bool:
        return self.data.get("_old_rev_of") is None

    @property
    def is_deleted(self) -> bool:
        return bool(self.data.get("_rev_deleted"))

    @property
    def is_live(self) -> bool:
        return self.is_current and not self.is_deleted

    def get(self, name: str, default: Any = None) -> Any:
        return self.data.get(name, default)

    def set(self, name: str, value: Any) -> None:
        self.data[name] = value

    def update(self, values: Dict[str, Any]) -> None:
        self.data.update(values)

    def copy_data(self) -> Dict[str, Any]:
        return copy.deepcopy(self.data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        data = {}
        for key, value in self.data.items():
            data[key] = value.isoformat() if isinstance(value, datetime) else value
        return {
            "kind": self.kind.value,
            "data": data,
            "persisted": self.persisted,
            "predecessor_id": self.predecessor_id,
        }
