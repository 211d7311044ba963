"""Record-level result models: violations, issues, reconciliation drops."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
from datetime import datetime


class Severity(str, Enum):
    """How serious a finding is. Only errors fail a run."""
    WARNING = "warning"
    ERROR = "error"


@dataclass
class FieldViolation:
    """A schema violation on one field of a record."""
    field: str
    message: str
    error_type: str = "validation"
    severity: Severity = Severity.ERROR
    value: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "field": self.field,
            "message": self.message,
            "error_type": self.error_type,
            "severity": self.severity.value,
            "value": self.value,
        }


@dataclass
class Issue:
    """A finding produced by post-migration validation."""
    check: str  # counts, sample, constraints, schema
    message: str
    severity: Severity = Severity.ERROR
    table: Optional[str] = None
    category: str = ""  # e.g. "info" for expected join-table differences
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "check": self.check,
            "message": self.message,
            "severity": self.severity.value,
            "table": self.table,
            "category": self.category,
            "details": self.details,
        }


@dataclass
class ValidationReport:
    """Collected issues of one or more validation checks."""
    issues: List[Issue] = field(default_factory=list)
    checks: Dict[str, Dict[str, Any]] = field(default_factory=dict)  # check -> per-table results
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    @property
    def errors(self) -> List[Issue]:
        return [i for i in self.issues if i.severity == Severity.ERROR]

    @property
    def warnings(self) -> List[Issue]:
        return [i for i in self.issues if i.severity == Severity.WARNING]

    @property
    def passed(self) -> bool:
        return not self.errors

    def add(self, issue: Issue) -> None:
        self.issues.append(issue)

    def merge(self, other: "ValidationReport") -> None:
        self.issues.extend(other.issues)
        for check, results in other.checks.items():
            self.checks.setdefault(check, {}).update(results)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "passed": self.passed,
            "error_count": len(self.errors),
            "warning_count": len(self.warnings),
            "issues": [i.to_dict() for i in self.issues],
            "checks": self.checks,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass
class ReconciliationDrop:
    """A record excluded because a required reference does not exist."""
    table: str
    record_id: Optional[str]
    field: str
    missing_id: Optional[str]
    reason: str = "missing required reference"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "table": self.table,
            "record_id": self.record_id,
            "field": self.field,
            "missing_id": self.missing_id,
            "reason": self.reason,
        }


@dataclass
class ReconciliationRepair:
    """A dangling optional reference that was cleared or substituted."""
    table: str
    record_id: Optional[str]
    field: str
    old_value: Optional[str]
    new_value: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table": self.table,
            "record_id": self.record_id,
            "field": self.field,
            "old_value": self.old_value,
            "new_value": self.new_value,
        }


@dataclass
class ReconciliationResult:
    """Output of reconciling one batch."""
    records: List[Dict[str, Any]] = field(default_factory=list)
    drops: List[ReconciliationDrop] = field(default_factory=list)
    repairs: List[ReconciliationRepair] = field(default_factory=list)

    @property
    def skipped(self) -> int:
        return len(self.drops)
