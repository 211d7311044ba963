"""Exception taxonomy shared by the data access layer and the migration pipeline."""

from typing import Any, Dict, List, Optional


class RevMigrateError(Exception):
    """Base class for all errors raised by this package."""

    code = "error"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "type": type(self).__name__,
            "code": self.code,
            "message": self.message,
        }


class ConfigurationError(RevMigrateError):
    """Invalid or incomplete configuration."""

    code = "configuration"


class ConnectivityError(RevMigrateError):
    """A store is unreachable, or a connection/query timed out."""

    code = "connectivity"

    def __init__(self, message: str, store: str = ""):
        super().__init__(message)
        self.store = store


class ValidationError(RevMigrateError):
    """
    A record failed schema validation.

    Carries every violated field, not just the first one found.
    """

    code = "validation"

    def __init__(self, message: str, violations: Optional[List[Any]] = None):
        self.violations = list(violations or [])
        if self.violations:
            fields = ", ".join(v.field for v in self.violations)
            message = f"{message} (fields: {fields})"
        super().__init__(message)

    @property
    def fields(self) -> List[str]:
        return [v.field for v in self.violations]

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["violations"] = [v.to_dict() for v in self.violations]
        return data


class InvalidStateError(RevMigrateError):
    """A revision operation was attempted on a non-current or deleted row."""

    code = "invalid_state"


class StaleRevisionError(InvalidStateError):
    """The revision a draft was branched from has since been superseded."""

    code = "stale_revision"


class DocumentNotFound(RevMigrateError):
    code = "not_found"


class TransformError(RevMigrateError):
    """A source record does not have the shape the transformer expects."""

    code = "transform"

    def __init__(self, message: str, table: str = "", record_id: Optional[str] = None):
        super().__init__(message)
        self.table = table
        self.record_id = record_id


class InsertError(RevMigrateError):
    """A batch insert violated a target constraint; the batch was rolled back."""

    code = "insert"

    def __init__(self, message: str, table: str = ""):
        super().__init__(message)
        self.table = table


class IntegrityMismatch(RevMigrateError):
    """Source and target disagree beyond tolerance after a migration."""

    code = "integrity_mismatch"

    def __init__(self, message: str, table: str = ""):
        super().__init__(message)
        self.table = table


class QueryError(RevMigrateError):
    """A query failed for a reason other than connectivity or a constraint."""

    code = "query"
