"""Rollback utility clearing migrated tables from the target store."""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..errors import RevMigrateError
from ..loaders.base import BaseTargetStore
from ..models.entities import EntityKind, MIGRATION_ORDER

logger = logging.getLogger(__name__)

# Dependents before the tables they reference.
CLEAR_ORDER: List[EntityKind] = list(reversed(MIGRATION_ORDER))


@dataclass
class RollbackResult:
    """Outcome of a rollback."""
    dry_run: bool = False
    table: Optional[str] = None
    tables: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    @property
    def tables_cleared(self) -> int:
        return sum(1 for t in self.tables if t["status"] == "cleared")

    @property
    def records_deleted(self) -> int:
        return sum(t["records"] for t in self.tables if t["status"] == "cleared")

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        duration = self.duration_seconds or 0.0
        return {
            "rollback": {
                "timestamp": (self.completed_at or self.started_at).isoformat(),
                "duration": {
                    "milliseconds": round(duration * 1000),
                    "seconds": round(duration),
                },
                "options": {"dry_run": self.dry_run, "table": self.table},
            },
            "summary": {
                "tablesCleared": self.tables_cleared,
                "recordsDeleted": self.records_deleted,
                "errorsEncountered": len(self.errors),
                "success": self.success,
            },
            "tables": self.tables,
            "errors": self.errors,
        }


class RollbackManager:
    """
    Reverts a migration by clearing target tables in reverse dependency order.
    """

    def __init__(self, store: BaseTargetStore, output_dir: str = "./migration-reports"):
        """
        Initialize the rollback manager.

        Args:
            store: Target store to clear
            output_dir: Directory for rollback reports
        """
        self.store = store
        self.output_dir = Path(output_dir)

    def clear(self, table: Optional[str] = None, dry_run: bool = False) -> RollbackResult:
        """
        Clear migrated tables.

        Args:
            table: Only clear this table (source or target name)
            dry_run: Count what would be cleared without clearing

        Returns:
            RollbackResult with per-table record counts
        """
        result = RollbackResult(dry_run=dry_run, table=table)
        kinds = CLEAR_ORDER
        if table:
            selected = EntityKind.from_table(table)
            kinds = [k for k in CLEAR_ORDER if k == selected]

        logger.info(f"Clearing target tables{' (dry run)' if dry_run else ''}...")
        for kind in kinds:
            try:
                result.tables.append(self._clear_table(kind.target_table, dry_run))
            except RevMigrateError as e:
                result.errors.append({
                    "type": "table_clear_error",
                    "message": e.message,
                    "timestamp": datetime.utcnow().isoformat(),
                    "table": kind.target_table,
                })
                logger.error(f"Failed to clear table {kind.target_table}: {e.message}")
                break

        result.completed_at = datetime.utcnow()

        logger.info(f"Cleared {result.tables_cleared} tables ({result.records_deleted} records)")
        return result

    def _clear_table(self, table: str, dry_run: bool) -> Dict[str, Any]:
        if not self.store.table_exists(table):
            logger.warning(f"Table {table} does not exist, skipping")
            return {"table": table, "records": 0, "status": "missing"}

        records = self.store.count(table)
        if records == 0:
            logger.info(f"Table {table} is already empty")
            return {"table": table, "records": 0, "status": "empty"}

        logger.info(f"Clearing table {table} ({records} records)...")
        if not dry_run:
            self.store.clear_table(table)
        return {"table": table, "records": records, "status": "cleared"}

    def restore_backup(self, path: str) -> None:
        """Restore the target from a backup."""
        logger.info(f"Backup restoration requested from {path}")
        raise NotImplementedError("Backup restoration not yet implemented")

    def save_report(self, result: RollbackResult) -> Path:
        """Write the rollback report as JSON and return its path."""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        filepath = self.output_dir / f"rollback-report-{result.started_at.strftime('%Y%m%d_%H%M%S')}.json"
        with open(filepath, "w") as f:
            json.dump(result.to_dict(), f, indent=2, default=str)
        logger.info(f"Saved rollback report to {filepath}")
        return filepath
