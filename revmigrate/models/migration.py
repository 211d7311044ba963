"""Migration configuration and run-context models."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
from datetime import datetime
from urllib.parse import quote_plus
import json
import os
import uuid

from .entities import EntityKind
from .record import ReconciliationDrop, ReconciliationRepair, ValidationReport


class RunState(str, Enum):
    """States of the migration state machine."""
    INITIALIZING = "initializing"
    MIGRATING = "migrating"
    VALIDATING = "validating"
    REPORTING = "reporting"
    DONE = "done"
    FAILED = "failed"


class StepStatus(str, Enum):
    """Status of one entity kind within a run."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class MigrationConfig:
    """Configuration for a migration run and the stores it talks to."""
    name: str = "rethinkdb-to-postgres"

    # PostgreSQL (target)
    database_url: Optional[str] = None
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_database: str = "libreviews"
    postgres_user: str = "postgres"
    postgres_password: str = ""
    postgres_namespace: Optional[str] = None  # schema used for isolated runs
    pool_size: int = 20
    statement_timeout_ms: Optional[int] = None

    # RethinkDB (source)
    rethinkdb_host: str = "localhost"
    rethinkdb_port: int = 28015
    rethinkdb_database: str = "libreviews"
    rethinkdb_timeout: int = 20
    source_dir: Optional[str] = None  # JSON export directory instead of a live server

    # Search index
    search_url: Optional[str] = None
    search_index: str = "libreviews"

    # Execution options
    dry_run: bool = False
    batch_size: int = 1000
    validate_only: bool = False
    table: Optional[str] = None
    verbose: bool = False
    apply_schema: bool = True

    # Validation
    sample_size: int = 5
    join_tolerance: int = 0

    # Output
    output_dir: str = "./migration-reports"

    @property
    def postgres_url(self) -> str:
        """SQLAlchemy URL for the target database."""
        if self.database_url:
            return self.database_url
        password = f":{quote_plus(self.postgres_password)}" if self.postgres_password else ""
        return (
            f"postgresql+psycopg2://{self.postgres_user}{password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_database}"
        )

    @property
    def selected_kinds(self) -> Optional[List[EntityKind]]:
        if not self.table:
            return None
        return [EntityKind.from_table(self.table)]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation (credentials omitted)."""
        return {
            "name": self.name,
            "postgres_host": self.postgres_host,
            "postgres_port": self.postgres_port,
            "postgres_database": self.postgres_database,
            "postgres_user": self.postgres_user,
            "postgres_namespace": self.postgres_namespace,
            "rethinkdb_host": self.rethinkdb_host,
            "rethinkdb_port": self.rethinkdb_port,
            "rethinkdb_database": self.rethinkdb_database,
            "source_dir": self.source_dir,
            "search_url": self.search_url,
            "search_index": self.search_index,
            "dry_run": self.dry_run,
            "batch_size": self.batch_size,
            "validate_only": self.validate_only,
            "table": self.table,
            "verbose": self.verbose,
            "apply_schema": self.apply_schema,
            "sample_size": self.sample_size,
            "join_tolerance": self.join_tolerance,
            "output_dir": self.output_dir,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MigrationConfig":
        """Create from dictionary representation."""
        defaults = cls()
        return cls(
            name=data.get("name", defaults.name),
            database_url=data.get("database_url"),
            postgres_host=data.get("postgres_host", defaults.postgres_host),
            postgres_port=int(data.get("postgres_port", defaults.postgres_port)),
            postgres_database=data.get("postgres_database", defaults.postgres_database),
            postgres_user=data.get("postgres_user", defaults.postgres_user),
            postgres_password=data.get("postgres_password", defaults.postgres_password),
            postgres_namespace=data.get("postgres_namespace"),
            pool_size=int(data.get("pool_size", defaults.pool_size)),
            statement_timeout_ms=data.get("statement_timeout_ms"),
            rethinkdb_host=data.get("rethinkdb_host", defaults.rethinkdb_host),
            rethinkdb_port=int(data.get("rethinkdb_port", defaults.rethinkdb_port)),
            rethinkdb_database=data.get("rethinkdb_database", defaults.rethinkdb_database),
            rethinkdb_timeout=int(data.get("rethinkdb_timeout", defaults.rethinkdb_timeout)),
            source_dir=data.get("source_dir"),
            search_url=data.get("search_url"),
            search_index=data.get("search_index", defaults.search_index),
            dry_run=data.get("dry_run", False),
            batch_size=int(data.get("batch_size", defaults.batch_size)),
            validate_only=data.get("validate_only", False),
            table=data.get("table"),
            verbose=data.get("verbose", False),
            apply_schema=data.get("apply_schema", True),
            sample_size=int(data.get("sample_size", defaults.sample_size)),
            join_tolerance=int(data.get("join_tolerance", defaults.join_tolerance)),
            output_dir=data.get("output_dir", defaults.output_dir),
        )

    @classmethod
    def from_json_file(cls, path: str) -> "MigrationConfig":
        with open(path) as f:
            return cls.from_dict(json.load(f))

    @classmethod
    def from_environment(cls, environ: Optional[Dict[str, str]] = None) -> "MigrationConfig":
        """
        Build a configuration from environment variables.

        Args:
            environ: Mapping to read instead of os.environ

        Returns:
            MigrationConfig with unset variables left at their defaults
        """
        env = os.environ if environ is None else environ
        mapping = {
            "DATABASE_URL": "database_url",
            "POSTGRES_HOST": "postgres_host",
            "POSTGRES_PORT": "postgres_port",
            "POSTGRES_DB": "postgres_database",
            "POSTGRES_USER": "postgres_user",
            "POSTGRES_PASSWORD": "postgres_password",
            "POSTGRES_NAMESPACE": "postgres_namespace",
            "RETHINKDB_HOST": "rethinkdb_host",
            "RETHINKDB_PORT": "rethinkdb_port",
            "RETHINKDB_DB": "rethinkdb_database",
            "MIGRATION_SOURCE_DIR": "source_dir",
            "SEARCH_URL": "search_url",
            "SEARCH_INDEX": "search_index",
            "MIGRATION_BATCH_SIZE": "batch_size",
            "MIGRATION_OUTPUT_DIR": "output_dir",
        }
        data = {key: env[var] for var, key in mapping.items() if env.get(var)}
        return cls.from_dict(data)


@dataclass
class TableStep:
    """Progress of one entity kind within a run."""
    kind: EntityKind
    status: StepStatus = StepStatus.PENDING
    source_count: int = 0
    batches: int = 0
    batch_sizes: List[int] = field(default_factory=list)
    records_read: int = 0
    records_migrated: int = 0
    records_skipped: int = 0
    records_repaired: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def source_table(self) -> str:
        return self.kind.source_table

    @property
    def target_table(self) -> str:
        return self.kind.target_table

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "kind": self.kind.name,
            "source_table": self.source_table,
            "target_table": self.target_table,
            "status": self.status.value,
            "source_count": self.source_count,
            "batches": self.batches,
            "batch_sizes": self.batch_sizes,
            "records_read": self.records_read,
            "records_migrated": self.records_migrated,
            "records_skipped": self.records_skipped,
            "records_repaired": self.records_repaired,
            "errors": self.errors,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
        }


@dataclass
class MigrationRun:
    """
    Run context threaded through every stage of one migration.

    Nothing about a run lives outside this object, so concurrent runs
    (and tests) cannot see each other's counters.
    """
    config: MigrationConfig = field(default_factory=MigrationConfig)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    state: RunState = RunState.INITIALIZING
    state_history: List[Dict[str, Any]] = field(default_factory=list)

    created_at: datetime = field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    steps: List[TableStep] = field(default_factory=list)
    current_kind: Optional[EntityKind] = None

    errors: List[Dict[str, Any]] = field(default_factory=list)
    drops: List[ReconciliationDrop] = field(default_factory=list)
    repairs: List[ReconciliationRepair] = field(default_factory=list)
    validation: Optional[ValidationReport] = None
    cancelled: bool = False
    failed_state: Optional[RunState] = None
    report_paths: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if not self.state_history:
            self.state_history.append({
                "state": self.state.value,
                "at": self.created_at.isoformat(),
            })

    def transition(self, state: RunState) -> None:
        """Move to a new state and record when it happened."""
        if state == RunState.FAILED and self.failed_state is None:
            self.failed_state = self.state
        self.state = state
        self.state_history.append({"state": state.value, "at": datetime.utcnow().isoformat()})

    def add_step(self, kind: EntityKind) -> TableStep:
        step = TableStep(kind=kind)
        self.steps.append(step)
        return step

    def get_step(self, kind: EntityKind) -> Optional[TableStep]:
        for step in self.steps:
            if step.kind == kind:
                return step
        return None

    def add_error(self, error_type: str, message: str, table: Optional[str] = None) -> Dict[str, Any]:
        error = {
            "type": error_type,
            "message": message,
            "timestamp": datetime.utcnow().isoformat(),
            "table": table,
        }
        self.errors.append(error)
        return error

    @property
    def failed(self) -> bool:
        return self.failed_state is not None

    @property
    def success(self) -> bool:
        if self.failed or self.cancelled or self.errors:
            return False
        return self.validation is None or self.validation.passed

    @property
    def status(self) -> str:
        if self.failed:
            return "failed"
        if self.cancelled:
            return "cancelled"
        return "completed" if self.success else "completed_with_errors"

    @property
    def tables_processed(self) -> int:
        return sum(1 for s in self.steps if s.status == StepStatus.COMPLETED)

    @property
    def records_migrated(self) -> int:
        return sum(s.records_migrated for s in self.steps)

    @property
    def records_skipped(self) -> int:
        return sum(s.records_skipped for s in self.steps)

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def drops_for(self, kind: EntityKind) -> int:
        return sum(1 for d in self.drops if d.table == kind.target_table)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "name": self.config.name,
            "state": self.state.value,
            "status": self.status,
            "state_history": self.state_history,
            "options": self.config.to_dict(),
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "steps": [s.to_dict() for s in self.steps],
            "tables_processed": self.tables_processed,
            "records_migrated": self.records_migrated,
            "records_skipped": self.records_skipped,
            "errors": self.errors,
            "drops": [d.to_dict() for d in self.drops],
            "repairs": [r.to_dict() for r in self.repairs],
            "validation": self.validation.to_dict() if self.validation else None,
            "cancelled": self.cancelled,
            "report_paths": self.report_paths,
        }
