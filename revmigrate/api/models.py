"""Pydantic models for API requests and responses."""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from datetime import datetime

from ..models.migration import MigrationRun
from ..models.revision import Revision


# Request Models
class MigrationCreate(BaseModel):
    dry_run: bool = True
    batch_size: int = Field(default=1000, ge=1)
    validate_only: bool = False
    table: Optional[str] = None
    source_dir: Optional[str] = None


# Response Models
class RevisionResponse(BaseModel):
    kind: str
    id: str
    rev_id: Optional[str] = None
    rev_user: Optional[str] = None
    rev_date: Optional[datetime] = None
    rev_tags: List[str] = Field(default_factory=list)
    old_rev_of: Optional[str] = None
    deleted: bool = False
    current: bool = True
    data: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_revision(cls, revision: Revision) -> "RevisionResponse":
        content = {k: v for k, v in revision.data.items() if not k.startswith("_")}
        return cls(
            kind=revision.kind.value,
            id=str(revision.id),
            rev_id=revision.rev_id,
            rev_user=revision.rev_user,
            rev_date=revision.rev_date,
            rev_tags=revision.rev_tags,
            old_rev_of=revision.old_rev_of,
            deleted=revision.is_deleted,
            current=revision.is_current,
            data=content,
        )


class RevisionListResponse(BaseModel):
    kind: str
    revisions: List[RevisionResponse]
    total: int


class MigrationStepResponse(BaseModel):
    kind: str
    source_table: str
    target_table: str
    status: str
    source_count: int = 0
    batches: int = 0
    records_migrated: int = 0
    records_skipped: int = 0
    records_repaired: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class MigrationResponse(BaseModel):
    id: str
    state: str
    status: str
    dry_run: bool
    batch_size: int
    table: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    steps: List[MigrationStepResponse] = Field(default_factory=list)
    records_migrated: int = 0
    records_skipped: int = 0
    errors: List[Dict[str, Any]] = Field(default_factory=list)
    validation_passed: Optional[bool] = None
    report_paths: Dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_run(cls, run: MigrationRun) -> "MigrationResponse":
        return cls(
            id=run.id,
            state=run.state.value,
            status=run.status,
            dry_run=run.config.dry_run,
            batch_size=run.config.batch_size,
            table=run.config.table,
            created_at=run.created_at,
            started_at=run.started_at,
            completed_at=run.completed_at,
            steps=[
                MigrationStepResponse(
                    kind=step.kind.value,
                    source_table=step.source_table,
                    target_table=step.target_table,
                    status=step.status.value,
                    source_count=step.source_count,
                    batches=step.batches,
                    records_migrated=step.records_migrated,
                    records_skipped=step.records_skipped,
                    records_repaired=step.records_repaired,
                    started_at=step.started_at,
                    completed_at=step.completed_at,
                )
                for step in run.steps
            ],
            records_migrated=run.records_migrated,
            records_skipped=run.records_skipped,
            errors=run.errors,
            validation_passed=run.validation.passed if run.validation else None,
            report_paths=run.report_paths,
        )


class MigrationListResponse(BaseModel):
    migrations: List[MigrationResponse]
    total: int
