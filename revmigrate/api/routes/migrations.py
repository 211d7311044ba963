"""Migration run endpoints."""

import logging
from dataclasses import replace

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException

from ...models.entities import EntityKind
from ...models.migration import MigrationConfig, MigrationRun
from ..dependencies import (
    OrchestratorFactory,
    RunRegistry,
    get_config,
    get_orchestrator_factory,
    get_run_registry,
)
from ..models import MigrationCreate, MigrationListResponse, MigrationResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=MigrationResponse, status_code=202)
def start_migration(
    data: MigrationCreate,
    background_tasks: BackgroundTasks,
    config: MigrationConfig = Depends(get_config),
    registry: RunRegistry = Depends(get_run_registry),
    factory: OrchestratorFactory = Depends(get_orchestrator_factory),
):
    """Start a migration run in the background."""
    if data.table:
        try:
            EntityKind.from_table(data.table)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

    if registry.has_active_run():
        raise HTTPException(status_code=409, detail="A migration is already running")

    run_config = replace(
        config,
        dry_run=data.dry_run,
        batch_size=data.batch_size,
        validate_only=data.validate_only,
        table=data.table,
        source_dir=data.source_dir or config.source_dir,
    )
    run = MigrationRun(config=run_config)
    registry.add(run)

    background_tasks.add_task(run_migration_task, factory, run)
    return MigrationResponse.from_run(run)


@router.get("", response_model=MigrationListResponse)
def list_migrations(registry: RunRegistry = Depends(get_run_registry)):
    """List migration runs."""
    runs = registry.list_all()
    return MigrationListResponse(
        migrations=[MigrationResponse.from_run(r) for r in runs],
        total=len(runs),
    )


@router.get("/{run_id}", response_model=MigrationResponse)
def get_migration(run_id: str, registry: RunRegistry = Depends(get_run_registry)):
    """Get a migration run."""
    run = registry.get(run_id)
    if not run:
        raise HTTPException(status_code=404, detail="Migration not found")
    return MigrationResponse.from_run(run)


def run_migration_task(factory: OrchestratorFactory, run: MigrationRun):
    """Background task running one migration."""
    logger.info(f"Starting migration run {run.id}")
    orchestrator = factory(run.config)
    orchestrator.run_migration(run)
    logger.info(f"Migration run {run.id} finished with status {run.status}")
