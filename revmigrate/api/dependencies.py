"""Shared dependencies for API routes."""

import threading
from functools import lru_cache
from typing import Callable, Dict, List, Optional

from fastapi import Depends

from ..cli import create_indexer, create_source_store, create_target_store
from ..loaders.base import BaseTargetStore
from ..models.migration import MigrationConfig, MigrationRun
from ..orchestrator import MigrationOrchestrator
from ..services.revisions import RevisionEngine

OrchestratorFactory = Callable[[MigrationConfig], MigrationOrchestrator]


class RunRegistry:
    """Migration runs started through the API, newest last."""

    def __init__(self):
        self._runs: Dict[str, MigrationRun] = {}
        self._lock = threading.Lock()

    def add(self, run: MigrationRun) -> None:
        with self._lock:
            self._runs[run.id] = run

    def get(self, run_id: str) -> Optional[MigrationRun]:
        with self._lock:
            return self._runs.get(run_id)

    def list_all(self) -> List[MigrationRun]:
        with self._lock:
            return list(self._runs.values())

    def has_active_run(self) -> bool:
        with self._lock:
            return any(run.completed_at is None for run in self._runs.values())


@lru_cache()
def get_config() -> MigrationConfig:
    return MigrationConfig.from_environment()


@lru_cache()
def get_target_store() -> BaseTargetStore:
    """Connected target store shared by all requests."""
    return create_target_store(get_config()).connect()


def get_revision_engine(store: BaseTargetStore = Depends(get_target_store)) -> RevisionEngine:
    return RevisionEngine(store)


@lru_cache()
def get_run_registry() -> RunRegistry:
    return RunRegistry()


def get_orchestrator_factory() -> OrchestratorFactory:
    """Builds an orchestrator with fresh store connections for each run."""
    def factory(config: MigrationConfig) -> MigrationOrchestrator:
        return MigrationOrchestrator(
            config,
            source=create_source_store(config),
            target=create_target_store(config),
            indexer=create_indexer(config),
        )

    return factory
