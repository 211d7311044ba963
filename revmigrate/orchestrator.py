"""Migration orchestrator - drives a document-store to relational-store migration."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from .errors import ConfigurationError, RevMigrateError
from .extractors.base import BaseSourceStore
from .loaders.base import BaseTargetStore
from .models.entities import EntityKind, MIGRATION_ORDER
from .models.migration import (
    MigrationConfig,
    MigrationRun,
    RunState,
    StepStatus,
    TableStep,
)
from .models.record import ReconciliationRepair, ValidationReport
from .services.indexer import BaseIndexer, should_index
from .services.integrity import IntegrityValidator
from .services.reconciler import Reconciler
from .services.reporter import MigrationReporter
from .services.schema_registry import SchemaRegistry
from .services.transformer import Transformer

logger = logging.getLogger(__name__)


class MigrationOrchestrator:
    """
    Orchestrates a complete migration run.

    States: initializing -> migrating -> validating -> reporting -> done,
    with failed reachable from any of them. Reporting always runs, also
    after a failure or a stop request.

    Entity kinds are migrated one at a time in dependency order, one batch
    at a time: fetch, transform, reconcile references, then insert the
    batch in a single transaction.
    """

    def __init__(
        self,
        config: MigrationConfig,
        source: BaseSourceStore,
        target: BaseTargetStore,
        indexer: Optional[BaseIndexer] = None,
        registry: Optional[SchemaRegistry] = None,
        reporter: Optional[MigrationReporter] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Migration configuration
            source: Document store to read from
            target: Relational store to write to
            indexer: Search indexer notified about committed rows
            registry: Schema registry (defaults to the built-in schemas)
            reporter: Report writer
        """
        self.config = config
        self.source = source
        self.target = target
        self.indexer = indexer
        self.registry = registry or SchemaRegistry()
        self.reporter = reporter or MigrationReporter()

        # Runtime state
        self.run: Optional[MigrationRun] = None
        self.transformer: Optional[Transformer] = None
        self.reconciler: Optional[Reconciler] = None
        self.report: Optional[Dict[str, Any]] = None
        self._stop_requested = False
        self._opened: List[Any] = []
        self._archived: Dict[str, List[Tuple[Any, str]]] = {}

    def request_stop(self) -> None:
        """Stop after the batch in flight has been committed."""
        if not self._stop_requested:
            logger.warning("Stop requested, finishing the current batch")
        self._stop_requested = True

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def run_migration(self, run: Optional[MigrationRun] = None) -> MigrationRun:
        """
        Run the migration.

        Args:
            run: Run context created by the caller (e.g. to know its id early)

        Returns:
            MigrationRun with results and statistics
        """
        run = run or MigrationRun(config=self.config)
        self.run = run
        run.started_at = datetime.utcnow()
        self.transformer = Transformer(self.registry, run.started_at.replace(tzinfo=timezone.utc))
        self.reconciler = Reconciler(self.target)

        try:
            logger.info("=== INITIALIZING ===")
            kinds = self._initialize()

            if self.config.validate_only:
                logger.info("Validate-only mode: skipping data migration")
            else:
                run.transition(RunState.MIGRATING)
                logger.info("=== MIGRATING ===")
                self._run_migration(run, kinds)

            if run.cancelled:
                logger.warning("Migration stopped before completion, skipping validation")
            else:
                run.transition(RunState.VALIDATING)
                logger.info("=== VALIDATING ===")
                self._run_validation(run, kinds)

        except RevMigrateError as e:
            logger.error(f"Migration failed: {e.message}")
            self._fail(run, f"{e.code}_error", e.message)

        except Exception as e:
            logger.error(f"Migration failed: {e}")
            self._fail(run, "unexpected_error", str(e))

        finally:
            if not run.failed:
                run.transition(RunState.REPORTING)
            logger.info("=== REPORTING ===")
            run.completed_at = datetime.utcnow()
            self._run_reporting(run)
            if not run.failed:
                run.transition(RunState.DONE)
            self._disconnect()

        logger.info(
            f"Migration {run.status}: {run.records_migrated} records migrated, "
            f"{run.records_skipped} skipped, {len(run.errors)} errors"
        )
        return run

    def _initialize(self) -> List[EntityKind]:
        """Connect both stores and prepare the target schema."""
        try:
            kinds = self.config.selected_kinds or list(MIGRATION_ORDER)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

        if self.config.batch_size < 1:
            raise ConfigurationError(f"Batch size must be positive, got {self.config.batch_size}")

        for store in (self.source, self.target):
            if not store.is_connected:
                store.connect()
                self._opened.append(store)

        if self.config.dry_run:
            logger.info("Dry run: the target store will not be modified")
        elif self.config.apply_schema and not self.config.validate_only:
            applied = self.target.apply_schema_migrations()
            if applied:
                logger.info(f"Applied schema migrations: {', '.join(applied)}")
            else:
                logger.info("Target schema is up to date")

        return kinds

    def _run_migration(self, run: MigrationRun, kinds: List[EntityKind]) -> None:
        """Migrate each kind in dependency order."""
        for kind in kinds:
            if self._stop_requested:
                run.cancelled = True
                break
            self._migrate_kind(run, kind)
            if run.cancelled:
                break
        run.current_kind = None

    def _migrate_kind(self, run: MigrationRun, kind: EntityKind) -> TableStep:
        step = run.add_step(kind)
        step.started_at = datetime.utcnow()
        run.current_kind = kind
        self._archived = {}

        try:
            if not self.source.table_exists(kind.source_table):
                logger.warning(f"Table {kind.source_table} not found in source, skipping")
                step.status = StepStatus.SKIPPED
                return step

            step.status = StepStatus.RUNNING
            step.source_count = self.source.count(kind.source_table)
            logger.info(
                f"Migrating {kind.source_table} -> {kind.target_table} ({step.source_count} records)"
            )

            if not self.config.dry_run:
                self.target.clear_table(kind.target_table)

            for batch in self.source.stream(kind.source_table, batch_size=self.config.batch_size):
                self._process_batch(run, step, kind, batch)
                if self._stop_requested and step.records_read < step.source_count:
                    logger.warning(f"Stopped {kind.target_table} after {step.records_read} records")
                    step.status = StepStatus.CANCELLED
                    run.cancelled = True
                    return step

            if kind.versioned and not self.config.dry_run:
                self._relink_lineages(run, step, kind)

            step.status = StepStatus.COMPLETED
            logger.info(
                f"Completed {kind.target_table}: {step.records_migrated} migrated, "
                f"{step.records_skipped} skipped in {step.batches} batches"
            )

        except RevMigrateError as e:
            step.status = StepStatus.FAILED
            step.errors.append(e.to_dict())
            raise

        finally:
            step.completed_at = datetime.utcnow()

        return step

    def _process_batch(
        self,
        run: MigrationRun,
        step: TableStep,
        kind: EntityKind,
        batch: List[Dict[str, Any]],
    ) -> None:
        """Transform, reconcile and insert one batch."""
        rows = self.transformer.transform_batch(kind, batch)
        result = self.reconciler.reconcile(kind, rows)

        if self.config.dry_run:
            self.reconciler.remember(kind, result.records)
        elif result.records:
            with self.target.transaction():
                self.target.insert_rows(kind.target_table, result.records)
            if kind.versioned:
                for row in result.records:
                    if row.get("_old_rev_of") is not None:
                        lineage = self._archived.setdefault(row["_old_rev_of"], [])
                        lineage.append((row.get("_rev_date"), row["id"]))

        step.batches += 1
        step.batch_sizes.append(len(batch))
        step.records_read += len(batch)
        step.records_migrated += len(result.records)
        step.records_skipped += result.skipped
        step.records_repaired += len(result.repairs)
        run.drops.extend(result.drops)
        run.repairs.extend(result.repairs)

        logger.info(
            f"{kind.target_table}: batch {step.batches} "
            f"({step.records_read}/{step.source_count} records read)"
        )

        if not self.config.dry_run:
            self._index(kind, result.records)

    def _relink_lineages(self, run: MigrationRun, step: TableStep, kind: EntityKind) -> None:
        """
        Chain migrated archived revisions so each points at its immediate successor.

        Legacy archived rows all point at the current revision of their
        lineage. Rows of one lineage are ordered by `_rev_date`, oldest
        first; the newest archived row keeps pointing at the current one.
        Each lineage is updated in its own transaction.
        """
        table = kind.target_table
        relinked = 0
        for current_id, archived in self._archived.items():
            if len(archived) < 2:
                continue
            archived.sort(key=lambda entry: (_sort_date(entry[0]), entry[1]))
            successors = [id for _, id in archived[1:]] + [current_id]
            with self.target.transaction():
                for (_, id), successor in zip(archived, successors):
                    if successor == current_id:
                        continue
                    self.target.update_rows(table, {"_old_rev_of": successor}, {"id": id})
                    run.repairs.append(ReconciliationRepair(
                        table=table,
                        record_id=id,
                        field="_old_rev_of",
                        old_value=current_id,
                        new_value=successor,
                    ))
                    relinked += 1

        self._archived = {}
        if relinked:
            step.records_repaired += relinked
            logger.info(f"{table}: relinked {relinked} archived revisions to their successors")

    def _index(self, kind: EntityKind, rows: List[Dict[str, Any]]) -> None:
        """Notify the indexer about committed current-and-live rows."""
        if self.indexer is None or not kind.versioned or not self.indexer.handles(kind):
            return
        for row in rows:
            if not should_index(row):
                continue
            try:
                self.indexer.index_entity(kind, row)
            except Exception as e:
                logger.error(f"Search index update failed for {kind.value} {row.get('id')}: {e}")

    def _run_validation(self, run: MigrationRun, kinds: List[EntityKind]) -> Optional[ValidationReport]:
        """Compare the target with the source."""
        if self.config.dry_run:
            logger.info("Dry run: skipping post-migration validation")
            return None

        if not self.config.validate_only:
            kinds = [s.kind for s in run.steps if s.status == StepStatus.COMPLETED]
            if not kinds:
                logger.info("No tables migrated, skipping validation")
                return None

        validator = IntegrityValidator(
            self.source,
            self.target,
            transformer=self.transformer,
            sample_size=self.config.sample_size,
            join_tolerance=self.config.join_tolerance,
        )
        report = validator.validate(kinds, run)
        run.validation = report

        if not report.passed:
            for issue in report.errors:
                logger.error(f"Validation error ({issue.table or 'schema'}): {issue.message}")
            run.add_error(
                "validation_error",
                f"Validation failed with {len(report.errors)} error(s)",
            )
        return report

    def _run_reporting(self, run: MigrationRun) -> None:
        """Write the JSON report and the text summary."""
        try:
            self.report = self.reporter.generate(run)
            run.report_paths = self.reporter.save(self.report, self.config.output_dir)
        except OSError as e:
            logger.error(f"Failed to write migration report: {e}")
            run.add_error("report_error", str(e))

    def _fail(self, run: MigrationRun, error_type: str, message: str) -> None:
        table = run.current_kind.target_table if run.current_kind else None
        run.add_error(error_type, message, table)
        run.transition(RunState.FAILED)

    def _disconnect(self) -> None:
        """Close the connections this run opened."""
        while self._opened:
            store = self._opened.pop()
            if store.is_connected:
                try:
                    store.disconnect()
                except RevMigrateError as e:
                    logger.warning(f"Error disconnecting from {store.name}: {e.message}")


def _sort_date(value: Any) -> datetime:
    if not isinstance(value, datetime):
        return datetime.min.replace(tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
