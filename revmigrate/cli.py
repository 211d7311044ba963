"""Command line interface for the migration tool."""

import argparse
import json
import logging
import signal
import sys
from typing import Callable, Dict, List, Optional

from .errors import RevMigrateError
from .extractors.base import BaseSourceStore
from .extractors.json_export import JSONExportSource
from .extractors.rethinkdb_source import RethinkDBSource
from .loaders.base import BaseTargetStore
from .loaders.postgres import PostgresStore, mask_url
from .models.entities import EntityKind
from .models.migration import MigrationConfig
from .orchestrator import MigrationOrchestrator
from .services.indexer import BaseIndexer, HTTPSearchIndexer, NullIndexer
from .services.integrity import IntegrityValidator
from .services.rollback import RollbackManager

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="revmigrate",
        description="Migrate a review site's data from RethinkDB to PostgreSQL",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Migrate
    migrate_parser = subparsers.add_parser("migrate", help="Run the migration")
    migrate_parser.add_argument("--dry-run", action="store_true", help="Read and transform without writing")
    migrate_parser.add_argument("--batch-size", type=int, help="Records per batch (default: 1000)")
    migrate_parser.add_argument("--validate-only", action="store_true", help="Only validate migrated data")
    migrate_parser.add_argument("--table", help="Migrate a single table")
    migrate_parser.add_argument("--source-dir", help="Read from a JSON export instead of RethinkDB")
    migrate_parser.add_argument("--skip-schema", action="store_true", help="Do not apply schema migrations")
    migrate_parser.add_argument("--output-dir", help="Directory for migration reports")
    migrate_parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    # Validate
    validate_parser = subparsers.add_parser("validate", help="Validate migrated data")
    validate_parser.add_argument("--schema-only", action="store_true", help="Only check the target schema")
    validate_parser.add_argument("--table", help="Validate a single table")
    validate_parser.add_argument("--source-dir", help="Read from a JSON export instead of RethinkDB")
    validate_parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    # Rollback
    rollback_parser = subparsers.add_parser("rollback", help="Roll back a migration")
    rollback_parser.add_argument("--clear-postgres", action="store_true", help="Clear migrated tables")
    rollback_parser.add_argument("--restore-backup", metavar="PATH", help="Restore the target from a backup")
    rollback_parser.add_argument("--table", help="Only clear this table")
    rollback_parser.add_argument("--dry-run", action="store_true", help="Show what would be cleared")
    rollback_parser.add_argument("--confirm", action="store_true", help="Do not ask for confirmation")
    rollback_parser.add_argument("--output-dir", help="Directory for rollback reports")
    rollback_parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    # Schema
    schema_parser = subparsers.add_parser("schema", help="Apply pending schema migrations")
    schema_parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI. Returns the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Set up logging
    log_level = logging.DEBUG if getattr(args, "verbose", False) else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    command = COMMANDS.get(args.command)
    if command is None:
        parser.print_help()
        return 1

    try:
        return command(args)
    except RevMigrateError as e:
        logger.error(f"{args.command} failed: {e.message}")
        print(f"Error: {e.message}", file=sys.stderr)
        return 1


def build_config(args: argparse.Namespace) -> MigrationConfig:
    """Environment configuration with command line flags applied on top."""
    config = MigrationConfig.from_environment()

    if getattr(args, "dry_run", False):
        config.dry_run = True
    if getattr(args, "batch_size", None):
        config.batch_size = args.batch_size
    if getattr(args, "validate_only", False):
        config.validate_only = True
    if getattr(args, "table", None):
        config.table = args.table
    if getattr(args, "source_dir", None):
        config.source_dir = args.source_dir
    if getattr(args, "skip_schema", False):
        config.apply_schema = False
    if getattr(args, "output_dir", None):
        config.output_dir = args.output_dir
    config.verbose = getattr(args, "verbose", False)
    return config


def create_source_store(config: MigrationConfig) -> BaseSourceStore:
    if config.source_dir:
        logger.info(f"Reading source data from export {config.source_dir}")
        return JSONExportSource(config.source_dir, database=config.rethinkdb_database)
    logger.info(f"Reading source data from RethinkDB at {config.rethinkdb_host}:{config.rethinkdb_port}")
    return RethinkDBSource(
        host=config.rethinkdb_host,
        port=config.rethinkdb_port,
        database=config.rethinkdb_database,
        timeout=config.rethinkdb_timeout,
    )


def create_target_store(config: MigrationConfig) -> BaseTargetStore:
    logger.info(f"Writing to PostgreSQL at {mask_url(config.postgres_url)}")
    return PostgresStore(
        config.postgres_url,
        namespace=config.postgres_namespace,
        pool_size=config.pool_size,
        statement_timeout_ms=config.statement_timeout_ms,
    )


def create_indexer(config: MigrationConfig) -> BaseIndexer:
    if config.search_url:
        return HTTPSearchIndexer(config.search_url, index=config.search_index)
    return NullIndexer()


def run_migrate(args: argparse.Namespace) -> int:
    """Run a migration."""
    config = build_config(args)
    orchestrator = MigrationOrchestrator(
        config,
        source=create_source_store(config),
        target=create_target_store(config),
        indexer=create_indexer(config),
    )

    def handle_signal(signum, frame):
        logger.warning(f"Received signal {signum}")
        orchestrator.request_stop()

    previous = {sig: signal.signal(sig, handle_signal) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        run = orchestrator.run_migration()
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    if orchestrator.report:
        print("\n" + orchestrator.reporter.generate_summary(orchestrator.report))
    for kind, path in run.report_paths.items():
        print(f"Report ({kind}): {path}")

    return 0 if run.success else 1


def run_validate(args: argparse.Namespace) -> int:
    """Validate the target store, optionally against the source."""
    config = build_config(args)
    target = create_target_store(config)
    source = None if args.schema_only else create_source_store(config)

    try:
        kinds = config.selected_kinds
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    target.connect()
    try:
        validator = IntegrityValidator(
            source,
            target,
            sample_size=config.sample_size,
            join_tolerance=config.join_tolerance,
        )
        if source is None:
            report = validator.validate_schema()
        else:
            source.connect()
            report = validator.validate(kinds)
    finally:
        if source is not None and source.is_connected:
            source.disconnect()
        target.disconnect()

    print("\n" + "=" * 60)
    print("VALIDATION " + ("PASSED" if report.passed else "FAILED"))
    print("=" * 60)
    for issue in report.issues:
        where = f" [{issue.table}]" if issue.table else ""
        print(f"  {issue.severity.value.upper():<8} {issue.check}{where}: {issue.message}")
    print(f"\n{len(report.errors)} error(s), {len(report.warnings)} warning(s)")
    if args.verbose:
        print(json.dumps(report.checks, indent=2, default=str))

    return 0 if report.passed else 1


def run_rollback(args: argparse.Namespace) -> int:
    """Clear migrated tables or restore a backup."""
    if not args.clear_postgres and not args.restore_backup:
        print("Nothing to do: pass --clear-postgres or --restore-backup")
        return 1

    if args.table:
        try:
            EntityKind.from_table(args.table)
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

    if not args.confirm and not args.dry_run:
        scope = f"table {args.table}" if args.table else "all migrated tables"
        print(f"\nThis will permanently delete data from {scope} in PostgreSQL.")
        answer = input("Type 'yes' to continue: ").strip().lower()
        if answer != "yes":
            print("Rollback cancelled")
            return 1

    config = build_config(args)
    target = create_target_store(config)
    manager = RollbackManager(target, output_dir=config.output_dir)

    if args.restore_backup:
        try:
            manager.restore_backup(args.restore_backup)
        except NotImplementedError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

    target.connect()
    try:
        result = manager.clear(table=args.table, dry_run=args.dry_run)
    finally:
        target.disconnect()
    path = manager.save_report(result)

    print("\n" + "=" * 60)
    print("ROLLBACK " + ("PREVIEW" if args.dry_run else "COMPLETE"))
    print("=" * 60)
    for table in result.tables:
        print(f"  {table['table']:<20} {table['status']:<8} {table['records']:,} records")
    print(f"\nTables cleared: {result.tables_cleared}")
    print(f"Records deleted: {result.records_deleted:,}")
    for error in result.errors:
        print(f"Error ({error['table']}): {error['message']}")
    print(f"Report: {path}")

    return 0 if result.success else 1


def run_schema(args: argparse.Namespace) -> int:
    """Apply pending schema migrations."""
    config = build_config(args)
    target = create_target_store(config)
    with target:
        applied = target.apply_schema_migrations()

    if applied:
        print(f"Applied {len(applied)} migration(s): {', '.join(applied)}")
    else:
        print("Schema is up to date")
    return 0


COMMANDS: Dict[str, Callable[[argparse.Namespace], int]] = {
    "migrate": run_migrate,
    "validate": run_validate,
    "rollback": run_rollback,
    "schema": run_schema,
}


if __name__ == "__main__":
    sys.exit(main())
