"""Migration reports: a JSON document and a human-readable summary."""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..models.migration import MigrationRun

logger = logging.getLogger(__name__)

SLOW_RECORDS_PER_SECOND = 100
LARGE_DATASET_RECORDS = 100_000


class MigrationReporter:
    """
    Builds the report of a migration run.

    The JSON report holds statistics, performance figures, errors,
    reconciliation outcomes, validation results and recommendations. The
    text summary is the same content for people.
    """

    def generate(self, run: MigrationRun) -> Dict[str, Any]:
        """
        Generate the report of a run.

        Args:
            run: Run context, complete or partial

        Returns:
            Report dictionary
        """
        duration = run.duration_seconds or 0.0
        migrated = run.records_migrated
        tables_processed = run.tables_processed

        report = {
            "migration": {
                "id": run.id,
                "timestamp": (run.completed_at or datetime.utcnow()).isoformat(),
                "state": run.state.value,
                "duration": {
                    "milliseconds": round(duration * 1000),
                    "seconds": round(duration),
                    "minutes": round(duration / 60),
                },
                "options": run.config.to_dict(),
            },
            "summary": {
                "tablesProcessed": tables_processed,
                "recordsMigrated": migrated,
                "recordsSkipped": run.records_skipped,
                "errorsEncountered": len(run.errors),
                "success": run.success,
                "status": run.status,
            },
            "tables": {
                step.target_table: {
                    "status": step.status.value,
                    "sourceCount": step.source_count,
                    "batches": step.batches,
                    "recordsRead": step.records_read,
                    "recordsMigrated": step.records_migrated,
                    "recordsSkipped": step.records_skipped,
                    "recordsRepaired": step.records_repaired,
                    "durationSeconds": step.duration_seconds,
                }
                for step in run.steps
            },
            "performance": {
                "recordsPerSecond": round(migrated / duration) if duration > 0 else 0,
                "averageRecordsPerTable": round(migrated / max(tables_processed, 1)),
            },
            "errors": [
                {
                    "type": error.get("type"),
                    "message": error.get("message"),
                    "timestamp": error.get("timestamp"),
                    "table": error.get("table"),
                }
                for error in run.errors
            ],
            "reconciliation": {
                "dropped": len(run.drops),
                "repaired": len(run.repairs),
                "drops": [d.to_dict() for d in run.drops],
                "repairs": [r.to_dict() for r in run.repairs],
            },
            "validation": run.validation.to_dict() if run.validation else None,
        }
        report["recommendations"] = self.generate_recommendations(run, report)
        return report

    def generate_recommendations(self, run: MigrationRun, report: Dict[str, Any]) -> List[Dict[str, str]]:
        """Recommendations derived from the run's outcome."""
        recommendations = []
        migrated = report["summary"]["recordsMigrated"]

        if migrated > 0 and report["performance"]["recordsPerSecond"] < SLOW_RECORDS_PER_SECOND:
            recommendations.append({
                "type": "performance",
                "message": (
                    f"Migration speed is below {SLOW_RECORDS_PER_SECOND} records/second. "
                    "Consider increasing batch size or optimizing database connections."
                ),
                "priority": "medium",
            })

        if run.errors:
            recommendations.append({
                "type": "errors",
                "message": (
                    f"{len(run.errors)} errors encountered during migration. "
                    "Review error details before re-running the migration."
                ),
                "priority": "high",
            })

        if run.success:
            recommendations.append({
                "type": "next_steps",
                "message": (
                    "Migration completed successfully. Run validation and update "
                    "application configuration to use the relational store."
                ),
                "priority": "low",
            })

        if migrated > LARGE_DATASET_RECORDS:
            recommendations.append({
                "type": "monitoring",
                "message": (
                    "Large dataset migrated. Monitor database performance and consider "
                    "optimizing indexes if queries are slow."
                ),
                "priority": "medium",
            })

        if run.validation and run.validation.issues:
            recommendations.append({
                "type": "data_quality",
                "message": (
                    f"Validation reported {len(run.validation.errors)} error(s) and "
                    f"{len(run.validation.warnings)} warning(s). Review them before switching over."
                ),
                "priority": "high",
            })

        return recommendations

    def generate_summary(self, report: Dict[str, Any]) -> str:
        """Render a report as plain text."""
        migration = report["migration"]
        summary = report["summary"]
        duration = migration["duration"]
        lines = []

        lines.append("=" * 60)
        lines.append("RETHINKDB TO POSTGRESQL MIGRATION REPORT")
        lines.append("=" * 60)
        lines.append("")

        lines.append(f"Migration completed: {migration['timestamp']}")
        lines.append(f"Duration: {duration['seconds'] // 60} minutes {duration['seconds'] % 60} seconds")
        lines.append(f"Mode: {'DRY RUN' if migration['options'].get('dry_run') else 'LIVE MIGRATION'}")
        lines.append(f"Final state: {migration['state']}")
        lines.append("")

        lines.append("SUMMARY:")
        lines.append(f"  Tables processed: {summary['tablesProcessed']}")
        lines.append(f"  Records migrated: {summary['recordsMigrated']:,}")
        lines.append(f"  Records skipped: {summary['recordsSkipped']:,}")
        lines.append(f"  Errors encountered: {summary['errorsEncountered']}")
        lines.append(f"  Overall status: {'SUCCESS' if summary['success'] else summary['status'].upper()}")
        lines.append("")

        if report["tables"]:
            lines.append("TABLES:")
            for table, stats in report["tables"].items():
                lines.append(
                    f"  {table:<20} {stats['status']:<10} "
                    f"migrated={stats['recordsMigrated']:,} skipped={stats['recordsSkipped']:,}"
                )
            lines.append("")

        lines.append("PERFORMANCE:")
        lines.append(f"  Records per second: {report['performance']['recordsPerSecond']:,}")
        lines.append(f"  Average records per table: {report['performance']['averageRecordsPerTable']:,}")
        lines.append("")

        if report["errors"]:
            lines.append("ERRORS:")
            for index, error in enumerate(report["errors"], start=1):
                lines.append(f"  {index}. [{error['type']}] {error['message']}")
                if error.get("table"):
                    lines.append(f"     Table: {error['table']}")
                lines.append(f"     Time: {error['timestamp']}")
                lines.append("")

        validation = report.get("validation")
        if validation:
            lines.append("VALIDATION:")
            lines.append(f"  Passed: {validation['passed']}")
            lines.append(f"  Errors: {validation['error_count']}")
            lines.append(f"  Warnings: {validation['warning_count']}")
            lines.append("")

        if report["recommendations"]:
            lines.append("RECOMMENDATIONS:")
            for index, rec in enumerate(report["recommendations"], start=1):
                lines.append(f"  {index}. [{rec['priority'].upper()}] {rec['message']}")
            lines.append("")

        lines.append("=" * 60)
        return "\n".join(lines)

    def save(
        self,
        report: Dict[str, Any],
        output_dir: str,
        timestamp: Optional[datetime] = None,
    ) -> Dict[str, str]:
        """
        Write the JSON report and the text summary.

        Returns:
            Mapping with the paths of the "json" and "text" files
        """
        directory = Path(output_dir)
        directory.mkdir(parents=True, exist_ok=True)
        stamp = (timestamp or datetime.utcnow()).strftime("%Y-%m-%dT%H-%M-%S-%f")

        json_path = directory / f"migration-report-{stamp}.json"
        with open(json_path, "w") as f:
            json.dump(report, f, indent=2, default=str)

        text_path = directory / f"migration-summary-{stamp}.txt"
        with open(text_path, "w") as f:
            f.write(self.generate_summary(report))

        logger.info(f"Saved migration report to {json_path}")
        logger.info(f"Saved migration summary to {text_path}")
        return {"json": str(json_path), "text": str(text_path)}
