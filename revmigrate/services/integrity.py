"""Post-migration integrity validation between source and target stores."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set, Tuple

from ..errors import IntegrityMismatch
from ..extractors.base import BaseSourceStore
from ..loaders.base import BaseTargetStore
from ..models.entities import EntityKind, MIGRATION_ORDER, REVISION_FIELDS
from ..models.migration import MigrationRun
from ..models.record import Issue, Severity, ValidationReport
from .transformer import Transformer, parse_datetime

logger = logging.getLogger(__name__)

REQUIRED_TABLES = [kind.target_table for kind in MIGRATION_ORDER]

CRITICAL_INDEXES = [
    "idx_things_current",
    "idx_reviews_current",
    "idx_teams_current",
    "idx_files_current",
]

CRITICAL_FOREIGN_KEYS = [
    "reviews_thing_id_fkey",
    "reviews_created_by_fkey",
    "things_created_by_fkey",
    "teams_created_by_fkey",
]

# Fields compared on sampled rows: (exact, boolean, multilingual)
SAMPLE_FIELDS: Dict[EntityKind, Tuple[List[str], List[str], List[str]]] = {
    EntityKind.USER: (
        ["display_name", "canonical_name", "email"],
        ["is_trusted", "is_site_moderator", "is_super_user"],
        [],
    ),
    EntityKind.TEAM: ([], ["mod_approval_to_join", "only_mods_can_blog"], ["name"]),
    EntityKind.FILE: (["name", "mime_type", "license"], [], ["description", "creator", "source"]),
    EntityKind.THING: (["urls", "metadata"], [], ["label"]),
    EntityKind.REVIEW: (["star_rating"], [], ["title", "text", "html"]),
    EntityKind.BLOG_POST: ([], [], ["title", "text", "html"]),
}

REVISION_DATE_TOLERANCE_SECONDS = 1.0


def normalize_ml_string(value: Any) -> Any:
    """Sort keys and trim values so formatting differences compare equal."""
    if not isinstance(value, dict):
        return value
    return {key: (value[key].strip() if isinstance(value[key], str) else value[key]) for key in sorted(value)}


class IntegrityValidator:
    """
    Compares the target store against the source after a migration.

    Checks:
    - counts: per-kind record counts within tolerance
    - sample: randomly sampled rows match field by field
    - constraints: data rules the schema cannot express
    - schema: required tables, indexes and foreign keys exist
    """

    def __init__(
        self,
        source: Optional[BaseSourceStore],
        target: BaseTargetStore,
        transformer: Optional[Transformer] = None,
        sample_size: int = 5,
        join_tolerance: int = 0,
    ):
        """
        Initialize the validator.

        Args:
            source: Source store (None for schema-only validation)
            target: Target store
            transformer: Transformer giving the expected target shape of samples
            sample_size: Rows sampled per kind
            join_tolerance: Count difference accepted silently for join tables
        """
        self.source = source
        self.target = target
        self.transformer = transformer or Transformer()
        self.sample_size = sample_size
        self.join_tolerance = join_tolerance

    def validate(
        self,
        kinds: Optional[List[EntityKind]] = None,
        run: Optional[MigrationRun] = None,
    ) -> ValidationReport:
        """
        Run every check.

        Args:
            kinds: Kinds to check (defaults to all)
            run: Migration run whose reconciliation drops and repairs are expected

        Returns:
            ValidationReport with all issues found
        """
        report = ValidationReport()
        report.merge(self.validate_schema())

        for kind in kinds or MIGRATION_ORDER:
            if not self.target.table_exists(kind.target_table):
                continue
            self.validate_kind(kind, report, run)

        report.completed_at = datetime.utcnow()
        logger.info(
            f"Validation finished: {len(report.errors)} error(s), {len(report.warnings)} warning(s)"
        )
        return report

    def validate_kind(
        self,
        kind: EntityKind,
        report: ValidationReport,
        run: Optional[MigrationRun] = None,
    ) -> None:
        table = kind.target_table
        logger.info(f"Validating {table}")

        counts_ok = True
        source_count = target_count = 0
        if self.source is not None:
            if not self.source.table_exists(kind.source_table):
                report.add(Issue(
                    check="counts",
                    message=f"Table {kind.source_table} does not exist in source",
                    severity=Severity.WARNING,
                    table=table,
                    category="info",
                ))
            else:
                source_count, target_count, counts_ok = self.check_counts(kind, report, run)

        if self.source is not None and counts_ok and source_count and target_count and not kind.is_join:
            self.check_sample(kind, report, run)

        self.check_constraints(kind, report)

    def check_counts(
        self,
        kind: EntityKind,
        report: ValidationReport,
        run: Optional[MigrationRun] = None,
    ) -> Tuple[int, int, bool]:
        """
        Compare record counts.

        Returns:
            Tuple of (source count, target count, within tolerance)
        """
        table = kind.target_table
        source_count = self.source.count(kind.source_table)
        target_count = self.target.count(table)
        difference = abs(source_count - target_count)
        drops = run.drops_for(kind) if run else 0

        if kind.is_join:
            allowed = self.join_tolerance
        else:
            allowed = max(1, source_count // 100) + drops

        report.checks.setdefault("counts", {})[table] = {
            "source": source_count,
            "target": target_count,
            "difference": difference,
            "allowed": allowed,
            "dropped": drops,
        }

        if difference == 0:
            return source_count, target_count, True

        if kind.is_join:
            severity = Severity.WARNING
            category = "info"
            message = (
                f"Record count difference: source has {source_count}, target has {target_count} "
                f"(join table tolerance {allowed})"
            )
            if difference > allowed:
                logger.warning(message)
            report.add(Issue("counts", message, severity, table, category, {"difference": difference}))
            return source_count, target_count, True

        if difference > allowed:
            report.add(Issue(
                check="counts",
                message=f"Record count mismatch: source has {source_count}, target has {target_count}",
                table=table,
                category=IntegrityMismatch.code,
                details={"difference": difference, "allowed": allowed},
            ))
            return source_count, target_count, False

        report.add(Issue(
            check="counts",
            message=(
                f"Minor record count difference (acceptable): source has {source_count}, "
                f"target has {target_count}"
            ),
            severity=Severity.WARNING,
            table=table,
            category="info",
        ))
        return source_count, target_count, True

    def check_sample(
        self,
        kind: EntityKind,
        report: ValidationReport,
        run: Optional[MigrationRun] = None,
    ) -> None:
        """Compare sampled source documents with their migrated rows."""
        table = kind.target_table
        repaired: Set[Tuple[str, str]] = set()
        if run:
            repaired = {(r.record_id, r.field) for r in run.repairs if r.table == table}

        checked = mismatched = 0
        for document in self.source.fetch_sample(kind.source_table, self.sample_size):
            if not isinstance(document, dict) or not document.get("id"):
                continue
            record_id = document["id"]
            row = self.target.get_row(table, record_id)
            if row is None:
                report.add(Issue(
                    check="sample",
                    message=f"Record {record_id} not found in target (may have been skipped)",
                    severity=Severity.WARNING,
                    table=table,
                ))
                continue

            expected = self.transformer.transform_record(kind, document)
            issues = self.compare(kind, expected, row, skip={f for rid, f in repaired if rid == record_id})
            for issue in issues:
                issue.table = table
                issue.message = f"Record {record_id}: {issue.message}"
                report.add(issue)
            checked += 1
            if any(i.severity == Severity.ERROR for i in issues):
                mismatched += 1

        report.checks.setdefault("sample", {})[table] = {"checked": checked, "mismatched": mismatched}

    def compare(
        self,
        kind: EntityKind,
        expected: Dict[str, Any],
        actual: Dict[str, Any],
        skip: Optional[Set[str]] = None,
    ) -> List[Issue]:
        """Field-by-field comparison of an expected row with a stored one."""
        skip = skip or set()
        issues = []
        exact, booleans, multilingual = SAMPLE_FIELDS.get(kind, (["id"], [], []))

        for name in exact:
            if name in skip:
                continue
            if expected.get(name) != actual.get(name):
                issues.append(self._mismatch(f"{name} mismatch: {expected.get(name)!r} vs {actual.get(name)!r}"))

        for name in booleans:
            if bool(expected.get(name)) != bool(actual.get(name)):
                issues.append(self._mismatch(f"{name} mismatch: {expected.get(name)} vs {actual.get(name)}"))

        for name in multilingual:
            if expected.get(name) and actual.get(name):
                if normalize_ml_string(expected[name]) != normalize_ml_string(actual[name]):
                    issues.append(Issue(
                        check="sample",
                        message=f"Multilingual {name} field difference (non-critical)",
                        severity=Severity.WARNING,
                    ))

        if kind.versioned:
            issues.extend(self._compare_revision_fields(expected, actual, skip))
        return issues

    def _compare_revision_fields(
        self,
        expected: Dict[str, Any],
        actual: Dict[str, Any],
        skip: Set[str],
    ) -> List[Issue]:
        issues = []
        for name in REVISION_FIELDS:
            if name in ("_rev_date", "_rev_tags") or name in skip:
                continue
            default = False if name == "_rev_deleted" else None
            left = expected.get(name, default)
            right = actual.get(name, default)
            if name == "_rev_deleted":
                left, right = bool(left), bool(right)
            elif name == "_old_rev_of":
                # archived rows are relinked to their successor after migration
                left, right = ("archived" if left else "current"), ("archived" if right else "current")
            if left != right:
                issues.append(self._mismatch(f"{name} mismatch: {left} vs {right}"))

        left = _as_utc(parse_datetime(expected.get("_rev_date")))
        right = _as_utc(parse_datetime(actual.get("_rev_date")))
        if isinstance(left, datetime) and isinstance(right, datetime):
            if abs((left - right).total_seconds()) > REVISION_DATE_TOLERANCE_SECONDS:
                issues.append(self._mismatch(
                    f"Revision date mismatch: {left.isoformat()} vs {right.isoformat()}"
                ))
        return issues

    def check_constraints(self, kind: EntityKind, report: ValidationReport) -> None:
        table = kind.target_table
        if kind == EntityKind.USER:
            duplicates = self.target.duplicate_values(table, "canonical_name")
            if duplicates:
                report.add(Issue(
                    check="constraints",
                    message=f"Found {len(duplicates)} duplicate canonical names",
                    table=table,
                    details={"values": [str(v) for v in duplicates[:20]]},
                ))
        elif kind == EntityKind.REVIEW:
            invalid = self.target.count_outside_range(table, "star_rating", 1, 5)
            if invalid:
                report.add(Issue(
                    check="constraints",
                    message=f"Found {invalid} reviews with invalid star ratings",
                    table=table,
                ))
        elif kind == EntityKind.THING:
            without_urls = self.target.count_empty(table, "urls")
            if without_urls:
                report.add(Issue(
                    check="constraints",
                    message=f"{without_urls} things without URLs",
                    severity=Severity.WARNING,
                    table=table,
                    category="info",
                ))

    def validate_schema(self) -> ValidationReport:
        """Check that tables, critical indexes and core foreign keys exist."""
        report = ValidationReport()
        tables = set(self.target.list_tables())
        indexes = set(self.target.list_indexes())
        constraints = set(self.target.list_constraints())

        missing_tables = [t for t in REQUIRED_TABLES if t not in tables]
        missing_indexes = [i for i in CRITICAL_INDEXES if i not in indexes]
        missing_keys = [k for k in CRITICAL_FOREIGN_KEYS if k not in constraints]

        for name in missing_tables:
            report.add(Issue("schema", f"Missing table: {name}", table=name))
        for name in missing_indexes:
            report.add(Issue("schema", f"Missing critical index: {name}"))
        for name in missing_keys:
            report.add(Issue("schema", f"Missing foreign key constraint: {name}"))

        report.checks["schema"] = {
            "tables": {"expected": len(REQUIRED_TABLES), "found": len(REQUIRED_TABLES) - len(missing_tables)},
            "indexes": {"expected": len(CRITICAL_INDEXES), "found": len(CRITICAL_INDEXES) - len(missing_indexes)},
            "foreign_keys": {
                "expected": len(CRITICAL_FOREIGN_KEYS),
                "found": len(CRITICAL_FOREIGN_KEYS) - len(missing_keys),
            },
        }
        report.completed_at = datetime.utcnow()
        return report

    @staticmethod
    def _mismatch(message: str) -> Issue:
        return Issue(check="sample", message=message, category=IntegrityMismatch.code)


def _as_utc(value: Any) -> Any:
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
