"""Foreign-key reconciler for batches headed into the relational store."""

import copy
import logging
from typing import Any, Dict, Iterable, List, Optional, Set

from ..loaders.base import BaseTargetStore
from ..models.entities import EntityKind, REFERENCES, Reference, ReferencePolicy
from ..models.record import ReconciliationDrop, ReconciliationRepair, ReconciliationResult

logger = logging.getLogger(__name__)


class Reconciler:
    """
    Resolves dangling references before a batch is inserted.

    The document store never enforced references, so a batch can point at
    rows that do not exist in the target. Each reference of a kind carries
    a policy:
    - DROP: the record is excluded and reported
    - NULLIFY: the reference is cleared
    - FALLBACK: the reference is replaced by another field of the record

    Existence is looked up once per referenced id per batch. Rows a dry
    run would have inserted can be registered with `remember()` so later
    kinds see them as present.
    """

    def __init__(self, store: BaseTargetStore, references: Optional[Dict[EntityKind, List[Reference]]] = None):
        """
        Initialize the reconciler.

        Args:
            store: Target store to check references against
            references: Reference catalogue (defaults to the built-in one)
        """
        self.store = store
        self.references = references or REFERENCES
        self._pending: Dict[EntityKind, Set[Any]] = {}
        self._table_exists: Dict[str, bool] = {}

    def remember(self, kind: EntityKind, rows: Iterable[Dict[str, Any]]) -> None:
        """Treat these rows as present in the target (dry runs)."""
        ids = self._pending.setdefault(kind, set())
        ids.update(row.get("id") for row in rows if row.get("id") is not None)

    def reconcile(self, kind: EntityKind, records: List[Dict[str, Any]]) -> ReconciliationResult:
        """
        Reconcile one batch of transformed rows.

        Args:
            kind: Entity kind of the batch
            records: Transformed rows

        Returns:
            ReconciliationResult with the rows to insert, drops and repairs
        """
        refs = self.references.get(kind, [])
        result = ReconciliationResult()
        if not refs:
            result.records = list(records)
            return result

        existing = self._lookup(refs, records)

        for record in records:
            row = copy.copy(record)
            dropped = False
            for ref in refs:
                value = row.get(ref.field)
                if ref.policy == ReferencePolicy.DROP:
                    if value is None or value not in existing[ref.target]:
                        result.drops.append(self._drop(kind, row, ref, value))
                        dropped = True
                        break
                elif value is None or value in existing[ref.target]:
                    continue
                elif ref.policy == ReferencePolicy.NULLIFY:
                    row[ref.field] = None
                    result.repairs.append(self._repair(kind, row, ref, value, None))
                else:
                    replacement = row.get(ref.fallback_field)
                    if replacement not in existing[ref.target]:
                        replacement = None
                    row[ref.field] = replacement
                    result.repairs.append(self._repair(kind, row, ref, value, replacement))
            if not dropped:
                result.records.append(row)

        if result.drops or result.repairs:
            logger.info(
                f"Reconciled {kind.target_table} batch: {len(result.records)} kept, "
                f"{len(result.drops)} dropped, {len(result.repairs)} repaired"
            )
        return result

    def _lookup(self, refs: List[Reference], records: List[Dict[str, Any]]) -> Dict[EntityKind, Set[Any]]:
        """Ids referenced by the batch that exist, per referenced kind."""
        wanted: Dict[EntityKind, Set[Any]] = {}
        for ref in refs:
            ids = wanted.setdefault(ref.target, set())
            for record in records:
                for name in (ref.field, ref.fallback_field):
                    if name and record.get(name) is not None:
                        ids.add(record[name])

        existing: Dict[EntityKind, Set[Any]] = {}
        for target, ids in wanted.items():
            found = ids & self._pending.get(target, set())
            remaining = ids - found
            table = target.target_table
            if remaining and self._has_table(table):
                rows = self.store.select_rows(table, {"id": sorted(remaining, key=str)})
                found.update(row["id"] for row in rows)
            existing[target] = found
        return existing

    def _has_table(self, table: str) -> bool:
        if table not in self._table_exists:
            self._table_exists[table] = self.store.table_exists(table)
        return self._table_exists[table]

    def _drop(self, kind: EntityKind, row: Dict[str, Any], ref: Reference, value: Any) -> ReconciliationDrop:
        record_id = self._record_id(kind, row)
        if value is None:
            reason = f"missing required {ref.field}"
        else:
            reason = f"{ref.field} references missing {ref.target.target_table} {value}"
        logger.warning(f"Skipping {kind.target_table} record {record_id}: {reason}")
        return ReconciliationDrop(
            table=kind.target_table,
            record_id=record_id,
            field=ref.field,
            missing_id=value,
            reason=reason,
        )

    def _repair(
        self,
        kind: EntityKind,
        row: Dict[str, Any],
        ref: Reference,
        old: Any,
        new: Any,
    ) -> ReconciliationRepair:
        record_id = self._record_id(kind, row)
        logger.warning(
            f"Repaired {kind.target_table} record {record_id}: {ref.field} {old} -> {new} "
            f"(missing {ref.target.target_table})"
        )
        return ReconciliationRepair(
            table=kind.target_table,
            record_id=record_id,
            field=ref.field,
            old_value=old,
            new_value=new,
        )

    @staticmethod
    def _record_id(kind: EntityKind, row: Dict[str, Any]) -> str:
        if kind.is_join:
            return "/".join(str(row.get(c)) for c in kind.key_columns)
        return str(row.get("id"))
