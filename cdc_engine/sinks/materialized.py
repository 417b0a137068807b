"""Materialized table sink applying change records with MERGE semantics."""

from datetime import datetime
from threading import Lock
from typing import Any, Callable, Dict, Iterable, List, Optional

from cdc_engine.changelog.models import ChangeRecord, Operation, RowKey
from cdc_engine.observability.logging_config import get_logger

logger = get_logger(__name__)

RowTransform = Callable[[ChangeRecord], Optional[Dict[str, Any]]]


class MaterializedTable:
    """
    Keyed downstream table kept in sync from change records.

    Inserts and updates are upserts and deletes remove the key, so
    re-applying a record after a retried run leaves the table unchanged.
    An optional transform derives the stored row from a record; returning
    None filters the record out and removes any row stored for its key.
    """

    def __init__(
        self,
        name: str,
        transform: Optional[RowTransform] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        """
        Initialize materialized table.

        Args:
            name: Table name
            transform: Maps a record to the stored row (payload copy by default)
            clock: Source of ``_cdc_applied_at`` timestamps
        """
        self.name = name
        self.transform = transform
        self._clock = clock
        self._rows: Dict[RowKey, Dict[str, Any]] = {}
        self._applied: Dict[RowKey, int] = {}
        self._lock = Lock()

        logger.info(f"Initialized materialized table {name}")

    def apply(self, record: ChangeRecord) -> bool:
        """
        Apply one change record.

        Records older than the last one applied for the same key are ignored.

        Returns:
            True if the table changed
        """
        with self._lock:
            last_applied = self._applied.get(record.row_key, 0)
            if record.sequence_number <= last_applied:
                logger.debug(
                    f"{self.name}: ignoring replayed seq {record.sequence_number} "
                    f"for key {record.row_key}"
                )
                return False

            self._applied[record.row_key] = record.sequence_number

            if record.operation == Operation.DELETE:
                return self._rows.pop(record.row_key, None) is not None

            row = self.transform(record) if self.transform else dict(record.payload)
            if row is None:
                return self._rows.pop(record.row_key, None) is not None

            row["_cdc_operation"] = record.operation.value
            row["_cdc_sequence"] = record.sequence_number
            row["_cdc_applied_at"] = self._clock()
            self._rows[record.row_key] = row
            return True

    def apply_batch(self, records: Iterable[ChangeRecord]) -> int:
        """
        Apply records in order.

        Returns:
            Number of records that changed the table
        """
        records = list(records)
        changed = sum(1 for record in records if self.apply(record))
        inserts = sum(1 for r in records if r.operation == Operation.INSERT)
        updates = sum(1 for r in records if r.operation == Operation.UPDATE)
        deletes = sum(1 for r in records if r.operation == Operation.DELETE)
        logger.info(
            f"Applied batch to {self.name}: {inserts} inserts, {updates} updates, "
            f"{deletes} deletes ({changed} changed)"
        )
        return changed

    def get(self, key: RowKey) -> Optional[Dict[str, Any]]:
        """Get a copy of a row by key."""
        with self._lock:
            row = self._rows.get(key)
            return dict(row) if row is not None else None

    def rows(self) -> List[Dict[str, Any]]:
        """Get copies of all rows."""
        with self._lock:
            return [dict(row) for row in self._rows.values()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._rows
