"""Append-only alert and audit log sinks."""

from datetime import datetime
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

from cdc_engine.observability.logging_config import get_logger

logger = get_logger(__name__)


class AlertTable:
    """
    Append-only table of alert or audit rows.

    Rows may carry a dedup key; appending a key that is already present is
    a no-op, which keeps retried runs from writing duplicates.
    """

    def __init__(
        self,
        name: str,
        id_field: str = "alert_id",
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        """
        Initialize alert table.

        Args:
            name: Table name
            id_field: Column holding the generated row ID
            clock: Source of ``created_at`` timestamps
        """
        self.name = name
        self.id_field = id_field
        self._clock = clock
        self._rows: List[Dict[str, Any]] = []
        self._dedup_keys: Dict[str, int] = {}
        self._lock = Lock()

    def append(self, row: Dict[str, Any], dedup_key: Optional[str] = None) -> bool:
        """
        Append a row.

        Args:
            row: Row to append; ``created_at`` and the ID column are filled in
            dedup_key: Optional idempotency key

        Returns:
            True if the row was written
        """
        with self._lock:
            if dedup_key is not None and dedup_key in self._dedup_keys:
                logger.debug(f"{self.name}: duplicate {dedup_key}, skipping")
                return False

            stored = dict(row)
            stored.setdefault(self.id_field, f"{self.name.upper()}_{len(self._rows) + 1:06d}")
            stored.setdefault("created_at", self._clock())
            self._rows.append(stored)
            if dedup_key is not None:
                self._dedup_keys[dedup_key] = len(self._rows) - 1

        logger.debug(f"{self.name}: appended {stored[self.id_field]}")
        return True

    def rows(self) -> List[Dict[str, Any]]:
        """Get copies of all rows in insertion order."""
        with self._lock:
            return [dict(row) for row in self._rows]

    def count_by(self, column: str) -> Dict[Any, int]:
        """Count rows grouped by a column value."""
        counts: Dict[Any, int] = {}
        for row in self.rows():
            value = row.get(column)
            counts[value] = counts.get(value, 0) + 1
        return counts

    def __len__(self) -> int:
        return len(self._rows)
