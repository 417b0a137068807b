"""In-memory source table that mirrors its writes into the change log."""

from threading import RLock
from typing import Any, Dict, Iterable, List, Mapping, Optional

from cdc_engine.changelog.log import ChangeLog
from cdc_engine.changelog.models import Operation, RowKey
from cdc_engine.common.errors import StorageError
from cdc_engine.observability.logging_config import get_logger

logger = get_logger(__name__)


class SourceTable:
    """
    Keyed row store standing in for the storage layer's write path.

    Every successful write is appended to the change log: inserts and
    updates carry the new row, deletes carry the deleted row.
    """

    def __init__(self, change_log: ChangeLog, table_id: str, primary_key: str) -> None:
        """
        Initialize source table and register it with the change log.

        Args:
            change_log: Change log receiving the mutations
            table_id: Table identifier
            primary_key: Primary key column name
        """
        self.change_log = change_log
        self.table_id = table_id
        self.primary_key = primary_key
        self._rows: Dict[RowKey, Dict[str, Any]] = {}
        # Reentrant: upsert holds it across the existence check and the write
        self._lock = RLock()

        if not change_log.has_table(table_id):
            change_log.create_table(table_id, primary_key=primary_key)

    def insert(self, row: Mapping[str, Any]) -> int:
        """
        Insert a new row.

        Returns:
            Sequence number of the change record

        Raises:
            StorageError: If a row with the same key exists
        """
        key = self._key_of(row)
        with self._lock:
            if key in self._rows:
                raise StorageError(f"Duplicate key {key!r} in table '{self.table_id}'")
            seq = self.change_log.append(self.table_id, Operation.INSERT, row, row_key=key)
            self._rows[key] = dict(row)
        return seq

    def insert_many(self, rows: Iterable[Mapping[str, Any]]) -> List[int]:
        """Insert several rows, returning their sequence numbers."""
        return [self.insert(row) for row in rows]

    def update(self, key: RowKey, changes: Mapping[str, Any]) -> int:
        """
        Update columns of an existing row.

        Raises:
            StorageError: If the row does not exist
        """
        with self._lock:
            current = self._rows.get(key)
            if current is None:
                raise StorageError(f"No row with key {key!r} in table '{self.table_id}'")
            updated = {**current, **changes, self.primary_key: key}
            seq = self.change_log.append(self.table_id, Operation.UPDATE, updated, row_key=key)
            self._rows[key] = updated
        return seq

    def upsert(self, row: Mapping[str, Any]) -> int:
        """Insert the row, or update it when the key already exists."""
        key = self._key_of(row)
        with self._lock:
            if key in self._rows:
                return self.update(key, row)
            return self.insert(row)

    def delete(self, key: RowKey) -> int:
        """
        Delete a row.

        Raises:
            StorageError: If the row does not exist
        """
        with self._lock:
            current = self._rows.get(key)
            if current is None:
                raise StorageError(f"No row with key {key!r} in table '{self.table_id}'")
            seq = self.change_log.append(self.table_id, Operation.DELETE, current, row_key=key)
            del self._rows[key]
        return seq

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

    def _key_of(self, row: Mapping[str, Any]) -> RowKey:
        if self.primary_key not in row or row[self.primary_key] is None:
            raise StorageError(
                f"Row for '{self.table_id}' is missing primary key '{self.primary_key}'"
            )
        return row[self.primary_key]
