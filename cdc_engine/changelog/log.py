"""Per-table append-only change log."""

from dataclasses import dataclass, field
from datetime import datetime
from threading import RLock
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Union

from cdc_engine.changelog.models import ChangeRecord, Operation, RowKey
from cdc_engine.changelog.payload import freeze_payload
from cdc_engine.common.errors import PayloadError, StorageError
from cdc_engine.observability.logging_config import get_logger
from cdc_engine.observability.metrics import MetricsExporter

logger = get_logger(__name__)

DropListener = Callable[[str], None]


@dataclass
class _TableLog:
    """Records of one table. Index ``i`` holds sequence number ``i + 1``."""

    table_id: str
    primary_key: Optional[str]
    created_at: datetime
    records: List[ChangeRecord] = field(default_factory=list)

    @property
    def high_water_mark(self) -> int:
        return len(self.records)


class ChangeRange:
    """
    Lazy, finite, restartable view over a slice of a table's change log.

    Iterating twice yields the same records. The upper bound is fixed when
    the range is created, so appends made afterwards are not included.
    """

    def __init__(self, table_log: _TableLog, from_seq: int, to_seq: int) -> None:
        self._table_log = table_log
        self.from_seq = max(from_seq, 1)
        self.to_seq = max(to_seq, self.from_seq)

    def __iter__(self) -> Iterator[ChangeRecord]:
        records = self._table_log.records
        for seq in range(self.from_seq, self.to_seq):
            yield records[seq - 1]

    def __len__(self) -> int:
        return self.to_seq - self.from_seq

    def __repr__(self) -> str:
        return (
            f"ChangeRange(table={self._table_log.table_id!r}, "
            f"from_seq={self.from_seq}, to_seq={self.to_seq})"
        )


class ChangeLog:
    """
    Durable, ordered record of row-level mutations per table.

    Sequence numbers start at 1 and are strictly increasing and contiguous
    per table. Appends are serialised; readers share the log without locking
    records that are already written.
    """

    def __init__(
        self,
        metrics_exporter: Optional[MetricsExporter] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        """
        Initialize change log.

        Args:
            metrics_exporter: Optional metrics exporter
            clock: Source of commit timestamps
        """
        self.metrics_exporter = metrics_exporter
        self._clock = clock
        self._tables: Dict[str, _TableLog] = {}
        self._drop_listeners: List[DropListener] = []
        self._lock = RLock()

    def create_table(self, table_id: str, primary_key: Optional[str] = None) -> None:
        """
        Register a table for change tracking.

        Args:
            table_id: Table identifier
            primary_key: Column used to derive row keys on append

        Raises:
            StorageError: If the table is already registered
        """
        with self._lock:
            if table_id in self._tables:
                raise StorageError(f"Table '{table_id}' already exists")
            self._tables[table_id] = _TableLog(
                table_id=table_id, primary_key=primary_key, created_at=self._clock()
            )
        logger.info(f"Created change log for table {table_id} (primary_key={primary_key})")

    def drop_table(self, table_id: str) -> None:
        """
        Drop a table and its change log.

        Drop listeners are notified so cursors referencing the table can be
        invalidated.

        Raises:
            StorageError: If the table is unknown
        """
        with self._lock:
            self._get_table(table_id)
            del self._tables[table_id]
            listeners = list(self._drop_listeners)

        logger.info(f"Dropped change log for table {table_id}")
        for listener in listeners:
            listener(table_id)

    def add_drop_listener(self, listener: DropListener) -> None:
        """Register a callback invoked with the table ID when a table is dropped."""
        self._drop_listeners.append(listener)

    def has_table(self, table_id: str) -> bool:
        """Check whether a table is registered."""
        return table_id in self._tables

    def tables(self) -> List[str]:
        """List registered table IDs."""
        return list(self._tables)

    def primary_key(self, table_id: str) -> Optional[str]:
        """Get the primary key column of a table."""
        return self._get_table(table_id).primary_key

    def append(
        self,
        table_id: str,
        operation: Union[Operation, str],
        payload: Mapping[str, Any],
        row_key: Optional[RowKey] = None,
    ) -> int:
        """
        Append a mutation to a table's change log.

        Args:
            table_id: Table identifier
            operation: Mutation type
            payload: Row snapshot (after image; before image for deletes)
            row_key: Row key; derived from the primary key column if omitted

        Returns:
            Sequence number assigned to the record

        Raises:
            StorageError: If the table is unknown
            PayloadError: If the payload is invalid or no row key can be derived
        """
        operation = Operation(operation)
        snapshot = freeze_payload(payload)

        with self._lock:
            table_log = self._get_table(table_id)

            if row_key is None:
                if table_log.primary_key is None:
                    raise PayloadError(
                        f"Table '{table_id}' has no primary key; row_key is required"
                    )
                if table_log.primary_key not in snapshot:
                    raise PayloadError(
                        f"Payload for '{table_id}' is missing primary key "
                        f"column '{table_log.primary_key}'"
                    )
                row_key = snapshot[table_log.primary_key]

            sequence_number = table_log.high_water_mark + 1
            record = ChangeRecord(
                sequence_number=sequence_number,
                table_id=table_id,
                row_key=row_key,
                operation=operation,
                payload=snapshot,
                commit_time=self._clock(),
            )
            table_log.records.append(record)

        logger.debug(
            f"Appended {operation.value} to {table_id}: seq={sequence_number}, key={row_key}"
        )
        if self.metrics_exporter:
            self.metrics_exporter.record_append(table_id, operation.value, sequence_number)

        return sequence_number

    def read_range(
        self, table_id: str, from_seq: int = 1, to_seq: Optional[int] = None
    ) -> ChangeRange:
        """
        Read records of a table by sequence number.

        Args:
            table_id: Table identifier
            from_seq: First sequence number (inclusive)
            to_seq: Last sequence number (exclusive); the current high-water
                mark when omitted

        Returns:
            Restartable range of records in increasing sequence order

        Raises:
            StorageError: If the table is unknown
        """
        with self._lock:
            table_log = self._get_table(table_id)
            upper = table_log.high_water_mark + 1
        if to_seq is not None:
            upper = min(to_seq, upper)
        return ChangeRange(table_log, from_seq, upper)

    def high_water_mark(self, table_id: str) -> int:
        """
        Get the highest sequence number written for a table.

        Raises:
            StorageError: If the table is unknown
        """
        return self._get_table(table_id).high_water_mark

    def get_record(self, table_id: str, sequence_number: int) -> Optional[ChangeRecord]:
        """Get a single record by sequence number, or None if not written yet."""
        table_log = self._get_table(table_id)
        if 1 <= sequence_number <= table_log.high_water_mark:
            return table_log.records[sequence_number - 1]
        return None

    def _get_table(self, table_id: str) -> _TableLog:
        table_log = self._tables.get(table_id)
        if table_log is None:
            raise StorageError(f"Unknown table: '{table_id}'")
        return table_log
