"""Stream manager: per-consumer offsets into the change log."""

from datetime import datetime
from threading import Lock
from typing import Callable, Dict, List, Optional

from cdc_engine.changelog.log import ChangeLog
from cdc_engine.changelog.models import ChangeRecord
from cdc_engine.common.errors import (
    ConcurrentConsumeError,
    CursorInvalidatedError,
    UnknownCursorError,
)
from cdc_engine.common.utils import generate_cursor_id
from cdc_engine.observability.logging_config import get_logger
from cdc_engine.observability.metrics import MetricsExporter
from cdc_engine.streams.cursor import CursorLease, StreamCursor

logger = get_logger(__name__)


class StreamManager:
    """
    Tracks stream cursors over a change log.

    Changes are delivered to each cursor in strictly increasing sequence
    order. A cursor only moves forward, either through ``consume``, a
    committed lease, or an explicit ``fast_forward``.
    """

    def __init__(
        self,
        change_log: ChangeLog,
        metrics_exporter: Optional[MetricsExporter] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        """
        Initialize stream manager.

        Args:
            change_log: Change log the cursors read from
            metrics_exporter: Optional metrics exporter
            clock: Time source used for lag calculation
        """
        self.change_log = change_log
        self.metrics_exporter = metrics_exporter
        self._clock = clock
        self._cursors: Dict[str, StreamCursor] = {}
        self._registry_lock = Lock()
        change_log.add_drop_listener(self._invalidate_table)

    def create_cursor(
        self,
        consumer_id: str,
        table_id: str,
        cursor_id: Optional[str] = None,
        start_at_latest: bool = False,
    ) -> StreamCursor:
        """
        Create a cursor for a consumer on a table.

        Args:
            consumer_id: Owning consumer
            table_id: Source table
            cursor_id: Cursor ID (defaults to ``<consumer_id>.<table_id>``)
            start_at_latest: Start at the current high-water mark instead of
                before the first record

        Returns:
            The new cursor

        Raises:
            StorageError: If the table is unknown
            ValueError: If the cursor ID is already taken
        """
        cursor_id = cursor_id or generate_cursor_id(consumer_id, table_id)
        start = self.change_log.high_water_mark(table_id) if start_at_latest else 0

        with self._registry_lock:
            if cursor_id in self._cursors:
                raise ValueError(f"Cursor '{cursor_id}' already exists")
            cursor = StreamCursor(
                cursor_id=cursor_id,
                consumer_id=consumer_id,
                table_id=table_id,
                last_consumed_sequence=start,
                created_at=self._clock(),
            )
            self._cursors[cursor_id] = cursor

        logger.info(
            f"Created cursor {cursor_id} for consumer {consumer_id} on {table_id} "
            f"(starting after seq {start})"
        )
        return cursor

    def drop_cursor(self, cursor_id: str) -> None:
        """Remove a cursor."""
        with self._registry_lock:
            if cursor_id not in self._cursors:
                raise UnknownCursorError(cursor_id)
            del self._cursors[cursor_id]
        logger.info(f"Dropped cursor {cursor_id}")

    def get_cursor(self, cursor_id: str) -> StreamCursor:
        """
        Get a cursor by ID.

        Raises:
            UnknownCursorError: If no cursor has this ID
        """
        cursor = self._cursors.get(cursor_id)
        if cursor is None:
            raise UnknownCursorError(cursor_id)
        return cursor

    def has_cursor(self, cursor_id: str) -> bool:
        """Check whether a cursor exists."""
        return cursor_id in self._cursors

    def cursors(self) -> List[StreamCursor]:
        """List all cursors."""
        return list(self._cursors.values())

    def peek(self, cursor_id: str) -> List[ChangeRecord]:
        """
        Read pending records without advancing the cursor.

        Returns:
            Records after ``last_consumed_sequence`` up to the high-water mark
        """
        cursor = self._readable_cursor(cursor_id)
        return self._pending_records(cursor)

    def consume(self, cursor_id: str) -> List[ChangeRecord]:
        """
        Read pending records and advance the cursor past them.

        Returns:
            Pending records; empty when nothing is pending

        Raises:
            ConcurrentConsumeError: If the cursor is being consumed elsewhere
        """
        lease = self.lease(cursor_id)
        records = lease.records
        lease.commit()
        return records

    def lease(self, cursor_id: str) -> CursorLease:
        """
        Take exclusive hold of a cursor and snapshot its pending records.

        The cursor is advanced only when the lease is committed.

        Raises:
            ConcurrentConsumeError: If the cursor is already held
        """
        cursor = self._readable_cursor(cursor_id)
        if not cursor._lock.acquire(blocking=False):
            raise ConcurrentConsumeError(cursor_id)
        try:
            # Re-check under the cursor lock: the table may have been dropped
            self._check_valid(cursor)
            records = self._pending_records(cursor)
        except BaseException:
            cursor._lock.release()
            raise
        logger.debug(f"Leased cursor {cursor_id} with {len(records)} pending records")
        return CursorLease(self, cursor, records)

    def fast_forward(self, cursor_id: str, to_seq: Optional[int] = None) -> int:
        """
        Skip a cursor ahead without delivering the skipped records.

        Args:
            cursor_id: Cursor ID
            to_seq: New ``last_consumed_sequence``; the high-water mark if omitted

        Returns:
            The cursor's new ``last_consumed_sequence``

        Raises:
            ValueError: If ``to_seq`` is behind the cursor or past the high-water mark
            ConcurrentConsumeError: If the cursor is being consumed
        """
        cursor = self._readable_cursor(cursor_id)
        if not cursor._lock.acquire(blocking=False):
            raise ConcurrentConsumeError(cursor_id)
        try:
            high_water_mark = self.change_log.high_water_mark(cursor.table_id)
            target = high_water_mark if to_seq is None else to_seq
            if target < cursor.last_consumed_sequence:
                raise ValueError(
                    f"Cannot move cursor '{cursor_id}' backwards "
                    f"({cursor.last_consumed_sequence} -> {target})"
                )
            if target > high_water_mark:
                raise ValueError(
                    f"Cannot move cursor '{cursor_id}' past high-water mark {high_water_mark}"
                )
            skipped = target - cursor.last_consumed_sequence
            cursor.last_consumed_sequence = target
        finally:
            cursor._lock.release()

        logger.info(f"Fast-forwarded cursor {cursor_id} to seq {target} ({skipped} skipped)")
        self._update_pending(cursor)
        return target

    def pending_count(self, cursor_id: str) -> int:
        """Number of records between the cursor and the high-water mark."""
        cursor = self._readable_cursor(cursor_id)
        return max(
            0,
            self.change_log.high_water_mark(cursor.table_id) - cursor.last_consumed_sequence,
        )

    def lag(self, cursor_id: str) -> float:
        """
        Age in seconds of the oldest pending record; 0 when nothing is pending.
        """
        cursor = self._readable_cursor(cursor_id)
        oldest = self.change_log.get_record(cursor.table_id, cursor.last_consumed_sequence + 1)
        if oldest is None:
            return 0.0
        lag = max(0.0, (self._clock() - oldest.commit_time).total_seconds())
        if self.metrics_exporter:
            self.metrics_exporter.update_cursor_lag(cursor_id, lag)
        return lag

    def _advance(self, lease: CursorLease, target: int) -> None:
        """Move a leased cursor forward to ``target``. Called by ``CursorLease.commit``."""
        cursor = lease.cursor
        previous = cursor.last_consumed_sequence
        if target < previous:
            raise ValueError(
                f"Cannot move cursor '{cursor.cursor_id}' backwards ({previous} -> {target})"
            )
        if lease.last_sequence is None or target > lease.last_sequence:
            raise ValueError(
                f"Cannot commit cursor '{cursor.cursor_id}' past leased records (seq {target})"
            )
        cursor.last_consumed_sequence = target

        logger.debug(f"Committed cursor {cursor.cursor_id}: {previous} -> {target}")
        if self.metrics_exporter:
            self.metrics_exporter.record_consume(cursor.cursor_id, cursor.table_id, target - previous)
        self._update_pending(cursor)

    def _pending_records(self, cursor: StreamCursor) -> List[ChangeRecord]:
        return list(
            self.change_log.read_range(cursor.table_id, cursor.last_consumed_sequence + 1)
        )

    def _readable_cursor(self, cursor_id: str) -> StreamCursor:
        cursor = self.get_cursor(cursor_id)
        self._check_valid(cursor)
        return cursor

    def _check_valid(self, cursor: StreamCursor) -> None:
        if cursor.invalidated:
            raise CursorInvalidatedError(cursor.cursor_id, cursor.table_id)

    def _update_pending(self, cursor: StreamCursor) -> None:
        if self.metrics_exporter and not cursor.invalidated:
            pending = max(
                0,
                self.change_log.high_water_mark(cursor.table_id) - cursor.last_consumed_sequence,
            )
            self.metrics_exporter.update_cursor_pending(cursor.cursor_id, cursor.table_id, pending)

    def _invalidate_table(self, table_id: str) -> None:
        invalidated = 0
        for cursor in self.cursors():
            if cursor.table_id == table_id:
                cursor.invalidated = True
                invalidated += 1
        if invalidated:
            logger.warning(f"Invalidated {invalidated} cursor(s) on dropped table {table_id}")
