"""Stream cursor model and consumption lease."""

from dataclasses import dataclass, field
from datetime import datetime
from threading import Lock
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from cdc_engine.changelog.models import ChangeRecord

if TYPE_CHECKING:
    from cdc_engine.streams.manager import StreamManager


@dataclass
class StreamCursor:
    """Per-consumer read offset into a table's change log."""

    cursor_id: str
    consumer_id: str
    table_id: str
    last_consumed_sequence: int = 0
    created_at: datetime = field(default_factory=datetime.now)
    invalidated: bool = False
    _lock: Lock = field(default_factory=Lock, repr=False, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        """Convert cursor to dictionary."""
        return {
            "cursor_id": self.cursor_id,
            "consumer_id": self.consumer_id,
            "table_id": self.table_id,
            "last_consumed_sequence": self.last_consumed_sequence,
            "created_at": self.created_at.isoformat(),
            "invalidated": self.invalidated,
        }


class CursorLease:
    """
    Exclusive hold on a cursor with a snapshot of its pending records.

    Finish a lease with ``commit`` (advance the cursor) or ``release``
    (leave it where it was). Used as a context manager, a lease that was
    not committed is released on exit.
    """

    def __init__(
        self, manager: "StreamManager", cursor: StreamCursor, records: List[ChangeRecord]
    ) -> None:
        self._manager = manager
        self.cursor = cursor
        self.records = records
        self.start_sequence = cursor.last_consumed_sequence
        self._finished = False

    @property
    def cursor_id(self) -> str:
        return self.cursor.cursor_id

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def last_sequence(self) -> Optional[int]:
        """Sequence number of the last leased record, or None when empty."""
        return self.records[-1].sequence_number if self.records else None

    def commit(self, up_to: Optional[int] = None) -> int:
        """
        Advance the cursor and release the lease.

        Args:
            up_to: Last processed sequence number; defaults to the last
                leased record

        Returns:
            The cursor's new ``last_consumed_sequence``
        """
        if self._finished:
            raise RuntimeError(f"Lease on cursor '{self.cursor_id}' is already finished")
        try:
            target = self.last_sequence if up_to is None else up_to
            if target is not None:
                self._manager._advance(self, target)
            return self.cursor.last_consumed_sequence
        finally:
            self._finish()

    def release(self) -> None:
        """Release the lease without advancing the cursor."""
        if not self._finished:
            self._finish()

    def _finish(self) -> None:
        self._finished = True
        self.cursor._lock.release()

    def __enter__(self) -> "CursorLease":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def __len__(self) -> int:
        return len(self.records)
