"""Task scheduler data model."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from threading import Event, Lock
from typing import Any, Callable, Dict, FrozenSet, Iterator, List, Optional, Tuple

from cdc_engine.changelog.models import ChangeRecord
from cdc_engine.common.errors import TaskCancelledError
from cdc_engine.streams.cursor import CursorLease


class TaskStatus(str, Enum):
    """Task lifecycle status."""

    IDLE = "idle"
    RUNNING = "running"
    FAILED = "failed"


class RunOutcome(str, Enum):
    """Outcome of a finished pipeline run."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ChangeBatch:
    """
    Pending changes handed to a task action.

    Records are grouped per source cursor, in the task's cursor order, each
    group in increasing sequence order. Actions that want cooperative
    cancellation iterate ``iter_batches``; cancellation is then observed
    between batches and the cursors are committed only up to the last batch
    that was fully processed.
    """

    def __init__(
        self,
        task_id: str,
        leases: Dict[str, CursorLease],
        batch_size: int = 100,
        cancel_event: Optional[Event] = None,
    ) -> None:
        self.task_id = task_id
        self.batch_size = batch_size
        self._leases = leases
        self._cancel_event = cancel_event or Event()
        self._processed: Dict[str, int] = {}

    @property
    def by_cursor(self) -> Dict[str, List[ChangeRecord]]:
        """Pending records keyed by cursor ID."""
        return {cursor_id: lease.records for cursor_id, lease in self._leases.items()}

    @property
    def records(self) -> List[ChangeRecord]:
        """All pending records, grouped by cursor."""
        return [record for lease in self._leases.values() for record in lease.records]

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    def for_table(self, table_id: str) -> List[ChangeRecord]:
        """Pending records of one source table."""
        return [r for r in self.records if r.table_id == table_id]

    def check_cancelled(self) -> None:
        """Raise ``TaskCancelledError`` if cancellation was requested."""
        if self._cancel_event.is_set():
            raise TaskCancelledError(self.task_id)

    def iter_batches(self, size: Optional[int] = None) -> Iterator[List[ChangeRecord]]:
        """
        Yield pending records in batches of at most ``size``.

        A batch counts as processed once the caller asks for the next one
        (or the iteration ends). Cancellation is checked before each batch.
        """
        size = size or self.batch_size
        for cursor_id, lease in self._leases.items():
            records = lease.records
            for start in range(0, len(records), size):
                self.check_cancelled()
                chunk = records[start:start + size]
                yield chunk
                self._processed[cursor_id] = chunk[-1].sequence_number

    def processed_up_to(self) -> Dict[str, int]:
        """Last fully processed sequence number per cursor."""
        return dict(self._processed)

    def processed_count(self) -> int:
        """Number of records in fully processed batches."""
        return sum(
            seq - self._leases[cursor_id].start_sequence
            for cursor_id, seq in self._processed.items()
        )

    def __iter__(self) -> Iterator[ChangeRecord]:
        return iter(self.records)

    def __len__(self) -> int:
        return sum(len(lease.records) for lease in self._leases.values())

    def __bool__(self) -> bool:
        return len(self) > 0


TaskAction = Callable[[ChangeBatch], Any]


@dataclass
class Task:
    """A scheduled unit of work consuming pending changes from stream cursors."""

    task_id: str
    action: TaskAction
    source_cursor_ids: Tuple[str, ...]
    schedule_interval: Optional[float] = None
    depends_on: FrozenSet[str] = frozenset()
    timeout_seconds: Optional[float] = None
    description: str = ""
    # False for housekeeping tasks that run on schedule with or without pending changes
    skip_when_empty: bool = True
    status: TaskStatus = TaskStatus.IDLE
    consecutive_failures: int = 0
    next_due: Optional[float] = None
    _lock: Lock = field(default_factory=Lock, repr=False, compare=False)
    _cancel_event: Optional[Event] = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        if isinstance(self.source_cursor_ids, str):
            self.source_cursor_ids = (self.source_cursor_ids,)
        self.source_cursor_ids = tuple(self.source_cursor_ids)
        self.depends_on = frozenset(self.depends_on)
        if not self.source_cursor_ids and self.skip_when_empty:
            raise ValueError(f"Task '{self.task_id}' needs at least one source cursor")
        if self.schedule_interval is not None and self.schedule_interval <= 0:
            raise ValueError(f"Task '{self.task_id}' schedule interval must be positive")

    def is_due(self, current_time: float) -> bool:
        """A task is due on its first tick, then once its next-due time has elapsed."""
        return self.next_due is None or current_time >= self.next_due

    @property
    def is_running(self) -> bool:
        return self._lock.locked()


@dataclass(frozen=True)
class PipelineRun:
    """Audit record of one task invocation. Immutable once completed."""

    run_id: str
    task_id: str
    started_at: datetime
    ended_at: datetime
    records_processed: int
    outcome: RunOutcome
    records_received: int = 0
    error: Optional[str] = None
    error_type: Optional[str] = None

    @property
    def duration_seconds(self) -> float:
        return (self.ended_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        """Convert run to dictionary."""
        return {
            "run_id": self.run_id,
            "task_id": self.task_id,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat(),
            "records_processed": self.records_processed,
            "records_received": self.records_received,
            "outcome": self.outcome.value,
            "error": self.error,
            "error_type": self.error_type,
        }
