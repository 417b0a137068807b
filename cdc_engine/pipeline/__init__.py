"""Pipeline orchestration: dependency-ordered task batches."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from cdc_engine.tasks.models import PipelineRun


class BatchStatus(str, Enum):
    """Status of one task within a batch."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"
    NO_CHANGES = "no_changes"


@dataclass
class BatchEntry:
    """Result of one task within a batch."""

    task_id: str
    status: BatchStatus
    run: Optional[PipelineRun] = None
    reason: str = ""


@dataclass
class BatchResult:
    """Outcome of running an ordered batch of tasks."""

    pipeline: str
    entries: List[BatchEntry] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None

    def status_of(self, task_id: str) -> Optional[BatchStatus]:
        """Status of a task in this batch, or None if it was not part of it."""
        for entry in self.entries:
            if entry.task_id == task_id:
                return entry.status
        return None

    def _count(self, status: BatchStatus) -> int:
        return sum(1 for e in self.entries if e.status == status)

    @property
    def succeeded_count(self) -> int:
        return self._count(BatchStatus.SUCCEEDED)

    @property
    def failed_count(self) -> int:
        return self._count(BatchStatus.FAILED)

    @property
    def skipped_count(self) -> int:
        return self._count(BatchStatus.SKIPPED)

    @property
    def total_count(self) -> int:
        return len(self.entries)

    @property
    def ok(self) -> bool:
        """True when no task failed, was cancelled or was skipped."""
        return all(
            e.status in (BatchStatus.SUCCEEDED, BatchStatus.NO_CHANGES) for e in self.entries
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert result to dictionary."""
        return {
            "pipeline": self.pipeline,
            "ok": self.ok,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "summary": {
                "total": self.total_count,
                "succeeded": self.succeeded_count,
                "failed": self.failed_count,
                "skipped": self.skipped_count,
                "cancelled": self._count(BatchStatus.CANCELLED),
                "no_changes": self._count(BatchStatus.NO_CHANGES),
            },
            "tasks": [
                {
                    "task_id": e.task_id,
                    "status": e.status.value,
                    "reason": e.reason,
                    "run": e.run.to_dict() if e.run else None,
                }
                for e in self.entries
            ],
        }


__all__ = ["BatchEntry", "BatchResult", "BatchStatus"]
