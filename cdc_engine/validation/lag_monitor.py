"""Stream lag monitoring and validation."""

from datetime import datetime
from typing import List, Optional

from cdc_engine.common.config import get_settings
from cdc_engine.common.errors import StorageError
from cdc_engine.observability.logging_config import get_logger
from cdc_engine.streams.manager import StreamManager
from cdc_engine.validation import ValidationResult, ValidationStatus, summarize

logger = get_logger(__name__)


class LagMonitor:
    """Monitors stream cursor lag and validates it against a threshold."""

    def __init__(
        self, streams: StreamManager, threshold_seconds: Optional[int] = None
    ) -> None:
        """
        Initialize lag monitor.

        Args:
            streams: Stream manager owning the cursors
            threshold_seconds: Maximum allowed lag in seconds (default from config)
        """
        settings = get_settings()
        self.streams = streams
        self.threshold_seconds = (
            threshold_seconds or settings.stream.lag_threshold_seconds
        )
        self.name = "LagMonitor"

    def validate_cursor(self, cursor_id: str) -> ValidationResult:
        """
        Validate a cursor's lag against the threshold.

        Args:
            cursor_id: Cursor to check

        Returns:
            Validation result
        """
        try:
            lag = self.streams.lag(cursor_id)
            pending = self.streams.pending_count(cursor_id)
        except StorageError as e:
            return ValidationResult(
                validator=self.name,
                status=ValidationStatus.FAILED,
                message=f"Cannot read cursor {cursor_id}: {e}",
                details={"cursor_id": cursor_id, "error_type": type(e).__name__},
            )

        details = {
            "cursor_id": cursor_id,
            "lag_seconds": lag,
            "pending_records": pending,
            "threshold_seconds": self.threshold_seconds,
        }

        if pending == 0:
            return ValidationResult(
                validator=self.name,
                status=ValidationStatus.PASSED,
                message=f"Cursor {cursor_id} is caught up",
                details=details,
            )
        if lag <= self.threshold_seconds:
            return ValidationResult(
                validator=self.name,
                status=ValidationStatus.PASSED,
                message=f"Stream lag is acceptable: {lag:.2f}s (threshold: {self.threshold_seconds}s)",
                details=details,
            )
        return ValidationResult(
            validator=self.name,
            status=ValidationStatus.FAILED,
            message=f"Stream lag exceeds threshold: {lag:.2f}s > {self.threshold_seconds}s",
            details=details,
        )

    def validate_all(self) -> List[ValidationResult]:
        """Validate every cursor of the stream manager."""
        results = [self.validate_cursor(c.cursor_id) for c in self.streams.cursors()]
        counts = summarize(results)
        if counts["failed"]:
            logger.warning(f"{counts['failed']}/{len(results)} cursors failed lag validation")
        return results

    def check_staleness(
        self,
        last_event_timestamp: Optional[datetime],
        staleness_threshold_minutes: int = 5,
        now: Optional[datetime] = None,
    ) -> ValidationResult:
        """
        Check if a pipeline has gone stale (no recent runs).

        Args:
            last_event_timestamp: When the pipeline last processed records
            staleness_threshold_minutes: Minutes without activity before considering stale
            now: Reference time (default: now)

        Returns:
            Validation result
        """
        if last_event_timestamp is None:
            return ValidationResult(
                validator=self.name,
                status=ValidationStatus.SKIPPED,
                message="Pipeline has not processed any records yet",
            )

        now = now or datetime.now()
        time_since_last_event = (now - last_event_timestamp).total_seconds()
        threshold_seconds = staleness_threshold_minutes * 60
        details = {
            "time_since_last_event_seconds": time_since_last_event,
            "threshold_seconds": threshold_seconds,
            "last_event_timestamp": last_event_timestamp.isoformat(),
        }

        if time_since_last_event <= threshold_seconds:
            return ValidationResult(
                validator=self.name,
                status=ValidationStatus.PASSED,
                message=f"Pipeline is active: last run {time_since_last_event:.0f}s ago",
                details=details,
            )
        return ValidationResult(
            validator=self.name,
            status=ValidationStatus.WARNING,
            message=f"Pipeline may be stale: no runs for {time_since_last_event:.0f}s",
            details=details,
        )
