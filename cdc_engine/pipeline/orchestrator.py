"""Pipeline orchestrator for running dependent tasks as a batch."""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from cdc_engine.common.errors import DependencyCycleError, StorageError, UnknownTaskError
from cdc_engine.common.utils import timestamp_to_iso
from cdc_engine.observability.health import HealthStatus
from cdc_engine.observability.logging_config import get_logger
from cdc_engine.observability.metrics import MetricsExporter
from cdc_engine.pipeline import BatchEntry, BatchResult, BatchStatus
from cdc_engine.streams.manager import StreamManager
from cdc_engine.tasks.models import RunOutcome
from cdc_engine.tasks.scheduler import TaskScheduler, TriggerState

logger = get_logger(__name__)

_RUN_STATUS = {
    RunOutcome.SUCCEEDED: BatchStatus.SUCCEEDED,
    RunOutcome.FAILED: BatchStatus.FAILED,
    RunOutcome.CANCELLED: BatchStatus.CANCELLED,
}


class PipelineOrchestrator:
    """Composes scheduled tasks into dependency-ordered batches and reports health."""

    def __init__(
        self,
        scheduler: TaskScheduler,
        pipeline_name: str = "cdc-pipeline",
        metrics_exporter: Optional[MetricsExporter] = None,
    ) -> None:
        """
        Initialize pipeline orchestrator.

        Args:
            scheduler: Scheduler holding the tasks
            pipeline_name: Name used in reports and metrics
            metrics_exporter: Optional metrics exporter
        """
        self.scheduler = scheduler
        self.pipeline_name = pipeline_name
        self.metrics_exporter = metrics_exporter
        logger.info(f"Initialized PipelineOrchestrator for {pipeline_name}")

    @property
    def streams(self) -> StreamManager:
        return self.scheduler.streams

    def run_batch(
        self, task_ids: Sequence[str], current_time: Optional[float] = None
    ) -> BatchResult:
        """
        Run tasks in the given order.

        A task whose upstream (a ``depends_on`` task earlier in the same
        batch) failed, was cancelled or was skipped is itself skipped.

        Args:
            task_ids: Tasks to run, in order
            current_time: Scheduler time passed to each run

        Returns:
            Per-task batch result

        Raises:
            UnknownTaskError: If any task is not registered (nothing runs)
            StorageError: If a task could not read its cursors. The rest of
                the batch runs first (its dependents are skipped) and the
                failed run is recorded.
            UnknownCursorError: If a task's cursor was dropped, as above
        """
        tasks = [self.scheduler.get_task(task_id) for task_id in task_ids]
        result = BatchResult(pipeline=self.pipeline_name)
        blocked: Set[str] = set()
        errors: List[Exception] = []

        logger.info(f"Starting batch for {self.pipeline_name}: {list(task_ids)}")

        for task in tasks:
            failed_upstream = sorted(task.depends_on & blocked)
            if failed_upstream:
                reason = f"upstream not completed: {', '.join(failed_upstream)}"
                result.entries.append(BatchEntry(task.task_id, BatchStatus.SKIPPED, reason=reason))
                blocked.add(task.task_id)
                logger.warning(f"Skipping {task.task_id}: {reason}")
                continue

            trigger = self.scheduler.trigger(task.task_id, current_time, raise_errors=False)
            if trigger.error is not None:
                errors.append(trigger.error)
            if trigger.state == TriggerState.BUSY:
                entry = BatchEntry(task.task_id, BatchStatus.SKIPPED, reason="already running")
            elif trigger.state == TriggerState.NO_CHANGES:
                entry = BatchEntry(task.task_id, BatchStatus.NO_CHANGES, reason="no pending changes")
            else:
                run = trigger.run
                entry = BatchEntry(
                    task.task_id, _RUN_STATUS[run.outcome], run=run, reason=run.error or ""
                )

            if entry.status in (BatchStatus.FAILED, BatchStatus.CANCELLED, BatchStatus.SKIPPED):
                blocked.add(task.task_id)
            result.entries.append(entry)

        result.completed_at = datetime.now()
        logger.info(
            f"Batch complete for {self.pipeline_name}: {result.succeeded_count} succeeded, "
            f"{result.failed_count} failed, {result.skipped_count} skipped "
            f"of {result.total_count}"
        )
        self._publish_health()
        if errors:
            raise errors[0]
        return result

    def resolve_order(self, task_ids: Optional[Iterable[str]] = None) -> List[str]:
        """
        Order tasks so every task comes after its dependencies.

        Dependencies outside the selection are ignored. Ties keep
        registration order.

        Args:
            task_ids: Tasks to order (all registered tasks if omitted)

        Raises:
            UnknownTaskError: If a task is not registered
            DependencyCycleError: If the dependencies form a cycle
        """
        registered = [task.task_id for task in self.scheduler.tasks()]
        selected = registered if task_ids is None else list(task_ids)
        for task_id in selected:
            if not self.scheduler.has_task(task_id):
                raise UnknownTaskError(task_id)

        rank = {task_id: i for i, task_id in enumerate(registered)}
        remaining = sorted(set(selected), key=lambda t: rank[t])
        deps = {
            task_id: set(self.scheduler.get_task(task_id).depends_on) & set(remaining)
            for task_id in remaining
        }

        ordered: List[str] = []
        done: Set[str] = set()
        while remaining:
            ready = [t for t in remaining if deps[t] <= done]
            if not ready:
                raise DependencyCycleError(
                    f"Dependency cycle among tasks: {', '.join(remaining)}"
                )
            ordered.append(ready[0])
            done.add(ready[0])
            remaining.remove(ready[0])
        return ordered

    def run_pipeline(
        self, task_ids: Optional[Iterable[str]] = None, current_time: Optional[float] = None
    ) -> BatchResult:
        """Run tasks (all by default) in dependency order."""
        return self.run_batch(self.resolve_order(task_ids), current_time)

    def health_report(self) -> Dict[str, Optional[RunOutcome]]:
        """
        Last run outcome per registered task.

        Returns:
            Mapping task ID to outcome; None for tasks that never ran
        """
        report: Dict[str, Optional[RunOutcome]] = {}
        for task in self.scheduler.tasks():
            last = self.scheduler.last_run(task.task_id)
            report[task.task_id] = last.outcome if last else None
        return report

    def overall_health(self) -> HealthStatus:
        """
        Aggregate health of the pipeline.

        Returns:
            UNHEALTHY if any task's last run failed, DEGRADED if any was
            cancelled, HEALTHY otherwise
        """
        outcomes = self.health_report().values()
        if any(o == RunOutcome.FAILED for o in outcomes):
            return HealthStatus.UNHEALTHY
        if any(o == RunOutcome.CANCELLED for o in outcomes):
            return HealthStatus.DEGRADED
        return HealthStatus.HEALTHY

    def monitoring_snapshot(self) -> Dict[str, Any]:
        """
        Pending records per stream and processing totals per task.

        Returns:
            Dictionary with ``streams``, ``tasks`` and overall ``status``
        """
        streams = []
        for cursor in self.streams.cursors():
            if cursor.invalidated:
                streams.append({
                    "cursor_id": cursor.cursor_id,
                    "table_id": cursor.table_id,
                    "pending_records": None,
                    "lag_seconds": None,
                    "status": "invalidated",
                })
                continue
            try:
                pending = self.streams.pending_count(cursor.cursor_id)
                lag = self.streams.lag(cursor.cursor_id)
            except StorageError as e:
                logger.warning(f"Could not read cursor {cursor.cursor_id}: {e}")
                pending, lag = None, None
            streams.append({
                "cursor_id": cursor.cursor_id,
                "table_id": cursor.table_id,
                "pending_records": pending,
                "lag_seconds": lag,
                "status": "active",
            })

        tasks = []
        for task in self.scheduler.tasks():
            runs = self.scheduler.runs(task.task_id)
            last = self.scheduler.last_run(task.task_id)
            tasks.append({
                "task_id": task.task_id,
                "status": task.status.value,
                "runs": len(runs),
                "records_processed": sum(r.records_processed for r in runs),
                "last_outcome": last.outcome.value if last else None,
                "last_run_at": timestamp_to_iso(last.ended_at if last else None),
            })

        return {
            "pipeline": self.pipeline_name,
            "status": self.overall_health().value,
            "streams": streams,
            "tasks": tasks,
        }

    def _publish_health(self) -> None:
        if self.metrics_exporter:
            self.metrics_exporter.update_pipeline_health(
                self.pipeline_name, self.overall_health() == HealthStatus.HEALTHY
            )
