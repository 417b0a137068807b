"""Periodic task scheduler with skip-on-empty and single-flight execution."""

import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from threading import Event, Lock
from typing import Callable, Deque, Dict, List, Optional, Tuple

from cdc_engine.common.config import SchedulerConfig, StreamConfig, get_settings
from cdc_engine.common.errors import (
    ActionError,
    ActionTimeoutError,
    DuplicateTaskError,
    StorageError,
    TaskCancelledError,
    UnknownCursorError,
    UnknownTaskError,
)
from cdc_engine.common.utils import generate_run_id
from cdc_engine.observability.logging_config import get_logger
from cdc_engine.observability.metrics import MetricsExporter
from cdc_engine.streams.cursor import CursorLease
from cdc_engine.streams.manager import StreamManager
from cdc_engine.tasks.models import ChangeBatch, PipelineRun, RunOutcome, Task, TaskStatus
from cdc_engine.tasks.retry import RetryPolicy

logger = get_logger(__name__)

RunListener = Callable[[PipelineRun], None]


class TriggerState(str, Enum):
    """What happened when a task was triggered."""

    RAN = "ran"
    NO_CHANGES = "no_changes"
    BUSY = "busy"


@dataclass(frozen=True)
class TriggerResult:
    """Result of triggering a single task."""

    task_id: str
    state: TriggerState
    run: Optional[PipelineRun] = None
    # Storage or cursor error behind a failed run; surfaced to the caller
    error: Optional[Exception] = None


class TaskScheduler:
    """
    Drives periodic execution of registered tasks.

    On each ``tick`` every due task peeks its source cursors; a task with
    nothing pending is skipped without recording a run. Otherwise the
    cursors are leased, the action runs, and the leases are committed only
    if the action succeeds (at-least-once delivery). Due tasks run in
    registration order, or on a thread pool when concurrent execution is
    enabled. A per-task lock keeps a task from overlapping with itself.
    """

    def __init__(
        self,
        streams: StreamManager,
        config: Optional[SchedulerConfig] = None,
        retry_policy: Optional[RetryPolicy] = None,
        stream_config: Optional[StreamConfig] = None,
        metrics_exporter: Optional[MetricsExporter] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        """
        Initialize task scheduler.

        Args:
            streams: Stream manager owning the tasks' source cursors
            config: Scheduler configuration (default from settings)
            retry_policy: Policy for rescheduling after a run (default from settings)
            stream_config: Stream configuration for batch sizes (default from settings)
            metrics_exporter: Optional metrics exporter
            clock: Source of run timestamps
        """
        settings = get_settings()
        self.streams = streams
        self.config = config or settings.scheduler
        self.retry_policy = retry_policy or RetryPolicy.from_config(settings.retry)
        self.batch_size = (stream_config or settings.stream).batch_size
        self.metrics_exporter = metrics_exporter
        self._clock = clock

        self._tasks: Dict[str, Task] = {}
        self._registry_lock = Lock()
        self._run_listeners: List[RunListener] = []
        self._history: Deque[PipelineRun] = deque(maxlen=self.config.run_history_limit)
        self._last_runs: Dict[str, PipelineRun] = {}
        self._history_lock = Lock()

        self._task_pool: Optional[ThreadPoolExecutor] = None
        self._action_pool: Optional[ThreadPoolExecutor] = None
        self._pool_lock = Lock()
        self._shut_down = False

        logger.info(
            f"Initialized TaskScheduler (concurrent={self.config.concurrent_execution}, "
            f"retry={self.retry_policy.strategy})"
        )

    # Registration

    def register(self, task: Task) -> Task:
        """
        Register a task.

        Args:
            task: Task to register; a missing interval takes the configured default

        Returns:
            The registered task

        Raises:
            DuplicateTaskError: If the task ID is already registered
            UnknownCursorError: If a source cursor does not exist
        """
        for cursor_id in task.source_cursor_ids:
            if not self.streams.has_cursor(cursor_id):
                raise UnknownCursorError(cursor_id)

        with self._registry_lock:
            if task.task_id in self._tasks:
                raise DuplicateTaskError(task.task_id)
            if task.schedule_interval is None:
                task.schedule_interval = self.config.default_interval_seconds
            self._tasks[task.task_id] = task

        logger.info(
            f"Registered task {task.task_id} (interval={task.schedule_interval}s, "
            f"cursors={list(task.source_cursor_ids)})"
        )
        self._set_status(task, task.status)
        return task

    def unregister(self, task_id: str) -> Task:
        """
        Remove a task from the schedule.

        A running execution is asked to cancel.

        Raises:
            UnknownTaskError: If the task is not registered
        """
        with self._registry_lock:
            task = self._tasks.pop(task_id, None)
        if task is None:
            raise UnknownTaskError(task_id)
        if task._cancel_event is not None:
            task._cancel_event.set()
        logger.info(f"Unregistered task {task_id}")
        return task

    def get_task(self, task_id: str) -> Task:
        """
        Get a registered task.

        Raises:
            UnknownTaskError: If the task is not registered
        """
        task = self._tasks.get(task_id)
        if task is None:
            raise UnknownTaskError(task_id)
        return task

    def has_task(self, task_id: str) -> bool:
        return task_id in self._tasks

    def tasks(self) -> List[Task]:
        """Registered tasks in registration order."""
        with self._registry_lock:
            return list(self._tasks.values())

    # Execution

    def tick(self, current_time: float) -> List[PipelineRun]:
        """
        Run every task whose next-due time has elapsed.

        Args:
            current_time: Scheduler time in seconds

        Returns:
            Runs recorded during this tick, in registration order

        Raises:
            StorageError: If a task could not read its cursors (for example
                its source table was dropped). Every other due task still
                runs first, and the failed run is recorded.
            UnknownCursorError: If a task's cursor was dropped, as above
        """
        due = [task for task in self.tasks() if task.is_due(current_time)]
        if not due:
            return []

        logger.debug(f"Tick at {current_time}: {len(due)} task(s) due")

        if self.config.concurrent_execution and len(due) > 1:
            pool = self._get_task_pool()
            futures = [pool.submit(self._trigger, task, current_time) for task in due]
            results = [future.result() for future in futures]
        else:
            results = [self._trigger(task, current_time) for task in due]

        errors = [result.error for result in results if result.error is not None]
        if errors:
            raise errors[0]
        return [result.run for result in results if result.run is not None]

    def trigger(
        self,
        task_id: str,
        current_time: Optional[float] = None,
        raise_errors: bool = True,
    ) -> TriggerResult:
        """
        Run a task now, regardless of its schedule.

        Args:
            task_id: Task to run
            current_time: Scheduler time used to compute the next-due time.
                When omitted the task keeps its current schedule.
            raise_errors: Raise storage and cursor errors instead of only
                returning them on the result

        Raises:
            UnknownTaskError: If the task is not registered
            StorageError: If the task could not read its cursors
            UnknownCursorError: If a source cursor no longer exists
        """
        task = self.get_task(task_id)
        result = self._trigger(task, current_time)
        if raise_errors and result.error is not None:
            raise result.error
        return result

    def run_task(self, task_id: str, current_time: Optional[float] = None) -> Optional[PipelineRun]:
        """
        Run a task now; returns None when nothing was pending or it was busy.
        """
        return self.trigger(task_id, current_time).run

    def cancel(self, task_id: str) -> bool:
        """
        Request cooperative cancellation of a running task.

        Returns:
            True if the task was running and cancellation was requested
        """
        task = self.get_task(task_id)
        event = task._cancel_event
        if task.is_running and event is not None:
            event.set()
            logger.info(f"Cancellation requested for task {task_id}")
            return True
        return False

    def run_forever(self, stop_event: Event, tick_interval: Optional[float] = None) -> None:
        """
        Tick at a fixed cadence until ``stop_event`` is set.

        Args:
            stop_event: Event that ends the loop
            tick_interval: Seconds between ticks (default from config)
        """
        interval = tick_interval or self.config.tick_interval_seconds
        logger.info(f"Scheduler loop started (tick every {interval}s)")
        while not stop_event.is_set():
            started = time.monotonic()
            try:
                self.tick(started)
            except (StorageError, UnknownCursorError) as e:
                # Already recorded as a failed run; the loop keeps ticking
                logger.error(f"Scheduler tick at {started:.3f} hit a storage error: {e}")
            elapsed = time.monotonic() - started
            stop_event.wait(max(0.0, interval - elapsed))
        logger.info("Scheduler loop stopped")

    def shutdown(self, wait: bool = True) -> None:
        """Cancel running tasks and tear down worker pools."""
        if self._shut_down:
            return
        self._shut_down = True
        for task in self.tasks():
            if task._cancel_event is not None:
                task._cancel_event.set()
        with self._pool_lock:
            for pool in (self._task_pool, self._action_pool):
                if pool is not None:
                    pool.shutdown(wait=wait)
            self._task_pool = None
            self._action_pool = None
        logger.info("Scheduler shut down")

    # Run history

    def add_run_listener(self, listener: RunListener) -> None:
        """Register a callback receiving every recorded run."""
        self._run_listeners.append(listener)

    def runs(self, task_id: Optional[str] = None) -> List[PipelineRun]:
        """Recorded runs, oldest first, optionally for one task."""
        with self._history_lock:
            history = list(self._history)
        if task_id is None:
            return history
        return [run for run in history if run.task_id == task_id]

    def last_run(self, task_id: str) -> Optional[PipelineRun]:
        """Most recent run of a task, or None if it never ran."""
        return self._last_runs.get(task_id)

    # Internals

    def _trigger(self, task: Task, current_time: Optional[float]) -> TriggerResult:
        if not task._lock.acquire(blocking=False):
            logger.warning(f"Task {task.task_id} is still running; skipping this trigger")
            self._reschedule(task, current_time, task.schedule_interval)
            return TriggerResult(task.task_id, TriggerState.BUSY)

        inflight: Optional[Future] = None
        try:
            try:
                has_changes = any(self.streams.peek(c) for c in task.source_cursor_ids)
            except (StorageError, UnknownCursorError) as e:
                run = self._record_setup_failure(task, current_time, e)
                return TriggerResult(task.task_id, TriggerState.RAN, run, error=e)

            if not has_changes and task.skip_when_empty:
                self._reschedule(task, current_time, task.schedule_interval)
                logger.debug(f"Task {task.task_id}: no pending changes, skipping")
                if self.metrics_exporter:
                    self.metrics_exporter.record_skipped_tick(task.task_id)
                return TriggerResult(task.task_id, TriggerState.NO_CHANGES)

            run, inflight, error = self._execute(task, current_time)
            return TriggerResult(task.task_id, TriggerState.RAN, run, error=error)
        finally:
            if inflight is not None and not inflight.done():
                # Timed-out action still running: hold the task until it returns
                inflight.add_done_callback(lambda _: task._lock.release())
            else:
                task._lock.release()

    def _execute(
        self, task: Task, current_time: Optional[float]
    ) -> Tuple[PipelineRun, Optional[Future], Optional[Exception]]:
        leases: Dict[str, CursorLease] = {}
        inflight: Optional[Future] = None
        cancel_event = Event()
        started_at = self._clock()
        started = time.perf_counter()

        try:
            for cursor_id in task.source_cursor_ids:
                leases[cursor_id] = self.streams.lease(cursor_id)
        except Exception as e:
            for lease in leases.values():
                lease.release()
            run = self._record_setup_failure(task, current_time, e)
            surfaced = e if isinstance(e, (StorageError, UnknownCursorError)) else None
            return run, None, surfaced

        batch = ChangeBatch(task.task_id, leases, self.batch_size, cancel_event)
        received = len(batch)
        task._cancel_event = cancel_event
        self._set_status(task, TaskStatus.RUNNING)
        logger.info(f"Task {task.task_id} running with {received} pending records")

        outcome = RunOutcome.SUCCEEDED
        processed = received
        error: Optional[BaseException] = None

        timeout = task.timeout_seconds or self.config.action_timeout_seconds
        try:
            if timeout:
                inflight = self._get_action_pool().submit(task.action, batch)
                self._await_action(task, inflight, timeout)
            else:
                self._call_action(task, batch)
            for lease in leases.values():
                lease.commit()
        except TaskCancelledError:
            outcome = RunOutcome.CANCELLED
            processed = self._commit_processed(batch, leases)
            logger.warning(
                f"Task {task.task_id} cancelled; committed {processed}/{received} records"
            )
        except ActionTimeoutError as e:
            outcome, processed, error = RunOutcome.FAILED, 0, e
            cancel_event.set()
            logger.error(f"Task {task.task_id} timed out: {e}")
        except ActionError as e:
            outcome, processed, error = RunOutcome.FAILED, 0, e
            logger.error(f"Task {task.task_id} failed: {e}", exc_info=e.original)
        finally:
            for lease in leases.values():
                lease.release()
            task._cancel_event = None

        ended_at = self._clock()
        duration = time.perf_counter() - started

        if outcome == RunOutcome.FAILED:
            task.consecutive_failures += 1
            self._set_status(task, TaskStatus.FAILED)
        else:
            task.consecutive_failures = 0
            self._set_status(task, TaskStatus.IDLE)
        self._reschedule(
            task,
            current_time,
            self.retry_policy.next_delay(task.schedule_interval, task.consecutive_failures),
        )

        run = PipelineRun(
            run_id=generate_run_id(),
            task_id=task.task_id,
            started_at=started_at,
            ended_at=ended_at,
            records_processed=processed,
            records_received=received,
            outcome=outcome,
            error=str(error) if error else None,
            error_type=_error_type(error),
        )
        self._record(run, duration)
        logger.info(
            f"Task {task.task_id} {outcome.value}: {processed}/{received} records "
            f"in {duration:.3f}s",
            extra={"task_id": task.task_id, "run_id": run.run_id},
        )
        return run, inflight, None

    def _call_action(self, task: Task, batch: ChangeBatch) -> None:
        try:
            task.action(batch)
        except TaskCancelledError:
            raise
        except Exception as e:
            raise ActionError(task.task_id, f"{type(e).__name__}: {e}", e) from e

    def _await_action(self, task: Task, future: Future, timeout: float) -> None:
        try:
            future.result(timeout=timeout)
        except FutureTimeoutError as e:
            if not future.done():
                raise ActionTimeoutError(task.task_id, timeout) from None
            # The action raised TimeoutError itself
            raise ActionError(task.task_id, f"{type(e).__name__}: {e}", e) from e
        except TaskCancelledError:
            raise
        except Exception as e:
            raise ActionError(task.task_id, f"{type(e).__name__}: {e}", e) from e

    def _commit_processed(self, batch: ChangeBatch, leases: Dict[str, CursorLease]) -> int:
        processed_up_to = batch.processed_up_to()
        for cursor_id, lease in leases.items():
            if cursor_id in processed_up_to:
                lease.commit(up_to=processed_up_to[cursor_id])
            else:
                lease.release()
        return batch.processed_count()

    def _record_setup_failure(
        self, task: Task, current_time: Optional[float], error: Exception
    ) -> PipelineRun:
        """Record a failed run for errors raised before the action started."""
        now = self._clock()
        task.consecutive_failures += 1
        self._set_status(task, TaskStatus.FAILED)
        self._reschedule(
            task,
            current_time,
            self.retry_policy.next_delay(task.schedule_interval, task.consecutive_failures),
        )
        logger.error(f"Task {task.task_id} could not read its cursors: {error}")
        run = PipelineRun(
            run_id=generate_run_id(),
            task_id=task.task_id,
            started_at=now,
            ended_at=now,
            records_processed=0,
            records_received=0,
            outcome=RunOutcome.FAILED,
            error=str(error),
            error_type=_error_type(error),
        )
        self._record(run, 0.0)
        return run

    def _reschedule(self, task: Task, current_time: Optional[float], delay: float) -> None:
        # Without a scheduler time (manual triggers) the schedule is left alone
        if current_time is not None:
            task.next_due = current_time + delay

    def _record(self, run: PipelineRun, duration: float) -> None:
        with self._history_lock:
            self._history.append(run)
            self._last_runs[run.task_id] = run

        if self.metrics_exporter:
            self.metrics_exporter.record_task_run(
                run.task_id, run.outcome.value, run.records_processed, duration
            )

        for listener in list(self._run_listeners):
            try:
                listener(run)
            except Exception as e:
                logger.error(f"Run listener failed for run {run.run_id}: {e}", exc_info=True)

    def _set_status(self, task: Task, status: TaskStatus) -> None:
        task.status = status
        if self.metrics_exporter:
            self.metrics_exporter.update_task_status(task.task_id, status.value)

    def _get_task_pool(self) -> ThreadPoolExecutor:
        with self._pool_lock:
            if self._task_pool is None:
                self._task_pool = ThreadPoolExecutor(
                    max_workers=self.config.max_workers, thread_name_prefix="cdc-task"
                )
            return self._task_pool

    def _get_action_pool(self) -> ThreadPoolExecutor:
        with self._pool_lock:
            if self._action_pool is None:
                self._action_pool = ThreadPoolExecutor(
                    max_workers=self.config.max_workers * 2, thread_name_prefix="cdc-action"
                )
            return self._action_pool


def _error_type(error: Optional[BaseException]) -> Optional[str]:
    """Name of the root error type (the action's own exception when wrapped)."""
    if error is None:
        return None
    if isinstance(error, ActionError) and isinstance(error.original, BaseException):
        return type(error.original).__name__
    return type(error).__name__
