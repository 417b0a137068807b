"""Prometheus metrics exporters."""

from typing import Optional

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from cdc_engine.common.config import get_settings


# Change Log Metrics
cdc_changes_appended_total = Counter(
    "cdc_changes_appended_total",
    "Total number of change records appended to the change log",
    ["table", "operation"],
)

cdc_table_high_water_mark = Gauge(
    "cdc_table_high_water_mark",
    "Highest sequence number written for a table",
    ["table"],
)

# Stream Cursor Metrics
cdc_records_consumed_total = Counter(
    "cdc_records_consumed_total",
    "Total number of change records consumed through stream cursors",
    ["cursor", "table"],
)

cdc_cursor_pending_records = Gauge(
    "cdc_cursor_pending_records",
    "Number of change records pending for a cursor",
    ["cursor", "table"],
)

cdc_cursor_lag_seconds = Gauge(
    "cdc_cursor_lag_seconds",
    "Age in seconds of the oldest pending change record for a cursor",
    ["cursor"],
)

# Task Metrics
cdc_task_runs_total = Counter(
    "cdc_task_runs_total",
    "Total number of task runs by outcome",
    ["task", "outcome"],
)

cdc_task_records_processed_total = Counter(
    "cdc_task_records_processed_total",
    "Total number of change records processed by task actions",
    ["task"],
)

cdc_task_skipped_ticks_total = Counter(
    "cdc_task_skipped_ticks_total",
    "Total number of due ticks skipped because no changes were pending",
    ["task"],
)

cdc_task_run_duration_seconds = Histogram(
    "cdc_task_run_duration_seconds",
    "Time taken by a task run",
    ["task"],
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 60.0],
)

cdc_task_batch_size = Histogram(
    "cdc_task_batch_size",
    "Number of change records handed to a task action",
    buckets=[1, 10, 50, 100, 500, 1000, 5000],
)

cdc_task_status = Gauge(
    "cdc_task_status",
    "Task status (1=idle, 2=running, -1=failed)",
    ["task"],
)

# Health Metrics
pipeline_health = Gauge(
    "pipeline_health",
    "Pipeline health status (1=healthy, 0=unhealthy)",
    ["pipeline"],
)


class MetricsExporter:
    """Prometheus metrics exporter."""

    def __init__(self, port: Optional[int] = None) -> None:
        """
        Initialize metrics exporter.

        Args:
            port: Port to expose metrics on (default from config)
        """
        self.settings = get_settings()
        self.port = port or self.settings.observability.metrics_port
        self._server_started = False

    def start(self) -> None:
        """Start metrics HTTP server."""
        if not self._server_started:
            start_http_server(self.port)
            self._server_started = True

    def record_append(self, table: str, operation: str, sequence_number: int) -> None:
        """
        Record a change log append.

        Args:
            table: Table ID
            operation: Operation type (insert/update/delete)
            sequence_number: Sequence number assigned to the record
        """
        cdc_changes_appended_total.labels(table=table, operation=operation).inc()
        cdc_table_high_water_mark.labels(table=table).set(sequence_number)

    def record_consume(self, cursor: str, table: str, count: int) -> None:
        """
        Record records consumed through a cursor.

        Args:
            cursor: Cursor ID
            table: Table ID
            count: Number of records consumed
        """
        if count:
            cdc_records_consumed_total.labels(cursor=cursor, table=table).inc(count)

    def update_cursor_pending(self, cursor: str, table: str, pending: int) -> None:
        """
        Update pending record count for a cursor.

        Args:
            cursor: Cursor ID
            table: Table ID
            pending: Records between the cursor and the high-water mark
        """
        cdc_cursor_pending_records.labels(cursor=cursor, table=table).set(pending)

    def update_cursor_lag(self, cursor: str, lag_seconds: float) -> None:
        """
        Update cursor lag metric.

        Args:
            cursor: Cursor ID
            lag_seconds: Age of the oldest pending record
        """
        cdc_cursor_lag_seconds.labels(cursor=cursor).set(lag_seconds)

    def record_task_run(
        self, task: str, outcome: str, records_processed: int, duration: float
    ) -> None:
        """
        Record a finished task run.

        Args:
            task: Task ID
            outcome: Run outcome (succeeded/failed/cancelled)
            records_processed: Number of records the run committed
            duration: Run duration in seconds
        """
        cdc_task_runs_total.labels(task=task, outcome=outcome).inc()
        cdc_task_run_duration_seconds.labels(task=task).observe(duration)
        cdc_task_batch_size.observe(records_processed)
        if outcome == "succeeded":
            cdc_task_records_processed_total.labels(task=task).inc(records_processed)

    def record_skipped_tick(self, task: str) -> None:
        """Record a due tick that found no pending changes."""
        cdc_task_skipped_ticks_total.labels(task=task).inc()

    def update_task_status(self, task: str, status: str) -> None:
        """
        Update task status gauge.

        Args:
            task: Task ID
            status: Status (idle/running/failed)
        """
        status_value = {"idle": 1, "running": 2, "failed": -1}.get(status, 0)
        cdc_task_status.labels(task=task).set(status_value)

    def update_pipeline_health(self, pipeline: str, healthy: bool) -> None:
        """
        Update pipeline health metric.

        Args:
            pipeline: Pipeline name
            healthy: Health status
        """
        pipeline_health.labels(pipeline=pipeline).set(1 if healthy else 0)
