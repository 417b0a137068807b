"""Engine context owning the change log, streams, scheduler and orchestrator."""

from datetime import datetime
from threading import Event, Thread
from typing import Callable, Optional

from cdc_engine.changelog.log import ChangeLog
from cdc_engine.common.config import Settings, get_settings
from cdc_engine.observability.health import HealthChecker, HealthCheckServer
from cdc_engine.observability.logging_config import get_logger
from cdc_engine.observability.metrics import MetricsExporter
from cdc_engine.pipeline.orchestrator import PipelineOrchestrator
from cdc_engine.streams.manager import StreamManager
from cdc_engine.tasks.models import Task
from cdc_engine.tasks.retry import RetryPolicy
from cdc_engine.tasks.scheduler import TaskScheduler

logger = get_logger(__name__)


class EngineContext:
    """
    Explicit state of one CDC engine instance.

    Created at startup, passed to whatever needs the engine, and torn down
    with ``shutdown``. Usable as a context manager.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        pipeline_name: str = "cdc-pipeline",
        metrics_exporter: Optional[MetricsExporter] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        """
        Initialize engine context.

        Args:
            settings: Settings (default: cached settings)
            pipeline_name: Name used in reports and metrics
            metrics_exporter: Metrics exporter (created when metrics are enabled)
            clock: Source of wall-clock timestamps for records and runs
        """
        self.settings = settings or get_settings()
        if metrics_exporter is None and self.settings.observability.metrics_enabled:
            metrics_exporter = MetricsExporter(self.settings.observability.metrics_port)
        self.metrics_exporter = metrics_exporter

        self.change_log = ChangeLog(metrics_exporter=metrics_exporter, clock=clock)
        self.streams = StreamManager(self.change_log, metrics_exporter=metrics_exporter, clock=clock)
        self.scheduler = TaskScheduler(
            self.streams,
            config=self.settings.scheduler,
            retry_policy=RetryPolicy.from_config(self.settings.retry),
            stream_config=self.settings.stream,
            metrics_exporter=metrics_exporter,
            clock=clock,
        )
        self.orchestrator = PipelineOrchestrator(
            self.scheduler, pipeline_name=pipeline_name, metrics_exporter=metrics_exporter
        )
        self.health_checker = HealthChecker()
        self.scheduler.add_run_listener(self.health_checker.record_run)

        self._health_server: Optional[HealthCheckServer] = None
        self._loop_thread: Optional[Thread] = None
        self._stop_event = Event()
        self._closed = False

        logger.info(f"Created engine context for {pipeline_name}")

    @classmethod
    def create(cls, **kwargs) -> "EngineContext":
        """Create a context (alias kept for readability at call sites)."""
        return cls(**kwargs)

    def register_task(self, task: Task) -> Task:
        """Register a task with the scheduler and track its health."""
        registered = self.scheduler.register(task)
        self.health_checker.register_component(task.task_id)
        return registered

    def unregister_task(self, task_id: str) -> Task:
        """Remove a task from the scheduler and the health checker."""
        task = self.scheduler.unregister(task_id)
        self.health_checker.unregister_component(task_id)
        return task

    def start(
        self, serve_metrics: bool = False, serve_health: bool = False, run_loop: bool = True
    ) -> None:
        """
        Start the scheduler loop and optional HTTP endpoints.

        Args:
            serve_metrics: Expose Prometheus metrics over HTTP
            serve_health: Expose health check endpoints over HTTP
            run_loop: Run the scheduler loop on a background thread
        """
        if serve_metrics:
            if self.metrics_exporter is None:
                self._attach_metrics(MetricsExporter(self.settings.observability.metrics_port))
            self.metrics_exporter.start()
            logger.info(f"Serving metrics on port {self.metrics_exporter.port}")

        if serve_health:
            self._health_server = HealthCheckServer(
                self.health_checker, self.settings.observability.health_check_port
            )
            self._health_server.start()
            logger.info(f"Serving health checks on port {self._health_server.port}")

        if run_loop and self._loop_thread is None:
            self._stop_event.clear()
            self._loop_thread = Thread(
                target=self.scheduler.run_forever,
                args=(self._stop_event,),
                name="cdc-scheduler",
                daemon=True,
            )
            self._loop_thread.start()

    def stop(self) -> None:
        """Stop the scheduler loop, leaving the context usable."""
        self._stop_event.set()
        if self._loop_thread is not None:
            self._loop_thread.join()
            self._loop_thread = None

    def shutdown(self) -> None:
        """Stop everything and release worker threads."""
        if self._closed:
            return
        self._closed = True
        self.stop()
        if self._health_server is not None:
            self._health_server.stop()
            self._health_server = None
        self.scheduler.shutdown()
        logger.info(f"Engine context for {self.orchestrator.pipeline_name} shut down")

    def _attach_metrics(self, exporter: MetricsExporter) -> None:
        self.metrics_exporter = exporter
        for component in (self.change_log, self.streams, self.scheduler, self.orchestrator):
            component.metrics_exporter = exporter

    def __enter__(self) -> "EngineContext":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()
