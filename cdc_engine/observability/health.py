"""Task health tracking and HTTP health endpoints."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from http.server import BaseHTTPRequestHandler, HTTPServer
import json
from threading import Lock, Thread
from typing import Any, Dict, Optional, Type

from cdc_engine.common.config import get_settings
from cdc_engine.observability.logging_config import get_logger

logger = get_logger(__name__)


class HealthStatus(str, Enum):
    """Health status enum."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    DEGRADED = "degraded"


# Run outcome -> component status
_OUTCOME_STATUS = {
    "succeeded": HealthStatus.HEALTHY,
    "cancelled": HealthStatus.DEGRADED,
    "failed": HealthStatus.UNHEALTHY,
}


@dataclass
class ComponentHealth:
    """Health of one tracked component (usually a task)."""

    name: str
    status: HealthStatus
    message: str
    checked_at: datetime
    consecutive_failures: int = 0
    last_run_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "message": self.message,
            "checked_at": self.checked_at.isoformat(),
            "consecutive_failures": self.consecutive_failures,
            "last_run_id": self.last_run_id,
        }


class HealthChecker:
    """
    Aggregates component health for the engine.

    Tasks are registered as components when they are registered with the
    scheduler. ``record_run`` is installed as a scheduler run listener, so
    every finished run refreshes the health of its task.
    """

    def __init__(self) -> None:
        self._components: Dict[str, ComponentHealth] = {}
        self._lock = Lock()

    def register_component(self, name: str) -> None:
        """Start tracking a component; it is healthy until a run says otherwise."""
        with self._lock:
            self._components[name] = ComponentHealth(
                name=name,
                status=HealthStatus.HEALTHY,
                message="Registered, no runs yet",
                checked_at=datetime.now(),
            )

    def unregister_component(self, name: str) -> None:
        with self._lock:
            self._components.pop(name, None)

    def update_component_health(
        self, name: str, status: HealthStatus, message: str = ""
    ) -> None:
        """
        Set the health of a component explicitly.

        Args:
            name: Component name
            status: Health status
            message: Status message
        """
        with self._lock:
            previous = self._components.get(name)
            self._components[name] = ComponentHealth(
                name=name,
                status=status,
                message=message,
                checked_at=datetime.now(),
                consecutive_failures=previous.consecutive_failures if previous else 0,
                last_run_id=previous.last_run_id if previous else None,
            )

    def record_run(self, run: Any) -> None:
        """
        Refresh a task's component from a finished pipeline run.

        Args:
            run: PipelineRun record
        """
        outcome = run.outcome.value
        status = _OUTCOME_STATUS.get(outcome, HealthStatus.DEGRADED)
        if outcome == "failed":
            message = f"Last run failed: {run.error}"
        elif outcome == "cancelled":
            message = f"Last run cancelled after {run.records_processed} records"
        else:
            message = f"Last run processed {run.records_processed} records"

        with self._lock:
            previous = self._components.get(run.task_id)
            failures = previous.consecutive_failures if previous else 0
            self._components[run.task_id] = ComponentHealth(
                name=run.task_id,
                status=status,
                message=message,
                checked_at=run.ended_at,
                consecutive_failures=failures + 1 if outcome == "failed" else 0,
                last_run_id=run.run_id,
            )

        if status != HealthStatus.HEALTHY:
            logger.debug(f"Task {run.task_id} health is {status.value}: {message}")

    def get_component_health(self, name: str) -> Optional[ComponentHealth]:
        with self._lock:
            return self._components.get(name)

    def get_overall_health(self) -> HealthStatus:
        """
        Aggregate the component statuses.

        Returns:
            UNHEALTHY if any component is unhealthy, DEGRADED if any is
            degraded, HEALTHY otherwise (including no components at all)
        """
        with self._lock:
            statuses = {comp.status for comp in self._components.values()}

        if HealthStatus.UNHEALTHY in statuses:
            return HealthStatus.UNHEALTHY
        if HealthStatus.DEGRADED in statuses:
            return HealthStatus.DEGRADED
        return HealthStatus.HEALTHY

    def get_health_report(self) -> Dict[str, Any]:
        """Overall status plus every component, in registration order."""
        overall = self.get_overall_health()
        with self._lock:
            components = [comp.to_dict() for comp in self._components.values()]
        return {
            "status": overall.value,
            "timestamp": datetime.now().isoformat(),
            "components": components,
        }


def _make_handler(health_checker: HealthChecker) -> Type[BaseHTTPRequestHandler]:
    """Build a request handler class bound to one health checker."""

    class HealthCheckHandler(BaseHTTPRequestHandler):
        def do_GET(self) -> None:
            path = self.path.rstrip("/")
            if path == "/health":
                report = health_checker.get_health_report()
                self._send_json(200 if report["status"] == "healthy" else 503, report)
            elif path == "/health/ready":
                ready = health_checker.get_overall_health() != HealthStatus.UNHEALTHY
                self._send_json(200 if ready else 503, {"ready": ready})
            elif path == "/health/live":
                self._send_json(200, {"alive": True})
            elif path.startswith("/health/tasks/"):
                component = health_checker.get_component_health(path[len("/health/tasks/"):])
                if component is None:
                    self._send_json(404, {"error": "unknown task"})
                else:
                    code = 503 if component.status == HealthStatus.UNHEALTHY else 200
                    self._send_json(code, component.to_dict())
            else:
                self._send_json(404, {"error": "not found"})

        def _send_json(self, status_code: int, body: Dict[str, Any]) -> None:
            payload = json.dumps(body).encode()
            self.send_response(status_code)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(payload)))
            self.end_headers()
            self.wfile.write(payload)

        def log_message(self, format: str, *args) -> None:  # type: ignore
            logger.debug("health %s", format % args)

    return HealthCheckHandler


class HealthCheckServer:
    """Serves ``/health``, ``/health/ready``, ``/health/live`` and ``/health/tasks/<id>``."""

    def __init__(self, health_checker: HealthChecker, port: Optional[int] = None) -> None:
        """
        Initialize health check server.

        Args:
            health_checker: Health checker to report from
            port: Port to listen on (default from config; 0 picks a free port)
        """
        if port is None:
            port = get_settings().observability.health_check_port
        self.health_checker = health_checker
        self.server = HTTPServer(("0.0.0.0", port), _make_handler(health_checker))
        self.port = self.server.server_address[1]
        self._thread: Optional[Thread] = None

    def start(self) -> None:
        """Serve requests on a background thread."""
        self._thread = Thread(target=self.server.serve_forever, name="cdc-health", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self.server.shutdown()
        self.server.server_close()
        if self._thread:
            self._thread.join()
            self._thread = None
