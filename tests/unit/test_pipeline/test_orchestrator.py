"""Unit tests for the pipeline orchestrator."""

import pytest


@pytest.fixture
def orchestrator(scheduler):
    from cdc_engine.pipeline.orchestrator import PipelineOrchestrator

    return PipelineOrchestrator(scheduler, pipeline_name="test-pipeline")


@pytest.fixture
def register(scheduler, streams, orders_table):
    """Register a task with its own cursor on ``orders``."""
    from cdc_engine.tasks.models import Task

    def _register(task_id, action=None, depends_on=()):
        cursor = streams.create_cursor(task_id, orders_table)
        return scheduler.register(
            Task(task_id, action or (lambda batch: None), cursor.cursor_id, depends_on=depends_on)
        )

    return _register


def _fail(batch):
    raise ValueError("bad record")


@pytest.mark.unit
class TestRunBatch:
    """Test dependency-aware batches."""

    def test_dependent_skipped_when_upstream_fails(self, orchestrator, register, append_orders):
        """Test B is skipped (not failed or run) when A fails."""
        from cdc_engine.pipeline import BatchStatus

        register("A", _fail)
        register("B", depends_on={"A"})
        append_orders(1)

        result = orchestrator.run_batch(["A", "B"])

        assert result.status_of("A") == BatchStatus.FAILED
        assert result.status_of("B") == BatchStatus.SKIPPED
        assert "A" in result.entries[1].reason
        assert not result.ok
        assert orchestrator.scheduler.runs("B") == []

    def test_skip_propagates_transitively(self, orchestrator, register, append_orders):
        """Test skipped tasks block their own dependents."""
        from cdc_engine.pipeline import BatchStatus

        register("A", _fail)
        register("B", depends_on={"A"})
        register("C", depends_on={"B"})
        register("D")
        append_orders(1)

        result = orchestrator.run_batch(["A", "B", "C", "D"])

        assert [e.status for e in result.entries] == [
            BatchStatus.FAILED,
            BatchStatus.SKIPPED,
            BatchStatus.SKIPPED,
            BatchStatus.SUCCEEDED,
        ]
        assert result.skipped_count == 2
        assert result.failed_count == 1
        assert result.succeeded_count == 1

    def test_no_changes_does_not_block_dependents(self, orchestrator, register, append_orders, streams):
        """Test an upstream with nothing pending lets dependents run."""
        from cdc_engine.pipeline import BatchStatus

        register("A")
        register("B", depends_on={"A"})
        append_orders(1)
        streams.fast_forward("A.orders")

        result = orchestrator.run_batch(["A", "B"])

        assert result.status_of("A") == BatchStatus.NO_CHANGES
        assert result.status_of("B") == BatchStatus.SUCCEEDED
        assert result.ok

    def test_unknown_task_rejected_before_running(self, orchestrator, register, append_orders):
        """Test nothing runs when the batch names an unknown task."""
        from cdc_engine.common.errors import UnknownTaskError

        register("A")
        append_orders(1)

        with pytest.raises(UnknownTaskError):
            orchestrator.run_batch(["A", "missing"])
        assert orchestrator.scheduler.runs() == []

    def test_result_to_dict(self, orchestrator, register, append_orders):
        """Test batch results serialize with a summary."""
        register("A")
        append_orders(1)

        data = orchestrator.run_batch(["A"]).to_dict()

        assert data["pipeline"] == "test-pipeline"
        assert data["ok"] is True
        assert data["tasks"][0]["status"] == "succeeded"
        assert data["summary"]["succeeded"] == 1


@pytest.mark.unit
class TestResolveOrder:
    """Test dependency ordering."""

    def test_dependencies_first_ties_by_registration(self, orchestrator, register):
        """Test topological order keeps registration order among ready tasks."""
        register("report", depends_on={"load"})
        register("extract")
        register("load", depends_on={"extract"})
        register("audit")

        assert orchestrator.resolve_order() == ["extract", "load", "report", "audit"]

    def test_dependencies_outside_selection_ignored(self, orchestrator, register):
        """Test only selected tasks are ordered."""
        register("A")
        register("B", depends_on={"A"})

        assert orchestrator.resolve_order(["B"]) == ["B"]

    def test_cycle_detected(self, orchestrator, register):
        """Test cyclic dependencies raise DependencyCycleError."""
        from cdc_engine.common.errors import DependencyCycleError

        register("A", depends_on={"B"})
        register("B", depends_on={"A"})

        with pytest.raises(DependencyCycleError):
            orchestrator.resolve_order()

    def test_run_pipeline_uses_dependency_order(self, orchestrator, register, append_orders):
        """Test run_pipeline runs every task after its dependencies."""
        calls = []
        register("B", lambda batch: calls.append("B"), depends_on={"A"})
        register("A", lambda batch: calls.append("A"))
        append_orders(1)

        result = orchestrator.run_pipeline()

        assert calls == ["A", "B"]
        assert [e.task_id for e in result.entries] == ["A", "B"]


@pytest.mark.unit
class TestBatchScheduling:
    """Test scheduler time handling and storage errors in batches."""

    def test_manual_batch_keeps_schedule(self, orchestrator, register, append_orders):
        """Test a batch run without a scheduler time leaves later ticks on schedule."""
        task = register("A")
        append_orders(1)

        orchestrator.run_batch(["A"])
        assert task.next_due is None

        append_orders(1, start_id=2)
        scheduler = orchestrator.scheduler

        assert len(scheduler.tick(60)) == 1
        assert task.next_due == 120
        assert len(scheduler.runs("A")) == 2

    def test_batch_time_sets_next_due(self, orchestrator, register, append_orders):
        task = register("A")
        append_orders(1)

        orchestrator.run_batch(["A"], current_time=30.0)

        assert task.next_due == 90.0

    def test_storage_error_raised_after_batch(
        self, orchestrator, register, streams, change_log, append_orders
    ):
        """Test a dropped source table surfaces after the rest of the batch ran."""
        from cdc_engine.common.errors import StorageError
        from cdc_engine.tasks.models import RunOutcome, Task

        scheduler = orchestrator.scheduler
        change_log.create_table("payments", primary_key="payment_id")
        payments = streams.create_cursor("B", "payments")
        register("A")
        scheduler.register(Task("B", lambda batch: None, payments.cursor_id))
        register("C", depends_on={"A"})
        append_orders(1)
        change_log.append("payments", "insert", {"payment_id": 1})
        change_log.drop_table("orders")

        with pytest.raises(StorageError):
            orchestrator.run_batch(["A", "B", "C"])

        assert scheduler.last_run("A").outcome == RunOutcome.FAILED
        assert scheduler.last_run("B").outcome == RunOutcome.SUCCEEDED
        assert scheduler.runs("C") == []


@pytest.mark.unit
class TestHealth:
    """Test health reporting."""

    def test_health_report_maps_last_outcome(self, orchestrator, register, append_orders):
        """Test the report lists the last outcome per task, None if never run."""
        from cdc_engine.tasks.models import RunOutcome

        register("A")
        register("B", _fail)
        register("C")
        append_orders(1)
        orchestrator.run_batch(["A", "B"])

        assert orchestrator.health_report() == {
            "A": RunOutcome.SUCCEEDED,
            "B": RunOutcome.FAILED,
            "C": None,
        }

    def test_overall_health(self, orchestrator, register, append_orders):
        """Test any failed task makes the pipeline unhealthy."""
        from cdc_engine.observability.health import HealthStatus

        register("A")
        assert orchestrator.overall_health() == HealthStatus.HEALTHY

        register("B", _fail)
        append_orders(1)
        orchestrator.run_batch(["A", "B"])

        assert orchestrator.overall_health() == HealthStatus.UNHEALTHY

    def test_monitoring_snapshot(self, orchestrator, register, append_orders):
        """Test the snapshot lists pending records per stream and totals per task."""
        register("A")
        register("B")
        append_orders(3)
        orchestrator.run_batch(["A"])

        snapshot = orchestrator.monitoring_snapshot()

        pending = {s["cursor_id"]: s["pending_records"] for s in snapshot["streams"]}
        tasks = {t["task_id"]: t for t in snapshot["tasks"]}
        assert pending == {"A.orders": 0, "B.orders": 3}
        assert tasks["A"]["records_processed"] == 3
        assert tasks["A"]["last_outcome"] == "succeeded"
        assert tasks["B"]["runs"] == 0
        assert snapshot["status"] == "healthy"

    def test_snapshot_marks_invalidated_streams(self, orchestrator, register, change_log):
        """Test cursors of dropped tables are reported as invalidated."""
        register("A")
        change_log.drop_table("orders")

        stream = orchestrator.monitoring_snapshot()["streams"][0]

        assert stream["status"] == "invalidated"
        assert stream["pending_records"] is None
