"""Integration tests for the telecom CDC pipeline."""

import json
from decimal import Decimal

import pytest


@pytest.fixture
def telco(clock):
    """Telecom pipeline in a fresh engine context."""
    from cdc_engine.common.config import Settings
    from cdc_engine.context import EngineContext
    from cdc_engine.demo.telco import TelcoPipeline

    context = EngineContext(settings=Settings(), pipeline_name="telco-test", clock=clock)
    pipeline = TelcoPipeline(context, clock=clock)
    yield pipeline
    context.shutdown()


def _subscriber(subscriber_id, status="active"):
    return {
        "subscriber_id": subscriber_id,
        "phone_number": "15550100",
        "plan_type": "basic",
        "status": status,
        "monthly_fee": Decimal("29.99"),
        "data_limit_gb": 5,
    }


def _cdr(call_id, duration, cost="0.50"):
    return {
        "call_id": call_id,
        "subscriber_id": "SUB000001",
        "call_type": "voice",
        "call_duration_seconds": duration,
        "cost_usd": Decimal(cost),
    }


@pytest.mark.integration
class TestTelcoPipeline:
    """Test the telecom pipeline end to end."""

    def test_tasks_registered_in_dependency_order(self, telco):
        """Test data quality monitoring runs after CDR processing."""
        from cdc_engine.demo.telco import DATA_QUALITY_MONITORING, PROCESS_CDR

        order = telco.context.orchestrator.resolve_order()

        assert set(order) == set(telco.task_ids)
        assert order.index(PROCESS_CDR) < order.index(DATA_QUALITY_MONITORING)

    def test_cdr_processing_and_quality_alerts(self, telco):
        """Test valid CDRs are materialized and invalid ones raise an alert."""
        from cdc_engine.demo.telco import DATA_QUALITY_MONITORING, PROCESS_CDR

        telco.cdr_source.insert_many(
            [_cdr("CDR001", 120, "0.24"), _cdr("CDR002", 0, "0"), _cdr("CDR003", 60, "0.12")]
        )

        result = telco.context.orchestrator.run_pipeline([PROCESS_CDR, DATA_QUALITY_MONITORING])

        assert result.ok
        assert len(telco.cdr_processed) == 2
        assert "CDR002" not in telco.cdr_processed
        assert telco.cdr_processed.get("CDR001")["call_duration_minutes"] == Decimal("2.00")

        alerts = telco.data_quality_alerts.rows()
        assert len(alerts) == 1
        assert alerts[0]["alert_type"] == "invalid_duration"
        assert alerts[0]["record_count"] == 1

    def test_second_run_reports_no_changes(self, telco):
        """Test consumed changes are not delivered again."""
        from cdc_engine.demo.telco import PROCESS_CDR
        from cdc_engine.pipeline import BatchStatus

        telco.cdr_source.insert(_cdr("CDR001", 30))
        orchestrator = telco.context.orchestrator

        orchestrator.run_pipeline([PROCESS_CDR], current_time=0.0)
        result = orchestrator.run_pipeline([PROCESS_CDR], current_time=1.0)

        assert result.status_of(PROCESS_CDR) == BatchStatus.NO_CHANGES

    def test_subscriber_sync_log(self, telco):
        """Test inserts, updates and deletes produce audit entries."""
        from cdc_engine.demo.telco import SUBSCRIBER_SYNC

        orchestrator = telco.context.orchestrator
        telco.subscribers.insert(_subscriber("SUB000001"))
        orchestrator.run_pipeline([SUBSCRIBER_SYNC], current_time=0.0)

        telco.subscribers.update("SUB000001", {"status": "suspended"})
        telco.subscribers.delete("SUB000001")
        orchestrator.run_pipeline([SUBSCRIBER_SYNC], current_time=1.0)

        log = telco.subscriber_sync_log.rows()
        assert [entry["sync_type"] for entry in log] == ["insert", "update", "delete"]
        assert log[0]["old_values"] is None
        assert json.loads(log[1]["old_values"])["status"] == "active"
        assert json.loads(log[1]["new_values"])["status"] == "suspended"
        assert log[1]["row_checksum"] != log[0]["row_checksum"]
        assert log[2]["new_values"] is None
        assert all(entry["sync_status"] == "success" for entry in log)

    def test_network_alerting(self, telco):
        """Test degraded samples become alerts with severities."""
        from cdc_engine.demo.telco import NETWORK_ALERTING

        telco.network_performance.insert_many(
            [
                {"record_id": "NET1", "cell_tower_id": "TOWER001", "signal_strength_dbm": -95,
                 "latency_ms": 20, "bandwidth_mbps": Decimal("200")},
                {"record_id": "NET2", "cell_tower_id": "TOWER002", "signal_strength_dbm": -60,
                 "latency_ms": 30, "bandwidth_mbps": Decimal("300")},
                {"record_id": "NET3", "cell_tower_id": "TOWER003", "signal_strength_dbm": -60,
                 "latency_ms": 120, "bandwidth_mbps": Decimal("300")},
            ]
        )

        telco.context.orchestrator.run_pipeline([NETWORK_ALERTING])

        alerts = telco.network_alerts.rows()
        assert [(a["cell_tower_id"], a["alert_type"], a["severity"]) for a in alerts] == [
            ("TOWER001", "low_signal", "critical"),
            ("TOWER003", "high_latency", "medium"),
        ]

    def test_failed_processing_skips_quality_monitoring(self, telco, monkeypatch):
        """Test a failing upstream task skips its dependents and keeps changes pending."""
        from cdc_engine.demo.telco import DATA_QUALITY_MONITORING, PROCESS_CDR
        from cdc_engine.pipeline import BatchStatus

        telco.cdr_source.insert(_cdr("CDR001", 0))

        def broken(records):
            raise RuntimeError("warehouse unavailable")

        monkeypatch.setattr(telco.cdr_processed, "apply_batch", broken)

        result = telco.context.orchestrator.run_pipeline()

        assert result.status_of(PROCESS_CDR) == BatchStatus.FAILED
        assert result.status_of(DATA_QUALITY_MONITORING) == BatchStatus.SKIPPED
        assert "invalid_duration" not in telco.data_quality_alerts.count_by("alert_type")

        health_rows = telco.data_quality_alerts.rows()
        assert [row["pipeline_status"] for row in health_rows] == ["unhealthy"]

        streams = telco.context.streams
        assert streams.pending_count(telco.cursor_ids[PROCESS_CDR]) == 1
        assert streams.pending_count(telco.cursor_ids[DATA_QUALITY_MONITORING]) == 1

        health = telco.context.orchestrator.monitoring_snapshot()
        assert health["status"] == "unhealthy"

    def test_seed_and_analytics(self, telco):
        """Test seeded data flows through every task."""
        counts = telco.seed(subscribers=5, cdrs=30, network_samples=20, invalid_rate=0.2, seed=3)

        result = telco.context.orchestrator.run_pipeline()
        analytics = telco.analytics()

        assert result.ok
        assert counts == {"subscribers": 5, "cdr_source": 30, "network_performance": 20}
        assert analytics["subscriber_syncs"] == {"insert": 5}
        assert analytics["cdr_processed"] == len(telco.cdr_processed) <= 30
        assert analytics["total_revenue"] >= 0


@pytest.mark.integration
class TestTelcoScheduling:
    """Test per-task schedules and the pipeline health check."""

    def test_default_task_intervals(self, telco):
        """Test each task gets its own default interval."""
        from cdc_engine.demo.telco import (
            CDC_ORCHESTRATION,
            DATA_QUALITY_MONITORING,
            NETWORK_ALERTING,
            PROCESS_CDR,
            SUBSCRIBER_SYNC,
        )

        scheduler = telco.context.scheduler
        intervals = {task_id: scheduler.get_task(task_id).schedule_interval for task_id in telco.task_ids}

        assert intervals == {
            PROCESS_CDR: 120.0,
            DATA_QUALITY_MONITORING: 300.0,
            SUBSCRIBER_SYNC: 180.0,
            NETWORK_ALERTING: 60.0,
            CDC_ORCHESTRATION: 300.0,
        }

    def test_schedule_interval_overrides_defaults(self, clock):
        """Test an explicit interval applies to every task."""
        from cdc_engine.common.config import Settings
        from cdc_engine.context import EngineContext
        from cdc_engine.demo.telco import TelcoPipeline

        with EngineContext(settings=Settings(), pipeline_name="telco-test", clock=clock) as context:
            pipeline = TelcoPipeline(context, schedule_interval=10.0, clock=clock)

            intervals = {
                context.scheduler.get_task(task_id).schedule_interval
                for task_id in pipeline.task_ids
            }

        assert intervals == {10.0}

    def test_health_check_records_pipeline_status(self, telco):
        """Test the health check writes a pipeline_status row with the processed count."""
        from cdc_engine.demo.telco import CDC_ORCHESTRATION, PROCESS_CDR

        telco.cdr_source.insert_many([_cdr("CDR001", 120), _cdr("CDR002", 60)])

        result = telco.context.orchestrator.run_pipeline([PROCESS_CDR, CDC_ORCHESTRATION])

        assert result.ok
        rows = telco.data_quality_alerts.rows()
        assert len(rows) == 1
        assert rows[0]["table_name"] == "pipeline_health"
        assert rows[0]["alert_type"] == "pipeline_status"
        assert rows[0]["alert_message"] == "CDC Pipeline Health Check"
        assert rows[0]["record_count"] == 2
        assert rows[0]["pipeline_status"] == "healthy"

    def test_health_check_runs_on_schedule_without_changes(self, telco):
        """Test the health check runs every five minutes even when no data arrives."""
        from cdc_engine.demo.telco import CDC_ORCHESTRATION, NETWORK_ALERTING

        scheduler = telco.context.scheduler

        first = scheduler.tick(0)
        assert [run.task_id for run in first] == [CDC_ORCHESTRATION]

        assert scheduler.tick(120) == []

        telco.network_performance.insert(
            {"record_id": "NET1", "cell_tower_id": "TOWER001", "signal_strength_dbm": -95,
             "latency_ms": 20, "bandwidth_mbps": Decimal("200")}
        )
        assert [run.task_id for run in scheduler.tick(180)] == [NETWORK_ALERTING]

        assert [run.task_id for run in scheduler.tick(300)] == [CDC_ORCHESTRATION]
        assert telco.data_quality_alerts.count_by("alert_type") == {"pipeline_status": 2}
