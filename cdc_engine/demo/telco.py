"""Telecom CDC demo pipeline.

Three source tables (call detail records, subscribers and cell tower
performance samples) feed four change-driven tasks and a health check:

- ``process_cdr`` keeps ``cdr_processed`` in sync with per-minute figures
- ``data_quality_monitoring`` flags CDRs with invalid durations
- ``subscriber_sync`` writes an audit trail of subscriber changes
- ``network_alerting`` classifies degraded tower samples into alerts
- ``cdc_orchestration`` records a pipeline health row every five minutes
"""

import json
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from cdc_engine.changelog.models import ChangeRecord, Operation
from cdc_engine.changelog.payload import payload_to_dict
from cdc_engine.changelog.source import SourceTable
from cdc_engine.common.utils import calculate_row_checksum
from cdc_engine.context import EngineContext
from cdc_engine.data_generators.generators import (
    CallDetailRecordGenerator,
    NetworkPerformanceGenerator,
    SubscriberGenerator,
)
from cdc_engine.observability.logging_config import get_logger
from cdc_engine.sinks.alerts import AlertTable
from cdc_engine.sinks.materialized import MaterializedTable
from cdc_engine.tasks.models import ChangeBatch, Task

logger = get_logger(__name__)

CDR_SOURCE = "cdr_source"
SUBSCRIBERS = "subscribers"
NETWORK_PERFORMANCE = "network_performance"

PROCESS_CDR = "process_cdr"
DATA_QUALITY_MONITORING = "data_quality_monitoring"
SUBSCRIBER_SYNC = "subscriber_sync"
NETWORK_ALERTING = "network_alerting"
CDC_ORCHESTRATION = "cdc_orchestration"

# Default schedule per task, in seconds
TASK_INTERVALS = {
    PROCESS_CDR: 120.0,
    DATA_QUALITY_MONITORING: 300.0,
    SUBSCRIBER_SYNC: 180.0,
    NETWORK_ALERTING: 60.0,
    CDC_ORCHESTRATION: 300.0,
}

# (signal dBm below, latency ms above, bandwidth Mbps below) per severity
SEVERITY_THRESHOLDS = [
    ("critical", -90, 200, 25),
    ("high", -85, 150, 40),
    ("medium", -80, 100, 50),
]


def process_cdr_row(record: ChangeRecord) -> Optional[Dict[str, Any]]:
    """
    Derive a ``cdr_processed`` row from a CDR change.

    Returns:
        Processed row, or None for calls without a positive duration
    """
    row = dict(record.payload)
    duration = row.get("call_duration_seconds") or 0
    if duration <= 0:
        return None

    minutes = Decimal(duration) / Decimal(60)
    cost = Decimal(str(row.get("cost_usd") or 0))
    row["call_duration_minutes"] = minutes.quantize(Decimal("0.01"))
    row["cost_per_minute"] = (cost / minutes).quantize(Decimal("0.0001"))
    row["processing_status"] = "processed"
    return row


def classify_network_sample(row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Classify a tower performance sample.

    Signal strength is checked first, then latency, then bandwidth.

    Returns:
        Alert fields, or None if the sample is within normal ranges
    """
    signal = row.get("signal_strength_dbm")
    latency = row.get("latency_ms")
    bandwidth = row.get("bandwidth_mbps")

    if signal is not None and signal < -80:
        alert_type, message, threshold, actual = "low_signal", "Low signal strength detected", -80, signal
    elif latency is not None and latency > 100:
        alert_type, message, threshold, actual = "high_latency", "High latency detected", 100, latency
    elif bandwidth is not None and bandwidth < 50:
        alert_type, message, threshold, actual = "bandwidth_issue", "Low bandwidth detected", 50, bandwidth
    else:
        return None

    severity = "low"
    for level, signal_limit, latency_limit, bandwidth_limit in SEVERITY_THRESHOLDS:
        if (
            (signal is not None and signal < signal_limit)
            or (latency is not None and latency > latency_limit)
            or (bandwidth is not None and bandwidth < bandwidth_limit)
        ):
            severity = level
            break

    return {
        "cell_tower_id": row.get("cell_tower_id"),
        "alert_type": alert_type,
        "severity": severity,
        "alert_message": message,
        "threshold_value": Decimal(threshold),
        "actual_value": Decimal(str(actual)),
    }


class TelcoPipeline:
    """Wires the telecom source tables, sinks and tasks into an engine context."""

    def __init__(
        self,
        context: EngineContext,
        schedule_interval: Optional[float] = None,
        clock=datetime.now,
    ) -> None:
        """
        Initialize the telecom pipeline.

        Args:
            context: Engine context to register tables, cursors and tasks in
            schedule_interval: Interval for every task, overriding the per-task
                defaults in ``TASK_INTERVALS``
            clock: Source of timestamps written to the sinks
        """
        self.context = context
        change_log = context.change_log

        self.cdr_source = SourceTable(change_log, CDR_SOURCE, "call_id")
        self.subscribers = SourceTable(change_log, SUBSCRIBERS, "subscriber_id")
        self.network_performance = SourceTable(change_log, NETWORK_PERFORMANCE, "record_id")

        self.cdr_processed = MaterializedTable("cdr_processed", transform=process_cdr_row, clock=clock)
        self.data_quality_alerts = AlertTable("data_quality_alerts", clock=clock)
        self.subscriber_sync_log = AlertTable("subscriber_sync_log", id_field="sync_id", clock=clock)
        self.network_alerts = AlertTable("network_alerts", clock=clock)
        self._synced_subscribers: Dict[Any, Dict[str, Any]] = {}

        streams = context.streams
        self.cursor_ids = {
            PROCESS_CDR: streams.create_cursor(PROCESS_CDR, CDR_SOURCE).cursor_id,
            DATA_QUALITY_MONITORING: streams.create_cursor(
                DATA_QUALITY_MONITORING, CDR_SOURCE
            ).cursor_id,
            SUBSCRIBER_SYNC: streams.create_cursor(SUBSCRIBER_SYNC, SUBSCRIBERS).cursor_id,
            NETWORK_ALERTING: streams.create_cursor(NETWORK_ALERTING, NETWORK_PERFORMANCE).cursor_id,
        }

        tasks = [
            Task(
                PROCESS_CDR,
                self._process_cdr,
                self.cursor_ids[PROCESS_CDR],
                schedule_interval=schedule_interval or TASK_INTERVALS[PROCESS_CDR],
                description="Keep cdr_processed in sync with cdr_source",
            ),
            Task(
                DATA_QUALITY_MONITORING,
                self._monitor_data_quality,
                self.cursor_ids[DATA_QUALITY_MONITORING],
                schedule_interval=schedule_interval or TASK_INTERVALS[DATA_QUALITY_MONITORING],
                depends_on={PROCESS_CDR},
                description="Flag CDRs with zero or negative duration",
            ),
            Task(
                SUBSCRIBER_SYNC,
                self._sync_subscribers,
                self.cursor_ids[SUBSCRIBER_SYNC],
                schedule_interval=schedule_interval or TASK_INTERVALS[SUBSCRIBER_SYNC],
                description="Audit subscriber changes",
            ),
            Task(
                NETWORK_ALERTING,
                self._alert_on_network,
                self.cursor_ids[NETWORK_ALERTING],
                schedule_interval=schedule_interval or TASK_INTERVALS[NETWORK_ALERTING],
                description="Alert on degraded cell tower performance",
            ),
            Task(
                CDC_ORCHESTRATION,
                self._check_pipeline_health,
                (),
                schedule_interval=schedule_interval or TASK_INTERVALS[CDC_ORCHESTRATION],
                description="Record pipeline health in data_quality_alerts",
                skip_when_empty=False,
            ),
        ]
        for task in tasks:
            context.register_task(task)

        logger.info(f"Telco pipeline registered {len(tasks)} tasks")

    @property
    def task_ids(self) -> List[str]:
        return [
            PROCESS_CDR,
            DATA_QUALITY_MONITORING,
            SUBSCRIBER_SYNC,
            NETWORK_ALERTING,
            CDC_ORCHESTRATION,
        ]

    def seed(
        self,
        subscribers: int = 20,
        cdrs: int = 100,
        network_samples: int = 50,
        invalid_rate: float = 0.05,
        seed: Optional[int] = None,
    ) -> Dict[str, int]:
        """
        Write generated rows into the source tables.

        Returns:
            Number of rows written per source table
        """
        subscriber_rows = SubscriberGenerator(seed=seed).generate(subscribers)
        self.subscribers.insert_many(subscriber_rows)

        cdr_generator = CallDetailRecordGenerator(
            self.subscribers.rows(), invalid_rate=invalid_rate, seed=seed
        )
        self.cdr_source.insert_many(cdr_generator.generate(cdrs))

        network_generator = NetworkPerformanceGenerator(seed=seed)
        self.network_performance.insert_many(network_generator.generate(network_samples))

        return {
            SUBSCRIBERS: subscribers,
            CDR_SOURCE: cdrs,
            NETWORK_PERFORMANCE: network_samples,
        }

    def analytics(self) -> Dict[str, Any]:
        """Processing totals and alert breakdowns across the sinks."""
        processed = self.cdr_processed.rows()
        durations = [row["call_duration_minutes"] for row in processed]
        return {
            "cdr_processed": len(processed),
            "avg_call_duration_minutes": (
                (sum(durations) / len(durations)).quantize(Decimal("0.01")) if durations else None
            ),
            "total_revenue": sum((Decimal(str(row["cost_usd"])) for row in processed), Decimal(0)),
            "data_quality_alerts": self.data_quality_alerts.count_by("alert_type"),
            "network_alerts": self.network_alerts.count_by("severity"),
            "subscriber_syncs": self.subscriber_sync_log.count_by("sync_type"),
        }

    # Task actions

    def _process_cdr(self, batch: ChangeBatch) -> None:
        for records in batch.iter_batches():
            self.cdr_processed.apply_batch(records)

    def _monitor_data_quality(self, batch: ChangeBatch) -> None:
        for records in batch.iter_batches():
            invalid = [
                r for r in records
                if r.operation != Operation.DELETE
                and (r.payload.get("call_duration_seconds") or 0) <= 0
            ]
            if not invalid:
                continue
            first, last = invalid[0].sequence_number, invalid[-1].sequence_number
            self.data_quality_alerts.append(
                {
                    "table_name": CDR_SOURCE,
                    "alert_type": "invalid_duration",
                    "alert_message": "CDR records with zero or negative duration detected",
                    "record_count": len(invalid),
                },
                dedup_key=f"invalid_duration:{first}-{last}",
            )
            logger.warning(f"Detected {len(invalid)} CDRs with invalid duration")

    def _sync_subscribers(self, batch: ChangeBatch) -> None:
        for records in batch.iter_batches():
            for record in records:
                previous = self._synced_subscribers.get(record.row_key)
                current = payload_to_dict(record.payload)
                self.subscriber_sync_log.append(
                    {
                        "subscriber_id": record.row_key,
                        "sync_type": record.operation.value,
                        "old_values": json.dumps(previous, sort_keys=True) if previous else None,
                        "new_values": (
                            None if record.operation == Operation.DELETE
                            else json.dumps(current, sort_keys=True)
                        ),
                        "row_checksum": (
                            None if record.operation == Operation.DELETE
                            else calculate_row_checksum(current)
                        ),
                        "sync_status": "success",
                    },
                    dedup_key=f"{record.table_id}:{record.sequence_number}",
                )
                if record.operation == Operation.DELETE:
                    self._synced_subscribers.pop(record.row_key, None)
                else:
                    self._synced_subscribers[record.row_key] = current

    def _alert_on_network(self, batch: ChangeBatch) -> None:
        for records in batch.iter_batches():
            for record in records:
                if record.operation != Operation.INSERT:
                    continue
                alert = classify_network_sample(dict(record.payload))
                if alert is None:
                    continue
                self.network_alerts.append(alert, dedup_key=str(record.sequence_number))

    def _check_pipeline_health(self, batch: ChangeBatch) -> None:
        health = self.context.orchestrator.overall_health()
        self.data_quality_alerts.append(
            {
                "table_name": "pipeline_health",
                "alert_type": "pipeline_status",
                "alert_message": "CDC Pipeline Health Check",
                "record_count": len(self.cdr_processed),
                "pipeline_status": health.value,
            }
        )
        logger.info(f"Pipeline health check: {health.value}, {len(self.cdr_processed)} CDRs processed")


def build_telco_pipeline(
    context: Optional[EngineContext] = None, schedule_interval: Optional[float] = None
) -> TelcoPipeline:
    """Create a telecom pipeline in the given (or a new) engine context."""
    context = context or EngineContext.create(pipeline_name="telco-cdc")
    return TelcoPipeline(context, schedule_interval=schedule_interval)
