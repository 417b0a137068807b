"""Downstream write targets for task actions."""

from cdc_engine.sinks.alerts import AlertTable
from cdc_engine.sinks.materialized import MaterializedTable

__all__ = ["AlertTable", "MaterializedTable"]
