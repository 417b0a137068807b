"""Change log: per-table append-only record of row-level mutations."""

from cdc_engine.changelog.log import ChangeLog, ChangeRange
from cdc_engine.changelog.models import ChangeRecord, Operation
from cdc_engine.changelog.payload import ColumnType, RowSnapshot
from cdc_engine.changelog.source import SourceTable

__all__ = [
    "ChangeLog",
    "ChangeRange",
    "ChangeRecord",
    "ColumnType",
    "Operation",
    "RowSnapshot",
    "SourceTable",
]
