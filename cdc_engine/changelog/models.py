"""Change log data model."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Union

from cdc_engine.changelog.payload import RowSnapshot, payload_schema, payload_to_dict

RowKey = Union[str, int]


class Operation(str, Enum):
    """Row-level mutation type."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class ChangeRecord:
    """A single row-level mutation, immutable once written."""

    sequence_number: int
    table_id: str
    row_key: RowKey
    operation: Operation
    payload: RowSnapshot
    commit_time: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert record to dictionary, with the column types of its payload."""
        return {
            "sequence_number": self.sequence_number,
            "table_id": self.table_id,
            "row_key": self.row_key,
            "operation": self.operation.value,
            "payload": payload_to_dict(self.payload),
            "schema": {column: t.value for column, t in payload_schema(self.payload).items()},
            "commit_time": self.commit_time.isoformat(),
        }
