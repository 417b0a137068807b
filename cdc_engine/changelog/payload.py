"""Typed row payloads for change records.

Each column value is tagged with a ``ColumnType``. Values of any other
Python type are rejected when a record is appended, so downstream actions
can rely on the column types they see.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Union

from cdc_engine.common.errors import PayloadError

ScalarValue = Union[None, bool, int, float, Decimal, str, datetime, date]

RowSnapshot = Mapping[str, ScalarValue]


class ColumnType(str, Enum):
    """Column value types supported in row payloads."""

    NULL = "null"
    BOOLEAN = "boolean"
    INTEGER = "integer"
    DECIMAL = "decimal"
    FLOAT = "float"
    STRING = "string"
    TIMESTAMP = "timestamp"
    DATE = "date"


def column_type_of(value: Any) -> ColumnType:
    """
    Resolve the column type tag of a scalar value.

    Args:
        value: Column value

    Returns:
        Column type tag

    Raises:
        PayloadError: If the value has no supported column type
    """
    # bool before int, datetime before date: subclass order matters
    if value is None:
        return ColumnType.NULL
    if isinstance(value, bool):
        return ColumnType.BOOLEAN
    if isinstance(value, int):
        return ColumnType.INTEGER
    if isinstance(value, Decimal):
        return ColumnType.DECIMAL
    if isinstance(value, float):
        return ColumnType.FLOAT
    if isinstance(value, str):
        return ColumnType.STRING
    if isinstance(value, datetime):
        return ColumnType.TIMESTAMP
    if isinstance(value, date):
        return ColumnType.DATE
    raise PayloadError(f"Unsupported column value type: {type(value).__name__}")


def freeze_payload(payload: Mapping[str, Any]) -> RowSnapshot:
    """
    Validate a row payload and return a read-only copy.

    Args:
        payload: Column name to value mapping

    Returns:
        Immutable row snapshot

    Raises:
        PayloadError: If a column name is not a string or a value is unsupported
    """
    if payload is None:
        raise PayloadError("Payload must be a mapping, got None")

    frozen: Dict[str, ScalarValue] = {}
    for column, value in payload.items():
        if not isinstance(column, str):
            raise PayloadError(f"Column names must be strings, got {column!r}")
        try:
            column_type_of(value)
        except PayloadError as e:
            raise PayloadError(f"Column '{column}': {e}") from e
        frozen[column] = value
    return MappingProxyType(frozen)


def payload_schema(payload: RowSnapshot) -> Dict[str, ColumnType]:
    """Return the column type tag of every column in a payload."""
    return {column: column_type_of(value) for column, value in payload.items()}


def payload_to_dict(payload: RowSnapshot) -> Dict[str, Any]:
    """Convert a payload to a JSON-friendly dictionary."""
    result: Dict[str, Any] = {}
    for column, value in payload.items():
        if isinstance(value, (datetime, date)):
            result[column] = value.isoformat()
        elif isinstance(value, Decimal):
            result[column] = str(value)
        else:
            result[column] = value
    return result
