"""Common utility functions."""

import hashlib
import json
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4


def generate_run_id() -> str:
    """Generate a unique pipeline run ID."""
    return str(uuid4())


def generate_cursor_id(consumer_id: str, table_id: str) -> str:
    """Build the default cursor ID for a consumer on a table."""
    return f"{consumer_id}.{table_id}"


def calculate_checksum(data: Dict[str, Any]) -> str:
    """Calculate MD5 checksum of data dictionary."""
    # Sort keys for consistent hashing
    sorted_data = json.dumps(data, sort_keys=True, default=str)
    return hashlib.md5(sorted_data.encode()).hexdigest()


def calculate_row_checksum(row: Dict[str, Any], exclude_fields: Optional[List[str]] = None) -> str:
    """
    Calculate checksum for a row, excluding specified fields.

    Args:
        row: Row data as dictionary
        exclude_fields: Fields to exclude from checksum (e.g., timestamps)

    Returns:
        MD5 checksum hex string
    """
    exclude = exclude_fields or ["created_at", "updated_at", "processed_at"]
    filtered_row = {k: v for k, v in row.items() if k not in exclude}
    return calculate_checksum(filtered_row)


def timestamp_to_iso(ts: Optional[datetime]) -> Optional[str]:
    """Convert timestamp to ISO format string."""
    if ts is None:
        return None
    return ts.isoformat()


def format_duration(seconds: float) -> str:
    """Format a duration in seconds as a short human-readable string."""
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    if seconds < 60:
        return f"{seconds:.2f}s"
    minutes, secs = divmod(seconds, 60)
    if minutes < 60:
        return f"{int(minutes)}m{int(secs)}s"
    hours, minutes = divmod(minutes, 60)
    return f"{int(hours)}h{int(minutes)}m"
