"""Data validation module for CDC pipelines."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, Optional


class ValidationStatus(str, Enum):
    """Validation status enum."""

    PASSED = "passed"
    FAILED = "failed"
    WARNING = "warning"
    SKIPPED = "skipped"


@dataclass
class ValidationResult:
    """Result of a single validation check."""

    validator: str
    status: ValidationStatus
    message: str
    details: Optional[Dict[str, Any]] = None
    checked_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        """Set default checked_at if not provided."""
        if self.checked_at is None:
            self.checked_at = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        """Convert result to dictionary."""
        return {
            "validator": self.validator,
            "status": self.status.value,
            "message": self.message,
            "details": self.details,
            "checked_at": self.checked_at.isoformat() if self.checked_at else None,
        }

    @property
    def ok(self) -> bool:
        return self.status in (ValidationStatus.PASSED, ValidationStatus.SKIPPED)


def summarize(results: Iterable[ValidationResult]) -> Dict[str, int]:
    """Count results per status (every status present, zero if unused)."""
    counts = {status.value: 0 for status in ValidationStatus}
    for result in results:
        counts[result.status.value] += 1
    return counts


__all__ = ["ValidationStatus", "ValidationResult", "summarize"]
