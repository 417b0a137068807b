"""Exception taxonomy for the CDC engine."""

from typing import Optional


class CDCEngineError(Exception):
    """Base class for all engine errors."""


class StorageError(CDCEngineError):
    """Underlying table read/write failure. Always surfaced to the caller."""


class CursorInvalidatedError(StorageError):
    """Cursor references a table that has been dropped."""

    def __init__(self, cursor_id: str, table_id: str) -> None:
        super().__init__(
            f"Cursor '{cursor_id}' is invalid: source table '{table_id}' was dropped"
        )
        self.cursor_id = cursor_id
        self.table_id = table_id


class PayloadError(CDCEngineError, ValueError):
    """Row payload contains a column value of an unsupported type."""


class ConcurrentConsumeError(CDCEngineError):
    """The same cursor was consumed by two callers at once."""

    def __init__(self, cursor_id: str) -> None:
        super().__init__(f"Cursor '{cursor_id}' is already being consumed")
        self.cursor_id = cursor_id


class DuplicateTaskError(CDCEngineError):
    """A task with the same id is already registered."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task '{task_id}' is already registered")
        self.task_id = task_id


class UnknownTaskError(CDCEngineError, KeyError):
    """No task registered under the given id."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Unknown task: '{task_id}'")
        self.task_id = task_id

    def __str__(self) -> str:
        return self.args[0]


class UnknownCursorError(CDCEngineError, KeyError):
    """No cursor registered under the given id."""

    def __init__(self, cursor_id: str) -> None:
        super().__init__(f"Unknown cursor: '{cursor_id}'")
        self.cursor_id = cursor_id

    def __str__(self) -> str:
        return self.args[0]


class DependencyCycleError(CDCEngineError):
    """Task dependencies form a cycle."""


class ActionError(CDCEngineError):
    """A task action raised during execution.

    The original exception is chained as ``__cause__``.
    """

    def __init__(self, task_id: str, message: str, original: Optional[BaseException] = None) -> None:
        super().__init__(f"Action for task '{task_id}' failed: {message}")
        self.task_id = task_id
        self.original = original


class ActionTimeoutError(ActionError, TimeoutError):
    """A task action exceeded its deadline."""

    def __init__(self, task_id: str, timeout_seconds: float) -> None:
        super().__init__(task_id, f"exceeded deadline of {timeout_seconds:.2f}s")
        self.timeout_seconds = timeout_seconds


class TaskCancelledError(CDCEngineError):
    """Raised inside an action when cooperative cancellation was requested."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task '{task_id}' was cancelled")
        self.task_id = task_id
