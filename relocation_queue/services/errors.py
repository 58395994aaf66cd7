class QueueSyncError(Exception):
    """Base queue error."""


class TableStoreError(QueueSyncError):
    """Raised when the backing table store fails a read or write."""


class SourceTableMissingError(QueueSyncError):
    """Raised when the authoritative source table does not exist."""


class MissingColumnsError(QueueSyncError):
    """Raised when a table header lacks columns an operation requires."""

    def __init__(self, table: str, missing: list[str]) -> None:
        self.table = table
        self.missing = missing
        super().__init__(f"table {table!r} is missing required columns: {', '.join(missing)}")


class ManualTableUnavailableError(QueueSyncError):
    """Raised when an operator action needs a manual table that is absent or malformed."""


class QueueBusyError(QueueSyncError):
    """Raised when another run holds the document lock; the caller should retry later."""


class TaskNotFoundError(QueueSyncError):
    """Raised when the requested task is not on the queue."""


class TaskConflictError(QueueSyncError):
    """Raised when an operator action conflicts with the task's claim state."""


class QueueValidationError(QueueSyncError):
    """Raised when operator input fails validation before any write."""
