from fastapi import HTTPException, status

from relocation_queue.services.errors import (
    ManualTableUnavailableError,
    MissingColumnsError,
    QueueBusyError,
    QueueSyncError,
    QueueValidationError,
    SourceTableMissingError,
    TableStoreError,
    TaskConflictError,
    TaskNotFoundError,
)

_STATUS_BY_ERROR: tuple[tuple[type[QueueSyncError], int], ...] = (
    (QueueBusyError, status.HTTP_409_CONFLICT),
    (TaskConflictError, status.HTTP_409_CONFLICT),
    (TaskNotFoundError, status.HTTP_404_NOT_FOUND),
    (SourceTableMissingError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (MissingColumnsError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ManualTableUnavailableError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (QueueValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (TableStoreError, status.HTTP_502_BAD_GATEWAY),
)


def to_http_error(exc: QueueSyncError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            headers = {"Retry-After": "30"} if isinstance(exc, QueueBusyError) else None
            return HTTPException(status_code=status_code, detail=str(exc), headers=headers)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
