"""
Ingestion failures.

The service raises these; the router turns them into HTTP responses.
Every error carries the status code it maps to.
"""

from __future__ import annotations


class IngestionError(RuntimeError):
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class UnsupportedFormatError(IngestionError):
    status_code = 400


class WorkbookDecodeError(IngestionError):
    status_code = 400


class EmptyInputError(IngestionError):
    status_code = 400


class UploadTooLargeError(IngestionError):
    status_code = 413


class DuplicateColumnError(IngestionError):
    status_code = 400

    def __init__(self, message: str, *, identifier: str, labels: list[str]) -> None:
        super().__init__(message)
        self.identifier = identifier
        self.labels = labels


class ConcurrentModificationError(IngestionError):
    status_code = 409


class IngestionConfigError(IngestionError):
    status_code = 500


class DatabaseStageError(IngestionError):
    """
    Base for failures reported by the database, with optional diagnostics.
    """

    def __init__(self, message: str, *, statement: str | None = None, detail: str | None = None) -> None:
        super().__init__(message)
        self.statement = statement
        self.detail = detail


class SchemaProvisioningError(DatabaseStageError):
    pass


class BulkLoadError(DatabaseStageError):
    """
    A batch insert failed.

    `offset` is the index of the first row of the failing batch.
    `rows_committed` is how many rows are persisted despite the failure.
    """

    def __init__(
        self,
        message: str,
        *,
        offset: int,
        rows_committed: int,
        statement: str | None = None,
        detail: str | None = None,
    ) -> None:
        super().__init__(message, statement=statement, detail=detail)
        self.offset = offset
        self.rows_committed = rows_committed
        self.rolled_back = False

    @property
    def partial(self) -> bool:
        return self.rows_committed > 0


class LoadCancelledError(BulkLoadError):
    """
    The load deadline passed between two batches.
    """
