"""Domain-specific exceptions for vend_core.

This module defines custom exceptions that are part of the public API.
All exceptions inherit from VendCoreError for easy catching.
"""

from __future__ import annotations


class VendCoreError(Exception):
    """Base exception for all vend_core errors.

    Users can catch this exception to handle any vend_core error.
    """

    pass


class ConfigError(VendCoreError):
    """Raised when there is a configuration error.

    This exception is raised when:
    - Backend URL or API key is missing
    - Numeric settings cannot be parsed
    - A CSV column mapping lacks required fields
    """

    pass


class DataQualityError(VendCoreError):
    """Raised when caller-supplied data lacks required columns."""

    pass


class BackendError(VendCoreError):
    """Raised when a query against the hosted store fails.

    Attributes:
        status_code: HTTP status returned by the backend, if any.
        code: Backend error code (e.g. PostgREST "PGRST205"), if any.
        table: Table the request targeted.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
        table: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.table = table


class SchemaAbsentError(BackendError):
    """Raised when an expected table or column is not provisioned.

    Views treat this as "no data" plus a provisioning notice; it is never
    fatal to a report.
    """

    pass


class MissingTableError(SchemaAbsentError):
    """The requested table does not exist."""

    pass


class MissingColumnError(SchemaAbsentError):
    """A column referenced by the request does not exist."""

    pass


class BackendWriteError(BackendError):
    """Raised when an insert batch is rejected.

    Attributes:
        first_row: 1-based index of the first row in the failed batch.
        last_row: 1-based index of the last row in the failed batch.
    """

    def __init__(
        self,
        message: str,
        *,
        first_row: int,
        last_row: int,
        status_code: int | None = None,
        code: str | None = None,
        table: str | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code, code=code, table=table)
        self.first_row = first_row
        self.last_row = last_row


class PartialRowError(VendCoreError):
    """Raised while measuring a row that has a present but unusable value.

    The reducer catches it and excludes the row from its bucket.
    """

    pass
