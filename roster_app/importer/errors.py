"""Exception hierarchy for the roster importer."""

from __future__ import annotations

from http import HTTPStatus


class RosterImportError(Exception):
    """Base class for importer failures surfaced to callers."""

    status = HTTPStatus.INTERNAL_SERVER_ERROR


class ImportValidationError(RosterImportError, ValueError):
    """Malformed input batch, rejected before any transaction opens."""

    status = HTTPStatus.BAD_REQUEST


class NotFoundError(RosterImportError, LookupError):
    status = HTTPStatus.NOT_FOUND


class OrganizationNotFound(NotFoundError):
    def __init__(self, organization_id):
        super().__init__(f"Organization {organization_id} not found")
        self.organization_id = organization_id


class NoPendingImport(NotFoundError):
    def __init__(self, message: str = "No pending import to cancel"):
        super().__init__(message)


class PerRecordProcessingError(RosterImportError):
    """One record could not be applied; the batch continues without it."""

    def __init__(self, employee_number: str, message: str):
        super().__init__(f"{employee_number}: {message}")
        self.employee_number = employee_number
        self.detail = message


class TransactionFailure(RosterImportError):
    """The enclosing import or rollback transaction was aborted."""


class ImportTimeoutError(TransactionFailure):
    def __init__(self, timeout_seconds: float):
        super().__init__(f"Transaction exceeded the {timeout_seconds:g}s timeout")
        self.timeout_seconds = timeout_seconds


class StaleImportMarker(TransactionFailure):
    """The pending import marker changed underneath this transaction."""

    status = HTTPStatus.CONFLICT


class ImportLockUnavailable(TransactionFailure):
    """Another import or rollback holds the organization lock."""

    status = HTTPStatus.CONFLICT


class RollbackIntegrityGap(RosterImportError):
    """An updated employee has no snapshot preceding the batch to restore."""

    status = HTTPStatus.CONFLICT

    def __init__(self, employee_id: int, employee_number: str | None = None):
        label = employee_number or employee_id
        super().__init__(
            f"Employee {label} has no history snapshot preceding the batch; rollback aborted"
        )
        self.employee_id = employee_id
        self.employee_number = employee_number
