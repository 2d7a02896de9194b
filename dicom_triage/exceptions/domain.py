"""
Domain exceptions for business logic layer.

These exceptions are used in repositories and services to represent
business logic errors without coupling to HTTP status codes.
"""

from collections.abc import Iterable
from uuid import UUID


class TriageError(Exception):
    """Base exception for all DICOM Triage errors."""

    pass


# Base domain exceptions
class EntityNotFoundError(TriageError):
    """Raised when an entity is not found in the database."""

    pass


class ValidationError(TriageError):
    """Raised when data validation fails."""

    pass


class BusinessRuleViolationError(TriageError):
    """Raised when a business rule is violated."""

    pass


# Exception log errors
class ExceptionLogNotFoundError(EntityNotFoundError):
    """Raised when an exception record is not found."""

    def __init__(self, exception_uuid: UUID | str):
        super().__init__(f"Exception record '{exception_uuid}' not found")


class ExceptionLogConflictError(BusinessRuleViolationError):
    """Raised when an update's precondition no longer holds for a record."""

    def __init__(self, exception_uuid: UUID | str, current_status: str, expected: Iterable[str]):
        expected_list = ", ".join(sorted(expected))
        super().__init__(
            f"Exception record '{exception_uuid}' is in status {current_status}, "
            f"expected one of: {expected_list}"
        )


class BulkActionPolicyError(ValidationError):
    """Raised when a bulk action request is rejected before dispatch."""

    pass


# Configuration errors
class ConfigurationError(TriageError):
    """Raised when there's a configuration problem."""

    pass


# Database errors
class DatabaseError(TriageError):
    """Raised when there's a database operation error."""

    pass


class DatabaseConnectionError(DatabaseError):
    """Raised when database connection fails."""

    pass
