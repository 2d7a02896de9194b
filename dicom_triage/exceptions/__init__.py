"""Exceptions raised by the DICOM Triage service and engine."""

from .domain import (
    BulkActionPolicyError,
    BusinessRuleViolationError,
    ConfigurationError,
    DatabaseConnectionError,
    DatabaseError,
    EntityNotFoundError,
    ExceptionLogConflictError,
    ExceptionLogNotFoundError,
    TriageError,
    ValidationError,
)

__all__ = [
    "BulkActionPolicyError",
    "BusinessRuleViolationError",
    "ConfigurationError",
    "DatabaseConnectionError",
    "DatabaseError",
    "EntityNotFoundError",
    "ExceptionLogConflictError",
    "ExceptionLogNotFoundError",
    "TriageError",
    "ValidationError",
]
