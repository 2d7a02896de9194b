"""
Exception log models for DICOM Triage.

This module provides the flat exception record produced when an inbound DICOM
object fails processing, its read/update schemas, list filters, and the
closed status set with its lifecycle rules.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import field_validator, model_validator
from sqlalchemy import DateTime, Index
from sqlmodel import JSON, Column, Field

from .base import BaseModel, SortOrder, empty_to_none


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


class ExceptionStatus(str, Enum):
    """Lifecycle status of a logged DICOM processing exception."""

    NEW = "NEW"
    RETRY_PENDING = "RETRY_PENDING"
    RETRY_IN_PROGRESS = "RETRY_IN_PROGRESS"
    MANUAL_REVIEW_REQUIRED = "MANUAL_REVIEW_REQUIRED"
    RESOLVED_BY_RETRY = "RESOLVED_BY_RETRY"
    RESOLVED_MANUALLY = "RESOLVED_MANUALLY"
    FAILED_PERMANENTLY = "FAILED_PERMANENTLY"
    ARCHIVED = "ARCHIVED"

    @property
    def is_terminal(self) -> bool:
        """Whether no further transition is expected from this status."""
        return self in TERMINAL_STATUSES

    @property
    def is_retryable(self) -> bool:
        """Whether a requeue for retry is meaningful from this status."""
        return self in RETRYABLE_STATUSES


class ExceptionProcessingStage(str, Enum):
    """Stage of the processing pipeline where the failure occurred."""

    INGESTION = "INGESTION"
    RULE_EVALUATION = "RULE_EVALUATION"
    TAG_MORPHING = "TAG_MORPHING"
    AI_STANDARDIZATION = "AI_STANDARDIZATION"
    DESTINATION_SEND = "DESTINATION_SEND"
    DATABASE_INTERACTION = "DATABASE_INTERACTION"
    POST_PROCESSING = "POST_PROCESSING"
    UNKNOWN = "UNKNOWN"


class ProcessedStudySourceType(str, Enum):
    """Source system type that delivered the failed object."""

    DICOMWEB = "DICOMWEB"
    DIMSE_QR = "DIMSE_QR"
    DIMSE_LISTENER = "DIMSE_LISTENER"
    STOW_RS = "STOW_RS"
    GOOGLE_HEALTHCARE = "GOOGLE_HEALTHCARE"
    FILE_UPLOAD = "FILE_UPLOAD"
    UNKNOWN = "UNKNOWN"


TERMINAL_STATUSES: frozenset[ExceptionStatus] = frozenset(
    {
        ExceptionStatus.RESOLVED_BY_RETRY,
        ExceptionStatus.RESOLVED_MANUALLY,
        ExceptionStatus.ARCHIVED,
    }
)

RETRYABLE_STATUSES: frozenset[ExceptionStatus] = frozenset(
    {ExceptionStatus.NEW, ExceptionStatus.MANUAL_REVIEW_REQUIRED}
)

RESOLVED_STATUSES: frozenset[ExceptionStatus] = frozenset(
    {ExceptionStatus.RESOLVED_BY_RETRY, ExceptionStatus.RESOLVED_MANUALLY}
)

# States owned by the retry worker; operators may not bulk-set records into them.
SYSTEM_OWNED_STATUSES: frozenset[ExceptionStatus] = frozenset(
    {
        ExceptionStatus.NEW,
        ExceptionStatus.RETRY_IN_PROGRESS,
        ExceptionStatus.RESOLVED_BY_RETRY,
    }
)

STATUS_TRANSITIONS: dict[ExceptionStatus, frozenset[ExceptionStatus]] = {
    ExceptionStatus.NEW: frozenset(
        {
            ExceptionStatus.RETRY_PENDING,
            ExceptionStatus.MANUAL_REVIEW_REQUIRED,
            ExceptionStatus.ARCHIVED,
        }
    ),
    ExceptionStatus.RETRY_PENDING: frozenset({ExceptionStatus.RETRY_IN_PROGRESS}),
    ExceptionStatus.RETRY_IN_PROGRESS: frozenset(
        {
            ExceptionStatus.RESOLVED_BY_RETRY,
            ExceptionStatus.FAILED_PERMANENTLY,
            ExceptionStatus.RETRY_PENDING,
            ExceptionStatus.MANUAL_REVIEW_REQUIRED,
        }
    ),
    ExceptionStatus.FAILED_PERMANENTLY: frozenset(
        {ExceptionStatus.MANUAL_REVIEW_REQUIRED, ExceptionStatus.ARCHIVED}
    ),
    ExceptionStatus.MANUAL_REVIEW_REQUIRED: frozenset(
        {
            ExceptionStatus.RETRY_PENDING,
            ExceptionStatus.RESOLVED_MANUALLY,
            ExceptionStatus.ARCHIVED,
        }
    ),
    ExceptionStatus.RESOLVED_BY_RETRY: frozenset(),
    ExceptionStatus.RESOLVED_MANUALLY: frozenset(),
    ExceptionStatus.ARCHIVED: frozenset(),
}


def is_nominal_transition(current: ExceptionStatus, target: ExceptionStatus) -> bool:
    """Check whether moving from ``current`` to ``target`` follows the lifecycle graph.

    Re-applying the current status counts as nominal.
    """
    return current == target or target in STATUS_TRANSITIONS[current]


class DicomExceptionLogBase(BaseModel):
    """Base model for exception record data."""

    # DICOM identity (nullable, not always known at the point of failure)
    study_instance_uid: str | None = Field(default=None, max_length=128)
    series_instance_uid: str | None = Field(default=None, max_length=128)
    sop_instance_uid: str | None = Field(default=None, max_length=128)

    patient_name: str | None = Field(default=None, max_length=255)
    patient_id: str | None = Field(default=None, max_length=128)
    accession_number: str | None = Field(default=None, max_length=64)
    modality: str | None = Field(default=None, max_length=16)

    processing_stage: ExceptionProcessingStage = ExceptionProcessingStage.UNKNOWN
    error_message: str
    error_details: str | None = None
    failed_filepath: str | None = Field(default=None, max_length=1024)

    original_source_type: ProcessedStudySourceType | None = None
    original_source_identifier: str | None = Field(default=None, max_length=255)
    calling_ae_title: str | None = Field(default=None, max_length=16)
    target_destination_id: int | None = None
    target_destination_name: str | None = Field(default=None, max_length=100)

    applied_rule_names: list[str] | None = None
    destination_results: dict[str, Any] | None = None

    status: ExceptionStatus = ExceptionStatus.NEW
    retry_count: int = Field(default=0, ge=0)
    next_retry_attempt_at: datetime | None = None
    last_retry_attempt_at: datetime | None = None
    resolved_at: datetime | None = None
    resolved_by_user_id: int | None = None
    resolution_notes: str | None = None

    @field_validator(
        "study_instance_uid",
        "series_instance_uid",
        "sop_instance_uid",
        "patient_name",
        "patient_id",
        "accession_number",
        "modality",
        mode="before",
    )
    @classmethod
    def blank_identity_to_none(cls, value: Any) -> Any:
        """Treat blank DICOM identity and descriptive values as missing."""
        return empty_to_none(value)


class DicomExceptionLog(DicomExceptionLogBase, table=True):
    """A single failed SOP instance, as recorded by the processing pipeline."""

    __tablename__ = "dicom_exception_log"
    __table_args__ = (
        Index("ix_dicom_exception_log_status_next_retry", "status", "next_retry_attempt_at"),
        Index(
            "ix_dicom_exception_log_study_series", "study_instance_uid", "series_instance_uid"
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    exception_uuid: UUID = Field(default_factory=uuid4, unique=True, index=True)

    study_instance_uid: str | None = Field(default=None, max_length=128, index=True)
    series_instance_uid: str | None = Field(default=None, max_length=128, index=True)
    sop_instance_uid: str | None = Field(default=None, max_length=128, index=True)
    status: ExceptionStatus = Field(default=ExceptionStatus.NEW, index=True)

    applied_rule_names: list[str] | None = Field(default=None, sa_column=Column(JSON))
    destination_results: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))

    failure_timestamp: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )
    next_retry_attempt_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    last_retry_attempt_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    resolved_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    updated_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(timezone=True), nullable=False)
    )

    def __repr__(self) -> str:
        return (
            f"<DicomExceptionLog(id={self.id}, sop='{self.sop_instance_uid}', "
            f"status='{self.status.value}')>"
        )


class DicomExceptionLogCreate(DicomExceptionLogBase):
    """Pydantic model for recording a new processing failure."""

    failure_timestamp: datetime | None = None


class DicomExceptionLogRead(DicomExceptionLogBase):
    """Pydantic model for reading an exception record."""

    id: int
    exception_uuid: UUID
    failure_timestamp: datetime
    created_at: datetime
    updated_at: datetime


class DicomExceptionLogUpdate(BaseModel):
    """Partial update of an exception record's remediation state.

    Only fields explicitly set are applied, so passing ``None`` for
    ``next_retry_attempt_at`` clears the scheduled retry.
    """

    status: ExceptionStatus | None = None
    retry_count: int | None = Field(default=None, ge=0)
    next_retry_attempt_at: datetime | None = None
    resolved_at: datetime | None = None
    resolution_notes: str | None = None

    def to_patch(self) -> dict[str, Any]:
        """Return only the fields the caller explicitly set."""
        patch = self.model_dump(exclude_unset=True)
        if patch.get("status") is None:
            patch.pop("status", None)
        if patch.get("retry_count") is None:
            patch.pop("retry_count", None)
        return patch


class ExceptionLogListResponse(BaseModel):
    """One page of exception records plus the total matching count."""

    total: int
    items: list[DicomExceptionLogRead] = []


class ExceptionSortField(str, Enum):
    """Columns the exception list may be sorted by."""

    failure_timestamp = "failure_timestamp"
    updated_at = "updated_at"
    status = "status"
    study_instance_uid = "study_instance_uid"
    patient_name = "patient_name"
    modality = "modality"
    retry_count = "retry_count"


class ExceptionLogFilters(BaseModel):
    """Filter, sort and paging options for listing exception records."""

    skip: int = Field(default=0, ge=0)
    limit: int | None = Field(default=None, ge=1)
    search_term: str | None = None
    status: list[ExceptionStatus] | None = None
    processing_stage: list[ExceptionProcessingStage] | None = None
    study_instance_uid: str | None = None
    series_instance_uid: str | None = None
    sop_instance_uid: str | None = None
    patient_id: str | None = None
    patient_name: str | None = None
    accession_number: str | None = None
    modality: str | None = None
    original_source_type: ProcessedStudySourceType | None = None
    original_source_identifier: str | None = None
    target_destination_id: int | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    sort_by: ExceptionSortField = ExceptionSortField.failure_timestamp
    sort_order: SortOrder = SortOrder.desc

    @field_validator(
        "search_term",
        "study_instance_uid",
        "series_instance_uid",
        "sop_instance_uid",
        "patient_id",
        "patient_name",
        "accession_number",
        "modality",
        "original_source_identifier",
        mode="before",
    )
    @classmethod
    def blank_filter_to_none(cls, value: Any) -> Any:
        """Ignore blank text filters."""
        return empty_to_none(value)

    @model_validator(mode="after")
    def check_date_range(self) -> "ExceptionLogFilters":
        """Reject an inverted date range."""
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("date_from must not be later than date_to")
        return self
