"""
Bulk remediation request and result models.

A bulk action addresses many exception records at once through a scope
(a whole study, a whole series, or an explicit set of exception UUIDs) and
applies one transition to each of them.
"""

from enum import Enum
from typing import Annotated, Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .base import DicomQueryLevel, empty_to_none
from .exception_log import ExceptionStatus


class BulkActionType(str, Enum):
    """Transitions that can be applied to a whole scope."""

    SET_STATUS = "SET_STATUS"
    REQUEUE_RETRYABLE = "REQUEUE_RETRYABLE"


class BulkActionScope(BaseModel):
    """Selector addressing a bulk action at many exception records."""

    study_instance_uid: str | None = Field(default=None, max_length=128)
    series_instance_uid: str | None = Field(default=None, max_length=128)
    exception_uuids: list[UUID] | None = None

    @field_validator("study_instance_uid", "series_instance_uid", mode="before")
    @classmethod
    def blank_uid_to_none(cls, value: Any) -> Any:
        return empty_to_none(value)

    @model_validator(mode="after")
    def check_scope(self) -> "BulkActionScope":
        """Require exactly one addressing form."""
        has_uid = bool(self.study_instance_uid or self.series_instance_uid)
        if self.exception_uuids and has_uid:
            raise ValueError(
                "exception_uuids cannot be combined with study_instance_uid or series_instance_uid"
            )
        if not has_uid and not self.exception_uuids:
            raise ValueError(
                "At least one scope (study_instance_uid, series_instance_uid, "
                "or exception_uuids) must be provided."
            )
        return self

    @property
    def level(self) -> DicomQueryLevel:
        """DICOM level this scope addresses."""
        if self.exception_uuids:
            return DicomQueryLevel.IMAGE
        if self.series_instance_uid:
            return DicomQueryLevel.SERIES
        return DicomQueryLevel.STUDY

    def describe(self) -> str:
        """Short human-readable description for messages and logs."""
        match self.level:
            case DicomQueryLevel.IMAGE:
                return f"{len(self.exception_uuids or [])} selected exception(s)"
            case DicomQueryLevel.SERIES if self.study_instance_uid:
                return f"series {self.series_instance_uid} of study {self.study_instance_uid}"
            case DicomQueryLevel.SERIES:
                return f"series {self.series_instance_uid}"
            case _:
                return f"study {self.study_instance_uid}"


class BulkActionSetStatusPayload(BaseModel):
    """Payload for SET_STATUS."""

    new_status: ExceptionStatus
    resolution_notes: str | None = None
    clear_next_retry_attempt_at: bool = False


class BulkActionRequeueRetryablePayload(BaseModel):
    """Payload for REQUEUE_RETRYABLE. Carries no options."""

    model_config = ConfigDict(extra="forbid")


class SetStatusBulkActionRequest(BaseModel):
    """Set every record in scope to one status."""

    action_type: Literal["SET_STATUS"] = "SET_STATUS"
    scope: BulkActionScope
    payload: BulkActionSetStatusPayload


class RequeueRetryableBulkActionRequest(BaseModel):
    """Requeue every retryable record in scope."""

    action_type: Literal["REQUEUE_RETRYABLE"] = "REQUEUE_RETRYABLE"
    scope: BulkActionScope
    payload: BulkActionRequeueRetryablePayload | None = None


BulkActionRequest = Annotated[
    SetStatusBulkActionRequest | RequeueRetryableBulkActionRequest,
    Field(discriminator="action_type"),
]


class BulkActionFailureDetail(BaseModel):
    """Outcome of one record whose transition failed."""

    exception_uuid: UUID
    sop_instance_uid: str | None = None
    error: str


class BulkActionResult(BaseModel):
    """Aggregated outcome of a bulk action."""

    action_type: BulkActionType
    processed_count: int = 0
    successful_count: int = 0
    failed_count: int = 0
    message: str
    details: list[BulkActionFailureDetail] = []


class BulkActionPreview(BaseModel):
    """What a bulk action would touch, for operator confirmation."""

    action_type: BulkActionType
    scope_description: str
    resolved_count: int
    eligible_count: int
    diagnostic: str | None = None


class BulkActionShortcut(BaseModel):
    """Body of the study/series shortcut endpoint."""

    action: BulkActionType
    new_status: ExceptionStatus | None = None
    notes: str | None = None
    study_instance_uid: str | None = None
