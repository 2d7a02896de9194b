"""
DICOM Triage data models.

This package contains the SQLModel table for exception records plus the
derived hierarchy and bulk-action schemas built on top of it.
"""

# Base models
from .base import BaseModel, DicomQueryLevel, SortOrder

# Bulk action models
from .bulk import (
    BulkActionFailureDetail,
    BulkActionPreview,
    BulkActionRequest,
    BulkActionRequeueRetryablePayload,
    BulkActionResult,
    BulkActionScope,
    BulkActionSetStatusPayload,
    BulkActionShortcut,
    BulkActionType,
    RequeueRetryableBulkActionRequest,
    SetStatusBulkActionRequest,
)

# Exception log models
from .exception_log import (
    RESOLVED_STATUSES,
    RETRYABLE_STATUSES,
    STATUS_TRANSITIONS,
    SYSTEM_OWNED_STATUSES,
    TERMINAL_STATUSES,
    DicomExceptionLog,
    DicomExceptionLogCreate,
    DicomExceptionLogRead,
    DicomExceptionLogUpdate,
    ExceptionLogFilters,
    ExceptionLogListResponse,
    ExceptionProcessingStage,
    ExceptionSortField,
    ExceptionStatus,
    ProcessedStudySourceType,
    is_nominal_transition,
)

# Hierarchy models
from .hierarchy import ExceptionHierarchyResponse, SeriesNode, StudyNode

__all__ = [
    # Base
    "BaseModel",
    "DicomQueryLevel",
    "SortOrder",
    # Bulk
    "BulkActionFailureDetail",
    "BulkActionPreview",
    "BulkActionRequest",
    "BulkActionRequeueRetryablePayload",
    "BulkActionResult",
    "BulkActionScope",
    "BulkActionSetStatusPayload",
    "BulkActionShortcut",
    "BulkActionType",
    "RequeueRetryableBulkActionRequest",
    "SetStatusBulkActionRequest",
    # Exception log
    "RESOLVED_STATUSES",
    "RETRYABLE_STATUSES",
    "STATUS_TRANSITIONS",
    "SYSTEM_OWNED_STATUSES",
    "TERMINAL_STATUSES",
    "DicomExceptionLog",
    "DicomExceptionLogCreate",
    "DicomExceptionLogRead",
    "DicomExceptionLogUpdate",
    "ExceptionLogFilters",
    "ExceptionLogListResponse",
    "ExceptionProcessingStage",
    "ExceptionSortField",
    "ExceptionStatus",
    "ProcessedStudySourceType",
    "is_nominal_transition",
    # Hierarchy
    "ExceptionHierarchyResponse",
    "SeriesNode",
    "StudyNode",
]
