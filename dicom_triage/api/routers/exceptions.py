"""
Exception triage router for DICOM Triage.

This module provides API endpoints for browsing logged DICOM processing
failures as a flat list or a study tree, editing single records, and running
bulk remediation over a study, a series or a selection of records.
"""

from uuid import UUID

from fastapi import APIRouter, status
from pydantic import BaseModel as PydanticBaseModel

from dicom_triage.api.dependencies import ExceptionFiltersDep, ExceptionServiceDep
from dicom_triage.models import (
    BulkActionPreview,
    BulkActionRequest,
    BulkActionResult,
    BulkActionShortcut,
    DicomExceptionLogCreate,
    DicomExceptionLogRead,
    DicomExceptionLogUpdate,
    DicomQueryLevel,
    ExceptionHierarchyResponse,
    ExceptionLogListResponse,
    ExceptionStatus,
)

router = APIRouter(
    responses={
        404: {"description": "Not found"},
        409: {"description": "Conflict"},
        503: {"description": "Record store unavailable"},
    },
)


class ExceptionStatusUpdate(PydanticBaseModel):
    """Body of the single-record status change endpoint."""

    status: ExceptionStatus
    notes: str | None = None


# Listing


@router.get("/", response_model=ExceptionLogListResponse)
async def list_exceptions(
    filters: ExceptionFiltersDep, service: ExceptionServiceDep
) -> ExceptionLogListResponse:
    """Get one page of exception records."""
    return await service.list_exceptions(filters)


@router.post("/", response_model=DicomExceptionLogRead, status_code=status.HTTP_201_CREATED)
async def record_failure(
    data: DicomExceptionLogCreate, service: ExceptionServiceDep
) -> DicomExceptionLogRead:
    """Log a new processing failure."""
    return await service.record_failure(data)


@router.get("/hierarchy", response_model=ExceptionHierarchyResponse)
async def get_exception_hierarchy(
    filters: ExceptionFiltersDep, service: ExceptionServiceDep
) -> ExceptionHierarchyResponse:
    """Get the page of exception records grouped by study and series."""
    return await service.on_filters_change(filters)


# Bulk actions


@router.post("/bulk-actions", response_model=BulkActionResult)
async def run_bulk_action(
    request: BulkActionRequest, service: ExceptionServiceDep
) -> BulkActionResult:
    """Apply one transition to every eligible record in a scope.

    Per-record failures are reported in ``details``; the request itself only
    fails when the scope cannot be resolved or the action is not allowed.
    """
    return await service.run_bulk_action(request)


@router.post("/bulk-actions/preview", response_model=BulkActionPreview)
async def preview_bulk_action(
    request: BulkActionRequest, service: ExceptionServiceDep
) -> BulkActionPreview:
    """Show how many records a bulk action would resolve and act on."""
    return await service.preview_bulk_action(request)


@router.post("/{level}/{identifier}/bulk-action", response_model=BulkActionResult)
async def run_tree_bulk_action(
    level: DicomQueryLevel,
    identifier: str,
    body: BulkActionShortcut,
    service: ExceptionServiceDep,
) -> BulkActionResult:
    """Run a bulk action addressed from a study or series row of the tree."""
    return await service.on_bulk_action(
        identifier,
        level,
        body.action,
        notes=body.notes,
        new_status=body.new_status,
        study_instance_uid=body.study_instance_uid,
    )


# Single records


@router.get("/{exception_uuid}", response_model=DicomExceptionLogRead)
async def get_exception(
    exception_uuid: UUID, service: ExceptionServiceDep
) -> DicomExceptionLogRead:
    """Get one exception record."""
    return await service.on_view_details(exception_uuid)


@router.patch("/{exception_uuid}", response_model=DicomExceptionLogRead)
async def update_exception(
    exception_uuid: UUID, patch: DicomExceptionLogUpdate, service: ExceptionServiceDep
) -> DicomExceptionLogRead:
    """Edit the remediation state of one exception record."""
    return await service.update_exception(exception_uuid, patch)


@router.post("/{exception_uuid}/requeue", response_model=DicomExceptionLogRead)
async def requeue_exception(
    exception_uuid: UUID, service: ExceptionServiceDep
) -> DicomExceptionLogRead:
    """Hand one exception record back to the retry worker."""
    return await service.on_requeue_for_retry(exception_uuid)


@router.post("/{exception_uuid}/status", response_model=DicomExceptionLogRead)
async def update_exception_status(
    exception_uuid: UUID, body: ExceptionStatusUpdate, service: ExceptionServiceDep
) -> DicomExceptionLogRead:
    """Set the status of one exception record."""
    return await service.on_update_status(exception_uuid, body.status, body.notes)
