"""
Common dependencies for DICOM Triage API endpoints.

This module provides the record store, the exception service and the shared
list-filter query parameters.
"""

from datetime import datetime
from typing import Annotated

from fastapi import Depends, Query
from pydantic import ValidationError as PydanticValidationError

from ..exceptions.domain import ValidationError
from ..models import (
    ExceptionLogFilters,
    ExceptionProcessingStage,
    ExceptionSortField,
    ExceptionStatus,
    ProcessedStudySourceType,
    SortOrder,
)
from ..services.exception_service import ExceptionService
from ..services.record_store import ExceptionRecordStore
from ..utils.db_manager import db_manager


def get_record_store() -> ExceptionRecordStore:
    """Get the SQL-backed record store bound to the application's session factory."""
    return ExceptionRecordStore(db_manager.async_session_factory)


RecordStoreDep = Annotated[ExceptionRecordStore, Depends(get_record_store)]


def get_exception_service(store: RecordStoreDep) -> ExceptionService:
    """Get the exception service for the current request."""
    return ExceptionService(store)


ExceptionServiceDep = Annotated[ExceptionService, Depends(get_exception_service)]


async def exception_filters(
    skip: int = Query(0, ge=0, description="Number of items to skip"),
    limit: int | None = Query(None, ge=1, description="Maximum number of items to return"),
    search_term: str | None = Query(None, description="Free-text search over identity fields"),
    status: list[ExceptionStatus] | None = Query(None, description="Statuses to include"),
    processing_stage: list[ExceptionProcessingStage] | None = Query(None),
    study_instance_uid: str | None = Query(None),
    series_instance_uid: str | None = Query(None),
    sop_instance_uid: str | None = Query(None),
    patient_id: str | None = Query(None),
    patient_name: str | None = Query(None),
    accession_number: str | None = Query(None),
    modality: str | None = Query(None),
    original_source_type: ProcessedStudySourceType | None = Query(None),
    original_source_identifier: str | None = Query(None),
    target_destination_id: int | None = Query(None),
    date_from: datetime | None = Query(None, description="Earliest failure timestamp"),
    date_to: datetime | None = Query(None, description="Latest failure timestamp"),
    sort_by: ExceptionSortField = Query(ExceptionSortField.failure_timestamp),
    sort_order: SortOrder = Query(SortOrder.desc),
) -> ExceptionLogFilters:
    """
    Collect list filters from query parameters.

    Returns:
        Validated filter object

    Raises:
        ValidationError: If the date range is inverted
    """
    try:
        return ExceptionLogFilters(
            skip=skip,
            limit=limit,
            search_term=search_term,
            status=status,
            processing_stage=processing_stage,
            study_instance_uid=study_instance_uid,
            series_instance_uid=series_instance_uid,
            sop_instance_uid=sop_instance_uid,
            patient_id=patient_id,
            patient_name=patient_name,
            accession_number=accession_number,
            modality=modality,
            original_source_type=original_source_type,
            original_source_identifier=original_source_identifier,
            target_destination_id=target_destination_id,
            date_from=date_from,
            date_to=date_to,
            sort_by=sort_by,
            sort_order=sort_order,
        )
    except PydanticValidationError as e:
        raise ValidationError(str(e)) from e


ExceptionFiltersDep = Annotated[ExceptionLogFilters, Depends(exception_filters)]
