"""Repository for exception record database operations."""

from collections.abc import Sequence
from typing import Any
from uuid import UUID

from sqlalchemy import func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import col, select

from dicom_triage.exceptions.domain import ExceptionLogNotFoundError
from dicom_triage.models import (
    BulkActionScope,
    DicomExceptionLog,
    ExceptionLogFilters,
    SortOrder,
)
from dicom_triage.models.exception_log import utcnow
from dicom_triage.repositories.base import BaseRepository

# Fields an update patch may touch; identity columns are immutable.
_MUTABLE_FIELDS = frozenset(
    {
        "status",
        "retry_count",
        "next_retry_attempt_at",
        "last_retry_attempt_at",
        "resolved_at",
        "resolved_by_user_id",
        "resolution_notes",
    }
)

_SEARCHABLE_COLUMNS = (
    DicomExceptionLog.study_instance_uid,
    DicomExceptionLog.series_instance_uid,
    DicomExceptionLog.sop_instance_uid,
    DicomExceptionLog.patient_name,
    DicomExceptionLog.patient_id,
    DicomExceptionLog.accession_number,
    DicomExceptionLog.error_message,
)


class ExceptionLogRepository(BaseRepository[DicomExceptionLog]):
    """Repository for DicomExceptionLog model operations."""

    def __init__(self, session: AsyncSession):
        """Initialize exception log repository with session."""
        super().__init__(session, DicomExceptionLog)

    async def get_by_uuid(self, exception_uuid: UUID) -> DicomExceptionLog:
        """Get exception record by its UUID.

        Args:
            exception_uuid: Stable exception identifier

        Returns:
            Found record

        Raises:
            ExceptionLogNotFoundError: If record doesn't exist
        """
        record = await self.get_by(exception_uuid=exception_uuid)
        if not record:
            raise ExceptionLogNotFoundError(exception_uuid)
        return record

    def _build_conditions(self, filters: ExceptionLogFilters) -> list[ColumnElement[bool]]:
        """Translate list filters into WHERE conditions."""
        conditions: list[ColumnElement[bool]] = []

        if filters.status:
            conditions.append(col(DicomExceptionLog.status).in_(filters.status))
        if filters.processing_stage:
            conditions.append(
                col(DicomExceptionLog.processing_stage).in_(filters.processing_stage)
            )

        exact_fields = {
            "study_instance_uid": filters.study_instance_uid,
            "series_instance_uid": filters.series_instance_uid,
            "sop_instance_uid": filters.sop_instance_uid,
            "patient_id": filters.patient_id,
            "accession_number": filters.accession_number,
            "modality": filters.modality,
            "original_source_type": filters.original_source_type,
            "original_source_identifier": filters.original_source_identifier,
            "target_destination_id": filters.target_destination_id,
        }
        for field, value in exact_fields.items():
            if value is not None:
                conditions.append(getattr(DicomExceptionLog, field) == value)

        if filters.patient_name:
            conditions.append(
                col(DicomExceptionLog.patient_name).ilike(f"%{filters.patient_name}%")
            )
        if filters.date_from:
            conditions.append(col(DicomExceptionLog.failure_timestamp) >= filters.date_from)
        if filters.date_to:
            conditions.append(col(DicomExceptionLog.failure_timestamp) <= filters.date_to)
        if filters.search_term:
            pattern = f"%{filters.search_term}%"
            conditions.append(or_(*(col(column).ilike(pattern) for column in _SEARCHABLE_COLUMNS)))

        return conditions

    async def find(self, filters: ExceptionLogFilters) -> tuple[int, Sequence[DicomExceptionLog]]:
        """Find exception records matching filters, sorted and paginated.

        Args:
            filters: Filter, sort and paging options

        Returns:
            Tuple of (total matching count, records on the requested page)
        """
        conditions = self._build_conditions(filters)

        count_statement = select(func.count()).select_from(DicomExceptionLog).where(*conditions)
        total = (await self.session.execute(count_statement)).scalar() or 0

        sort_column = col(getattr(DicomExceptionLog, filters.sort_by.value))
        order = sort_column.desc() if filters.sort_order == SortOrder.desc else sort_column.asc()

        statement = (
            select(DicomExceptionLog)
            .where(*conditions)
            .order_by(order, col(DicomExceptionLog.id).asc())
            .offset(filters.skip)
        )
        if filters.limit is not None:
            statement = statement.limit(filters.limit)

        return total, await self.execute_query(statement)

    async def find_by_scope(self, scope: BulkActionScope) -> Sequence[DicomExceptionLog]:
        """Find every record addressed by a bulk-action scope.

        A series scope without a study UID returns matching records from every
        study; callers decide whether that is ambiguous.

        Args:
            scope: Study, series or explicit-UUID scope

        Returns:
            Records in insertion order
        """
        statement = select(DicomExceptionLog)

        if scope.exception_uuids:
            statement = statement.where(
                col(DicomExceptionLog.exception_uuid).in_(scope.exception_uuids)
            )
        else:
            if scope.study_instance_uid:
                statement = statement.where(
                    DicomExceptionLog.study_instance_uid == scope.study_instance_uid
                )
            if scope.series_instance_uid:
                statement = statement.where(
                    DicomExceptionLog.series_instance_uid == scope.series_instance_uid
                )

        return await self.execute_query(statement.order_by(col(DicomExceptionLog.id).asc()))

    async def update_fields(
        self, record: DicomExceptionLog, patch: dict[str, Any]
    ) -> DicomExceptionLog:
        """Apply a partial update to a record's remediation state.

        Unlike a generic update, explicit ``None`` values are written so a
        scheduled retry can be cleared.

        Args:
            record: Record to update
            patch: Field-value pairs; identity fields are rejected

        Returns:
            Updated record

        Raises:
            ValueError: If the patch touches a field outside the remediation state
        """
        unknown = set(patch) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        for field, value in patch.items():
            setattr(record, field, value)
        record.updated_at = utcnow()

        await self.session.commit()
        await self.session.refresh(record)
        return record
