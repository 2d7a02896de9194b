"""Record store interface consumed by the triage engine, and its SQL implementation."""

from collections.abc import AsyncGenerator, Collection
from contextlib import asynccontextmanager
from typing import Protocol
from uuid import UUID

from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dicom_triage.exceptions.domain import (
    DatabaseConnectionError,
    DatabaseError,
    ExceptionLogConflictError,
)
from dicom_triage.models import (
    BulkActionScope,
    DicomExceptionLog,
    DicomExceptionLogCreate,
    DicomExceptionLogRead,
    DicomExceptionLogUpdate,
    ExceptionLogFilters,
    ExceptionLogListResponse,
    ExceptionStatus,
)
from dicom_triage.repositories.exception_repository import ExceptionLogRepository
from dicom_triage.utils.logger import logger


class RecordStore(Protocol):
    """Authoritative source of exception records.

    Every method returns detached snapshots; callers never hold live rows.
    """

    async def record_failure(self, data: DicomExceptionLogCreate) -> DicomExceptionLogRead: ...

    async def list_records(self, filters: ExceptionLogFilters) -> ExceptionLogListResponse: ...

    async def get_one(self, exception_uuid: UUID) -> DicomExceptionLogRead: ...

    async def get_by_scope(self, scope: BulkActionScope) -> list[DicomExceptionLogRead]: ...

    async def update_one(
        self,
        exception_uuid: UUID,
        patch: DicomExceptionLogUpdate,
        expected_statuses: Collection[ExceptionStatus] | None = None,
    ) -> DicomExceptionLogRead: ...


class ExceptionRecordStore:
    """SQL-backed record store.

    Each call runs in its own session so that bulk updates can proceed
    concurrently without sharing session state.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _repository(self) -> AsyncGenerator[ExceptionLogRepository]:
        """Open a session and yield a repository bound to it.

        Raises:
            DatabaseConnectionError: If the database cannot be reached
            DatabaseError: If any other database operation fails
        """
        try:
            async with self._session_factory() as session:
                yield ExceptionLogRepository(session)
        except (OperationalError, InterfaceError) as e:
            logger.error(f"Exception record store unavailable: {e}")
            raise DatabaseConnectionError(f"Exception record store unavailable: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Exception record store error: {e}")
            raise DatabaseError(f"Exception record store error: {e}") from e

    async def record_failure(self, data: DicomExceptionLogCreate) -> DicomExceptionLogRead:
        """Store a new exception record reported by the processing pipeline."""
        async with self._repository() as repo:
            record = DicomExceptionLog(**data.model_dump(exclude_none=True))
            record = await repo.create(record)
            logger.info(
                f"Recorded exception {record.exception_uuid} for SOP {record.sop_instance_uid} "
                f"at stage {record.processing_stage.value}"
            )
            return DicomExceptionLogRead.model_validate(record)

    async def list_records(self, filters: ExceptionLogFilters) -> ExceptionLogListResponse:
        async with self._repository() as repo:
            total, items = await repo.find(filters)
            return ExceptionLogListResponse(
                total=total, items=[DicomExceptionLogRead.model_validate(item) for item in items]
            )

    async def get_one(self, exception_uuid: UUID) -> DicomExceptionLogRead:
        async with self._repository() as repo:
            return DicomExceptionLogRead.model_validate(await repo.get_by_uuid(exception_uuid))

    async def get_by_scope(self, scope: BulkActionScope) -> list[DicomExceptionLogRead]:
        async with self._repository() as repo:
            records = await repo.find_by_scope(scope)
            return [DicomExceptionLogRead.model_validate(record) for record in records]

    async def update_one(
        self,
        exception_uuid: UUID,
        patch: DicomExceptionLogUpdate,
        expected_statuses: Collection[ExceptionStatus] | None = None,
    ) -> DicomExceptionLogRead:
        """Apply a partial update to one record.

        Args:
            exception_uuid: Record to update
            patch: Fields to change
            expected_statuses: If given, the record's current status must be one of these

        Raises:
            ExceptionLogNotFoundError: If the record doesn't exist
            ExceptionLogConflictError: If the current status is not expected
        """
        async with self._repository() as repo:
            record = await repo.get_by_uuid(exception_uuid)
            if expected_statuses is not None and record.status not in expected_statuses:
                raise ExceptionLogConflictError(
                    exception_uuid, record.status.value, (s.value for s in expected_statuses)
                )
            updated = await repo.update_fields(record, patch.to_patch())
            return DicomExceptionLogRead.model_validate(updated)
