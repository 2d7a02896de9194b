"""Helper utilities for tests."""

import asyncio
import itertools
from collections.abc import Collection
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from dicom_triage.exceptions.domain import (
    DatabaseConnectionError,
    ExceptionLogConflictError,
    ExceptionLogNotFoundError,
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

BASE_TIME = datetime(2024, 3, 1, 8, 0, 0, tzinfo=UTC)

_ids = itertools.count(1)


def make_record(**overrides: Any) -> DicomExceptionLogRead:
    """Build a detached exception record snapshot."""
    record_id = next(_ids)
    data: dict[str, Any] = {
        "id": record_id,
        "exception_uuid": uuid4(),
        "study_instance_uid": "1.2.3",
        "series_instance_uid": "1.2.3.1",
        "sop_instance_uid": f"1.2.3.1.{record_id}",
        "patient_name": "DOE^JANE",
        "patient_id": "PID-1",
        "modality": "CT",
        "error_message": "Destination rejected the object",
        "status": ExceptionStatus.NEW,
        "failure_timestamp": BASE_TIME + timedelta(minutes=record_id),
        "created_at": BASE_TIME,
        "updated_at": BASE_TIME,
    }
    data.update(overrides)
    return DicomExceptionLogRead(**data)


class ExceptionFactory:
    """Factory for creating exception rows in a real database."""

    @staticmethod
    async def create(session: AsyncSession, **overrides: Any) -> DicomExceptionLog:
        """Creates a test exception record."""
        unique = uuid4().hex[:8]
        data: dict[str, Any] = {
            "study_instance_uid": "1.2.3",
            "series_instance_uid": "1.2.3.1",
            "sop_instance_uid": f"1.2.3.1.{unique}",
            "patient_name": "DOE^JANE",
            "patient_id": "PID-1",
            "modality": "CT",
            "error_message": "Destination rejected the object",
        }
        data.update(overrides)
        record = DicomExceptionLog(**data)
        session.add(record)
        await session.commit()
        await session.refresh(record)
        return record

    @staticmethod
    async def create_many(
        session: AsyncSession, statuses: list[ExceptionStatus], **overrides: Any
    ) -> list[DicomExceptionLog]:
        """Creates one record per status, sharing the given overrides."""
        return [
            await ExceptionFactory.create(session, status=status, **overrides)
            for status in statuses
        ]


class FakeRecordStore:
    """In-memory record store with failure injection.

    Attributes:
        failures: Per-record exceptions raised by ``update_one``
        unavailable: When set, every call raises DatabaseConnectionError
        in_flight / max_in_flight: Concurrency observed inside ``update_one``
        update_calls: UUIDs passed to ``update_one``, in call order
    """

    def __init__(self, records: list[DicomExceptionLogRead] | None = None, delay: float = 0):
        self.records: dict[UUID, DicomExceptionLogRead] = {
            record.exception_uuid: record for record in records or []
        }
        self.failures: dict[UUID, Exception] = {}
        self.unavailable = False
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0
        self.update_calls: list[UUID] = []
        self.scope_calls = 0

    def _check_available(self) -> None:
        if self.unavailable:
            raise DatabaseConnectionError("record store unavailable")

    async def record_failure(self, data: DicomExceptionLogCreate) -> DicomExceptionLogRead:
        self._check_available()
        record = make_record(**data.model_dump(exclude_none=True))
        self.records[record.exception_uuid] = record
        return record

    async def list_records(self, filters: ExceptionLogFilters) -> ExceptionLogListResponse:
        self._check_available()
        items = [
            record
            for record in self.records.values()
            if not filters.status or record.status in filters.status
        ]
        page = items[filters.skip :]
        if filters.limit is not None:
            page = page[: filters.limit]
        return ExceptionLogListResponse(total=len(items), items=page)

    async def get_one(self, exception_uuid: UUID) -> DicomExceptionLogRead:
        self._check_available()
        if exception_uuid not in self.records:
            raise ExceptionLogNotFoundError(exception_uuid)
        return self.records[exception_uuid]

    async def get_by_scope(self, scope: BulkActionScope) -> list[DicomExceptionLogRead]:
        self._check_available()
        self.scope_calls += 1
        if scope.exception_uuids:
            return [r for r in self.records.values() if r.exception_uuid in scope.exception_uuids]
        return [
            r
            for r in self.records.values()
            if (not scope.study_instance_uid or r.study_instance_uid == scope.study_instance_uid)
            and (
                not scope.series_instance_uid
                or r.series_instance_uid == scope.series_instance_uid
            )
        ]

    async def update_one(
        self,
        exception_uuid: UUID,
        patch: DicomExceptionLogUpdate,
        expected_statuses: Collection[ExceptionStatus] | None = None,
    ) -> DicomExceptionLogRead:
        self._check_available()
        self.update_calls.append(exception_uuid)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            if exception_uuid in self.failures:
                raise self.failures[exception_uuid]
            record = await self.get_one(exception_uuid)
            if expected_statuses is not None and record.status not in expected_statuses:
                raise ExceptionLogConflictError(
                    exception_uuid, record.status.value, (s.value for s in expected_statuses)
                )
            updated = record.model_copy(update=patch.to_patch())
            self.records[exception_uuid] = updated
            return updated
        finally:
            self.in_flight -= 1
