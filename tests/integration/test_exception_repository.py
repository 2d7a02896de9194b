"""Integration tests for the exception repository and record store against real SQLite."""

from datetime import UTC, datetime, timedelta
from pathlib import Path
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from dicom_triage.exceptions.domain import (
    DatabaseConnectionError,
    DatabaseError,
    ExceptionLogConflictError,
    ExceptionLogNotFoundError,
)
from dicom_triage.models import (
    RETRYABLE_STATUSES,
    BulkActionScope,
    BulkActionSetStatusPayload,
    DicomExceptionLogCreate,
    DicomExceptionLogUpdate,
    ExceptionLogFilters,
    ExceptionSortField,
    ExceptionStatus,
    RequeueRetryableBulkActionRequest,
    SetStatusBulkActionRequest,
    SortOrder,
)
from dicom_triage.repositories import ExceptionLogRepository
from dicom_triage.services.bulk_dispatcher import BulkRemediationDispatcher
from dicom_triage.services.record_store import ExceptionRecordStore
from tests.utils.test_helpers import ExceptionFactory

# ===================================================================
# ExceptionLogRepository
# ===================================================================


class TestExceptionLogRepository:
    """Tests for ExceptionLogRepository."""

    @pytest_asyncio.fixture
    async def env(self, test_session):
        repo = ExceptionLogRepository(test_session)
        now = datetime(2024, 5, 1, 12, 0)
        records = [
            await ExceptionFactory.create(
                test_session,
                study_instance_uid="S1",
                series_instance_uid="SE1",
                patient_name="DOE^JANE",
                failure_timestamp=now,
            ),
            await ExceptionFactory.create(
                test_session,
                study_instance_uid="S1",
                series_instance_uid="SE2",
                status=ExceptionStatus.FAILED_PERMANENTLY,
                failure_timestamp=now + timedelta(hours=1),
            ),
            await ExceptionFactory.create(
                test_session,
                study_instance_uid="S2",
                series_instance_uid="SE1",
                patient_name="ROE^RICHARD",
                accession_number="ACC-77",
                status=ExceptionStatus.ARCHIVED,
                failure_timestamp=now + timedelta(hours=2),
            ),
        ]
        return {"repo": repo, "records": records, "now": now}

    @pytest.mark.asyncio
    async def test_get_by_uuid(self, env):
        record = env["records"][0]
        found = await env["repo"].get_by_uuid(record.exception_uuid)
        assert found.id == record.id

    @pytest.mark.asyncio
    async def test_get_by_uuid_not_found(self, env):
        with pytest.raises(ExceptionLogNotFoundError):
            await env["repo"].get_by_uuid(uuid4())

    @pytest.mark.asyncio
    async def test_find_default_newest_first(self, env):
        total, items = await env["repo"].find(ExceptionLogFilters())
        assert total == 3
        assert [item.id for item in items] == [r.id for r in reversed(env["records"])]

    @pytest.mark.asyncio
    async def test_find_sort_and_page(self, env):
        total, items = await env["repo"].find(
            ExceptionLogFilters(
                sort_by=ExceptionSortField.failure_timestamp,
                sort_order=SortOrder.asc,
                skip=1,
                limit=1,
            )
        )
        assert total == 3
        assert [item.id for item in items] == [env["records"][1].id]

    @pytest.mark.asyncio
    async def test_find_by_status(self, env):
        total, items = await env["repo"].find(
            ExceptionLogFilters(
                status=[ExceptionStatus.NEW, ExceptionStatus.FAILED_PERMANENTLY]
            )
        )
        assert total == 2
        assert {item.study_instance_uid for item in items} == {"S1"}

    @pytest.mark.asyncio
    async def test_find_search_term(self, env):
        total, items = await env["repo"].find(ExceptionLogFilters(search_term="acc-7"))
        assert total == 1
        assert items[0].patient_name == "ROE^RICHARD"

    @pytest.mark.asyncio
    async def test_find_date_range(self, env):
        now = env["now"]
        total, _ = await env["repo"].find(
            ExceptionLogFilters(
                date_from=now + timedelta(minutes=30), date_to=now + timedelta(hours=3)
            )
        )
        assert total == 2

    @pytest.mark.asyncio
    async def test_find_by_scope(self, env):
        repo = env["repo"]
        assert len(await repo.find_by_scope(BulkActionScope(study_instance_uid="S1"))) == 2
        assert len(await repo.find_by_scope(BulkActionScope(series_instance_uid="SE1"))) == 2
        scoped = await repo.find_by_scope(
            BulkActionScope(study_instance_uid="S2", series_instance_uid="SE1")
        )
        assert [r.id for r in scoped] == [env["records"][2].id]
        by_uuid = await repo.find_by_scope(
            BulkActionScope(exception_uuids=[env["records"][1].exception_uuid, uuid4()])
        )
        assert [r.id for r in by_uuid] == [env["records"][1].id]

    @pytest.mark.asyncio
    async def test_update_fields_writes_explicit_none(self, env):
        record = await ExceptionFactory.create(
            env["repo"].session, next_retry_attempt_at=datetime(2024, 6, 1, tzinfo=UTC)
        )
        updated = await env["repo"].update_fields(
            record, {"status": ExceptionStatus.RETRY_PENDING, "next_retry_attempt_at": None}
        )
        assert updated.status == ExceptionStatus.RETRY_PENDING
        assert updated.next_retry_attempt_at is None

    @pytest.mark.asyncio
    async def test_update_fields_rejects_identity(self, env):
        with pytest.raises(ValueError):
            await env["repo"].update_fields(env["records"][0], {"study_instance_uid": "X"})


# ===================================================================
# ExceptionRecordStore
# ===================================================================


class TestExceptionRecordStore:
    """Tests for the SQL-backed record store."""

    @pytest.mark.asyncio
    async def test_record_failure_and_get(self, record_store):
        created = await record_store.record_failure(
            DicomExceptionLogCreate(
                study_instance_uid="S9",
                sop_instance_uid="S9.1.1",
                error_message="C-STORE rejected",
                applied_rule_names=["anonymize"],
                destination_results={"PACS": {"status": "error"}},
            )
        )
        fetched = await record_store.get_one(created.exception_uuid)

        assert fetched.status == ExceptionStatus.NEW
        assert fetched.applied_rule_names == ["anonymize"]
        assert fetched.destination_results == {"PACS": {"status": "error"}}

    @pytest.mark.asyncio
    async def test_update_one_expected_status_conflict(self, record_store, test_session):
        record = await ExceptionFactory.create(
            test_session, status=ExceptionStatus.RETRY_IN_PROGRESS
        )
        with pytest.raises(ExceptionLogConflictError):
            await record_store.update_one(
                record.exception_uuid,
                DicomExceptionLogUpdate(status=ExceptionStatus.RETRY_PENDING),
                expected_statuses=RETRYABLE_STATUSES,
            )
        current = await record_store.get_one(record.exception_uuid)
        assert current.status == ExceptionStatus.RETRY_IN_PROGRESS

    @pytest.mark.asyncio
    async def test_update_one_not_found(self, record_store):
        with pytest.raises(ExceptionLogNotFoundError):
            await record_store.update_one(
                uuid4(), DicomExceptionLogUpdate(status=ExceptionStatus.ARCHIVED)
            )

    @pytest.mark.asyncio
    async def test_unreachable_database(self, tmp_path: Path):
        engine = create_async_engine(
            f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'nowhere.db'}"
        )
        store = ExceptionRecordStore(
            async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        )
        try:
            with pytest.raises(DatabaseConnectionError):
                await store.get_by_scope(BulkActionScope(study_instance_uid="S1"))
        finally:
            await engine.dispose()

    @pytest.mark.asyncio
    async def test_other_database_errors_are_not_connection_errors(
        self, record_store, monkeypatch
    ):
        async def broken_find_by_scope(self, scope):
            raise SQLAlchemyError("constraint failed")

        monkeypatch.setattr(ExceptionLogRepository, "find_by_scope", broken_find_by_scope)

        with pytest.raises(DatabaseError) as exc_info:
            await record_store.get_by_scope(BulkActionScope(study_instance_uid="S1"))
        assert not isinstance(exc_info.value, DatabaseConnectionError)
        assert "constraint failed" in str(exc_info.value)


# ===================================================================
# Bulk dispatch against the real store
# ===================================================================


class TestBulkDispatchIntegration:
    """Bulk remediation over real, concurrently opened sessions."""

    @pytest.mark.asyncio
    async def test_set_status_whole_study(self, record_store, test_session):
        await ExceptionFactory.create_many(
            test_session,
            [ExceptionStatus.NEW] * 6 + [ExceptionStatus.FAILED_PERMANENTLY] * 2,
            study_instance_uid="S1",
        )
        other = await ExceptionFactory.create(test_session, study_instance_uid="S2")

        result = await BulkRemediationDispatcher(record_store, max_concurrency=4).dispatch(
            SetStatusBulkActionRequest(
                scope=BulkActionScope(study_instance_uid="S1"),
                payload=BulkActionSetStatusPayload(
                    new_status=ExceptionStatus.ARCHIVED, resolution_notes="duplicate send"
                ),
            )
        )

        assert result.processed_count == 8
        assert result.successful_count == 8
        records = await record_store.get_by_scope(BulkActionScope(study_instance_uid="S1"))
        assert all(r.status == ExceptionStatus.ARCHIVED for r in records)
        assert all(r.resolution_notes == "duplicate send" for r in records)
        assert (await record_store.get_one(other.exception_uuid)).status == ExceptionStatus.NEW

    @pytest.mark.asyncio
    async def test_requeue_retryable(self, record_store, test_session):
        await ExceptionFactory.create_many(
            test_session,
            [
                ExceptionStatus.NEW,
                ExceptionStatus.MANUAL_REVIEW_REQUIRED,
                ExceptionStatus.ARCHIVED,
            ],
            study_instance_uid="S1",
            series_instance_uid="SE1",
            next_retry_attempt_at=datetime(2024, 6, 1, tzinfo=UTC),
        )

        result = await BulkRemediationDispatcher(record_store).dispatch(
            RequeueRetryableBulkActionRequest(
                scope=BulkActionScope(study_instance_uid="S1", series_instance_uid="SE1")
            )
        )

        assert result.processed_count == 2
        assert result.details == []
        records = await record_store.get_by_scope(BulkActionScope(study_instance_uid="S1"))
        statuses = sorted(r.status.value for r in records)
        assert statuses == ["ARCHIVED", "RETRY_PENDING", "RETRY_PENDING"]
        requeued = [r for r in records if r.status == ExceptionStatus.RETRY_PENDING]
        assert all(r.next_retry_attempt_at is None for r in requeued)
