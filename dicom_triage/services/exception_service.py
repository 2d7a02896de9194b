"""Service layer for exception triage: listing, single-record edits and bulk remediation."""

from uuid import UUID

from dicom_triage.exceptions.domain import BulkActionPolicyError
from dicom_triage.models import (
    RESOLVED_STATUSES,
    SYSTEM_OWNED_STATUSES,
    BulkActionPreview,
    BulkActionRequest,
    BulkActionResult,
    BulkActionScope,
    BulkActionSetStatusPayload,
    BulkActionType,
    DicomExceptionLogCreate,
    DicomExceptionLogRead,
    DicomExceptionLogUpdate,
    DicomQueryLevel,
    ExceptionHierarchyResponse,
    ExceptionLogFilters,
    ExceptionLogListResponse,
    ExceptionStatus,
    RequeueRetryableBulkActionRequest,
    SetStatusBulkActionRequest,
)
from dicom_triage.models.exception_log import utcnow
from dicom_triage.services.bulk_dispatcher import BulkRemediationDispatcher, select_eligible
from dicom_triage.services.hierarchy import build_hierarchy, compute_rollups
from dicom_triage.services.record_store import RecordStore
from dicom_triage.settings import settings
from dicom_triage.utils.logger import logger


class ExceptionService:
    """Service behind the exception triage page and its bulk actions."""

    def __init__(
        self,
        store: RecordStore,
        dispatcher: BulkRemediationDispatcher | None = None,
        default_limit: int | None = None,
        max_limit: int | None = None,
    ):
        """Initialize exception service.

        Args:
            store: Record store instance
            dispatcher: Optional bulk dispatcher; built from settings when omitted
            default_limit: Page size used when a query sets none
            max_limit: Upper bound on the page size
        """
        self.store = store
        self.dispatcher = dispatcher or BulkRemediationDispatcher(
            store, max_concurrency=settings.bulk_action_max_concurrency
        )
        self.default_limit = default_limit or settings.exception_list_default_limit
        self.max_limit = max_limit or settings.exception_list_max_limit

    def _page(self, filters: ExceptionLogFilters) -> ExceptionLogFilters:
        limit = min(filters.limit or self.default_limit, self.max_limit)
        return filters.model_copy(update={"limit": limit})

    # Listing

    async def list_exceptions(self, filters: ExceptionLogFilters) -> ExceptionLogListResponse:
        """Get one flat page of exception records.

        Args:
            filters: Filter, sort and paging options

        Returns:
            Matching total and the page of records
        """
        return await self.store.list_records(self._page(filters))

    async def on_filters_change(self, filters: ExceptionLogFilters) -> ExceptionHierarchyResponse:
        """Rebuild the study tree for the current filters.

        The tree is rebuilt from scratch and rolled up on every call; nothing
        is cached between calls.

        Args:
            filters: Filter, sort and paging options

        Returns:
            Study tree with status summaries
        """
        page = await self.store.list_records(self._page(filters))
        studies = compute_rollups(build_hierarchy(page.items))
        placed = sum(study.total_sop_instance_count for study in studies)
        skipped = len(page.items) - placed
        if skipped:
            logger.warning(f"{skipped} exception record(s) on this page could not be placed")
        return ExceptionHierarchyResponse(
            total=page.total, studies=studies, skipped_record_count=skipped
        )

    # Single-record operations

    async def record_failure(self, data: DicomExceptionLogCreate) -> DicomExceptionLogRead:
        """Log a processing failure reported by the pipeline."""
        return await self.store.record_failure(data)

    async def on_view_details(self, exception_uuid: UUID) -> DicomExceptionLogRead:
        """Get one exception record.

        Raises:
            ExceptionLogNotFoundError: If the record doesn't exist
        """
        return await self.store.get_one(exception_uuid)

    async def update_exception(
        self, exception_uuid: UUID, patch: DicomExceptionLogUpdate
    ) -> DicomExceptionLogRead:
        """Apply an edit from the detail view.

        Moving a record into a resolved status stamps ``resolved_at`` unless
        the edit sets it explicitly.

        Raises:
            ExceptionLogNotFoundError: If the record doesn't exist
        """
        if patch.status in RESOLVED_STATUSES and "resolved_at" not in patch.model_fields_set:
            patch = patch.model_copy(update={"resolved_at": utcnow()})
        record = await self.store.update_one(exception_uuid, patch)
        logger.info(f"Exception {exception_uuid} updated: {sorted(patch.model_fields_set)}")
        return record

    async def on_requeue_for_retry(self, exception_uuid: UUID) -> DicomExceptionLogRead:
        """Hand one record back to the retry worker."""
        patch = DicomExceptionLogUpdate(
            status=ExceptionStatus.RETRY_PENDING, next_retry_attempt_at=None
        )
        return await self.update_exception(exception_uuid, patch)

    async def on_update_status(
        self, exception_uuid: UUID, status: ExceptionStatus, notes: str | None = None
    ) -> DicomExceptionLogRead:
        """Set one record's status, optionally with resolution notes."""
        patch = DicomExceptionLogUpdate(status=status)
        if notes is not None:
            patch.resolution_notes = notes
        return await self.update_exception(exception_uuid, patch)

    # Bulk operations

    def check_bulk_policy(self, request: BulkActionRequest) -> None:
        """Reject bulk requests that operators may not issue.

        Raises:
            BulkActionPolicyError: If a SET_STATUS targets a system-owned status
        """
        if (
            isinstance(request, SetStatusBulkActionRequest)
            and request.payload.new_status in SYSTEM_OWNED_STATUSES
        ):
            raise BulkActionPolicyError(
                f"Bulk SET_STATUS to {request.payload.new_status.value} is not allowed; "
                "that status is managed by the retry worker"
            )

    async def run_bulk_action(self, request: BulkActionRequest) -> BulkActionResult:
        """Check policy and dispatch a fully specified bulk request.

        Raises:
            BulkActionPolicyError: If the request violates application policy
            DatabaseConnectionError: If the scope cannot be resolved
        """
        self.check_bulk_policy(request)
        return await self.dispatcher.dispatch(request)

    async def preview_bulk_action(self, request: BulkActionRequest) -> BulkActionPreview:
        """Report what a bulk request would touch, without changing anything."""
        self.check_bulk_policy(request)
        resolution = await self.dispatcher.resolver.resolve(request.scope)
        eligible = select_eligible(request, resolution.records)
        return BulkActionPreview(
            action_type=BulkActionType(request.action_type),
            scope_description=request.scope.describe(),
            resolved_count=len(resolution.records),
            eligible_count=len(eligible),
            diagnostic=resolution.diagnostic,
        )

    async def on_bulk_action(
        self,
        identifier: str,
        level: DicomQueryLevel,
        action: BulkActionType,
        notes: str | None = None,
        new_status: ExceptionStatus | None = None,
        study_instance_uid: str | None = None,
    ) -> BulkActionResult:
        """Run a bulk action addressed from a study or series row of the tree.

        Args:
            identifier: Study or series instance UID
            level: STUDY or SERIES
            action: Action to apply
            notes: Resolution notes for SET_STATUS
            new_status: Target status for SET_STATUS
            study_instance_uid: Parent study, to disambiguate a series UID

        Raises:
            BulkActionPolicyError: If the request is incomplete or violates policy
        """
        request = self.build_bulk_request(
            identifier, level, action, notes, new_status, study_instance_uid
        )
        return await self.run_bulk_action(request)

    def build_bulk_request(
        self,
        identifier: str,
        level: DicomQueryLevel,
        action: BulkActionType,
        notes: str | None = None,
        new_status: ExceptionStatus | None = None,
        study_instance_uid: str | None = None,
    ) -> BulkActionRequest:
        """Translate a tree-row action into a bulk request."""
        match level:
            case DicomQueryLevel.STUDY:
                scope = BulkActionScope(study_instance_uid=identifier)
            case DicomQueryLevel.SERIES:
                scope = BulkActionScope(
                    series_instance_uid=identifier, study_instance_uid=study_instance_uid
                )
            case _:
                raise BulkActionPolicyError(
                    f"Bulk actions from the tree address a study or series, not {level.value}"
                )

        if action == BulkActionType.REQUEUE_RETRYABLE:
            return RequeueRetryableBulkActionRequest(scope=scope)

        if new_status is None:
            raise BulkActionPolicyError("new_status is required for SET_STATUS")
        return SetStatusBulkActionRequest(
            scope=scope,
            payload=BulkActionSetStatusPayload(new_status=new_status, resolution_notes=notes),
        )
