"""
Bulk remediation dispatcher.

Applies one transition to every eligible record of a resolved scope. Each
record is updated independently: a failure on one record is captured in the
result and never aborts or rolls back the others.
"""

import asyncio
from collections.abc import Collection, Sequence

from sqlalchemy.exc import SQLAlchemyError

from dicom_triage.exceptions.domain import TriageError
from dicom_triage.models import (
    RESOLVED_STATUSES,
    RETRYABLE_STATUSES,
    BulkActionFailureDetail,
    BulkActionRequest,
    BulkActionResult,
    BulkActionType,
    DicomExceptionLogRead,
    DicomExceptionLogUpdate,
    ExceptionStatus,
    RequeueRetryableBulkActionRequest,
    SetStatusBulkActionRequest,
    is_nominal_transition,
)
from dicom_triage.models.exception_log import utcnow
from dicom_triage.services.record_store import RecordStore
from dicom_triage.services.scope_resolver import ScopeResolution, ScopeResolver
from dicom_triage.utils.logger import logger


def select_eligible(
    request: BulkActionRequest, records: Sequence[DicomExceptionLogRead]
) -> list[DicomExceptionLogRead]:
    """Filter resolved records down to the ones the action applies to.

    SET_STATUS applies to every record. REQUEUE_RETRYABLE applies only to
    records whose snapshot status is retryable; the rest are never attempted.
    """
    if isinstance(request, RequeueRetryableBulkActionRequest):
        return [record for record in records if record.status.is_retryable]
    return list(records)


def build_patch(request: BulkActionRequest) -> DicomExceptionLogUpdate:
    """Build the per-record update for an action."""
    if isinstance(request, SetStatusBulkActionRequest):
        payload = request.payload
        patch = DicomExceptionLogUpdate(status=payload.new_status)
        if payload.resolution_notes is not None:
            patch.resolution_notes = payload.resolution_notes
        if payload.clear_next_retry_attempt_at:
            patch.next_retry_attempt_at = None
        if payload.new_status in RESOLVED_STATUSES:
            patch.resolved_at = utcnow()
        return patch

    return DicomExceptionLogUpdate(
        status=ExceptionStatus.RETRY_PENDING, next_retry_attempt_at=None
    )


class BulkRemediationDispatcher:
    """Resolves a bulk-action scope and fans the transition out per record."""

    def __init__(self, store: RecordStore, max_concurrency: int = 8):
        """Initialize dispatcher.

        Args:
            store: Record store used for resolution and per-record updates
            max_concurrency: Upper bound on in-flight per-record updates
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.store = store
        self.resolver = ScopeResolver(store)
        self.max_concurrency = max_concurrency

    async def dispatch(self, request: BulkActionRequest) -> BulkActionResult:
        """Resolve the request's scope and apply its transition.

        Args:
            request: SET_STATUS or REQUEUE_RETRYABLE request

        Returns:
            Counts of attempted, successful and failed records plus failure details

        Raises:
            DatabaseConnectionError: If the scope cannot be resolved at all
        """
        resolution = await self.resolver.resolve(request.scope)
        return await self.dispatch_resolved(request, resolution)

    async def dispatch_resolved(
        self, request: BulkActionRequest, resolution: ScopeResolution
    ) -> BulkActionResult:
        """Apply the request's transition to an already captured resolution."""
        action_type = BulkActionType(request.action_type)
        scope_text = request.scope.describe()

        if resolution.is_empty:
            message = f"No exception records found for {scope_text}."
            if resolution.diagnostic:
                message = f"{message} {resolution.diagnostic}"
            logger.info(f"{action_type.value}: {message}")
            return BulkActionResult(action_type=action_type, message=message)

        eligible = select_eligible(request, resolution.records)
        if not eligible:
            message = (
                f"None of the {len(resolution.records)} exception record(s) in {scope_text} "
                f"are eligible for {action_type.value}."
            )
            logger.info(message)
            return BulkActionResult(action_type=action_type, message=message)

        patch = build_patch(request)
        expected_statuses = (
            RETRYABLE_STATUSES
            if isinstance(request, RequeueRetryableBulkActionRequest)
            else None
        )

        logger.info(
            f"{action_type.value} on {scope_text}: dispatching {len(eligible)} of "
            f"{len(resolution.records)} record(s), concurrency {self.max_concurrency}"
        )
        semaphore = asyncio.Semaphore(self.max_concurrency)
        outcomes = await asyncio.gather(
            *(
                self._apply_one(record, patch, expected_statuses, semaphore)
                for record in eligible
            )
        )

        details = [outcome for outcome in outcomes if outcome is not None]
        processed = len(eligible)
        failed = len(details)
        successful = processed - failed

        message = (
            f"{action_type.value} on {scope_text}: {successful} of {processed} "
            f"record(s) updated successfully"
        )
        message = f"{message}, {failed} failed." if failed else f"{message}."
        if resolution.diagnostic:
            message = f"{message} {resolution.diagnostic}"

        log = logger.warning if failed else logger.info
        log(message)

        return BulkActionResult(
            action_type=action_type,
            processed_count=processed,
            successful_count=successful,
            failed_count=failed,
            message=message,
            details=details,
        )

    async def _apply_one(
        self,
        record: DicomExceptionLogRead,
        patch: DicomExceptionLogUpdate,
        expected_statuses: Collection[ExceptionStatus] | None,
        semaphore: asyncio.Semaphore,
    ) -> BulkActionFailureDetail | None:
        """Apply the patch to one record; return a failure detail instead of raising."""
        if patch.status is not None and not is_nominal_transition(record.status, patch.status):
            if record.status.is_terminal and patch.status != record.status:
                logger.info(
                    f"Reopening exception {record.exception_uuid}: "
                    f"{record.status.value} -> {patch.status.value}"
                )
            else:
                logger.debug(
                    f"Administrative transition {record.status.value} -> {patch.status.value} "
                    f"for exception {record.exception_uuid}"
                )

        async with semaphore:
            try:
                await self.store.update_one(
                    record.exception_uuid, patch, expected_statuses=expected_statuses
                )
            except (TriageError, SQLAlchemyError) as e:
                logger.warning(f"Bulk update failed for exception {record.exception_uuid}: {e}")
                return BulkActionFailureDetail(
                    exception_uuid=record.exception_uuid,
                    sop_instance_uid=record.sop_instance_uid,
                    error=str(e) or type(e).__name__,
                )
            except Exception as e:
                logger.exception(f"Unexpected error updating exception {record.exception_uuid}")
                return BulkActionFailureDetail(
                    exception_uuid=record.exception_uuid,
                    sop_instance_uid=record.sop_instance_uid,
                    error=f"{type(e).__name__}: {e}" if str(e) else type(e).__name__,
                )
        return None
