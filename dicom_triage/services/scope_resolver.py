"""Resolution of bulk-action scopes into concrete exception records."""

from dataclasses import dataclass

from dicom_triage.models import BulkActionScope, DicomExceptionLogRead, DicomQueryLevel
from dicom_triage.services.record_store import RecordStore
from dicom_triage.utils.logger import logger


@dataclass(frozen=True)
class ScopeResolution:
    """Records addressed by a scope, captured at resolution time.

    ``records`` is the fixed input to dispatch; it is never recomputed while
    a bulk action is running.
    """

    scope: BulkActionScope
    records: tuple[DicomExceptionLogRead, ...] = ()
    diagnostic: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.records


class ScopeResolver:
    """Resolves scopes against the authoritative record store.

    Any tree a client is displaying may be stale relative to concurrent edits
    or automatic retries, so scopes are always re-queried.
    """

    def __init__(self, store: RecordStore):
        self.store = store

    async def resolve(self, scope: BulkActionScope) -> ScopeResolution:
        """Resolve a scope into the records it currently addresses.

        A series scope without a study UID fails closed when the series UID
        appears under more than one study: it resolves to no records and a
        diagnostic instead of guessing.

        Args:
            scope: Study, series or explicit-UUID scope

        Returns:
            Snapshot of the addressed records

        Raises:
            DatabaseConnectionError: If the record store is unreachable
        """
        records = await self.store.get_by_scope(scope)

        if scope.level == DicomQueryLevel.SERIES and not scope.study_instance_uid:
            study_uids = {record.study_instance_uid for record in records}
            if len(study_uids) > 1:
                known = sorted(uid or "<missing>" for uid in study_uids)
                diagnostic = (
                    f"Series {scope.series_instance_uid} appears in {len(study_uids)} studies "
                    f"({', '.join(known)}); specify study_instance_uid to disambiguate."
                )
                logger.warning(f"Ambiguous bulk-action scope: {diagnostic}")
                return ScopeResolution(scope=scope, diagnostic=diagnostic)

        if scope.exception_uuids:
            missing = len(set(scope.exception_uuids)) - len(records)
            if missing > 0:
                diagnostic = f"{missing} of the selected exception(s) no longer exist."
                logger.info(f"Bulk-action scope {scope.describe()}: {diagnostic}")
                return ScopeResolution(scope=scope, records=tuple(records), diagnostic=diagnostic)

        logger.debug(f"Resolved {scope.describe()} to {len(records)} exception record(s)")
        return ScopeResolution(scope=scope, records=tuple(records))
