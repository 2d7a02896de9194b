"""
Derived Study -> Series -> SOP Instance tree models.

Nodes are rebuilt from the flat exception records on every pass and are
never persisted.
"""

from datetime import datetime

from .base import BaseModel
from .exception_log import DicomExceptionLogRead


class SeriesNode(BaseModel):
    """Failed SOP instances of one series within one study."""

    id: str
    study_instance_uid: str
    series_instance_uid: str
    modality: str | None = None
    sop_instance_count: int = 0
    status_summary: str = ""
    records: list[DicomExceptionLogRead] = []


class StudyNode(BaseModel):
    """Failed SOP instances of one study, grouped by series."""

    id: str
    study_instance_uid: str
    patient_name: str | None = None
    patient_id: str | None = None
    accession_number: str | None = None
    series_count: int = 0
    total_sop_instance_count: int = 0
    status_summary: str = ""
    earliest_failure: datetime | None = None
    latest_failure: datetime | None = None
    series: list[SeriesNode] = []
    # Records of this study that carry no series UID
    unassigned_records: list[DicomExceptionLogRead] = []

    def iter_records(self) -> list[DicomExceptionLogRead]:
        """Return every descendant record, series first, then unassigned."""
        records: list[DicomExceptionLogRead] = []
        for series in self.series:
            records.extend(series.records)
        records.extend(self.unassigned_records)
        return records


class ExceptionHierarchyResponse(BaseModel):
    """Study tree for one page of exception records."""

    total: int
    studies: list[StudyNode] = []
    skipped_record_count: int = 0
