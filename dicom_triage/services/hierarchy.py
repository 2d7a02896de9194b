"""
Hierarchy builder and status rollup calculator.

Turns the flat exception record stream into a Study -> Series -> SOP Instance
tree and derives the status summaries shown at series and study level. Both
functions are pure: they never touch the record store and never mutate their
input.
"""

from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from dicom_triage.models import (
    DicomExceptionLogRead,
    ExceptionStatus,
    SeriesNode,
    StudyNode,
)
from dicom_triage.utils.logger import logger


def _first_known(current: str | None, candidate: str | None) -> str | None:
    """Keep the first non-empty value; a later blank never overwrites it."""
    return current if current else (candidate or None)


def build_hierarchy(records: Iterable[Any]) -> list[StudyNode]:
    """Group flat exception records into study and series nodes.

    Studies and series keep first-seen order. Patient identity and modality
    take the first non-empty value seen. Records that fail validation or carry
    no study UID cannot be placed and are skipped with a warning; records
    without a series UID are counted in their study and kept in
    ``unassigned_records``.

    Args:
        records: Exception records (table rows or read models), in display order

    Returns:
        Study nodes with empty status summaries; run ``compute_rollups`` next
    """
    studies: dict[str, StudyNode] = {}
    series_by_study: dict[str, dict[str, SeriesNode]] = {}

    for raw in records:
        try:
            record = DicomExceptionLogRead.model_validate(raw)
        except ValidationError as e:
            logger.warning(
                f"Skipping malformed exception record: {e.error_count()} validation error(s)"
            )
            continue
        study_uid = record.study_instance_uid
        if not study_uid:
            logger.warning(
                f"Skipping exception {record.exception_uuid}: no study_instance_uid to group by"
            )
            continue

        study = studies.get(study_uid)
        if study is None:
            study = StudyNode(id=study_uid, study_instance_uid=study_uid)
            studies[study_uid] = study
            series_by_study[study_uid] = {}

        study.total_sop_instance_count += 1
        study.patient_name = _first_known(study.patient_name, record.patient_name)
        study.patient_id = _first_known(study.patient_id, record.patient_id)
        study.accession_number = _first_known(study.accession_number, record.accession_number)
        _extend_failure_window(study, record.failure_timestamp)

        series_uid = record.series_instance_uid
        if not series_uid:
            logger.debug(
                f"Exception {record.exception_uuid} in study {study_uid} has no "
                "series_instance_uid, listing it as unassigned"
            )
            study.unassigned_records.append(record)
            continue

        study_series = series_by_study[study_uid]
        series = study_series.get(series_uid)
        if series is None:
            series = SeriesNode(
                id=f"{study_uid}_{series_uid}",
                study_instance_uid=study_uid,
                series_instance_uid=series_uid,
            )
            study_series[series_uid] = series

        series.modality = _first_known(series.modality, record.modality)
        series.sop_instance_count += 1
        series.records.append(record)

    for study_uid, study in studies.items():
        study.series = list(series_by_study[study_uid].values())
        study.series_count = len(study.series)

    return list(studies.values())


def _extend_failure_window(study: StudyNode, timestamp: datetime | None) -> None:
    """Widen the study's earliest/latest failure bounds to include ``timestamp``."""
    if timestamp is None:
        return
    if study.earliest_failure is None or timestamp < study.earliest_failure:
        study.earliest_failure = timestamp
    if study.latest_failure is None or timestamp > study.latest_failure:
        study.latest_failure = timestamp


def count_statuses(records: Sequence[DicomExceptionLogRead]) -> tuple[int, int, int]:
    """Return (total, NEW count, FAILED_PERMANENTLY count)."""
    new = sum(1 for r in records if r.status == ExceptionStatus.NEW)
    failed = sum(1 for r in records if r.status == ExceptionStatus.FAILED_PERMANENTLY)
    return len(records), new, failed


def format_series_summary(records: Sequence[DicomExceptionLogRead]) -> str:
    total, new, failed = count_statuses(records)
    return f"{total} SOPs ({new} New, {failed} Failed)"


def format_study_summary(records: Sequence[DicomExceptionLogRead]) -> str:
    total, new, failed = count_statuses(records)
    return f"{total} Total SOPs ({new} New, {failed} Failed)"


def compute_rollups(studies: Sequence[StudyNode]) -> list[StudyNode]:
    """Fill in status summaries from the current leaf statuses.

    Series summaries count their direct records. Study summaries count every
    descendant record, including ones without a series, so the study total
    always matches ``total_sop_instance_count``. Only NEW and
    FAILED_PERMANENTLY are broken out; other statuses are visible per record.

    Returns new nodes; the input tree is left untouched, so re-running on an
    already summarized tree yields identical summaries.
    """
    rolled_up: list[StudyNode] = []
    for study in studies:
        series = [
            node.model_copy(update={"status_summary": format_series_summary(node.records)})
            for node in study.series
        ]
        rolled_up.append(
            study.model_copy(
                update={
                    "series": series,
                    "status_summary": format_study_summary(study.iter_records()),
                }
            )
        )
    return rolled_up
