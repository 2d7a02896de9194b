#!/usr/bin/env python3
"""DICOM Triage CLI - management utility for the exception triage service."""

import argparse
import asyncio
import sys
from pathlib import Path

from dicom_triage.exceptions.domain import TriageError
from dicom_triage.models import (
    BulkActionResult,
    BulkActionType,
    DicomQueryLevel,
    ExceptionLogFilters,
    ExceptionStatus,
)
from dicom_triage.services.exception_service import ExceptionService
from dicom_triage.services.record_store import ExceptionRecordStore
from dicom_triage.settings import settings
from dicom_triage.utils.db_manager import db_manager
from dicom_triage.utils.logger import logger


def init_project(path: str) -> None:
    """Write a starter settings.toml into the specified directory."""
    project_path = Path(path).resolve()
    (project_path / "data").mkdir(parents=True, exist_ok=True)

    settings_content = """# DICOM Triage Configuration File

# Server settings
port = 8000
host = "127.0.0.1"
debug = true

# Database settings
database_driver = "sqlite"
database_name = "dicom_triage"

# Storage settings
storage_path = "./data"

# Bulk remediation
bulk_action_max_concurrency = 8
exception_list_default_limit = 50
"""

    settings_file = project_path / "settings.toml"
    if not settings_file.exists():
        settings_file.write_text(settings_content)
        logger.info(f"Created settings file: {settings_file}")
    else:
        logger.info(f"Settings file already exists: {settings_file}")

    logger.info(f"Project initialized at {project_path}")


def run_server(host: str | None = None, port: int | None = None) -> None:
    """Run the DICOM Triage server."""
    import uvicorn

    host = host or settings.host or "127.0.0.1"
    port = port or settings.port or 8000

    logger.info(f"Starting DICOM Triage server at http://{host}:{port}")

    uvicorn.run(
        "dicom_triage.api.app:app",
        host=host,
        port=port,
        reload=settings.debug,
        log_level="info" if settings.debug else "warning",
    )


async def init_database() -> None:
    """Create the exception log tables."""
    logger.info("Initializing database...")
    try:
        await db_manager.create_db_and_tables_async()
    finally:
        await db_manager.close()
    logger.info("Database initialized successfully")


def _service() -> ExceptionService:
    return ExceptionService(ExceptionRecordStore(db_manager.async_session_factory))


async def show_tree(statuses: list[ExceptionStatus] | None, limit: int | None) -> None:
    """Log the study tree for the most recent exceptions."""
    try:
        response = await _service().on_filters_change(
            ExceptionLogFilters(status=statuses, limit=limit)
        )
    finally:
        await db_manager.close()

    logger.info(f"{response.total} matching exception(s), {len(response.studies)} study(ies)")
    for study in response.studies:
        logger.info(
            f"Study {study.study_instance_uid} [{study.patient_name or '-'} / "
            f"{study.patient_id or '-'}]: {study.status_summary}"
        )
        for series in study.series:
            logger.info(
                f"  Series {series.series_instance_uid} ({series.modality or '?'}): "
                f"{series.status_summary}"
            )
        if study.unassigned_records:
            logger.info(f"  {len(study.unassigned_records)} record(s) without series")
    if response.skipped_record_count:
        logger.warning(f"{response.skipped_record_count} record(s) could not be placed in the tree")


async def run_bulk(
    study_uid: str | None,
    series_uid: str | None,
    action: BulkActionType,
    new_status: ExceptionStatus | None,
    notes: str | None,
) -> BulkActionResult:
    """Run a bulk action over a study or a series."""
    service = _service()
    if series_uid:
        identifier, level = series_uid, DicomQueryLevel.SERIES
    else:
        identifier, level = study_uid or "", DicomQueryLevel.STUDY
    try:
        return await service.on_bulk_action(
            identifier,
            level,
            action,
            notes=notes,
            new_status=new_status,
            study_instance_uid=study_uid if series_uid else None,
        )
    finally:
        await db_manager.close()


def main() -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="dicom-triage",
        description="DICOM Triage CLI - triage and remediation of failed DICOM processing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # init command
    init_parser = subparsers.add_parser("init", help="Write a starter settings.toml")
    init_parser.add_argument(
        "path",
        nargs="?",
        default=".",
        help="Path where to create the project (default: current directory)",
    )

    # run command
    run_parser = subparsers.add_parser("run", help="Run the API server")
    run_parser.add_argument(
        "--host", type=str, default=None, help="Host to bind to (default: 127.0.0.1)"
    )
    run_parser.add_argument(
        "--port", type=int, default=None, help="Port to bind to (default: 8000)"
    )

    # db command
    db_parser = subparsers.add_parser("db", help="Database management")
    db_subparsers = db_parser.add_subparsers(dest="db_command")
    db_subparsers.add_parser("init", help="Initialize database with tables")

    # tree command
    tree_parser = subparsers.add_parser("tree", help="Show exceptions grouped by study and series")
    tree_parser.add_argument(
        "--status",
        type=ExceptionStatus,
        action="append",
        choices=list(ExceptionStatus),
        metavar="STATUS",
        help="Only include this status (repeatable)",
    )
    tree_parser.add_argument("--limit", type=int, default=None, help="Number of records to load")

    # bulk command
    bulk_parser = subparsers.add_parser("bulk", help="Run a bulk action over a study or series")
    bulk_parser.add_argument("--study", type=str, default=None, help="Study instance UID")
    bulk_parser.add_argument("--series", type=str, default=None, help="Series instance UID")
    bulk_action = bulk_parser.add_mutually_exclusive_group(required=True)
    bulk_action.add_argument(
        "--requeue", action="store_true", help="Requeue NEW and MANUAL_REVIEW_REQUIRED records"
    )
    bulk_action.add_argument(
        "--set-status",
        type=ExceptionStatus,
        choices=list(ExceptionStatus),
        default=None,
        metavar="STATUS",
        help="Set every record in scope to STATUS",
    )
    bulk_parser.add_argument("--notes", type=str, default=None, help="Resolution notes")

    args = parser.parse_args()

    if args.command == "init":
        init_project(args.path)
    elif args.command == "run":
        run_server(args.host, args.port)
    elif args.command == "db":
        if args.db_command == "init":
            asyncio.run(init_database())
        else:
            db_parser.print_help()
    elif args.command == "tree":
        asyncio.run(show_tree(args.status, args.limit))
    elif args.command == "bulk":
        if not args.study and not args.series:
            bulk_parser.error("one of --study or --series is required")
        action = BulkActionType.REQUEUE_RETRYABLE if args.requeue else BulkActionType.SET_STATUS
        try:
            result = asyncio.run(
                run_bulk(args.study, args.series, action, args.set_status, args.notes)
            )
        except TriageError as e:
            logger.error(str(e))
            sys.exit(1)
        logger.info(result.message)
        for detail in result.details:
            logger.warning(f"  {detail.exception_uuid} ({detail.sop_instance_uid}): {detail.error}")
        if result.failed_count:
            sys.exit(1)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
