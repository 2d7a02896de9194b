"""Repository layer for data access operations."""

from dicom_triage.repositories.base import BaseRepository
from dicom_triage.repositories.exception_repository import ExceptionLogRepository

__all__ = ["BaseRepository", "ExceptionLogRepository"]
