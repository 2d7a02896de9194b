"""
Base models for DICOM Triage.

This module provides the shared enums and validation helpers used
throughout the DICOM Triage models.
"""

import enum
from typing import Any

from sqlmodel import SQLModel


def empty_to_none(value: Any) -> Any:
    """Convert empty or whitespace-only strings to None.

    Modality output frequently pads DICOM string values with spaces or NUL
    bytes, so both are treated as blank.
    """
    if isinstance(value, str):
        value = value.replace("\x00", " ").strip()
        if value == "" or value == "null":
            return None
    return value


class BaseModel(SQLModel):
    """Base model for all DICOM Triage SQLModel classes."""

    pass


class DicomQueryLevel(str, enum.Enum):
    """Enumeration of DICOM identity levels a bulk action can address."""

    STUDY = "STUDY"
    SERIES = "SERIES"
    IMAGE = "IMAGE"


class SortOrder(str, enum.Enum):
    """Sort direction for list queries."""

    asc = "asc"
    desc = "desc"
