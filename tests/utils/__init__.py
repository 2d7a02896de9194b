"""
Test utilities and helpers for DICOM Triage tests.
"""

from .test_helpers import ExceptionFactory, FakeRecordStore, make_record

__all__ = [
    "ExceptionFactory",
    "FakeRecordStore",
    "make_record",
]
