"""DICOM Triage: triage and bulk remediation of failed DICOM processing."""

__version__ = "0.1.0"
