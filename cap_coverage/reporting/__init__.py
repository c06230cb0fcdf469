"""Reporting package — CSV exports and the JSON run summary."""

from .csv_export import export_csv, ASSIGNMENT_FIELDS, UNPROTECTED_FIELDS
from .json_export import export_json

__all__ = [
    "export_csv",
    "export_json",
    "ASSIGNMENT_FIELDS",
    "UNPROTECTED_FIELDS",
]
