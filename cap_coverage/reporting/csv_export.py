"""
CSV exporter — all role assignments, and the subset no qualifying CA policy protects.
"""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Iterable

ASSIGNMENT_FIELDS = [
    "RoleName", "RoleTemplateId", "RoleDefinitionId", "AssignmentId",
    "AssignmentType", "PrincipalId", "PrincipalType", "DisplayName",
    "UserPrincipalName", "Mail", "AccountEnabled", "UserType", "JobTitle",
    "Department", "OnPremisesSyncEnabled", "AppId", "ServicePrincipalType",
    "DeviceId", "OperatingSystem", "PrincipalCreatedDateTime",
    "DirectoryScopeId", "StartDateTime", "EndDateTime",
]

UNPROTECTED_FIELDS = ASSIGNMENT_FIELDS + ["IsBuiltIn", "IsGDAP", "NoExpiration"]


def _write_rows(path: Path, fieldnames: list[str], rows: Iterable[dict]) -> Path:
    # utf-8-sig so Excel picks up the encoding
    with open(path, "w", newline="", encoding="utf-8-sig") as fh:
        writer = csv.DictWriter(fh, fieldnames=fieldnames, extrasaction="ignore")
        writer.writeheader()
        for row in rows:
            writer.writerow({k: "" if v is None else v for k, v in row.items()})
    return path


def export_csv(
    assignments: list,
    coverage_report,
    output_dir: Path,
    run_id: str,
) -> list[Path]:
    """
    Write the full assignment export and the unprotected export.

    Returns:
        List of created CSV file paths.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    ordered = sorted(assignments, key=lambda a: (a.role_name or "", a.identity_name or ""))

    return [
        _write_rows(
            output_dir / f"role_assignments_{run_id}.csv",
            ASSIGNMENT_FIELDS,
            (a.to_dict() for a in ordered),
        ),
        _write_rows(
            output_dir / f"unprotected_role_assignments_{run_id}.csv",
            UNPROTECTED_FIELDS,
            (u.to_dict() for u in coverage_report.unprotected),
        ),
    ]
