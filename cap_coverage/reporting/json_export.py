"""
JSON exporter — run summary: policies considered, counts, collector warnings, safety audit.
"""

from __future__ import annotations

import json
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path

from .. import __version__


def export_json(
    coverage_report,
    assignments: list,
    collector_results: dict,
    output_dir: Path,
    run_id: str,
    safety_record: dict | None = None,
) -> Path:
    """
    Write the coverage summary to a JSON file.

    Returns:
        Path to the created JSON file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    payload = {
        "metadata": {
            "tool": "cap-coverage",
            "version": __version__,
            "run_id": run_id,
            "generated_utc": datetime.now(timezone.utc).isoformat(),
            "mode": "READ-ONLY",
        },
        "coverage": coverage_report.to_dict(),
        "assignments": {
            "total": len(assignments),
            "by_type": dict(Counter(a.assignment_type for a in assignments)),
            "by_principal_type": dict(Counter(a.principal_type for a in assignments)),
        },
        "unprotected_roles": sorted({u.assignment.role_name for u in coverage_report.unprotected}),
        "collectors": {
            name: {
                "duration_seconds": r.metadata.get("duration_seconds"),
                "endpoints_queried": r.metadata.get("endpoints_queried"),
                "errors": r.metadata.get("errors", []),
                "warnings": r.metadata.get("warnings", []),
                "permission_gaps": r.metadata.get("permission_gaps", []),
            }
            for name, r in collector_results.items()
        },
        "safety": safety_record or {},
    }

    filepath = output_dir / f"coverage_summary_{run_id}.json"
    with open(filepath, "w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2, default=str, ensure_ascii=False)
    return filepath
