from .coverage import (
    CoverageReconciler,
    CoverageReport,
    UnprotectedAssignment,
    is_gdap,
    protected_role_ids,
    qualifying_policies,
)

__all__ = [
    "CoverageReconciler",
    "CoverageReport",
    "UnprotectedAssignment",
    "is_gdap",
    "protected_role_ids",
    "qualifying_policies",
]
