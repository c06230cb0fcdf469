"""
Coverage Reconciler
Finds role assignments whose role is not named by any qualifying Conditional Access policy.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Collection, Iterable

from ..config import POLICY_FILTER_ENABLED, POLICY_FILTERS
from ..models import PRINCIPAL_FOREIGN_GROUP, STATE_ENABLED, Policy, RoleAssignment

logger = logging.getLogger("cap_coverage.analyzers.coverage")

# Directory scope of a delegated-admin (GDAP) assignment in the customer tenant
GDAP_SCOPE_IDS = frozenset({"/"})


@dataclass(frozen=True)
class UnprotectedAssignment:
    assignment: RoleAssignment
    is_built_in: bool
    is_gdap: bool

    @property
    def has_no_expiration(self) -> bool:
        return self.assignment.end_time is None

    def to_dict(self) -> dict:
        row = self.assignment.to_dict()
        row["IsBuiltIn"] = self.is_built_in
        row["IsGDAP"] = self.is_gdap
        row["NoExpiration"] = self.has_no_expiration
        return row


@dataclass
class CoverageReport:
    policy_filter: str
    qualifying_policies: list[Policy] = field(default_factory=list)
    protected_role_ids: frozenset[str] = frozenset()
    protected: list[RoleAssignment] = field(default_factory=list)
    unprotected: list[UnprotectedAssignment] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "policy_filter": self.policy_filter,
            "qualifying_policies": [p.to_dict() for p in self.qualifying_policies],
            "protected_role_ids": sorted(self.protected_role_ids),
            "protected_count": len(self.protected),
            "unprotected_count": len(self.unprotected),
        }


def qualifying_policies(
    policies: Iterable[Policy],
    policy_filter: str = POLICY_FILTER_ENABLED,
    mfa_only: bool = False,
) -> list[Policy]:
    if policy_filter not in POLICY_FILTERS:
        raise ValueError(f"policy_filter must be one of {POLICY_FILTERS}, got {policy_filter!r}")
    selected = []
    for p in policies:
        if policy_filter == POLICY_FILTER_ENABLED and p.enforcement_state != STATE_ENABLED:
            continue
        if mfa_only and not p.requires_mfa:
            continue
        selected.append(p)
    return selected


def protected_role_ids(policies: Iterable[Policy]) -> frozenset[str]:
    """Union of role ids named by the given policies."""
    ids: set[str] = set()
    for p in policies:
        ids.update(r.lower() for r in p.protected_role_ids)
    return frozenset(ids)


def is_gdap(assignment: RoleAssignment) -> bool:
    return (
        assignment.principal_type.lower() == PRINCIPAL_FOREIGN_GROUP.lower()
        and assignment.directory_scope_id in GDAP_SCOPE_IDS
    )


class CoverageReconciler:
    """
    Partitions role assignments by whether their role template id is
    protected by a qualifying policy. Pure and idempotent: the same inputs
    always give the same report.
    """

    name = "coverage_reconciler"

    def __init__(
        self,
        template_catalog: Collection[str],
        policy_filter: str = POLICY_FILTER_ENABLED,
        mfa_only: bool = False,
    ):
        self.template_ids = frozenset(t.lower() for t in template_catalog)
        self.policy_filter = policy_filter
        self.mfa_only = mfa_only

    def reconcile(
        self,
        assignments: Iterable[RoleAssignment],
        policies: Iterable[Policy],
    ) -> CoverageReport:
        selected = qualifying_policies(policies, self.policy_filter, self.mfa_only)
        protected_ids = protected_role_ids(selected)
        report = CoverageReport(
            policy_filter=self.policy_filter,
            qualifying_policies=selected,
            protected_role_ids=protected_ids,
        )

        for a in assignments:
            template_id = a.role_template_id.lower()
            if template_id in protected_ids:
                report.protected.append(a)
            else:
                report.unprotected.append(UnprotectedAssignment(
                    assignment=a,
                    is_built_in=template_id in self.template_ids,
                    is_gdap=is_gdap(a),
                ))

        report.unprotected.sort(
            key=lambda u: (u.assignment.role_name or "", u.assignment.identity_name or "")
        )

        if not selected:
            logger.warning(
                f"No qualifying policies under filter '{self.policy_filter}'; "
                f"every assignment is reported as unprotected"
            )
        logger.info(
            f"[{self.name}] {len(report.protected)} protected, "
            f"{len(report.unprotected)} unprotected across "
            f"{len(protected_ids)} protected role ids"
        )
        return report

