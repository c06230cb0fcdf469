"""
Role Assignment Collector
For every directory role definition, enumerates permanent assignments and PIM
eligibility schedules, then attaches the assignee's metadata.
"""

from __future__ import annotations

import logging
from typing import Optional

from ..models import (
    ASSIGNMENT_ELIGIBLE,
    ASSIGNMENT_PERMANENT,
    PRINCIPAL_UNKNOWN,
    PrincipalMetadata,
    RoleAssignment,
    RoleDefinition,
    first_present,
    odata_type_name,
)
from .base import BaseCollector, CollectorResult
from .principals import PrincipalResolver, graph_lookup

logger = logging.getLogger("cap_coverage.collectors.assignments")

ROLE_DEFINITIONS = "roleManagement/directory/roleDefinitions"
ROLE_ASSIGNMENTS = "roleManagement/directory/roleAssignments"
ROLE_ASSIGNMENT_SCHEDULES = "roleManagement/directory/roleAssignmentSchedules"
ROLE_ELIGIBILITY_SCHEDULES = "roleManagement/directory/roleEligibilitySchedules"


def build_assignment(
    role: RoleDefinition,
    raw: dict,
    assignment_type: str,
    principal: PrincipalMetadata,
    schedule: Optional[dict] = None,
) -> RoleAssignment:
    """
    Flatten one Graph assignment (or eligibility schedule) into a RoleAssignment.

    Dates come from the schedule: start is scheduleInfo.startDateTime, then
    createdDateTime, then None; end is scheduleInfo.expiration.endDateTime or None.
    When no probe resolved the principal, the expanded principal's @odata.type
    is kept as the principal type so cross-tenant groups remain recognisable.
    """
    schedule = schedule or {}
    info = schedule.get("scheduleInfo") or {}
    expiration = info.get("expiration") or {}

    if principal.is_resolved:
        principal_type = principal.principal_type
    else:
        principal_type = first_present(odata_type_name(raw.get("principal")), PRINCIPAL_UNKNOWN)

    return RoleAssignment(
        assignment_id=raw.get("id") or "",
        role_definition_id=role.id,
        role_template_id=role.template_id,
        role_name=role.display_name,
        principal_id=raw.get("principalId") or "",
        principal_type=principal_type,
        directory_scope_id=first_present(raw.get("directoryScopeId"), "/"),
        assignment_type=assignment_type,
        start_time=first_present(info.get("startDateTime"), schedule.get("createdDateTime")),
        end_time=first_present(expiration.get("endDateTime")),
        principal=principal,
    )


class AssignmentCollector(BaseCollector):
    name = "role_assignments"
    description = "Role definitions with permanent and eligible assignments, principals resolved"

    def __init__(self, graph, config, resolver: Optional[PrincipalResolver] = None):
        super().__init__(graph, config)
        self.resolver = resolver or PrincipalResolver(graph_lookup(graph))

    async def collect(self, result: CollectorResult):
        raw_roles = await self.safe_get_all(ROLE_DEFINITIONS, result, skip_top=True)
        roles = [RoleDefinition.from_graph(r) for r in raw_roles if r.get("id")]
        result.add_data("role_definitions", roles)

        # Roles are walked one at a time; principal lookups are memoised across roles.
        records: list[RoleAssignment] = []
        for role in roles:
            records.extend(await self._collect_role(role, result))
        result.add_data("role_assignments", records)

        open_ended = [
            r for r in records
            if r.assignment_type == ASSIGNMENT_ELIGIBLE and r.end_time is None
        ]
        if open_ended:
            result.add_warning(
                f"{len(open_ended)} eligible assignment(s) have no end date; "
                f"flagged as NoExpiration in the export"
            )

        unresolved = self.resolver.unresolved_ids
        result.metadata["unresolved_principals"] = unresolved
        if unresolved:
            logger.info(f"{len(unresolved)} principal(s) did not resolve; reported as Unknown")

    async def _collect_role(self, role: RoleDefinition, result: CollectorResult) -> list[RoleAssignment]:
        role_filter = f"roleDefinitionId eq '{role.id}'"
        records = []

        permanent = await self.safe_get_all(
            ROLE_ASSIGNMENTS,
            result,
            params={"$filter": role_filter, "$expand": "principal"},
            skip_top=True,
        )
        if permanent:
            schedules = await self.safe_get_all(
                ROLE_ASSIGNMENT_SCHEDULES,
                result,
                params={"$filter": role_filter},
                skip_top=True,
            )
            by_principal_scope = {
                (s.get("principalId"), s.get("directoryScopeId")): s for s in schedules
            }
            for raw in permanent:
                principal = await self.resolver.resolve(raw.get("principalId") or "")
                schedule = by_principal_scope.get((raw.get("principalId"), raw.get("directoryScopeId")))
                records.append(build_assignment(role, raw, ASSIGNMENT_PERMANENT, principal, schedule))

        if self.config.include_eligible:
            eligible = await self.safe_get_all(
                ROLE_ELIGIBILITY_SCHEDULES,
                result,
                params={"$filter": role_filter, "$expand": "principal"},
                skip_top=True,
            )
            for raw in eligible:
                principal = await self.resolver.resolve(raw.get("principalId") or "")
                records.append(build_assignment(role, raw, ASSIGNMENT_ELIGIBLE, principal, raw))

        if records:
            logger.debug(f"{role.display_name}: {len(records)} assignment(s)")
        return records
