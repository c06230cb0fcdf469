"""
Data models — role definitions, enriched role assignments, principals and CA policies.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

ASSIGNMENT_PERMANENT = "Permanent"
ASSIGNMENT_ELIGIBLE = "Eligible"

PRINCIPAL_USER = "User"
PRINCIPAL_GROUP = "Group"
PRINCIPAL_SERVICE_PRINCIPAL = "ServicePrincipal"
PRINCIPAL_DEVICE = "Device"
PRINCIPAL_UNKNOWN = "Unknown"
PRINCIPAL_FOREIGN_GROUP = "ForeignGroup"

STATE_ENABLED = "enabled"
STATE_DISABLED = "disabled"
STATE_REPORT_ONLY = "reportOnly"

# Graph policy state -> enforcement state
_GRAPH_POLICY_STATES = {
    "enabled": STATE_ENABLED,
    "disabled": STATE_DISABLED,
    "enabledForReportingButNotEnforced": STATE_REPORT_ONLY,
}


def first_present(*candidates: Any) -> Any:
    """Return the first candidate that is not None (empty strings count as missing)."""
    for value in candidates:
        if value is not None and value != "":
            return value
    return None


def odata_type_name(obj: Optional[dict]) -> str:
    """'#microsoft.graph.servicePrincipal' -> 'ServicePrincipal'."""
    raw = ((obj or {}).get("@odata.type") or "").split(".")[-1]
    return raw[:1].upper() + raw[1:]


@dataclass(frozen=True)
class RoleDefinition:
    id: str
    display_name: str
    template_id: str
    is_built_in: bool = False
    is_enabled: bool = True
    description: Optional[str] = None

    @classmethod
    def from_graph(cls, r: dict) -> "RoleDefinition":
        return cls(
            id=r["id"],
            display_name=r.get("displayName") or r["id"],
            template_id=first_present(r.get("templateId"), r["id"]).lower(),
            is_built_in=bool(r.get("isBuiltIn")),
            is_enabled=r.get("isEnabled", True) is not False,
            description=r.get("description"),
        )


@dataclass(frozen=True)
class PrincipalMetadata:
    """
    Descriptive data about an assignee. `principal_type` selects the variant;
    each variant fills its own subset of the optional fields.
    """
    principal_type: str = PRINCIPAL_UNKNOWN
    display_name: Optional[str] = None
    user_principal_name: Optional[str] = None
    mail: Optional[str] = None
    account_enabled: Optional[bool] = None
    user_type: Optional[str] = None
    job_title: Optional[str] = None
    department: Optional[str] = None
    on_premises_sync_enabled: Optional[bool] = None
    app_id: Optional[str] = None
    service_principal_type: Optional[str] = None
    device_id: Optional[str] = None
    operating_system: Optional[str] = None
    created_date_time: Optional[str] = None

    @property
    def is_resolved(self) -> bool:
        return self.principal_type != PRINCIPAL_UNKNOWN

    @classmethod
    def unknown(cls) -> "PrincipalMetadata":
        return cls()

    @classmethod
    def from_user(cls, u: dict) -> "PrincipalMetadata":
        return cls(
            principal_type=PRINCIPAL_USER,
            display_name=u.get("displayName"),
            user_principal_name=u.get("userPrincipalName"),
            mail=u.get("mail"),
            account_enabled=u.get("accountEnabled"),
            user_type=u.get("userType"),
            job_title=u.get("jobTitle"),
            department=u.get("department"),
            on_premises_sync_enabled=u.get("onPremisesSyncEnabled"),
            created_date_time=u.get("createdDateTime"),
        )

    @classmethod
    def from_group(cls, g: dict) -> "PrincipalMetadata":
        return cls(
            principal_type=PRINCIPAL_GROUP,
            display_name=g.get("displayName"),
            user_principal_name=g.get("mailNickname"),
            mail=g.get("mail"),
            on_premises_sync_enabled=g.get("onPremisesSyncEnabled"),
            created_date_time=g.get("createdDateTime"),
        )

    @classmethod
    def from_service_principal(cls, sp: dict) -> "PrincipalMetadata":
        return cls(
            principal_type=PRINCIPAL_SERVICE_PRINCIPAL,
            display_name=sp.get("displayName"),
            account_enabled=sp.get("accountEnabled"),
            app_id=sp.get("appId"),
            service_principal_type=sp.get("servicePrincipalType"),
            created_date_time=sp.get("createdDateTime"),
        )

    @classmethod
    def from_device(cls, d: dict) -> "PrincipalMetadata":
        return cls(
            principal_type=PRINCIPAL_DEVICE,
            display_name=d.get("displayName"),
            account_enabled=d.get("accountEnabled"),
            device_id=d.get("deviceId"),
            operating_system=d.get("operatingSystem"),
            on_premises_sync_enabled=d.get("onPremisesSyncEnabled"),
            created_date_time=d.get("createdDateTime"),
        )


@dataclass(frozen=True)
class RoleAssignment:
    """One assignment of a directory role to a principal, enriched with principal metadata."""
    assignment_id: str
    role_definition_id: str
    role_template_id: str
    role_name: str
    principal_id: str
    principal_type: str
    directory_scope_id: str
    assignment_type: str                   # Permanent | Eligible
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    principal: PrincipalMetadata = field(default_factory=PrincipalMetadata)

    @property
    def identity_name(self) -> str:
        return first_present(
            self.principal.display_name,
            self.principal.user_principal_name,
            self.principal_id,
        )

    def to_dict(self) -> dict:
        p = self.principal
        return {
            "RoleName": self.role_name,
            "RoleTemplateId": self.role_template_id,
            "RoleDefinitionId": self.role_definition_id,
            "AssignmentId": self.assignment_id,
            "AssignmentType": self.assignment_type,
            "PrincipalId": self.principal_id,
            "PrincipalType": self.principal_type,
            "DisplayName": p.display_name,
            "UserPrincipalName": p.user_principal_name,
            "Mail": p.mail,
            "AccountEnabled": p.account_enabled,
            "UserType": p.user_type,
            "JobTitle": p.job_title,
            "Department": p.department,
            "OnPremisesSyncEnabled": p.on_premises_sync_enabled,
            "AppId": p.app_id,
            "ServicePrincipalType": p.service_principal_type,
            "DeviceId": p.device_id,
            "OperatingSystem": p.operating_system,
            "PrincipalCreatedDateTime": p.created_date_time,
            "DirectoryScopeId": self.directory_scope_id,
            "StartDateTime": self.start_time,
            "EndDateTime": self.end_time,
        }


@dataclass(frozen=True)
class Policy:
    """A Conditional Access policy reduced to the roles it targets."""
    policy_id: str
    name: str
    enforcement_state: str
    protected_role_ids: frozenset[str] = frozenset()
    requires_mfa: bool = False

    @classmethod
    def from_graph(cls, p: dict) -> "Policy":
        conditions = p.get("conditions") or {}
        users = conditions.get("users") or {}
        grant = p.get("grantControls") or {}
        built_in = grant.get("builtInControls") or []
        return cls(
            policy_id=p.get("id") or "",
            name=p.get("displayName") or "",
            enforcement_state=_GRAPH_POLICY_STATES.get(p.get("state"), STATE_DISABLED),
            protected_role_ids=frozenset(r.lower() for r in users.get("includeRoles") or []),
            requires_mfa="mfa" in built_in or bool(grant.get("authenticationStrength")),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.policy_id,
            "name": self.name,
            "state": self.enforcement_state,
            "requiresMfa": self.requires_mfa,
            "protectedRoleIds": sorted(self.protected_role_ids),
        }
