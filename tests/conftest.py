"""Pytest configuration and fixtures for cap_coverage tests."""

import httpx
import pytest

from cap_coverage.graph.client import GraphClient
from cap_coverage.models import (
    ASSIGNMENT_PERMANENT,
    PRINCIPAL_USER,
    Policy,
    PrincipalMetadata,
    RoleAssignment,
)
from cap_coverage.safety.guardian import SafetyGuardian

GLOBAL_ADMIN = "62e90394-69f5-4237-9190-012177145e10"
SECURITY_ADMIN = "194ae4cb-b126-40b2-bd5b-6091b380977d"
USER_ADMIN = "fe930be7-5e62-47db-91af-98c3a49a38b1"
CUSTOM_ROLE = "0f1e2d3c-4b5a-6978-8796-a5b4c3d2e1f0"


class FakeGraph:
    """
    Minimal Microsoft Graph stand-in served through httpx.MockTransport.

    `collections` maps an endpoint path to a list of items; a
    "roleDefinitionId eq '<id>'" $filter is honoured. `objects` maps
    "<collection>/<id>" to a single object. Paths in `forbidden` answer 403,
    paths in `broken` fail with a connection error. Everything else is 404.
    """

    def __init__(self):
        self.collections: dict[str, list] = {}
        self.objects: dict[str, dict] = {}
        self.forbidden: set[str] = set()
        self.broken: set[str] = set()
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/v1.0/")
        if path in self.broken:
            raise httpx.ConnectError("connection reset", request=request)
        if path in self.forbidden:
            return httpx.Response(403, json={"error": {"message": "Insufficient privileges"}})
        if path in self.objects:
            return httpx.Response(200, json=self.objects[path])
        if path in self.collections:
            items = self.collections[path]
            flt = request.url.params.get("$filter")
            if flt and flt.startswith("roleDefinitionId eq "):
                role_id = flt.split("'")[1]
                items = [i for i in items if i.get("roleDefinitionId") == role_id]
            return httpx.Response(200, json={"value": items})
        return httpx.Response(
            404, json={"error": {"code": "Request_ResourceNotFound", "message": "Not found"}}
        )

    def paths_requested(self) -> list[str]:
        return [r.url.path.removeprefix("/v1.0/") for r in self.requests]

    def client(self) -> GraphClient:
        return GraphClient(
            access_token="test-token",
            guardian=SafetyGuardian(),
            transport=httpx.MockTransport(self.handler),
        )


@pytest.fixture
def fake_graph():
    return FakeGraph()


@pytest.fixture
def no_sleep(monkeypatch):
    """Skip retry backoff; returns the list of requested waits."""
    waits = []

    async def fake_sleep(seconds):
        waits.append(seconds)

    monkeypatch.setattr("cap_coverage.graph.client.asyncio.sleep", fake_sleep)
    return waits


@pytest.fixture
def make_assignment():
    """Factory for RoleAssignment records with sensible defaults."""
    counter = {"n": 0}

    def _make(
        role_template_id=GLOBAL_ADMIN,
        role_name="Global Administrator",
        display_name="Adele Vance",
        principal_type=PRINCIPAL_USER,
        scope="/",
        assignment_type=ASSIGNMENT_PERMANENT,
        end_time=None,
    ):
        counter["n"] += 1
        n = counter["n"]
        return RoleAssignment(
            assignment_id=f"assignment-{n}",
            role_definition_id=role_template_id,
            role_template_id=role_template_id,
            role_name=role_name,
            principal_id=f"principal-{n}",
            principal_type=principal_type,
            directory_scope_id=scope,
            assignment_type=assignment_type,
            start_time="2024-01-01T00:00:00Z",
            end_time=end_time,
            principal=PrincipalMetadata(principal_type=principal_type, display_name=display_name),
        )

    return _make


@pytest.fixture
def sample_policies():
    return [
        Policy("p-enabled", "Require MFA for admins", "enabled",
               frozenset({GLOBAL_ADMIN}), requires_mfa=True),
        Policy("p-report", "Report-only MFA for security admins", "reportOnly",
               frozenset({SECURITY_ADMIN}), requires_mfa=True),
        Policy("p-disabled", "Block legacy auth for user admins", "disabled",
               frozenset({USER_ADMIN}), requires_mfa=False),
    ]
