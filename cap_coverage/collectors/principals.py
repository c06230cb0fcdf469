"""
Principal resolution — turns a bare directory object id into PrincipalMetadata.

Each probe asks one object collection (users, groups, servicePrincipals,
devices) for the id. Probes run in order and the first hit wins; if none
hits, the Unknown variant is returned. Resolution never raises.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import httpx

from ..graph.client import GraphAPIError, GraphClient
from ..models import PrincipalMetadata

logger = logging.getLogger("cap_coverage.collectors.principals")

# (collection, object_id, $select) -> object dict, or None when absent
Lookup = Callable[[str, str, str], Awaitable[Optional[dict]]]


@dataclass(frozen=True)
class PrincipalProbe:
    collection: str
    select: str
    build: Callable[[dict], PrincipalMetadata]


DEFAULT_PROBES = (
    PrincipalProbe(
        "users",
        "id,displayName,userPrincipalName,mail,accountEnabled,userType,"
        "jobTitle,department,onPremisesSyncEnabled,createdDateTime",
        PrincipalMetadata.from_user,
    ),
    PrincipalProbe(
        "groups",
        "id,displayName,mailNickname,mail,onPremisesSyncEnabled,createdDateTime",
        PrincipalMetadata.from_group,
    ),
    PrincipalProbe(
        "servicePrincipals",
        "id,displayName,appId,accountEnabled,servicePrincipalType,createdDateTime",
        PrincipalMetadata.from_service_principal,
    ),
    PrincipalProbe(
        "devices",
        "id,displayName,deviceId,accountEnabled,operatingSystem,"
        "onPremisesSyncEnabled,createdDateTime",
        PrincipalMetadata.from_device,
    ),
)


def graph_lookup(graph: GraphClient) -> Lookup:
    """Build a Lookup backed by single-object Graph GETs."""

    async def lookup(collection: str, object_id: str, select: str) -> Optional[dict]:
        try:
            data = await graph.get(f"{collection}/{object_id}", params={"$select": select})
        except GraphAPIError as e:
            # 400 is what Graph answers for ids that belong to another object type
            if e.status_code != 400:
                logger.warning(f"Lookup {collection}/{object_id} failed: {e}")
            return None
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Lookup {collection}/{object_id} failed: {type(e).__name__}: {e}")
            return None
        if data.get("_not_found") or data.get("_forbidden") or not data.get("id"):
            return None
        return data

    return lookup


class PrincipalResolver:
    """Resolves principal ids through an ordered probe list, memoising per id."""

    def __init__(self, lookup: Lookup, probes: tuple[PrincipalProbe, ...] = DEFAULT_PROBES):
        self.lookup = lookup
        self.probes = probes
        self._resolved: dict[str, PrincipalMetadata] = {}

    async def resolve(self, principal_id: str) -> PrincipalMetadata:
        if principal_id in self._resolved:
            return self._resolved[principal_id]

        metadata = PrincipalMetadata.unknown()
        if principal_id:
            for probe in self.probes:
                found = await self.lookup(probe.collection, principal_id, probe.select)
                if found is not None:
                    metadata = probe.build(found)
                    break
            else:
                logger.debug(f"Principal {principal_id} did not match any probe")

        self._resolved[principal_id] = metadata
        return metadata

    @property
    def unresolved_ids(self) -> list[str]:
        return sorted(pid for pid, m in self._resolved.items() if not m.is_resolved)
