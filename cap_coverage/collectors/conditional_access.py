"""
Conditional Access Policy Collector
Reads every CA policy and reduces it to the directory roles it targets.
"""

from __future__ import annotations

import logging

from ..models import Policy
from .base import BaseCollector, CollectorResult

logger = logging.getLogger("cap_coverage.collectors.conditional_access")


class ConditionalAccessCollector(BaseCollector):
    name = "conditional_access"
    description = "Conditional Access policies and the roles they include"

    async def collect(self, result: CollectorResult):
        raw_policies = await self.safe_get_all(
            "identity/conditionalAccess/policies",
            result,
            skip_top=True,
        )
        policies = [Policy.from_graph(p) for p in raw_policies]
        result.add_data("policies", policies)

        role_targeting = [p for p in policies if p.protected_role_ids]
        logger.info(
            f"{len(policies)} CA policies, {len(role_targeting)} target directory roles"
        )
        if policies and not role_targeting:
            result.add_warning("No Conditional Access policy includes any directory role")
