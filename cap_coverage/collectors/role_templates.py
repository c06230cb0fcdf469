"""
Role Template Collector
Reads the fixed catalogue of built-in directory role templates.
"""

from __future__ import annotations

from .base import BaseCollector, CollectorResult


class RoleTemplateCollector(BaseCollector):
    name = "role_templates"
    description = "Built-in directory role template catalogue"

    async def collect(self, result: CollectorResult):
        templates = await self.safe_get_all(
            "directoryRoleTemplates",
            result,
            skip_top=True,  # This endpoint does not support $top
        )
        result.add_data("role_templates", {
            t["id"].lower(): t.get("displayName") or ""
            for t in templates
            if t.get("id")
        })
