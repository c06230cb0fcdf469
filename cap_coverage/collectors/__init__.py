from .base import BaseCollector, CollectorResult
from .role_templates import RoleTemplateCollector
from .assignments import AssignmentCollector, build_assignment
from .conditional_access import ConditionalAccessCollector
from .principals import DEFAULT_PROBES, PrincipalProbe, PrincipalResolver, graph_lookup

# Run order: catalogue, assignments, then policies.
ALL_COLLECTORS = [
    RoleTemplateCollector,
    AssignmentCollector,
    ConditionalAccessCollector,
]

__all__ = [
    "BaseCollector",
    "CollectorResult",
    "RoleTemplateCollector",
    "AssignmentCollector",
    "ConditionalAccessCollector",
    "PrincipalProbe",
    "PrincipalResolver",
    "DEFAULT_PROBES",
    "build_assignment",
    "graph_lookup",
    "ALL_COLLECTORS",
]
