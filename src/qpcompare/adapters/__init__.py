"""
Planner adapters.

An adapter produces a query plan for (schema, operation):

- **PlanFileAdapter**: replays a dumped plan JSON file
- **CommandPlannerAdapter**: runs an external planner command
"""

from qpcompare.adapters.base import PlannerAdapter, PlannerOptions
from qpcompare.adapters.command import CommandPlannerAdapter
from qpcompare.adapters.file import PlanFileAdapter

__all__ = [
    "PlannerAdapter",
    "PlannerOptions",
    "PlanFileAdapter",
    "CommandPlannerAdapter",
]
