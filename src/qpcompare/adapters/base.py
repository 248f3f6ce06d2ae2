"""
Base adapter interface for query planners.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from qpcompare.plan.node import PlanNode, QueryPlan


@dataclass(frozen=True)
class PlannerOptions:
    """
    Planner settings forwarded to both planners of a comparison.

    Both planners must be configured alike or their plans are not
    comparable.

    Attributes:
        generate_fragments: Let the planner extract named fragments in
            subgraph operations.
        type_conditioned_fetching: Enable type-conditioned fetching.
    """

    generate_fragments: bool = True
    type_conditioned_fetching: bool = False

    def as_env(self) -> dict[str, str]:
        """Environment variables passed to external planner commands."""
        return {
            "QPCOMPARE_GENERATE_FRAGMENTS": str(self.generate_fragments).lower(),
            "QPCOMPARE_TYPE_CONDITIONED_FETCHING": str(self.type_conditioned_fetching).lower(),
        }


class PlannerAdapter(ABC):
    """
    Abstract base for planner adapters.

    Each adapter turns (schema, operation) into a QueryPlan, or raises
    PlannerError. Adapters never compare anything themselves.
    """

    name: str = "planner"

    @abstractmethod
    def plan_query(self, schema: str, operation: str) -> QueryPlan:
        """
        Plan one operation against a supergraph schema.

        Args:
            schema: Supergraph SDL.
            operation: GraphQL operation text.

        Returns:
            The root plan container (possibly empty).

        Raises:
            PlannerError: If the planner cannot produce a plan.
        """
        ...

    def plan(self, schema: str, operation: str) -> PlanNode | None:
        """Plan an operation and return the root node (None for an empty plan)."""
        return self.plan_query(schema, operation).node

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
