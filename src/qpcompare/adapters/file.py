"""
Adapter serving a previously dumped plan.

Useful for replaying a planner's output without running it again, e.g.
comparing a plan captured in production against a fresh native plan.
"""

from __future__ import annotations

import logging
from pathlib import Path

from qpcompare.adapters.base import PlannerAdapter
from qpcompare.exceptions import PlanParseError, PlannerError, PlannerErrorKind
from qpcompare.loader import LoaderConfig, load_plan_file
from qpcompare.plan.node import QueryPlan

logger = logging.getLogger(__name__)


class PlanFileAdapter(PlannerAdapter):
    """
    Reads a dumped plan JSON file; schema and operation are ignored.

    A file that cannot be loaded is reported as an internal planner
    failure, attributed to this adapter's name.
    """

    def __init__(
        self,
        path: str | Path,
        name: str = "file",
        config: LoaderConfig | None = None,
    ) -> None:
        self.path = Path(path)
        self.name = name
        self.config = config

    def plan_query(self, schema: str, operation: str) -> QueryPlan:
        logger.info("Loading %s plan from %s", self.name, self.path)
        try:
            return load_plan_file(self.path, self.config)
        except PlanParseError as e:
            raise PlannerError(
                PlannerErrorKind.INTERNAL_PLANNER_FAILURE,
                e.message,
                planner=self.name,
                details=(e.detail,) if e.detail else (),
            ) from e
