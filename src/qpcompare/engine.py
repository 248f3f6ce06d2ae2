"""
ComparisonService - orchestration layer for qpcompare.

Runs the legacy and native planners on the same (schema, operation),
canonicalizes both plans and compares them. The CLI and any CI wrapper use
this service rather than driving adapters and the comparator themselves.

Design principle: Ports & Adapters
- Planners are reached only through PlannerAdapter
- Comparison itself is pure (qpcompare.compare); this layer owns the
  side effects: subprocesses, threads and plan dumps

Usage:
    from qpcompare.engine import ComparisonService
    from qpcompare.adapters import CommandPlannerAdapter

    service = ComparisonService(
        legacy=CommandPlannerAdapter("legacy-planner", name="legacy"),
        native=CommandPlannerAdapter("native-planner", name="native"),
    )
    report = service.run(schema_sdl, operation_text)
    if not report.is_equivalent:
        print(render(report.result))

    # A directory of operations
    corpus = service.run_corpus(schema_sdl, [("me", "{ me { id } }"), ...])
"""

from __future__ import annotations

import json
import logging
import re
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Iterable

from qpcompare.adapters.base import PlannerAdapter
from qpcompare.canonical import CanonicalOptions, canonicalize_plan
from qpcompare.compare import CompareMode, CompareResult, compare_plans
from qpcompare.exceptions import PlannerError, PlannerErrorKind, QPCompareError
from qpcompare.loader import dump_plan
from qpcompare.plan.node import QueryPlan

if TYPE_CHECKING:
    from qpcompare.config import Config

logger = logging.getLogger(__name__)

LEGACY = "legacy"
NATIVE = "native"


@dataclass(frozen=True)
class ComparisonReport:
    """
    Outcome of planning and comparing one operation.

    Exactly one of `result` and `error` is set: a planner failure is never
    compared against a plan.
    """

    operation_id: str
    result: CompareResult | None = None
    error: PlannerError | None = None
    legacy_plan: QueryPlan | None = None
    native_plan: QueryPlan | None = None

    @property
    def is_equivalent(self) -> bool:
        return self.result is not None and self.result.is_equivalent

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def status(self) -> str:
        if self.error is not None:
            return "error"
        return "equivalent" if self.is_equivalent else "divergent"

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "status": self.status,
            "result": self.result.to_dict() if self.result else None,
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass(frozen=True)
class CorpusReport:
    """
    Report for a batch of operations (CI use case).

    Planner errors are recorded per operation instead of aborting the batch.
    """

    reports: tuple[ComparisonReport, ...] = ()

    @property
    def total(self) -> int:
        return len(self.reports)

    @property
    def equivalent_count(self) -> int:
        return sum(1 for r in self.reports if r.status == "equivalent")

    @property
    def divergent_count(self) -> int:
        return sum(1 for r in self.reports if r.status == "divergent")

    @property
    def error_count(self) -> int:
        return sum(1 for r in self.reports if r.status == "error")

    @property
    def has_failures(self) -> bool:
        return self.divergent_count > 0 or self.error_count > 0

    def to_summary_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "equivalent": self.equivalent_count,
            "divergent": self.divergent_count,
            "errors": self.error_count,
            "has_failures": self.has_failures,
        }


class ComparisonService:
    """
    Plans one operation with two planners and compares the results.

    All settings are explicit constructor arguments; the service never
    reads process-wide configuration on its own (see `from_config`).
    """

    def __init__(
        self,
        legacy: PlannerAdapter,
        native: PlannerAdapter,
        mode: CompareMode = CompareMode.EXHAUSTIVE,
        options: CanonicalOptions | None = None,
        parallel: bool = True,
        dump_dir: str | Path | None = None,
    ) -> None:
        """
        Initialize the service.

        Args:
            legacy: Reference planner (left side of every comparison)
            native: Planner under test (right side)
            mode: Comparison mode
            options: Canonicalization options
            parallel: Run both planners concurrently
            dump_dir: If set, write both plans there for inspection
        """
        self.legacy = legacy
        self.native = native
        self.mode = mode
        self.options = options or CanonicalOptions()
        self.parallel = parallel
        self.dump_dir = Path(dump_dir) if dump_dir is not None else None

    @classmethod
    def from_config(
        cls,
        legacy: PlannerAdapter,
        native: PlannerAdapter,
        config: "Config",
        **overrides: Any,
    ) -> "ComparisonService":
        """Build a service from a Config; keyword overrides win."""
        settings: dict[str, Any] = {
            "mode": config.default_mode,
            "options": config.canonical_options(),
            "parallel": config.parallel_planners,
        }
        settings.update(overrides)
        return cls(legacy, native, **settings)

    # -- planning -----------------------------------------------------------

    def plan_both(self, schema: str, operation: str) -> tuple[QueryPlan, QueryPlan]:
        """
        Run both planners and wait for both.

        Raises:
            PlannerError: Attributed to the planner that failed. If both
                fail, the legacy planner's error is raised.
        """
        if not self.parallel:
            return (
                _call(self.legacy, LEGACY, schema, operation),
                _call(self.native, NATIVE, schema, operation),
            )

        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="qpcompare-planner") as pool:
            legacy_future = pool.submit(_call, self.legacy, LEGACY, schema, operation)
            native_future = pool.submit(_call, self.native, NATIVE, schema, operation)
            legacy_error = _exception(legacy_future)
            native_error = _exception(native_future)

        if legacy_error is not None:
            raise legacy_error
        if native_error is not None:
            raise native_error
        return legacy_future.result(), native_future.result()

    # -- comparison ---------------------------------------------------------

    def compare(
        self,
        legacy_plan: QueryPlan,
        native_plan: QueryPlan,
        should_cancel: Callable[[], bool] | None = None,
    ) -> CompareResult:
        """Canonicalize and compare two already-produced plans."""
        return compare_plans(
            canonicalize_plan(legacy_plan, self.options),
            canonicalize_plan(native_plan, self.options),
            self.mode,
            assume_canonical=True,
            should_cancel=should_cancel,
        )

    def run(
        self,
        schema: str,
        operation: str,
        operation_id: str = "operation",
        should_cancel: Callable[[], bool] | None = None,
    ) -> ComparisonReport:
        """
        Plan and compare one operation.

        Raises:
            PlannerError: If either planner fails.
            ComparisonCancelled: If `should_cancel` fires mid-comparison.
        """
        legacy_plan, native_plan = self.plan_both(schema, operation)

        if self.dump_dir is not None:
            self.dump_plans(operation_id, legacy_plan, native_plan)

        result = self.compare(legacy_plan, native_plan, should_cancel)
        if result.is_equivalent:
            logger.info("%s: plans match", operation_id)
        else:
            logger.info(
                "%s: plans diverge (%d mismatch(es))", operation_id, len(result.mismatches)
            )

        return ComparisonReport(
            operation_id=operation_id,
            result=result,
            legacy_plan=legacy_plan,
            native_plan=native_plan,
        )

    def run_corpus(
        self,
        schema: str,
        operations: Iterable[tuple[str, str]],
    ) -> CorpusReport:
        """
        Plan and compare many operations against one schema.

        Args:
            schema: Supergraph SDL
            operations: (operation_id, operation_text) pairs

        Returns:
            CorpusReport with one entry per operation
        """
        reports: list[ComparisonReport] = []
        for operation_id, operation in operations:
            try:
                reports.append(self.run(schema, operation, operation_id))
            except PlannerError as e:
                logger.warning("%s: %s", operation_id, e.message)
                reports.append(ComparisonReport(operation_id=operation_id, error=e))
        return CorpusReport(reports=tuple(reports))

    # -- plan dumps ---------------------------------------------------------

    def dump_plans(
        self,
        operation_id: str,
        legacy_plan: QueryPlan,
        native_plan: QueryPlan,
    ) -> list[Path]:
        """
        Write both plans for inspection.

        Per planner: `<id>.<planner>.json` (loadable plan), `.detail.txt`
        (canonical rendering) and `.txt` (the planner's own formatted plan,
        when it supplied one).
        """
        if self.dump_dir is None:
            raise ValueError("dump_plans requires a dump directory")
        self.dump_dir.mkdir(parents=True, exist_ok=True)
        stem = _safe_name(operation_id)

        written: list[Path] = []
        for planner, plan in ((LEGACY, legacy_plan), (NATIVE, native_plan)):
            base = self.dump_dir / f"{stem}.{planner}"

            path = base.with_name(base.name + ".json")
            path.write_text(dump_plan(plan), encoding="utf-8")
            written.append(path)

            canonical = canonicalize_plan(plan, self.options)
            path = base.with_name(base.name + ".detail.txt")
            path.write_text(json.dumps(canonical.to_dict(), indent=2, sort_keys=True), encoding="utf-8")
            written.append(path)

            if plan.formatted:
                path = base.with_name(base.name + ".txt")
                path.write_text(plan.formatted, encoding="utf-8")
                written.append(path)

        logger.info("Dumped plans for %s to %s", operation_id, self.dump_dir)
        return written


def _call(adapter: PlannerAdapter, role: str, schema: str, operation: str) -> QueryPlan:
    """Run one adapter, attributing any failure to its role (legacy or native)."""
    try:
        return adapter.plan_query(schema, operation)
    except PlannerError as e:
        if e.planner == role:
            raise
        raise e.with_planner(role) from e
    except QPCompareError as e:
        raise PlannerError(
            PlannerErrorKind.INTERNAL_PLANNER_FAILURE,
            e.message,
            planner=role,
            details=(f"adapter: {adapter.name}",),
        ) from e


def _exception(future: Future[QueryPlan]) -> PlannerError | None:
    error = future.exception()
    if error is None:
        return None
    if isinstance(error, PlannerError):
        return error
    raise error


_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def _safe_name(operation_id: str) -> str:
    return _UNSAFE.sub("_", operation_id).strip("_") or "operation"
