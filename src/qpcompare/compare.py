"""
Semantic comparison of two query plans.

Walks two canonical plan trees in lock-step and records every place where
they diverge as a Mismatch: a breadcrumb path to the divergence, the left
and right descriptions, and a MismatchKind. The result is a localized
mismatch trail rather than a single "not equal" signal.

Two modes:
- EXHAUSTIVE (default): collect every mismatch; used for diagnostics.
- FAIL_FAST: stop at the first mismatch; used for gating.

Equivalence is the case where exhaustive comparison yields no mismatches.

Usage:
    from qpcompare.compare import compare, CompareMode

    result = compare(legacy_plan, native_plan)
    if not result.is_equivalent:
        for mismatch in result.mismatches:
            print(mismatch.breadcrumb, mismatch.reason.value)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, unique
from typing import Any, Callable, Iterable

from qpcompare.canonical import CanonicalOptions, canonicalize
from qpcompare.exceptions import ComparisonCancelled
from qpcompare.plan.node import (
    ConditionNode,
    DataRewrite,
    DeferNode,
    DeferredPart,
    FetchNode,
    FlattenNode,
    NodeKind,
    ParallelNode,
    PlanNode,
    QueryPlan,
    SequenceNode,
    SubscriptionNode,
    UnknownNode,
)

logger = logging.getLogger(__name__)


@unique
class CompareMode(str, Enum):
    """How much of the tree to examine."""

    FAIL_FAST = "fail_fast"
    EXHAUSTIVE = "exhaustive"


@unique
class MismatchKind(str, Enum):
    """Why two plans diverge at a position."""

    KIND_MISMATCH = "kind_mismatch"
    LENGTH_MISMATCH = "length_mismatch"
    SERVICE_MISMATCH = "service_mismatch"
    OPERATION_MISMATCH = "operation_mismatch"
    OPERATION_KIND_MISMATCH = "operation_kind_mismatch"
    REQUIRES_MISMATCH = "requires_mismatch"
    VARIABLE_USAGES_MISMATCH = "variable_usages_mismatch"
    REWRITE_MISMATCH = "rewrite_mismatch"
    BRANCH_PRESENCE_MISMATCH = "branch_presence_mismatch"
    CONDITION_MISMATCH = "condition_mismatch"
    PATH_MISMATCH = "path_mismatch"
    DEFER_MISMATCH = "defer_mismatch"
    MALFORMED_PLAN = "malformed_plan"


@unique
class Verdict(str, Enum):
    EQUIVALENT = "equivalent"
    DIVERGENT = "divergent"


# =============================================================================
# Mismatch records
# =============================================================================


@dataclass(frozen=True)
class Step:
    """
    One level of a tree address.

    Either a descent into a child (`child` names which one, e.g. "step 1"
    or "branch service=Products key=ab12...") or an attribute of the node
    itself (`attribute`, e.g. "operation").
    """

    kind: str
    child: str | None = None
    attribute: str | None = None

    def __str__(self) -> str:
        text = self.kind
        if self.child is not None:
            text += f"[{self.child}]"
        if self.attribute is not None:
            text += f".{self.attribute}"
        return text


@dataclass(frozen=True)
class Mismatch:
    """
    A single divergence between the left and right plans.

    Attributes:
        path: Tree address of the divergence, root first.
        reason: What kind of divergence this is.
        left_description: The left (expected) side.
        right_description: The right (actual) side.
        left_items: For set-valued attributes, the left set.
        right_items: For set-valued attributes, the right set.
    """

    path: tuple[Step, ...]
    reason: MismatchKind
    left_description: str
    right_description: str
    left_items: frozenset[str] | None = None
    right_items: frozenset[str] | None = None

    @property
    def breadcrumb(self) -> str:
        """Human-readable path, e.g. 'Parallel[branch service=A] > Fetch.operation'."""
        if not self.path:
            return "<root>"
        return " > ".join(str(step) for step in self.path)

    @property
    def is_set_mismatch(self) -> bool:
        return self.left_items is not None and self.right_items is not None

    @property
    def only_left(self) -> frozenset[str]:
        if not self.is_set_mismatch:
            return frozenset()
        return self.left_items - self.right_items  # type: ignore[operator]

    @property
    def only_right(self) -> frozenset[str]:
        if not self.is_set_mismatch:
            return frozenset()
        return self.right_items - self.left_items  # type: ignore[operator]

    @property
    def symmetric_difference(self) -> frozenset[str]:
        return self.only_left | self.only_right

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "path": self.breadcrumb,
            "reason": self.reason.value,
            "left": self.left_description,
            "right": self.right_description,
        }
        if self.is_set_mismatch:
            result["only_left"] = sorted(self.only_left)
            result["only_right"] = sorted(self.only_right)
        return result


@dataclass(frozen=True)
class CompareResult:
    """
    Outcome of comparing two plans.

    `diagnostics` records anomalies present identically on both sides
    (e.g. an empty Sequence at the same position): they do not make the
    plans diverge but are worth surfacing.
    """

    mismatches: tuple[Mismatch, ...] = ()
    mode: CompareMode = CompareMode.EXHAUSTIVE
    diagnostics: tuple[str, ...] = ()

    @property
    def verdict(self) -> Verdict:
        return Verdict.DIVERGENT if self.mismatches else Verdict.EQUIVALENT

    @property
    def is_equivalent(self) -> bool:
        return not self.mismatches

    def counts_by_kind(self) -> dict[str, int]:
        """Number of mismatches per MismatchKind (only kinds present)."""
        counts: dict[str, int] = {}
        for mismatch in self.mismatches:
            counts[mismatch.reason.value] = counts.get(mismatch.reason.value, 0) + 1
        return dict(sorted(counts.items()))

    def summary(self) -> dict[str, Any]:
        return {
            "verdict": self.verdict.value,
            "mode": self.mode.value,
            "total": len(self.mismatches),
            "by_kind": self.counts_by_kind(),
            "diagnostics": len(self.diagnostics),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": self.summary(),
            "mismatches": [m.to_dict() for m in self.mismatches],
            "diagnostics": list(self.diagnostics),
        }


# =============================================================================
# Entry points
# =============================================================================


def compare(
    left: PlanNode,
    right: PlanNode,
    mode: CompareMode = CompareMode.EXHAUSTIVE,
    *,
    assume_canonical: bool = False,
    options: CanonicalOptions | None = None,
    should_cancel: Callable[[], bool] | None = None,
) -> CompareResult:
    """
    Compare two plan trees.

    Args:
        left: Plan from the reference (legacy) planner.
        right: Plan from the planner under test (native).
        mode: FAIL_FAST or EXHAUSTIVE.
        assume_canonical: Skip canonicalization (inputs already canonical).
        options: Canonicalization options.
        should_cancel: Polled between nodes; returning True raises
            ComparisonCancelled.

    Returns:
        CompareResult; equivalent iff it holds no mismatches.
    """
    if not assume_canonical:
        left = canonicalize(left, options)
        right = canonicalize(right, options)

    comparator = _Comparator(mode, should_cancel)
    try:
        comparator.node(left, right, ())
    except _Stop:
        pass

    result = CompareResult(
        mismatches=tuple(comparator.mismatches),
        mode=mode,
        diagnostics=tuple(comparator.diagnostics),
    )
    logger.debug(
        "Compared plans (%s): %d mismatch(es)", mode.value, len(result.mismatches)
    )
    return result


def compare_plans(
    left: QueryPlan,
    right: QueryPlan,
    mode: CompareMode = CompareMode.EXHAUSTIVE,
    **kwargs: Any,
) -> CompareResult:
    """Compare two root plan containers, either of which may be empty."""
    if left.node is not None and right.node is not None:
        return compare(left.node, right.node, mode, **kwargs)
    if left.node is None and right.node is None:
        return CompareResult(mode=mode)
    mismatch = Mismatch(
        path=(),
        reason=MismatchKind.BRANCH_PRESENCE_MISMATCH,
        left_description=_presence(left.node),
        right_description=_presence(right.node),
    )
    return CompareResult(mismatches=(mismatch,), mode=mode)


def plans_match(left: PlanNode, right: PlanNode, **kwargs: Any) -> bool:
    """Gate helper: True iff the plans are equivalent (fail-fast walk)."""
    return compare(left, right, CompareMode.FAIL_FAST, **kwargs).is_equivalent


# =============================================================================
# Comparator
# =============================================================================


class _Stop(Exception):
    """Internal: unwinds the walk after the first mismatch in fail-fast mode."""


Path = tuple[Step, ...]


def _presence(node: Any) -> str:
    if node is None:
        return "absent"
    describe = getattr(node, "describe", None)
    kind = getattr(node, "kind", None)
    label = kind.value if isinstance(kind, Enum) else type(node).__name__
    return f"{label} ({describe()})" if describe else label


def _format_set(items: Iterable[str]) -> str:
    return "{" + ", ".join(sorted(items)) + "}"


def _format_rewrites(rewrites: tuple[DataRewrite, ...]) -> str:
    return "[" + ", ".join(str(r) for r in rewrites) + "]"


class _Comparator:
    def __init__(
        self,
        mode: CompareMode,
        should_cancel: Callable[[], bool] | None,
    ) -> None:
        self.mode = mode
        self.should_cancel = should_cancel
        self.mismatches: list[Mismatch] = []
        self.diagnostics: list[str] = []

    # -- recording ----------------------------------------------------------

    def add(
        self,
        path: Path,
        reason: MismatchKind,
        left: str,
        right: str,
        left_items: frozenset[str] | None = None,
        right_items: frozenset[str] | None = None,
    ) -> None:
        self.mismatches.append(
            Mismatch(
                path=path,
                reason=reason,
                left_description=left,
                right_description=right,
                left_items=left_items,
                right_items=right_items,
            )
        )
        if self.mode == CompareMode.FAIL_FAST:
            raise _Stop()

    def check_cancel(self) -> None:
        if self.should_cancel is not None and self.should_cancel():
            raise ComparisonCancelled(len(self.mismatches))

    # -- dispatch -----------------------------------------------------------

    def node(self, left: PlanNode, right: PlanNode, path: Path) -> None:
        self.check_cancel()

        if left.kind != right.kind:
            self.add(path, MismatchKind.KIND_MISMATCH, _presence(left), _presence(right))
            return

        handler = getattr(self, _DISPATCH[left.kind])
        handler(left, right, path)

    def optional(
        self,
        left: PlanNode | None,
        right: PlanNode | None,
        path: Path,
        owner: str,
        branch: str,
    ) -> None:
        """Compare two optional children; presence must agree."""
        if left is None and right is None:
            return
        if left is None or right is None:
            self.add(
                path + (Step(owner, attribute=branch),),
                MismatchKind.BRANCH_PRESENCE_MISMATCH,
                _presence(left),
                _presence(right),
            )
            return
        self.node(left, right, path + (Step(owner, child=branch),))

    # -- containers ---------------------------------------------------------

    def _empty_container(
        self,
        left: SequenceNode | ParallelNode,
        right: SequenceNode | ParallelNode,
        path: Path,
    ) -> bool:
        """Handle empty Sequence/Parallel anomalies. True if handled."""
        left_empty = not left.children()
        right_empty = not right.children()
        if not left_empty and not right_empty:
            return False
        location = " > ".join(str(s) for s in path) or "<root>"
        if left_empty and right_empty:
            self.diagnostics.append(f"empty {left.kind.value} on both sides at {location}")
            return True
        self.add(
            path,
            MismatchKind.MALFORMED_PLAN,
            f"empty {left.kind.value}" if left_empty else _presence(left),
            f"empty {right.kind.value}" if right_empty else _presence(right),
        )
        return True

    def sequence(self, left: SequenceNode, right: SequenceNode, path: Path) -> None:
        if self._empty_container(left, right, path):
            return
        if len(left.steps) != len(right.steps):
            # No best-effort alignment: sequence shape differences are reported verbatim.
            self.add(
                path,
                MismatchKind.LENGTH_MISMATCH,
                f"{len(left.steps)} steps: [{', '.join(s.describe() for s in left.steps)}]",
                f"{len(right.steps)} steps: [{', '.join(s.describe() for s in right.steps)}]",
            )
            return
        for i, (l_step, r_step) in enumerate(zip(left.steps, right.steps)):
            self.node(l_step, r_step, path + (Step(NodeKind.SEQUENCE.value, child=f"step {i}"),))

    def parallel(self, left: ParallelNode, right: ParallelNode, path: Path) -> None:
        if self._empty_container(left, right, path):
            return
        if len(left.branches) != len(right.branches):
            left_items = frozenset(f"{b.describe()} key={b.short_key()}" for b in left.branches)
            right_items = frozenset(f"{b.describe()} key={b.short_key()}" for b in right.branches)
            self.add(
                path,
                MismatchKind.LENGTH_MISMATCH,
                f"{len(left.branches)} branches",
                f"{len(right.branches)} branches",
                left_items,
                right_items,
            )
            return
        for l_branch, r_branch in zip(left.branches, right.branches):
            # Positions are an artifact of sorting; label by canonical key.
            label = f"branch {l_branch.describe()} key={l_branch.short_key()}"
            self.node(l_branch, r_branch, path + (Step(NodeKind.PARALLEL.value, child=label),))

    # -- leaves and wrappers ------------------------------------------------

    def fetch(self, left: FetchNode, right: FetchNode, path: Path) -> None:
        def at(attribute: str) -> Path:
            return path + (Step(NodeKind.FETCH.value, attribute=attribute),)

        if left.service != right.service:
            self.add(at("service"), MismatchKind.SERVICE_MISMATCH, left.service, right.service)

        if left.operation_kind != right.operation_kind:
            self.add(
                at("operation_kind"),
                MismatchKind.OPERATION_KIND_MISMATCH,
                left.operation_kind.value,
                right.operation_kind.value,
            )

        if left.operation != right.operation:
            self.add(
                at("operation"),
                MismatchKind.OPERATION_MISMATCH,
                left.operation.text,
                right.operation.text,
            )

        if left.requires != right.requires:
            l_items = frozenset(str(p) for p in left.requires)
            r_items = frozenset(str(p) for p in right.requires)
            self.add(
                at("requires"),
                MismatchKind.REQUIRES_MISMATCH,
                _format_set(l_items),
                _format_set(r_items),
                l_items,
                r_items,
            )

        if left.variables_used != right.variables_used:
            self.add(
                at("variables_used"),
                MismatchKind.VARIABLE_USAGES_MISMATCH,
                _format_set(left.variables_used),
                _format_set(right.variables_used),
                frozenset(left.variables_used),
                frozenset(right.variables_used),
            )

        for attribute in ("input_rewrites", "output_rewrites", "context_rewrites"):
            l_rewrites = getattr(left, attribute)
            r_rewrites = getattr(right, attribute)
            if l_rewrites != r_rewrites:
                self.add(
                    at(attribute),
                    MismatchKind.REWRITE_MISMATCH,
                    _format_rewrites(l_rewrites),
                    _format_rewrites(r_rewrites),
                )

    def flatten(self, left: FlattenNode, right: FlattenNode, path: Path) -> None:
        if left.path != right.path:
            self.add(
                path + (Step(NodeKind.FLATTEN.value, attribute="path"),),
                MismatchKind.PATH_MISMATCH,
                str(left.path),
                str(right.path),
            )
        self.node(left.node, right.node, path + (Step(NodeKind.FLATTEN.value, child=str(left.path)),))

    def condition(self, left: ConditionNode, right: ConditionNode, path: Path) -> None:
        if left.if_clause.normalized != right.if_clause.normalized:
            self.add(
                path + (Step(NodeKind.CONDITION.value, attribute="if_clause"),),
                MismatchKind.CONDITION_MISMATCH,
                left.if_clause.normalized,
                right.if_clause.normalized,
            )
        owner = NodeKind.CONDITION.value
        self.optional(left.then_branch, right.then_branch, path, owner, "then")
        self.optional(left.else_branch, right.else_branch, path, owner, "else")

    def subscription(self, left: SubscriptionNode, right: SubscriptionNode, path: Path) -> None:
        owner = NodeKind.SUBSCRIPTION.value
        self.node(left.primary, right.primary, path + (Step(owner, child="primary"),))
        self.optional(left.rest, right.rest, path, owner, "rest")

    def defer(self, left: DeferNode, right: DeferNode, path: Path) -> None:
        owner = NodeKind.DEFER.value

        if left.primary.subselection != right.primary.subselection:
            self.add(
                path + (Step(owner, attribute="primary.subselection"),),
                MismatchKind.DEFER_MISMATCH,
                str(left.primary.subselection),
                str(right.primary.subselection),
            )
        self.optional(left.primary.node, right.primary.node, path, owner, "primary")

        if len(left.deferred) != len(right.deferred):
            self.add(
                path + (Step(owner, attribute="deferred"),),
                MismatchKind.LENGTH_MISMATCH,
                f"{len(left.deferred)} deferred: [{', '.join(d.describe() for d in left.deferred)}]",
                f"{len(right.deferred)} deferred: [{', '.join(d.describe() for d in right.deferred)}]",
            )
            return

        for i, (l_part, r_part) in enumerate(zip(left.deferred, right.deferred)):
            part_path = path + (Step(owner, child=f"deferred {i} {l_part.describe()}"),)
            self.deferred_part(l_part, r_part, part_path)

    def deferred_part(self, left: DeferredPart, right: DeferredPart, path: Path) -> None:
        owner = "Deferred"

        def at(attribute: str) -> Path:
            return path + (Step(owner, attribute=attribute),)

        if left.label != right.label:
            self.add(at("label"), MismatchKind.DEFER_MISMATCH, str(left.label), str(right.label))
        if left.query_path != right.query_path:
            self.add(
                at("query_path"),
                MismatchKind.DEFER_MISMATCH,
                str(left.query_path),
                str(right.query_path),
            )
        if left.depends != right.depends:
            self.add(
                at("depends"),
                MismatchKind.DEFER_MISMATCH,
                _format_set(left.depends),
                _format_set(right.depends),
                frozenset(left.depends),
                frozenset(right.depends),
            )
        if left.subselection != right.subselection:
            self.add(
                at("subselection"),
                MismatchKind.DEFER_MISMATCH,
                str(left.subselection),
                str(right.subselection),
            )
        self.optional(left.node, right.node, path, owner, "node")

    def unknown(self, left: UnknownNode, right: UnknownNode, path: Path) -> None:
        if left.kind_name != right.kind_name:
            self.add(path, MismatchKind.KIND_MISMATCH, left.kind_name, right.kind_name)
            return
        if left != right:
            self.add(
                path + (Step(left.kind_name, attribute="payload"),),
                MismatchKind.MALFORMED_PLAN,
                left.render(),
                right.render(),
            )


_DISPATCH: dict[NodeKind, str] = {
    NodeKind.SEQUENCE: "sequence",
    NodeKind.PARALLEL: "parallel",
    NodeKind.FLATTEN: "flatten",
    NodeKind.FETCH: "fetch",
    NodeKind.CONDITION: "condition",
    NodeKind.SUBSCRIPTION: "subscription",
    NodeKind.DEFER: "defer",
    NodeKind.UNKNOWN: "unknown",
}

_missing = set(NodeKind) - set(_DISPATCH)
if _missing:  # pragma: no cover
    raise RuntimeError(f"Comparator has no handler for node kinds: {sorted(_missing)}")
