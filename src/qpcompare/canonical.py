"""
Canonicalization of query plans.

Maps semantically equivalent plans to identical trees so the comparator
can walk them position by position. Rules are applied bottom-up (children
before parents):

1. Parallel branches are canonicalized, then sorted by canonical sort key
   (planner scheduling order carries no meaning).
2. Sequence steps are canonicalized; order is preserved (it encodes data
   dependencies).
3. Fetch operations are normalized (see qpcompare.plan.operation).
4. Fetch `requires` / `variables_used` are sets already.
5. Condition branches are canonicalized independently; an absent branch
   stays absent.
6. Flatten paths are kept verbatim.
7. Subscription and Defer children are canonicalized in place; deferred
   parts keep their order; data rewrites are kept verbatim.

Canonicalization never fails on plan content: unrecognized nodes pass
through unchanged and surface at comparison time. It is idempotent:
canonicalize(canonicalize(p)) == canonicalize(p).

Usage:
    from qpcompare.canonical import canonicalize

    canonical = canonicalize(plan)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Callable

from qpcompare.plan.node import (
    ConditionNode,
    DeferNode,
    DeferPrimary,
    DeferredPart,
    FetchNode,
    FlattenNode,
    NodeKind,
    ParallelNode,
    PlanNode,
    QueryPlan,
    SequenceNode,
    SubscriptionNode,
)
from qpcompare.plan.operation import normalize_operation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CanonicalOptions:
    """
    Knobs for operation normalization.

    Attributes:
        positional_variables: Rename interchangeable variables to $v0, $v1, ...
        inline_fragments: Expand named fragment spreads into inline fragments.
    """

    positional_variables: bool = True
    inline_fragments: bool = False


DEFAULT_OPTIONS = CanonicalOptions()


def canonicalize(node: PlanNode, options: CanonicalOptions | None = None) -> PlanNode:
    """
    Return the canonical form of a plan tree.

    The result is a new tree; the input is never modified.
    """
    return _Canonicalizer(options or DEFAULT_OPTIONS).node(node)


def canonicalize_plan(plan: QueryPlan, options: CanonicalOptions | None = None) -> QueryPlan:
    """Canonicalize a root plan container (an empty plan stays empty)."""
    if plan.node is None:
        return plan
    return QueryPlan(node=canonicalize(plan.node, options), formatted=plan.formatted)


class _Canonicalizer:
    def __init__(self, options: CanonicalOptions) -> None:
        self.options = options
        self._rules: dict[NodeKind, Callable[[PlanNode], PlanNode]] = {
            NodeKind.SEQUENCE: self.sequence,
            NodeKind.PARALLEL: self.parallel,
            NodeKind.FLATTEN: self.flatten,
            NodeKind.FETCH: self.fetch,
            NodeKind.CONDITION: self.condition,
            NodeKind.SUBSCRIPTION: self.subscription,
            NodeKind.DEFER: self.defer,
        }

    def node(self, node: PlanNode) -> PlanNode:
        rule = self._rules.get(getattr(node, "kind", None))  # type: ignore[arg-type]
        if rule is None:
            logger.debug("Passing through node without canonical rule: %r", node)
            return node
        return rule(node)

    def optional(self, node: PlanNode | None) -> PlanNode | None:
        return None if node is None else self.node(node)

    # -- rules --------------------------------------------------------------

    def sequence(self, node: SequenceNode) -> PlanNode:
        return SequenceNode(steps=tuple(self.node(s) for s in node.steps))

    def parallel(self, node: ParallelNode) -> PlanNode:
        branches = [self.node(b) for b in node.branches]
        branches.sort(key=lambda b: b.sort_key())
        return ParallelNode(branches=tuple(branches))

    def flatten(self, node: FlattenNode) -> PlanNode:
        return FlattenNode(path=node.path, node=self.node(node.node))

    def fetch(self, node: FetchNode) -> PlanNode:
        operation = normalize_operation(
            node.operation,
            node.variables_used,
            positional_variables=self.options.positional_variables,
            inline_fragments=self.options.inline_fragments,
        )
        if not operation.parsed:
            logger.debug("Fetch to %s carries an unparsable operation", node.service)
        return replace(
            node,
            operation=operation,
            requires=frozenset(node.requires),
            variables_used=frozenset(node.variables_used),
        )

    def condition(self, node: ConditionNode) -> PlanNode:
        return ConditionNode(
            if_clause=node.if_clause,
            then_branch=self.optional(node.then_branch),
            else_branch=self.optional(node.else_branch),
        )

    def subscription(self, node: SubscriptionNode) -> PlanNode:
        return SubscriptionNode(
            primary=self.node(node.primary),
            rest=self.optional(node.rest),
        )

    def defer(self, node: DeferNode) -> PlanNode:
        primary = DeferPrimary(
            subselection=node.primary.subselection,
            node=self.optional(node.primary.node),
        )
        deferred = tuple(
            DeferredPart(
                depends=frozenset(part.depends),
                label=part.label,
                query_path=part.query_path,
                subselection=part.subselection,
                node=self.optional(part.node),
            )
            for part in node.deferred
        )
        return DeferNode(primary=primary, deferred=deferred)
