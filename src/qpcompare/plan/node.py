"""
Query plan nodes.

A federated query plan is a tree of heterogeneous nodes. The set of node
kinds is closed: every node is one of the frozen dataclasses below, each
carrying a `kind` tag so consumers dispatch on `NodeKind` rather than on
open-ended isinstance checks.

Design principles:
- Immutable (frozen dataclasses, tuples and frozensets): a tree never
  changes after construction; canonicalization builds new trees
- Closed: `PLAN_NODE_TYPES` lists every variant; the comparator's
  dispatch table is checked against it
- Deterministic rendering: `render()` is a pure function of the node;
  `sort_key()` orders order-insignificant collections by what the
  comparator compares, with the full rendering as the final tiebreak
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from enum import Enum, unique
from typing import Any, ClassVar, Iterator, Union

from qpcompare.exceptions import MalformedPlanError
from qpcompare.plan.operation import NormalizedOperation
from qpcompare.plan.path import FieldPath, ResultPath


@unique
class NodeKind(str, Enum):
    """Tag identifying the variant of a plan node."""

    SEQUENCE = "Sequence"
    PARALLEL = "Parallel"
    FLATTEN = "Flatten"
    FETCH = "Fetch"
    CONDITION = "Condition"
    SUBSCRIPTION = "Subscription"
    DEFER = "Defer"
    UNKNOWN = "Unknown"


@unique
class OperationKind(str, Enum):
    """GraphQL operation type of a fetch."""

    QUERY = "query"
    MUTATION = "mutation"
    SUBSCRIPTION = "subscription"

    @classmethod
    def from_string(cls, value: str | None) -> "OperationKind":
        """Parse an operation kind; missing values default to query."""
        if not value:
            return cls.QUERY
        return cls(value.lower())


# =============================================================================
# Supporting value types
# =============================================================================


@dataclass(frozen=True)
class BooleanExpr:
    """
    Condition of a Condition node.

    The router emits the name of a boolean variable (from @skip/@include
    or @defer(if:)). Compared by `normalized`: whitespace and a leading
    '$' are insignificant.
    """

    expression: str

    @property
    def normalized(self) -> str:
        return "".join(self.expression.split()).lstrip("$")

    def __str__(self) -> str:
        return self.expression


@dataclass(frozen=True)
class ValueSetter:
    """Rewrite that sets the value at `path`."""

    path: ResultPath
    set_value_to: Any

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": "ValueSetter",
            "path": self.path.to_json(),
            "setValueTo": self.set_value_to,
        }

    def __str__(self) -> str:
        return f"ValueSetter({self.path} := {json.dumps(self.set_value_to, sort_keys=True)})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ValueSetter):
            return NotImplemented
        return self.path == other.path and _json_equal(self.set_value_to, other.set_value_to)

    def __hash__(self) -> int:
        return hash((self.path, json.dumps(self.set_value_to, sort_keys=True, default=str)))


@dataclass(frozen=True)
class KeyRenamer:
    """Rewrite that renames the key at `path`."""

    path: ResultPath
    rename_key_to: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": "KeyRenamer",
            "path": self.path.to_json(),
            "renameKeyTo": self.rename_key_to,
        }

    def __str__(self) -> str:
        return f"KeyRenamer({self.path} -> {self.rename_key_to})"


DataRewrite = Union[ValueSetter, KeyRenamer]


_FETCH_LABELS = frozenset({"id", "operationName"})


def _without_fetch_labels(value: Any) -> Any:
    if isinstance(value, dict):
        is_fetch = value.get("kind") == NodeKind.FETCH.value
        return {
            k: _without_fetch_labels(v)
            for k, v in value.items()
            if not (is_fetch and k in _FETCH_LABELS)
        }
    if isinstance(value, list):
        return [_without_fetch_labels(v) for v in value]
    return value


def _json_equal(left: Any, right: Any) -> bool:
    return json.dumps(left, sort_keys=True, default=str) == json.dumps(
        right, sort_keys=True, default=str
    )


# =============================================================================
# Plan nodes
# =============================================================================


class _NodeMixin:
    """Shared structural accessors for every plan node variant."""

    kind: ClassVar[NodeKind]

    def children(self) -> tuple["PlanNode", ...]:
        """Direct child nodes, in field order."""
        return ()

    def to_dict(self) -> dict[str, Any]:
        raise NotImplementedError

    def describe(self) -> str:
        """Short discriminator used in breadcrumbs."""
        return self.kind.value

    def render(self) -> str:
        """
        Deterministic textual rendering of the whole subtree.

        Pure function of the node: equal subtrees render identically.
        """
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), default=str)

    def compared_render(self) -> str:
        """Rendering without planner-assigned fetch labels (`id`, `operationName`)."""
        return json.dumps(
            _without_fetch_labels(self.to_dict()), sort_keys=True, separators=(",", ":"), default=str
        )

    def sort_key(self) -> tuple[str, str, str, str]:
        """
        Total, deterministic key for order-insignificant collections.

        Leads with the kind and `describe()` so one changed subtree keeps
        its position among its siblings. Nodes that differ only in fetch
        labels tie until the full rendering, so they never displace
        other branches.
        """
        return (self.kind.value, self.describe(), self.compared_render(), self.render())

    def short_key(self) -> str:
        """Abbreviated digest of `compared_render()` for display."""
        return hashlib.sha256(self.compared_render().encode()).hexdigest()[:12]

    def iter_all(self) -> Iterator["PlanNode"]:
        """Depth-first iteration over all nodes in the subtree."""
        yield self  # type: ignore[misc]
        for child in self.children():
            yield from child.iter_all()

    @property
    def node_count(self) -> int:
        return sum(1 for _ in self.iter_all())

    def fetches(self) -> list["FetchNode"]:
        """All fetch nodes in the subtree, depth-first."""
        return [n for n in self.iter_all() if isinstance(n, FetchNode)]


@dataclass(frozen=True)
class SequenceNode(_NodeMixin):
    """Children execute in order; order encodes data dependencies."""

    kind: ClassVar[NodeKind] = NodeKind.SEQUENCE

    steps: tuple["PlanNode", ...]

    def children(self) -> tuple["PlanNode", ...]:
        return self.steps

    def describe(self) -> str:
        return f"steps={len(self.steps)}"

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "nodes": [s.to_dict() for s in self.steps]}


@dataclass(frozen=True)
class ParallelNode(_NodeMixin):
    """Children execute concurrently; order is not significant."""

    kind: ClassVar[NodeKind] = NodeKind.PARALLEL

    branches: tuple["PlanNode", ...]

    def children(self) -> tuple["PlanNode", ...]:
        return self.branches

    def describe(self) -> str:
        return f"branches={len(self.branches)}"

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "nodes": [b.to_dict() for b in self.branches]}


@dataclass(frozen=True)
class FlattenNode(_NodeMixin):
    """Rebases the current result path before delegating to `node`."""

    kind: ClassVar[NodeKind] = NodeKind.FLATTEN

    path: ResultPath
    node: "PlanNode"

    def children(self) -> tuple["PlanNode", ...]:
        return (self.node,)

    def describe(self) -> str:
        return f"path={self.path} {self.node.describe()}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "path": self.path.to_json(),
            "node": self.node.to_dict(),
        }


@dataclass(frozen=True)
class FetchNode(_NodeMixin):
    """
    A leaf unit of work sent to one subgraph.

    Attributes:
        service: Subgraph name.
        operation: The subgraph operation.
        requires: Fields needed from prior results (entity representations).
        variables_used: Operation variables forwarded to the subgraph.
        operation_kind: query, mutation or subscription.
        operation_name: Name of the subgraph operation, if any.
        id: Identifier referenced by Defer nodes' `depends`.
        input_rewrites: Rewrites applied to the data sent to the fetch.
        output_rewrites: Rewrites applied to the data received.
        context_rewrites: Rewrites applied to data further up the tree.
    """

    kind: ClassVar[NodeKind] = NodeKind.FETCH

    service: str
    operation: NormalizedOperation
    requires: frozenset[FieldPath] = frozenset()
    variables_used: frozenset[str] = frozenset()
    operation_kind: OperationKind = OperationKind.QUERY
    operation_name: str | None = None
    id: str | None = None
    input_rewrites: tuple[DataRewrite, ...] = ()
    output_rewrites: tuple[DataRewrite, ...] = ()
    context_rewrites: tuple[DataRewrite, ...] = ()

    def describe(self) -> str:
        return f"service={self.service}"

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "kind": self.kind.value,
            "serviceName": self.service,
            "operationKind": self.operation_kind.value,
            "operation": self.operation.text,
            "requires": sorted(str(p) for p in self.requires),
            "variableUsages": sorted(self.variables_used),
        }
        if self.operation_name:
            result["operationName"] = self.operation_name
        if self.id is not None:
            result["id"] = self.id
        for name, rewrites in (
            ("inputRewrites", self.input_rewrites),
            ("outputRewrites", self.output_rewrites),
            ("contextRewrites", self.context_rewrites),
        ):
            if rewrites:
                result[name] = [r.to_dict() for r in rewrites]
        return result


@dataclass(frozen=True)
class ConditionNode(_NodeMixin):
    """
    Conditional inclusion (@skip/@include, @defer(if:)).

    An absent branch is not the same as an empty plan; absence is kept.
    """

    kind: ClassVar[NodeKind] = NodeKind.CONDITION

    if_clause: BooleanExpr
    then_branch: "PlanNode | None" = None
    else_branch: "PlanNode | None" = None

    def children(self) -> tuple["PlanNode", ...]:
        return tuple(b for b in (self.then_branch, self.else_branch) if b is not None)

    def describe(self) -> str:
        return f"if={self.if_clause.normalized}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "condition": self.if_clause.normalized,
            "ifClause": self.then_branch.to_dict() if self.then_branch else None,
            "elseClause": self.else_branch.to_dict() if self.else_branch else None,
        }


@dataclass(frozen=True)
class SubscriptionNode(_NodeMixin):
    """A subscription: primary fetch plus optional follow-up plan."""

    kind: ClassVar[NodeKind] = NodeKind.SUBSCRIPTION

    primary: "PlanNode"
    rest: "PlanNode | None" = None

    def children(self) -> tuple["PlanNode", ...]:
        return (self.primary,) if self.rest is None else (self.primary, self.rest)

    def describe(self) -> str:
        return f"primary {self.primary.describe()}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "primary": self.primary.to_dict(),
            "rest": self.rest.to_dict() if self.rest else None,
        }


@dataclass(frozen=True)
class DeferPrimary:
    """The non-deferred part of a Defer node."""

    subselection: str | None = None
    node: "PlanNode | None" = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "subselection": self.subselection,
            "node": self.node.to_dict() if self.node else None,
        }


@dataclass(frozen=True)
class DeferredPart:
    """
    One deferred chunk of the response.

    Attributes:
        depends: Ids of fetches in the primary plan this part waits for.
        label: Optional @defer label.
        query_path: Path to the @defer this part corresponds to.
        subselection: Selection sent in this chunk (unless `node` is a Defer).
        node: Plan fetching the deferred data.
    """

    depends: frozenset[str] = frozenset()
    label: str | None = None
    query_path: ResultPath = field(default_factory=ResultPath)
    subselection: str | None = None
    node: "PlanNode | None" = None

    def describe(self) -> str:
        if self.label:
            return f"label={self.label}"
        return f"path={self.query_path}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "depends": [{"id": d} for d in sorted(self.depends)],
            "label": self.label,
            "queryPath": self.query_path.to_json(),
            "subselection": self.subselection,
            "node": self.node.to_dict() if self.node else None,
        }


@dataclass(frozen=True)
class DeferNode(_NodeMixin):
    """Incremental delivery: a primary part and ordered deferred parts."""

    kind: ClassVar[NodeKind] = NodeKind.DEFER

    primary: DeferPrimary
    deferred: tuple[DeferredPart, ...] = ()

    def children(self) -> tuple["PlanNode", ...]:
        nodes = [self.primary.node] + [d.node for d in self.deferred]
        return tuple(n for n in nodes if n is not None)

    def describe(self) -> str:
        return f"deferred={len(self.deferred)}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "primary": self.primary.to_dict(),
            "deferred": [d.to_dict() for d in self.deferred],
        }


@dataclass(frozen=True, eq=False)
class UnknownNode(_NodeMixin):
    """
    A node of a kind this package does not model.

    Kept verbatim so canonicalization can pass it through and the
    comparator can report it instead of the loader failing.
    """

    kind: ClassVar[NodeKind] = NodeKind.UNKNOWN

    kind_name: str
    payload: dict[str, Any] = field(default_factory=dict)

    def describe(self) -> str:
        return f"kind={self.kind_name}"

    def to_dict(self) -> dict[str, Any]:
        return {**self.payload, "kind": self.kind_name}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, UnknownNode):
            return NotImplemented
        return self.render() == other.render()

    def __hash__(self) -> int:
        return hash(self.render())


PlanNode = Union[
    SequenceNode,
    ParallelNode,
    FlattenNode,
    FetchNode,
    ConditionNode,
    SubscriptionNode,
    DeferNode,
    UnknownNode,
]

PLAN_NODE_TYPES: dict[NodeKind, type] = {
    NodeKind.SEQUENCE: SequenceNode,
    NodeKind.PARALLEL: ParallelNode,
    NodeKind.FLATTEN: FlattenNode,
    NodeKind.FETCH: FetchNode,
    NodeKind.CONDITION: ConditionNode,
    NodeKind.SUBSCRIPTION: SubscriptionNode,
    NodeKind.DEFER: DeferNode,
    NodeKind.UNKNOWN: UnknownNode,
}


@dataclass(frozen=True)
class QueryPlan:
    """
    Root container: the plan for one operation.

    `node` is None when the planner produced an empty plan (e.g. an
    introspection-only operation). `formatted` keeps the planner's own
    pretty-printed plan text when one was supplied.
    """

    node: PlanNode | None
    formatted: str | None = None

    @property
    def is_empty(self) -> bool:
        return self.node is None

    @property
    def node_count(self) -> int:
        return 0 if self.node is None else self.node.node_count

    def to_dict(self) -> dict[str, Any]:
        return {"node": self.node.to_dict() if self.node else None}


def validate_plan(node: PlanNode, strict: bool = False) -> list[str]:
    """
    Check data-model invariants.

    Returns a list of anomaly descriptions ("empty Sequence at step 2").
    With `strict=True`, raises MalformedPlanError on the first anomaly.
    """
    anomalies: list[str] = []

    def walk(current: PlanNode, location: str) -> None:
        if isinstance(current, (SequenceNode, ParallelNode)) and not current.children():
            message = f"empty {current.kind.value}"
            if strict:
                raise MalformedPlanError(message, location=location or "root")
            anomalies.append(f"{message} at {location or 'root'}")
        if isinstance(current, UnknownNode):
            message = f"unrecognized node kind {current.kind_name!r}"
            if strict:
                raise MalformedPlanError(message, location=location or "root")
            anomalies.append(f"{message} at {location or 'root'}")
        for i, child in enumerate(current.children()):
            step = f"{current.kind.value}[{i}]"
            walk(child, f"{location} > {step}" if location else step)

    walk(node, "")
    return anomalies
