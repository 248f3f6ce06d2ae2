"""
Query plan model.

- **node.py**: the closed set of plan node variants (Sequence, Parallel,
  Flatten, Fetch, Condition, Subscription, Defer, Unknown)
- **path.py**: result paths (Flatten, Defer, rewrites) and field paths
  (Fetch.requires)
- **operation.py**: subgraph operations and their normalization
"""

from qpcompare.plan.node import (
    PLAN_NODE_TYPES,
    BooleanExpr,
    ConditionNode,
    DataRewrite,
    DeferNode,
    DeferPrimary,
    DeferredPart,
    FetchNode,
    FlattenNode,
    KeyRenamer,
    NodeKind,
    OperationKind,
    ParallelNode,
    PlanNode,
    QueryPlan,
    SequenceNode,
    SubscriptionNode,
    UnknownNode,
    ValueSetter,
    validate_plan,
)
from qpcompare.plan.operation import NormalizedOperation, normalize_operation
from qpcompare.plan.path import (
    FieldPath,
    FlattenElement,
    FragmentElement,
    IndexElement,
    KeyElement,
    PathElement,
    ResultPath,
    flatten_requires,
)

__all__ = [
    # Nodes
    "PlanNode",
    "PLAN_NODE_TYPES",
    "NodeKind",
    "SequenceNode",
    "ParallelNode",
    "FlattenNode",
    "FetchNode",
    "ConditionNode",
    "SubscriptionNode",
    "DeferNode",
    "DeferPrimary",
    "DeferredPart",
    "UnknownNode",
    "QueryPlan",
    "validate_plan",
    # Values
    "OperationKind",
    "BooleanExpr",
    "DataRewrite",
    "ValueSetter",
    "KeyRenamer",
    # Operations
    "NormalizedOperation",
    "normalize_operation",
    # Paths
    "ResultPath",
    "PathElement",
    "KeyElement",
    "IndexElement",
    "FlattenElement",
    "FragmentElement",
    "FieldPath",
    "flatten_requires",
]
