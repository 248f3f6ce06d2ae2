"""qpcompare - Semantic comparison of federated GraphQL query plans."""

__version__ = "0.3.0"
__license__ = "MIT"

# Exception hierarchy (import first so other modules can use it)
from qpcompare.exceptions import (
    QPCompareError,
    PlannerError,
    PlannerErrorKind,
    PlanParseError,
    MalformedPlanError,
    ConfigurationError,
    ComparisonCancelled,
)

# Plan model
from qpcompare.plan import (
    NodeKind,
    PlanNode,
    QueryPlan,
    SequenceNode,
    ParallelNode,
    FlattenNode,
    FetchNode,
    ConditionNode,
    SubscriptionNode,
    DeferNode,
    UnknownNode,
    NormalizedOperation,
    validate_plan,
)

# Canonicalization and comparison
from qpcompare.canonical import CanonicalOptions, canonicalize, canonicalize_plan
from qpcompare.compare import (
    CompareMode,
    CompareResult,
    Mismatch,
    MismatchKind,
    Step,
    Verdict,
    compare,
    compare_plans,
    plans_match,
)

# Loading, reporting, orchestration
from qpcompare.loader import load_plan, load_plan_file
from qpcompare.output import OutputFormat, render, summarize
from qpcompare.adapters import (
    CommandPlannerAdapter,
    PlanFileAdapter,
    PlannerAdapter,
    PlannerOptions,
)
from qpcompare.engine import ComparisonReport, ComparisonService, CorpusReport
from qpcompare.config import Config, get_config

__all__ = [
    # Exceptions
    "QPCompareError",
    "PlannerError",
    "PlannerErrorKind",
    "PlanParseError",
    "MalformedPlanError",
    "ConfigurationError",
    "ComparisonCancelled",
    # Plan model
    "NodeKind",
    "PlanNode",
    "QueryPlan",
    "SequenceNode",
    "ParallelNode",
    "FlattenNode",
    "FetchNode",
    "ConditionNode",
    "SubscriptionNode",
    "DeferNode",
    "UnknownNode",
    "NormalizedOperation",
    "validate_plan",
    # Canonicalization
    "CanonicalOptions",
    "canonicalize",
    "canonicalize_plan",
    # Comparison
    "CompareMode",
    "CompareResult",
    "Mismatch",
    "MismatchKind",
    "Step",
    "Verdict",
    "compare",
    "compare_plans",
    "plans_match",
    # Loading and reporting
    "load_plan",
    "load_plan_file",
    "OutputFormat",
    "render",
    "summarize",
    # Adapters and orchestration
    "PlannerAdapter",
    "PlannerOptions",
    "PlanFileAdapter",
    "CommandPlannerAdapter",
    "ComparisonService",
    "ComparisonReport",
    "CorpusReport",
    # Configuration
    "Config",
    "get_config",
    # Metadata
    "__version__",
    "__license__",
]
