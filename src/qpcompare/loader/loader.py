"""
Loader for router query plan JSON.

This module handles:
- Loading plan JSON from files, strings, or already-decoded data
- Recognizing the three root shapes planners emit (bare node,
  {"node": ...}, {"queryPlan": {"node": ...}})
- Building immutable plan trees from the tagged node objects
- Enforcing resource limits to prevent runaway inputs

Error handling philosophy: fail fast with clear messages. A plan that
cannot be loaded raises PlanParseError naming where it went wrong. Node
kinds that are not modelled are NOT errors: they load as UnknownNode and
surface later as comparison mismatches.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Callable

from pydantic import BaseModel, ValidationError

from qpcompare.exceptions import PlanParseError
from qpcompare.loader.config import DEFAULT_CONFIG, LoaderConfig
from qpcompare.loader.models import (
    ConditionModel,
    ContainerModel,
    DeferModel,
    FetchModel,
    FlattenModel,
    PlanDocumentModel,
    RewriteModel,
    SubscriptionModel,
)
from qpcompare.plan.node import (
    BooleanExpr,
    ConditionNode,
    DataRewrite,
    DeferNode,
    DeferPrimary,
    DeferredPart,
    FetchNode,
    FlattenNode,
    KeyRenamer,
    OperationKind,
    ParallelNode,
    PlanNode,
    QueryPlan,
    SequenceNode,
    SubscriptionNode,
    UnknownNode,
    ValueSetter,
)
from qpcompare.plan.operation import NormalizedOperation
from qpcompare.plan.path import FieldPath, ResultPath, flatten_requires

logger = logging.getLogger(__name__)

Source = str | Path | dict[str, Any] | list[Any]

# Keys under which a node object nests further plan nodes.
_CHILD_KEYS = ("nodes", "node", "ifClause", "elseClause", "primary", "rest", "deferred")


def load_plan(source: Source, config: LoaderConfig | None = None) -> QueryPlan:
    """
    Load a query plan from router JSON.

    Accepts multiple input formats:
    - File path (str or Path): reads and parses the file
    - JSON string: parses the string
    - Dict: a decoded plan document or node
    - List: a single-element array wrapping one of the above

    Args:
        source: Plan JSON in any of the supported formats
        config: Resource limits. Defaults to DEFAULT_CONFIG.

    Returns:
        QueryPlan (its `node` is None for an empty plan)

    Raises:
        PlanParseError: If input cannot be read, decoded or validated, or
            exceeds the configured limits

    Example:
        >>> plan = load_plan("plans/legacy.json")
        >>> plan = load_plan('{"kind": "Fetch", "serviceName": "a", "operation": "{ a }"}')
    """
    config = config or DEFAULT_CONFIG

    _check_file_size(source, config)

    data = _unwrap_array(_load_source(source))
    _check_depth(data, config)

    plan = _build_root(data)
    _check_node_count(plan, config)

    logger.debug("Loaded plan with %d node(s)", plan.node_count)
    return plan


def load_plan_file(path: str | Path, config: LoaderConfig | None = None) -> QueryPlan:
    """
    Load a query plan from a file.

    Gives file-specific error messages (missing, not a file, empty).
    """
    filepath = Path(path)

    if not filepath.exists():
        raise PlanParseError(f"File not found: {filepath}", source="file_read")

    if not filepath.is_file():
        raise PlanParseError(f"Path is not a file: {filepath}", source="file_read")

    _check_file_size(filepath, config or DEFAULT_CONFIG)

    try:
        content = filepath.read_text(encoding="utf-8")
    except OSError as e:
        raise PlanParseError(
            f"Cannot read file: {filepath}",
            detail=str(e),
            source="file_read",
        ) from e

    if not content.strip():
        raise PlanParseError(f"File is empty: {filepath}", source="file_read")

    return load_plan(content, config)


def parse_node(data: dict[str, Any]) -> PlanNode:
    """Build a single plan node (and its subtree) from a decoded node object."""
    return _NodeBuilder().build(data, "root")


def dump_plan(plan: QueryPlan, indent: int = 2) -> str:
    """Serialize a plan back to router-style JSON (loadable by load_plan)."""
    document: dict[str, Any] = {"queryPlan": plan.to_dict()}
    if plan.formatted is not None:
        document["formattedQueryPlan"] = plan.formatted
    return json.dumps(document, indent=indent, sort_keys=True)


# =============================================================================
# Source handling
# =============================================================================


def _load_source(source: Source) -> dict[str, Any] | list[Any]:
    if isinstance(source, (dict, list)):
        return source

    if isinstance(source, Path):
        return _load_json_file(source)

    if isinstance(source, str):
        stripped = source.strip()
        if stripped.startswith(("{", "[")):
            return _parse_json_string(stripped)
        return _load_json_file(Path(source))

    raise PlanParseError(
        f"Unsupported source type: {type(source).__name__}",
        detail="Expected file path, JSON string, dict, or list",
        source="type_check",
    )


def _load_json_file(path: Path) -> dict[str, Any] | list[Any]:
    if not path.exists():
        raise PlanParseError(f"File not found: {path}", source="file_read")

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise PlanParseError(
            f"Cannot read file: {path}",
            detail=str(e),
            source="file_read",
        ) from e

    return _parse_json_string(content)


def _parse_json_string(content: str) -> dict[str, Any] | list[Any]:
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise PlanParseError(
            "Invalid JSON format",
            detail=f"Line {e.lineno}, column {e.colno}: {e.msg}",
            source="json_decode",
        ) from e

    if not isinstance(data, (dict, list)):
        raise PlanParseError(
            f"Expected JSON object or array, got {type(data).__name__}",
            source="json_decode",
        )

    return data


def _unwrap_array(data: dict[str, Any] | list[Any]) -> dict[str, Any]:
    if isinstance(data, dict):
        return data

    if len(data) != 1:
        raise PlanParseError(
            f"Expected a single plan, got an array of {len(data)} elements",
            detail="Compare one plan at a time",
            source="structure",
        )

    inner = data[0]
    if not isinstance(inner, dict):
        raise PlanParseError(
            f"Expected object inside array, got {type(inner).__name__}",
            source="structure",
        )
    return inner


def _build_root(data: dict[str, Any]) -> QueryPlan:
    """Recognize the root shape and build the tree."""
    formatted: str | None = None

    if "queryPlan" in data:
        document = _validate(PlanDocumentModel, data, "root")
        node_data = document.query_plan.node
        formatted = document.formatted_query_plan
    elif "kind" in data:
        node_data = data
    elif "node" in data:
        node_data = data["node"]
    else:
        raise PlanParseError(
            "This doesn't look like a query plan",
            detail="Expected a plan node with 'kind', {'node': ...} or {'queryPlan': ...}",
            source="structure",
        )

    if node_data is None:
        return QueryPlan(node=None, formatted=formatted)
    return QueryPlan(node=_NodeBuilder().build(node_data, "root"), formatted=formatted)


# =============================================================================
# Node construction
# =============================================================================


def _validate(model: type[BaseModel], data: dict[str, Any], location: str) -> Any:
    """Validate one node object, converting pydantic errors to PlanParseError."""
    try:
        return model.model_validate(data)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc = " -> ".join(str(x) for x in error["loc"])
            errors.append(f"  {loc}: {error['msg']}")
        raise PlanParseError(
            f"Invalid plan node at {location}",
            detail="\n".join(errors),
            source="validation",
        ) from e


class _NodeBuilder:
    def __init__(self) -> None:
        self._builders: dict[str, Callable[[dict[str, Any], str], PlanNode]] = {
            "Sequence": self.sequence,
            "Parallel": self.parallel,
            "Flatten": self.flatten,
            "Fetch": self.fetch,
            "Condition": self.condition,
            "Subscription": self.subscription,
            "Defer": self.defer,
        }

    def build(self, data: Any, location: str) -> PlanNode:
        if not isinstance(data, dict):
            raise PlanParseError(
                f"Expected a plan node object at {location}, got {type(data).__name__}",
                source="structure",
            )

        kind = data.get("kind")
        if not isinstance(kind, str):
            raise PlanParseError(
                f"Plan node at {location} has no 'kind'",
                source="structure",
            )

        builder = self._builders.get(kind)
        if builder is None:
            logger.warning("Unrecognized plan node kind %r at %s", kind, location)
            payload = {k: v for k, v in data.items() if k != "kind"}
            return UnknownNode(kind_name=kind, payload=payload)

        try:
            return builder(data, location)
        except ValueError as e:
            # Raised by path parsing; pydantic errors are converted earlier.
            raise PlanParseError(
                f"Invalid plan node at {location}",
                detail=str(e),
                source="validation",
            ) from e

    def optional(self, data: dict[str, Any] | None, location: str) -> PlanNode | None:
        return None if data is None else self.build(data, location)

    # -- per-kind builders --------------------------------------------------

    def sequence(self, data: dict[str, Any], location: str) -> PlanNode:
        model = _validate(ContainerModel, data, location)
        return SequenceNode(
            steps=tuple(
                self.build(child, f"{location} > Sequence[{i}]")
                for i, child in enumerate(model.nodes)
            )
        )

    def parallel(self, data: dict[str, Any], location: str) -> PlanNode:
        model = _validate(ContainerModel, data, location)
        return ParallelNode(
            branches=tuple(
                self.build(child, f"{location} > Parallel[{i}]")
                for i, child in enumerate(model.nodes)
            )
        )

    def flatten(self, data: dict[str, Any], location: str) -> PlanNode:
        model = _validate(FlattenModel, data, location)
        return FlattenNode(
            path=ResultPath.parse(model.path),
            node=self.build(model.node, f"{location} > Flatten"),
        )

    def fetch(self, data: dict[str, Any], location: str) -> PlanNode:
        return _fetch_from_model(_validate(FetchModel, data, location))

    def condition(self, data: dict[str, Any], location: str) -> PlanNode:
        model = _validate(ConditionModel, data, location)
        return ConditionNode(
            if_clause=BooleanExpr(model.condition),
            then_branch=self.optional(model.if_clause, f"{location} > Condition.then"),
            else_branch=self.optional(model.else_clause, f"{location} > Condition.else"),
        )

    def subscription(self, data: dict[str, Any], location: str) -> PlanNode:
        model = _validate(SubscriptionModel, data, location)
        return SubscriptionNode(
            primary=_fetch_from_model(model.primary, default_kind=OperationKind.SUBSCRIPTION),
            rest=self.optional(model.rest, f"{location} > Subscription.rest"),
        )

    def defer(self, data: dict[str, Any], location: str) -> PlanNode:
        model = _validate(DeferModel, data, location)
        primary = DeferPrimary(
            subselection=model.primary.subselection,
            node=self.optional(model.primary.node, f"{location} > Defer.primary"),
        )
        deferred = tuple(
            DeferredPart(
                depends=frozenset(d.id for d in part.depends),
                label=part.label,
                query_path=ResultPath.parse(part.query_path),
                subselection=part.subselection,
                node=self.optional(part.node, f"{location} > Defer.deferred[{i}]"),
            )
            for i, part in enumerate(model.deferred)
        )
        return DeferNode(primary=primary, deferred=deferred)


def _fetch_from_model(
    model: FetchModel,
    default_kind: OperationKind = OperationKind.QUERY,
) -> FetchNode:
    try:
        operation_kind = (
            OperationKind.from_string(model.operation_kind)
            if model.operation_kind
            else default_kind
        )
    except ValueError as e:
        raise ValueError(f"Unknown operationKind {model.operation_kind!r}") from e

    return FetchNode(
        service=model.service_name,
        operation=NormalizedOperation(raw=model.operation),
        requires=_requires(model.requires),
        variables_used=frozenset(model.variable_usages),
        operation_kind=operation_kind,
        operation_name=model.operation_name,
        id=model.id,
        input_rewrites=_rewrites(model.input_rewrites),
        output_rewrites=_rewrites(model.output_rewrites),
        context_rewrites=_rewrites(model.context_rewrites),
    )


def _requires(raw: list[dict[str, Any] | str]) -> frozenset[FieldPath]:
    # Selection trees from the router; "a/b" strings from dump_plan output.
    paths = {FieldPath.parse(item) for item in raw if isinstance(item, str)}
    selections = [item for item in raw if isinstance(item, dict)]
    return frozenset(paths) | flatten_requires(selections)


def _rewrites(raw: list[RewriteModel] | None) -> tuple[DataRewrite, ...]:
    if not raw:
        return ()
    rewrites: list[DataRewrite] = []
    for rewrite in raw:
        path = ResultPath.parse(rewrite.path)
        if rewrite.kind == "ValueSetter":
            rewrites.append(ValueSetter(path=path, set_value_to=rewrite.set_value_to))
        elif rewrite.kind == "KeyRenamer":
            if rewrite.rename_key_to is None:
                raise ValueError("KeyRenamer rewrite is missing renameKeyTo")
            rewrites.append(KeyRenamer(path=path, rename_key_to=rewrite.rename_key_to))
        else:
            raise ValueError(f"Unknown data rewrite kind {rewrite.kind!r}")
    return tuple(rewrites)


# =============================================================================
# Resource limits
# =============================================================================


def _check_file_size(source: Source, config: LoaderConfig) -> None:
    path: Path | None = None

    if isinstance(source, Path):
        path = source
    elif isinstance(source, str) and not source.strip().startswith(("{", "[")):
        path = Path(source)

    if path is not None and path.exists() and path.is_file():
        size_mb = path.stat().st_size / (1024 * 1024)
        if size_mb > config.max_file_size_mb:
            raise PlanParseError(
                f"File too large: {size_mb:.1f}MB (max {config.max_file_size_mb}MB)",
                detail="Increase max_file_size_mb in the configuration",
                source="resource_limit",
            )


def _check_depth(data: dict[str, Any], config: LoaderConfig) -> None:
    """
    Check plan nesting before building.

    Measured on the raw JSON so a pathological file is rejected before the
    recursive build can overflow the stack.
    """

    def measure(value: Any, depth: int) -> int:
        if depth > config.max_depth:
            return depth
        deepest = depth
        if isinstance(value, list):
            for item in value:
                deepest = max(deepest, measure(item, depth))
        elif isinstance(value, dict):
            child_depth = depth + 1 if "kind" in value else depth
            deepest = max(deepest, child_depth)
            for key in _CHILD_KEYS:
                if key in value:
                    deepest = max(deepest, measure(value[key], child_depth))
        return deepest

    root = data.get("queryPlan", data)
    depth = measure(root, 0)
    if depth > config.max_depth:
        raise PlanParseError(
            f"Plan too deeply nested: depth {depth} (max {config.max_depth})",
            detail="This may indicate a corrupted plan dump",
            source="resource_limit",
        )


def _check_node_count(plan: QueryPlan, config: LoaderConfig) -> None:
    node_count = plan.node_count
    if node_count > config.max_nodes:
        raise PlanParseError(
            f"Plan too large: {node_count:,} nodes (max {config.max_nodes:,})",
            detail="Increase max_nodes in the configuration",
            source="resource_limit",
        )
