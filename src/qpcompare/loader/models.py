"""
Pydantic models for the router's query plan JSON.

The router serializes plan nodes as objects tagged by `kind` with camelCase
keys. These models validate one node's own fields; child nodes are kept as
raw dicts and built recursively by the loader, so node kinds this package
does not model can still be carried through as Unknown nodes.
"""

from __future__ import annotations

from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field

RawPath = list[Union[int, str]]
RawNode = dict[str, Any]


class RouterModel(BaseModel):
    """Base for router JSON: camelCase aliases, unknown keys tolerated."""

    model_config = ConfigDict(populate_by_name=True, extra="allow", frozen=True)


class RewriteModel(RouterModel):
    """ValueSetter or KeyRenamer."""

    kind: str
    path: RawPath = Field(default_factory=list)
    set_value_to: Any = Field(None, alias="setValueTo")
    rename_key_to: str | None = Field(None, alias="renameKeyTo")


class FetchModel(RouterModel):
    service_name: str = Field(..., alias="serviceName")
    operation: str
    requires: list[Union[RawNode, str]] = Field(default_factory=list)
    variable_usages: list[str] = Field(default_factory=list, alias="variableUsages")
    operation_name: str | None = Field(None, alias="operationName")
    operation_kind: str | None = Field(None, alias="operationKind")
    id: str | None = None
    input_rewrites: list[RewriteModel] | None = Field(None, alias="inputRewrites")
    output_rewrites: list[RewriteModel] | None = Field(None, alias="outputRewrites")
    context_rewrites: list[RewriteModel] | None = Field(None, alias="contextRewrites")


class ContainerModel(RouterModel):
    """Sequence or Parallel."""

    nodes: list[RawNode]


class FlattenModel(RouterModel):
    path: RawPath
    node: RawNode


class ConditionModel(RouterModel):
    condition: str
    if_clause: RawNode | None = Field(None, alias="ifClause")
    else_clause: RawNode | None = Field(None, alias="elseClause")


class SubscriptionModel(RouterModel):
    # The router's subscription primary is a fetch without a `kind` tag.
    primary: FetchModel
    rest: RawNode | None = None


class DependsModel(RouterModel):
    id: str


class PrimaryModel(RouterModel):
    subselection: str | None = None
    node: RawNode | None = None


class DeferredModel(RouterModel):
    depends: list[DependsModel] = Field(default_factory=list)
    label: str | None = None
    query_path: RawPath = Field(default_factory=list, alias="queryPath")
    subselection: str | None = None
    node: RawNode | None = None


class DeferModel(RouterModel):
    primary: PrimaryModel
    deferred: list[DeferredModel] = Field(default_factory=list)


class QueryPlanModel(RouterModel):
    node: RawNode | None = None


class PlanDocumentModel(RouterModel):
    """Top-level planner output: {"queryPlan": {...}, "formattedQueryPlan": "..."}."""

    query_plan: QueryPlanModel = Field(..., alias="queryPlan")
    formatted_query_plan: str | None = Field(None, alias="formattedQueryPlan")
