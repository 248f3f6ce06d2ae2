"""
Output renderers for different formats.

Separates presentation from comparison. Every renderer accepts either a
CompareResult or a bare sequence of Mismatch records; an empty mismatch
list renders as the empty string in every format.
"""

from __future__ import annotations

import difflib
import json
from enum import Enum
from typing import Sequence, Union

from qpcompare.compare import CompareMode, CompareResult, Mismatch, MismatchKind
from qpcompare.output.schema import (
    SCHEMA_VERSION,
    ComparisonSchema,
    MismatchSchema,
    MismatchSummary,
)
from qpcompare.plan.node import QueryPlan
from qpcompare.plan.operation import NormalizedOperation

Renderable = Union[CompareResult, Sequence[Mismatch]]


class OutputFormat(str, Enum):
    """Supported output formats."""

    TEXT = "text"
    JSON = "json"
    MARKDOWN = "markdown"


def render(result: Renderable, format: OutputFormat = OutputFormat.TEXT) -> str:
    """
    Render mismatches in the specified format.

    Args:
        result: CompareResult or list of mismatches
        format: Output format (text, json, markdown)

    Returns:
        Formatted string ("" when there is nothing to report)
    """
    if format == OutputFormat.TEXT:
        return render_text(result)
    elif format == OutputFormat.JSON:
        return render_json(result)
    elif format == OutputFormat.MARKDOWN:
        return render_markdown(result)
    else:
        raise ValueError(f"Unknown output format: {format}")


def summarize(result: Renderable) -> MismatchSummary:
    """Total and per-kind mismatch counts."""
    mismatches = _mismatches(result)
    by_kind: dict[str, int] = {}
    for mismatch in mismatches:
        by_kind[mismatch.reason.value] = by_kind.get(mismatch.reason.value, 0) + 1
    return MismatchSummary(total=len(mismatches), by_kind=dict(sorted(by_kind.items())))


# =============================================================================
# Schema-based serialization
# =============================================================================


def _mismatches(result: Renderable) -> tuple[Mismatch, ...]:
    if isinstance(result, CompareResult):
        return result.mismatches
    return tuple(result)


def _mismatch_to_schema(mismatch: Mismatch) -> MismatchSchema:
    return MismatchSchema(
        path=mismatch.breadcrumb,
        reason=mismatch.reason.value,
        left=mismatch.left_description,
        right=mismatch.right_description,
        only_left=sorted(mismatch.only_left) if mismatch.is_set_mismatch else None,
        only_right=sorted(mismatch.only_right) if mismatch.is_set_mismatch else None,
    )


def _result_to_schema(result: Renderable) -> ComparisonSchema:
    if isinstance(result, CompareResult):
        mode = result.mode
        diagnostics = list(result.diagnostics)
    else:
        mode = CompareMode.EXHAUSTIVE
        diagnostics = []

    mismatches = _mismatches(result)
    return ComparisonSchema(
        version=SCHEMA_VERSION,
        verdict="divergent" if mismatches else "equivalent",
        mode=mode.value,
        summary=summarize(mismatches),
        mismatches=[_mismatch_to_schema(m) for m in mismatches],
        diagnostics=diagnostics,
    )


# =============================================================================
# Text renderer (terminal)
# =============================================================================


def render_text(result: Renderable) -> str:
    """
    Render mismatches as plain terminal text.

    One block per mismatch: breadcrumb, kind, then either a unified diff
    (operations), the symmetric difference (sets) or left/right lines.
    """
    mismatches = _mismatches(result)
    if not mismatches:
        return ""

    lines: list[str] = []
    lines.append("=" * 60)
    lines.append(f"Query plans diverge: {len(mismatches)} mismatch(es)")
    lines.append("=" * 60)

    for i, mismatch in enumerate(mismatches, 1):
        lines.append("")
        lines.append(f"[{i}] {mismatch.reason.value}")
        lines.append(f"    at {mismatch.breadcrumb}")
        lines.extend(f"    {line}" for line in _detail_lines(mismatch))

    summary = summarize(mismatches)
    lines.append("")
    lines.append("-" * 60)
    lines.append(
        "By kind: " + ", ".join(f"{kind}={count}" for kind, count in summary.by_kind.items())
    )
    return "\n".join(lines)


def _detail_lines(mismatch: Mismatch) -> list[str]:
    if mismatch.reason == MismatchKind.OPERATION_MISMATCH:
        return operation_diff(mismatch.left_description, mismatch.right_description)
    if mismatch.is_set_mismatch:
        lines = []
        if mismatch.only_left:
            lines.append("only in left:  " + ", ".join(sorted(mismatch.only_left)))
        if mismatch.only_right:
            lines.append("only in right: " + ", ".join(sorted(mismatch.only_right)))
        return lines
    return [
        f"left:  {mismatch.left_description}",
        f"right: {mismatch.right_description}",
    ]


def operation_diff(left: str, right: str) -> list[str]:
    """Unified diff of two operations, pretty-printed one field per line."""
    left_pretty = NormalizedOperation(raw=left, canonical=left).pretty().splitlines()
    right_pretty = NormalizedOperation(raw=right, canonical=right).pretty().splitlines()
    return list(
        difflib.unified_diff(left_pretty, right_pretty, "left", "right", lineterm="")
    )


def render_plan_diff(left: QueryPlan, right: QueryPlan) -> str:
    """
    Unified diff of two whole plans, one JSON key per line.

    Pass canonical plans: otherwise branch order and variable names show up
    as noise. Identical plans give the empty string.
    """
    left_lines = json.dumps(left.to_dict(), indent=2, sort_keys=True).splitlines()
    right_lines = json.dumps(right.to_dict(), indent=2, sort_keys=True).splitlines()
    return "\n".join(
        difflib.unified_diff(left_lines, right_lines, "left", "right", lineterm="")
    )


# =============================================================================
# JSON renderer (uses schema models)
# =============================================================================


def render_json(result: Renderable, indent: int = 2) -> str:
    """
    Render mismatches as stable JSON.

    Uses Pydantic schema models for guaranteed consistency.
    """
    if not _mismatches(result):
        return ""
    return json.dumps(_result_to_schema(result).model_dump(mode="json"), indent=indent)


# =============================================================================
# Markdown renderer
# =============================================================================


def render_markdown(result: Renderable) -> str:
    """
    Render mismatches as Markdown.

    Suitable for CI comments on a pull request that changes the planner.
    """
    mismatches = _mismatches(result)
    if not mismatches:
        return ""

    lines: list[str] = []
    lines.append("# Query Plan Comparison")
    lines.append("")
    lines.append(f"🔴 **Plans diverge** ({len(mismatches)} mismatch(es))")
    lines.append("")

    summary = summarize(mismatches)
    lines.append("| Mismatch kind | Count |")
    lines.append("|---------------|-------|")
    for kind, count in summary.by_kind.items():
        lines.append(f"| `{kind}` | {count} |")
    lines.append("")

    lines.append("## Mismatches")
    lines.append("")
    for i, mismatch in enumerate(mismatches, 1):
        lines.append(f"### {i}. `{mismatch.reason.value}`")
        lines.append("")
        lines.append(f"**Location:** `{mismatch.breadcrumb}`")
        lines.append("")
        if mismatch.reason == MismatchKind.OPERATION_MISMATCH:
            lines.append("```diff")
            lines.extend(operation_diff(mismatch.left_description, mismatch.right_description))
            lines.append("```")
        elif mismatch.is_set_mismatch:
            for item in sorted(mismatch.only_left):
                lines.append(f"- only in left: `{item}`")
            for item in sorted(mismatch.only_right):
                lines.append(f"- only in right: `{item}`")
        else:
            lines.append("| Left | Right |")
            lines.append("|------|-------|")
            lines.append(
                f"| `{_cell(mismatch.left_description)}` | `{_cell(mismatch.right_description)}` |"
            )
        lines.append("")

    if isinstance(result, CompareResult) and result.diagnostics:
        lines.append("<details>")
        lines.append("<summary>Diagnostics</summary>")
        lines.append("")
        for diagnostic in result.diagnostics:
            lines.append(f"- {diagnostic}")
        lines.append("")
        lines.append("</details>")

    return "\n".join(lines)


def _cell(text: str) -> str:
    return text.replace("|", "\\|").replace("\n", " ")
