"""
Output module - Separates rendering from comparison.

Provides multiple output formats:
- render_text: terminal output for the CLI
- render_json: stable JSON schema for CI gates
- render_markdown: pull-request comment format

Usage:
    from qpcompare.output import render, OutputFormat

    result = compare(legacy, native)
    print(render(result, OutputFormat.MARKDOWN))
"""

from qpcompare.output.renderers import (
    OutputFormat,
    operation_diff,
    render,
    render_json,
    render_markdown,
    render_plan_diff,
    render_text,
    summarize,
)
from qpcompare.output.schema import (
    ComparisonSchema,
    MismatchSchema,
    MismatchSummary,
    get_json_schema,
)

__all__ = [
    "OutputFormat",
    "render",
    "render_text",
    "render_json",
    "render_markdown",
    "operation_diff",
    "render_plan_diff",
    "summarize",
    "ComparisonSchema",
    "MismatchSchema",
    "MismatchSummary",
    "get_json_schema",
]
