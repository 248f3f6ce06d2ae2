"""
JSON Schema definitions for stable comparison output.

Provides a versioned schema for:
- CI gates consuming `qpcompare compare --format json`
- Dashboards aggregating mismatch counts across an operation corpus

The schema is stable across minor versions.
Breaking changes only in major versions.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class MismatchSchema(BaseModel):
    """Schema for a single mismatch."""

    model_config = ConfigDict(frozen=True)

    path: str = Field(..., description="Breadcrumb path to the divergence")
    reason: str = Field(..., description="Mismatch kind (e.g. service_mismatch)")
    left: str = Field(..., description="Left (legacy) side description")
    right: str = Field(..., description="Right (native) side description")
    only_left: list[str] | None = Field(None, description="Set items present only on the left")
    only_right: list[str] | None = Field(None, description="Set items present only on the right")


class MismatchSummary(BaseModel):
    """Grouped mismatch counts."""

    model_config = ConfigDict(frozen=True)

    total: int = Field(0, description="Total mismatches")
    by_kind: dict[str, int] = Field(default_factory=dict, description="Mismatch count per kind")


class ComparisonSchema(BaseModel):
    """
    Top-level schema for comparison results.

    This schema is stable across minor versions.
    Breaking changes require major version bump.
    """

    model_config = ConfigDict(frozen=True)

    version: str = Field("1.0", description="Schema version")
    verdict: str = Field(..., description="equivalent or divergent")
    mode: str = Field("exhaustive", description="Comparison mode")
    summary: MismatchSummary = Field(..., description="Grouped counts")
    mismatches: list[MismatchSchema] = Field(default_factory=list, description="All mismatches")
    diagnostics: list[str] = Field(default_factory=list, description="Anomalies present on both sides")


def get_json_schema() -> dict[str, Any]:
    """Get the JSON Schema for documentation."""
    return ComparisonSchema.model_json_schema()


# Schema version - increment on breaking changes
SCHEMA_VERSION = "1.0"
