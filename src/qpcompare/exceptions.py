"""
Package-level exception hierarchy for qpcompare.

All exceptions inherit from QPCompareError, enabling:
- Catching all qpcompare errors with a single except clause
- Rich context fields for debugging (planner, source, config_key, etc.)
- Structured serialization via to_dict() for JSON error responses

Plan divergences are NOT exceptions: they are reported as Mismatch
records by the comparator. Exceptions are reserved for situations where
no comparison can be produced at all.

Hierarchy:
    QPCompareError
    ├── PlannerError          – A planner failed to produce a plan
    ├── PlanParseError        – Plan JSON could not be loaded
    ├── MalformedPlanError    – Plan violates a data-model invariant (strict mode)
    ├── ConfigurationError    – Invalid configuration
    └── ComparisonCancelled   – Cooperative cancellation during traversal
"""

from __future__ import annotations

from enum import Enum, unique
from typing import Any


class QPCompareError(Exception):
    """
    Base exception for all qpcompare errors.

    Attributes:
        message: Human-readable error description.
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON error responses."""
        return {
            "error_type": type(self).__name__,
            "message": self.message,
        }


# ── Planner Errors ───────────────────────────────────────────────────────


@unique
class PlannerErrorKind(str, Enum):
    """Why a planner could not produce a plan."""

    INVALID_OPERATION = "invalid_operation"
    SCHEMA_COMPOSITION_ERROR = "schema_composition_error"
    INTERNAL_PLANNER_FAILURE = "internal_planner_failure"


class PlannerError(QPCompareError):
    """
    A planner adapter failed to produce a plan.

    Terminal for the comparison run: a plan is never compared against
    an error.

    Attributes:
        kind: Classification of the failure.
        planner: Which planner failed ("legacy", "native", ...), if known.
        details: Individual error messages reported by the planner.
    """

    def __init__(
        self,
        kind: PlannerErrorKind,
        message: str,
        planner: str | None = None,
        details: tuple[str, ...] = (),
    ) -> None:
        self.kind = kind
        self.planner = planner
        self.details = details

        prefix = f"{planner} planner" if planner else "Planner"
        super().__init__(f"{prefix} failed ({kind.value}): {message}")
        self.reason = message

    def with_planner(self, planner: str) -> "PlannerError":
        """Return a copy attributed to `planner`; an earlier attribution moves into `details`."""
        details = self.details
        if self.planner and self.planner != planner:
            details = details + (f"adapter: {self.planner}",)
        return PlannerError(self.kind, self.reason, planner=planner, details=details)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["kind"] = self.kind.value
        result["planner"] = self.planner
        result["details"] = list(self.details)
        return result


# ── Parse Errors ─────────────────────────────────────────────────────────


class PlanParseError(QPCompareError):
    """
    Failed to load a query plan from its JSON serialization.

    Attributes:
        source: Where the error occurred ("json_decode", "structure",
            "validation", "resource_limit", "file_read").
        detail: Technical details for debugging (optional).
    """

    def __init__(
        self,
        message: str,
        *,
        detail: str | None = None,
        source: str = "unknown",
    ) -> None:
        self.detail = detail
        self.source = source
        super().__init__(message)

    def __str__(self) -> str:
        if self.detail:
            return f"{self.message}\n\nDetails: {self.detail}"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["source"] = self.source
        result["detail"] = self.detail
        return result


# ── Plan Invariant Errors ────────────────────────────────────────────────


class MalformedPlanError(QPCompareError):
    """
    A plan violates a data-model invariant (e.g. an empty Sequence).

    Only raised by strict validation. During comparison the same anomalies
    are recorded as mismatches or diagnostics instead.

    Attributes:
        location: Breadcrumb of the offending node.
    """

    def __init__(self, message: str, location: str | None = None) -> None:
        self.location = location
        if location:
            message = f"{message} at {location}"
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["location"] = self.location
        return result


# ── Configuration Errors ─────────────────────────────────────────────────


class ConfigurationError(QPCompareError):
    """
    Invalid configuration.

    Attributes:
        config_key: The configuration key that caused the error (if known).
    """

    def __init__(self, message: str, config_key: str | None = None) -> None:
        self.config_key = config_key
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["config_key"] = self.config_key
        return result


# ── Cancellation ─────────────────────────────────────────────────────────


class ComparisonCancelled(QPCompareError):
    """Raised when a cancellation check fires between nodes."""

    def __init__(self, mismatches_so_far: int = 0) -> None:
        self.mismatches_so_far = mismatches_so_far
        super().__init__(
            f"Comparison cancelled after {mismatches_so_far} mismatch(es)"
        )
