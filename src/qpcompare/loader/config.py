"""
Loader configuration with resource limits.

These limits keep pathological plan files from exhausting memory or
overflowing the stack during the recursive build. The defaults are generous
for real federated plans but catch runaway or corrupted dumps.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class LoaderConfig(BaseModel):
    """
    Configuration for the plan loader.

    Attributes:
        max_file_size_mb: Maximum plan file size to read.
        max_nodes: Maximum number of plan nodes in one plan.
        max_depth: Maximum nesting of plan nodes.

    Example:
        # Stricter limits for plans from an untrusted source
        config = LoaderConfig(max_file_size_mb=5, max_nodes=2_000)
    """

    model_config = ConfigDict(frozen=True)

    max_file_size_mb: float = Field(
        default=50.0,
        gt=0,
        description="Maximum file size in megabytes",
    )

    max_nodes: int = Field(
        default=20_000,
        gt=0,
        description="Maximum number of plan nodes",
    )

    max_depth: int = Field(
        default=200,
        gt=0,
        description="Maximum plan node nesting",
    )


DEFAULT_CONFIG = LoaderConfig()

STRICT_CONFIG = LoaderConfig(
    max_file_size_mb=5.0,
    max_nodes=2_000,
    max_depth=64,
)
