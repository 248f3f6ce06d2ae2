"""
Adapter running an external planner command.

The command receives the supergraph schema and the operation as file
paths and must print the plan as JSON on stdout. Any of these shapes is
accepted:

    {"queryPlan": {"node": ...}, "formattedQueryPlan": "..."}
    {"data": {"queryPlan": ...}}               (router bridge result)
    {"errors": [{"message": ..., "extensions": {"code": ...}}]}

Arguments may contain the placeholders `{schema}` and `{operation}`;
without them, the two paths are appended to the command line. Planner
options are passed as QPCOMPARE_* environment variables.

Exit status conventions:
    0   plan on stdout (or an `errors` document)
    3   invalid operation
    4   schema composition error
    *   internal planner failure
"""

from __future__ import annotations

import json
import logging
import os
import shlex
import subprocess
import tempfile
from pathlib import Path
from typing import Any, Sequence

from qpcompare.adapters.base import PlannerAdapter, PlannerOptions
from qpcompare.exceptions import PlanParseError, PlannerError, PlannerErrorKind
from qpcompare.loader import LoaderConfig, load_plan
from qpcompare.plan.node import QueryPlan

logger = logging.getLogger(__name__)

EXIT_INVALID_OPERATION = 3
EXIT_SCHEMA_COMPOSITION = 4

_EXIT_KINDS = {
    EXIT_INVALID_OPERATION: PlannerErrorKind.INVALID_OPERATION,
    EXIT_SCHEMA_COMPOSITION: PlannerErrorKind.SCHEMA_COMPOSITION_ERROR,
}

# GraphQL error extension codes that classify a planner error document.
_OPERATION_CODES = frozenset(
    {
        "GRAPHQL_PARSE_FAILED",
        "GRAPHQL_VALIDATION_FAILED",
        "PARSING_ERROR",
        "VALIDATION_ERROR",
        "INVALID_GRAPHQL",
        "UNKNOWN_OPERATION",
    }
)
_COMPOSITION_MARKERS = ("COMPOSITION", "SUPERGRAPH", "FEDERATION", "SCHEMA")

# Keep stderr excerpts short in error messages.
_STDERR_LIMIT = 2000


class CommandPlannerAdapter(PlannerAdapter):
    """
    Runs a planner as a subprocess.

    Example:
        legacy = CommandPlannerAdapter(
            "node legacy-planner.js {schema} {operation}", name="legacy"
        )
        plan = legacy.plan_query(schema_sdl, "{ me { id } }")
    """

    def __init__(
        self,
        command: str | Sequence[str],
        name: str = "command",
        timeout_seconds: float | None = 60.0,
        options: PlannerOptions | None = None,
        loader_config: LoaderConfig | None = None,
        cwd: str | Path | None = None,
    ) -> None:
        self.command = shlex.split(command) if isinstance(command, str) else list(command)
        if not self.command:
            raise ValueError("Planner command must not be empty")
        self.name = name
        self.timeout_seconds = timeout_seconds
        self.options = options or PlannerOptions()
        self.loader_config = loader_config
        self.cwd = cwd

    def build_argv(self, schema_path: Path, operation_path: Path) -> list[str]:
        """Substitute file paths into the command line."""
        placeholders = {"{schema}": str(schema_path), "{operation}": str(operation_path)}
        if not any(p in arg for arg in self.command for p in placeholders):
            return [*self.command, str(schema_path), str(operation_path)]
        argv = []
        for arg in self.command:
            for placeholder, value in placeholders.items():
                arg = arg.replace(placeholder, value)
            argv.append(arg)
        return argv

    def plan_query(self, schema: str, operation: str) -> QueryPlan:
        with tempfile.TemporaryDirectory(prefix="qpcompare-") as workdir:
            schema_path = Path(workdir) / "schema.graphql"
            operation_path = Path(workdir) / "operation.graphql"
            schema_path.write_text(schema, encoding="utf-8")
            operation_path.write_text(operation, encoding="utf-8")

            argv = self.build_argv(schema_path, operation_path)
            logger.info("Running %s planner: %s", self.name, shlex.join(argv))
            completed = self._run(argv)

        return self._interpret(completed)

    # -- subprocess handling ------------------------------------------------

    def _run(self, argv: list[str]) -> subprocess.CompletedProcess[str]:
        env = {**os.environ, **self.options.as_env()}
        try:
            return subprocess.run(
                argv,
                capture_output=True,
                text=True,
                check=False,
                timeout=self.timeout_seconds,
                env=env,
                cwd=self.cwd,
            )
        except subprocess.TimeoutExpired as e:
            raise self._error(
                PlannerErrorKind.INTERNAL_PLANNER_FAILURE,
                f"timed out after {self.timeout_seconds}s",
            ) from e
        except OSError as e:
            raise self._error(
                PlannerErrorKind.INTERNAL_PLANNER_FAILURE,
                f"cannot run {argv[0]!r}: {e}",
            ) from e

    def _interpret(self, completed: subprocess.CompletedProcess[str]) -> QueryPlan:
        stderr = completed.stderr.strip()[:_STDERR_LIMIT]
        document = _decode(completed.stdout)

        if isinstance(document, dict) and document.get("errors"):
            raise self._from_error_document(document["errors"], completed.returncode)

        if completed.returncode != 0:
            kind = _EXIT_KINDS.get(completed.returncode, PlannerErrorKind.INTERNAL_PLANNER_FAILURE)
            raise self._error(
                kind,
                f"exited with status {completed.returncode}",
                details=(stderr,) if stderr else (),
            )

        if document is None:
            raise self._error(
                PlannerErrorKind.INTERNAL_PLANNER_FAILURE,
                "did not print a JSON plan on stdout",
                details=(stderr,) if stderr else (),
            )

        if isinstance(document, dict) and isinstance(document.get("data"), dict):
            document = document["data"]

        if stderr:
            logger.debug("%s planner stderr: %s", self.name, stderr)

        try:
            return load_plan(document, self.loader_config)
        except PlanParseError as e:
            raise self._error(
                PlannerErrorKind.INTERNAL_PLANNER_FAILURE,
                f"printed an unreadable plan: {e.message}",
                details=(e.detail,) if e.detail else (),
            ) from e

    def _from_error_document(self, errors: Any, returncode: int) -> PlannerError:
        messages: list[str] = []
        codes: list[str] = []
        for error in errors if isinstance(errors, list) else [errors]:
            if isinstance(error, dict):
                messages.append(str(error.get("message", error)))
                code = (error.get("extensions") or {}).get("code")
                if code:
                    codes.append(str(code))
            else:
                messages.append(str(error))

        kind = _classify(codes)
        if kind == PlannerErrorKind.INTERNAL_PLANNER_FAILURE:
            kind = _EXIT_KINDS.get(returncode, kind)
        return self._error(kind, messages[0] if messages else "reported errors", tuple(messages))

    def _error(
        self,
        kind: PlannerErrorKind,
        message: str,
        details: tuple[str, ...] = (),
    ) -> PlannerError:
        logger.warning("%s planner failed (%s): %s", self.name, kind.value, message)
        return PlannerError(kind, message, planner=self.name, details=details)


def _decode(stdout: str) -> Any:
    text = stdout.strip()
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return None


def _classify(codes: list[str]) -> PlannerErrorKind:
    for code in codes:
        if code.upper() in _OPERATION_CODES:
            return PlannerErrorKind.INVALID_OPERATION
    for code in codes:
        if any(marker in code.upper() for marker in _COMPOSITION_MARKERS):
            return PlannerErrorKind.SCHEMA_COMPOSITION_ERROR
    return PlannerErrorKind.INTERNAL_PLANNER_FAILURE
