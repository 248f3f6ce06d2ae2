"""
Tests for the qpcompare CLI.

Exit codes are the contract with CI: 0 equivalent, 1 divergent, 2 error.
"""

from __future__ import annotations

import json
import shlex
import sys
from pathlib import Path

import pytest
from typer.testing import CliRunner

from qpcompare import __version__
from qpcompare.cli import app
from qpcompare.cli.main import EXIT_DIVERGENT, EXIT_EQUIVALENT, EXIT_ERROR
from qpcompare.config import reset_config

FIXTURES_DIR = Path(__file__).parent / "fixtures"
FAKE_PLANNER = FIXTURES_DIR / "fake_planner.py"


def fixture_path(name: str) -> str:
    return str(FIXTURES_DIR / f"{name}.json")


def planner_cmd(mode: str) -> str:
    return shlex.join([sys.executable, str(FAKE_PLANNER), mode])


@pytest.fixture(autouse=True)
def fresh_config():
    reset_config()
    yield
    reset_config()


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def schema_file(tmp_path: Path) -> Path:
    path = tmp_path / "supergraph.graphql"
    path.write_text("accounts")
    return path


@pytest.fixture
def operation_file(tmp_path: Path) -> Path:
    path = tmp_path / "me.graphql"
    path.write_text("{ me { id } }")
    return path


# =============================================================================
# Global options
# =============================================================================


class TestGlobalOptions:
    """Version, help and configuration."""

    def test_version(self, runner: CliRunner) -> None:
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert f"qpcompare version {__version__}" in result.output

    def test_help(self, runner: CliRunner) -> None:
        result = runner.invoke(app, ["--help"])

        assert result.exit_code == 0
        assert "compare" in result.output
        assert "canonicalize" in result.output

    def test_invalid_config_file(self, runner: CliRunner, tmp_path: Path) -> None:
        config = tmp_path / "qpcompare.yaml"
        config.write_text("default_mode: sometimes\n")

        result = runner.invoke(
            app,
            ["--config", str(config), "compare", fixture_path("legacy_plan"), fixture_path("legacy_plan")],
        )

        assert result.exit_code == EXIT_ERROR
        assert "Invalid configuration" in result.output

    def test_config_sets_default_mode(self, runner: CliRunner, tmp_path: Path) -> None:
        config = tmp_path / "qpcompare.yaml"
        config.write_text("default_mode: fail_fast\n")

        result = runner.invoke(
            app,
            ["--config", str(config), "compare", fixture_path("legacy_plan"), fixture_path("native_divergent")],
        )

        assert result.exit_code == EXIT_DIVERGENT
        assert "Query plans diverge: 1 mismatch(es)" in result.output


# =============================================================================
# compare
# =============================================================================


class TestCompareCommand:
    """Comparing two dumped plans."""

    def test_equivalent(self, runner: CliRunner) -> None:
        result = runner.invoke(
            app, ["compare", fixture_path("legacy_plan"), fixture_path("native_reordered")]
        )

        assert result.exit_code == EXIT_EQUIVALENT
        assert "Query plans match" in result.output

    def test_divergent(self, runner: CliRunner) -> None:
        result = runner.invoke(
            app, ["compare", fixture_path("legacy_plan"), fixture_path("native_divergent")]
        )

        assert result.exit_code == EXIT_DIVERGENT
        assert "Query plans diverge: 2 mismatch(es)" in result.output
        assert "requires_mismatch" in result.output

    def test_fail_fast(self, runner: CliRunner) -> None:
        result = runner.invoke(
            app,
            ["compare", "--fail-fast", fixture_path("legacy_plan"), fixture_path("native_divergent")],
        )

        assert result.exit_code == EXIT_DIVERGENT
        assert "Query plans diverge: 1 mismatch(es)" in result.output

    def test_json_output(self, runner: CliRunner) -> None:
        result = runner.invoke(
            app,
            ["compare", "--format", "json", fixture_path("legacy_plan"), fixture_path("native_divergent")],
        )

        data = json.loads(result.output)
        assert result.exit_code == EXIT_DIVERGENT
        assert data["verdict"] == "divergent"
        assert data["summary"]["total"] == 2

    def test_json_output_equivalent(self, runner: CliRunner) -> None:
        result = runner.invoke(
            app,
            ["compare", "-f", "json", fixture_path("legacy_plan"), fixture_path("native_reordered")],
        )

        data = json.loads(result.output)
        assert result.exit_code == EXIT_EQUIVALENT
        assert data["verdict"] == "equivalent"
        assert data["summary"]["total"] == 0

    def test_markdown_output(self, runner: CliRunner) -> None:
        result = runner.invoke(
            app,
            ["compare", "-f", "markdown", fixture_path("legacy_plan"), fixture_path("native_divergent")],
        )

        assert result.exit_code == EXIT_DIVERGENT
        assert result.output.startswith("# Query Plan Comparison")

    def test_plan_diff(self, runner: CliRunner) -> None:
        result = runner.invoke(
            app,
            ["compare", "--plan-diff", fixture_path("legacy_plan"), fixture_path("native_divergent")],
        )

        assert result.exit_code == EXIT_DIVERGENT
        assert "--- left" in result.output
        assert '"... on Product/weight"' in result.output

    def test_empty_vs_non_empty(self, runner: CliRunner) -> None:
        result = runner.invoke(
            app, ["compare", fixture_path("empty_plan"), fixture_path("legacy_plan")]
        )

        assert result.exit_code == EXIT_DIVERGENT
        assert "branch_presence_mismatch" in result.output

    def test_invalid_plan_file(self, runner: CliRunner, tmp_path: Path) -> None:
        bad = tmp_path / "bad.json"
        bad.write_text('{"kind": "Fetch",')

        result = runner.invoke(app, ["compare", str(bad), fixture_path("legacy_plan")])

        assert result.exit_code == EXIT_ERROR
        assert "Invalid JSON format" in result.output

    def test_missing_file(self, runner: CliRunner) -> None:
        result = runner.invoke(app, ["compare", "/nonexistent/plan.json", fixture_path("legacy_plan")])

        assert result.exit_code == 2


# =============================================================================
# plan
# =============================================================================


class TestPlanCommand:
    """Running both planners through the command adapter."""

    def invoke(self, runner: CliRunner, schema: Path, operation: Path, legacy: str, native: str, *extra: str):
        return runner.invoke(
            app,
            [
                "plan",
                "--schema",
                str(schema),
                "--operation",
                str(operation),
                "--legacy-cmd",
                planner_cmd(legacy),
                "--native-cmd",
                planner_cmd(native),
                *extra,
            ],
        )

    def test_equivalent(self, runner: CliRunner, schema_file: Path, operation_file: Path) -> None:
        result = self.invoke(runner, schema_file, operation_file, "ok", "data")

        assert result.exit_code == EXIT_EQUIVALENT, result.output
        assert "Query plans match" in result.output

    def test_schema_passed_to_planner(self, runner: CliRunner, schema_file: Path, operation_file: Path) -> None:
        # "echo_schema" names the fetch after the schema text ("accounts").
        result = self.invoke(runner, schema_file, operation_file, "ok", "echo_schema")

        assert result.exit_code == EXIT_EQUIVALENT, result.output

    def test_service_mismatch(self, runner: CliRunner, schema_file: Path, operation_file: Path) -> None:
        result = self.invoke(runner, schema_file, operation_file, "ok", "env")

        assert result.exit_code == EXIT_DIVERGENT
        assert "service_mismatch" in result.output

    def test_planner_failure(self, runner: CliRunner, schema_file: Path, operation_file: Path) -> None:
        result = self.invoke(runner, schema_file, operation_file, "ok", "invalid_operation")

        assert result.exit_code == EXIT_ERROR
        assert "native planner failed (invalid_operation)" in result.output

    def test_dump_plans(
        self, runner: CliRunner, schema_file: Path, operation_file: Path, tmp_path: Path
    ) -> None:
        dumps = tmp_path / "dumps"

        result = self.invoke(
            runner, schema_file, operation_file, "ok", "ok", "--dump-plans", str(dumps)
        )

        assert result.exit_code == EXIT_EQUIVALENT
        assert (dumps / "me.legacy.json").exists()
        assert (dumps / "me.native.detail.txt").exists()
        assert (dumps / "me.legacy.txt").read_text() == "QueryPlan {}"

    def test_planner_options_forwarded(
        self, runner: CliRunner, schema_file: Path, operation_file: Path
    ) -> None:
        # Both planners see the same options, so "env" vs "env" matches.
        result = self.invoke(
            runner, schema_file, operation_file, "env", "env", "--no-generate-fragments"
        )

        assert result.exit_code == EXIT_EQUIVALENT

    def test_operation_directory(self, runner: CliRunner, schema_file: Path, tmp_path: Path) -> None:
        operations = tmp_path / "operations"
        (operations / "users").mkdir(parents=True)
        (operations / "me.graphql").write_text("{ me { id } }")
        (operations / "users" / "list.gql").write_text("{ users { id } }")
        (operations / "README.md").write_text("not an operation")

        result = self.invoke(runner, schema_file, operations, "ok", "ok", "--format", "json")

        assert result.exit_code == EXIT_EQUIVALENT, result.output
        data = json.loads(result.output)
        assert data["summary"]["total"] == 2
        assert sorted(op["operation_id"] for op in data["operations"]) == ["me", "users/list"]

    def test_operation_directory_with_error(
        self, runner: CliRunner, schema_file: Path, tmp_path: Path
    ) -> None:
        operations = tmp_path / "operations"
        operations.mkdir()
        (operations / "me.graphql").write_text("{ me { id } }")

        result = self.invoke(runner, schema_file, operations, "ok", "crash")

        assert result.exit_code == EXIT_ERROR
        assert "error" in result.output

    def test_empty_directory(self, runner: CliRunner, schema_file: Path, tmp_path: Path) -> None:
        operations = tmp_path / "operations"
        operations.mkdir()

        result = self.invoke(runner, schema_file, operations, "ok", "ok")

        assert result.exit_code == EXIT_ERROR
        assert "no operations found" in result.output


# =============================================================================
# canonicalize and schema
# =============================================================================


class TestCanonicalizeCommand:
    """Printing canonical plans."""

    def test_pretty(self, runner: CliRunner) -> None:
        result = runner.invoke(app, ["canonicalize", fixture_path("native_reordered")])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["node"]["nodes"][0]["operation"] == "{ topProducts { __typename name upc } }"

    def test_equivalent_plans_canonicalize_identically(self, runner: CliRunner) -> None:
        left = runner.invoke(app, ["canonicalize", "--compact", fixture_path("legacy_plan")])
        right = runner.invoke(app, ["canonicalize", "--compact", fixture_path("native_reordered")])

        assert left.exit_code == right.exit_code == 0
        assert left.output == right.output
        assert len(left.output.strip().splitlines()) == 1

    def test_empty_plan(self, runner: CliRunner) -> None:
        result = runner.invoke(app, ["canonicalize", "--compact", fixture_path("empty_plan")])

        assert result.exit_code == 0
        assert result.output.strip() == "null"

    def test_strict_rejects_empty_container(self, runner: CliRunner, tmp_path: Path) -> None:
        plan = tmp_path / "plan.json"
        plan.write_text(json.dumps({"kind": "Sequence", "nodes": []}))

        result = runner.invoke(app, ["canonicalize", "--strict", str(plan)])

        assert result.exit_code == EXIT_ERROR
        assert "empty Sequence" in result.output


class TestSchemaCommand:
    """Printing the output JSON Schema."""

    def test_schema(self, runner: CliRunner) -> None:
        result = runner.invoke(app, ["schema"])

        assert result.exit_code == 0
        assert "mismatches" in json.loads(result.output)["properties"]
