"""
qpcompare CLI - Semantic comparison of federated GraphQL query plans.

Exit codes:
    0   plans are equivalent
    1   plans diverge
    2   a plan could not be loaded, a planner failed, or bad configuration

Usage:
    qpcompare compare legacy.json native.json
    qpcompare compare --fail-fast --format markdown legacy.json native.json
    qpcompare plan --schema supergraph.graphql --operation ops/ \\
        --legacy-cmd "node legacy.js" --native-cmd "native-planner"
    qpcompare canonicalize plan.json
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Annotated, NoReturn, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from qpcompare import __version__
from qpcompare.adapters import CommandPlannerAdapter, PlannerOptions
from qpcompare.canonical import canonicalize_plan
from qpcompare.compare import CompareMode, CompareResult, compare_plans
from qpcompare.config import Config, get_config, load_config_from_file
from qpcompare.engine import ComparisonService, CorpusReport
from qpcompare.exceptions import QPCompareError
from qpcompare.loader import load_plan_file
from qpcompare.output import OutputFormat, get_json_schema, render, render_plan_diff
from qpcompare.plan.node import validate_plan

EXIT_EQUIVALENT = 0
EXIT_DIVERGENT = 1
EXIT_ERROR = 2

OPERATION_SUFFIXES = (".graphql", ".gql")

app = typer.Typer(
    name="qpcompare",
    help="Semantic comparison of federated GraphQL query plans",
    no_args_is_help=True,
)

console = Console()
error_console = Console(stderr=True)

logger = logging.getLogger(__name__)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"qpcompare version {__version__}")
        raise typer.Exit()


def configure_logging(level: str) -> None:
    """Route all logging through rich on stderr."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=error_console, show_path=False, rich_tracebacks=True)],
        force=True,
    )


@app.callback()
def main(
    ctx: typer.Context,
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging."),
    ] = False,
    config_file: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="JSON or YAML configuration file."),
    ] = None,
) -> None:
    """qpcompare - compare query plans from two planners."""
    try:
        config = load_config_from_file(config_file) if config_file else get_config()
    except QPCompareError as e:
        _fail(e)

    configure_logging("DEBUG" if verbose else config.log_level)
    ctx.obj = config


def _config(ctx: typer.Context) -> Config:
    return ctx.obj if isinstance(ctx.obj, Config) else get_config()


def _fail(error: QPCompareError) -> NoReturn:
    error_console.print(f"[red]Error:[/red] {escape(error.message)}", highlight=False)
    detail = getattr(error, "detail", None)
    if detail:
        error_console.print(f"\n{detail}", style="dim", markup=False)
    for line in getattr(error, "details", ()):
        error_console.print(f"  {line}", markup=False, highlight=False)
    raise typer.Exit(code=EXIT_ERROR)


def _emit(result: CompareResult, output_format: OutputFormat) -> None:
    """Print a comparison result; rendered text is never parsed as rich markup."""
    rendered = render(result, output_format)
    if rendered:
        typer.echo(rendered)
        return

    if output_format == OutputFormat.JSON:
        typer.echo(json.dumps({"verdict": result.verdict.value, "summary": result.summary()}, indent=2))
    elif output_format == OutputFormat.MARKDOWN:
        typer.echo("✅ **Query plans match**")
    else:
        console.print(Panel("[green]Query plans match[/green]", title="qpcompare", border_style="green"))

    for diagnostic in result.diagnostics:
        error_console.print(f"[yellow]note:[/yellow] {escape(diagnostic)}", highlight=False)


@app.command()
def compare(
    ctx: typer.Context,
    left: Annotated[
        Path,
        typer.Argument(help="Reference (legacy) plan JSON", exists=True, readable=True),
    ],
    right: Annotated[
        Path,
        typer.Argument(help="Plan under test (native) JSON", exists=True, readable=True),
    ],
    fail_fast: Annotated[
        Optional[bool],
        typer.Option("--fail-fast/--exhaustive", help="Stop at the first mismatch."),
    ] = None,
    output_format: Annotated[
        OutputFormat,
        typer.Option("--format", "-f", help="Output format."),
    ] = OutputFormat.TEXT,
    plan_diff: Annotated[
        bool,
        typer.Option("--plan-diff", help="Also print a unified diff of both canonical plans."),
    ] = False,
) -> None:
    """
    Compare two dumped query plans.

    Examples:

        $ qpcompare compare legacy.json native.json
        $ qpcompare compare --format json legacy.json native.json > result.json
    """
    config = _config(ctx)
    mode = _mode(fail_fast, config)

    try:
        left_plan = canonicalize_plan(load_plan_file(left, config.loader_limits()), config.canonical_options())
        right_plan = canonicalize_plan(load_plan_file(right, config.loader_limits()), config.canonical_options())
    except QPCompareError as e:
        _fail(e)

    result = compare_plans(left_plan, right_plan, mode, assume_canonical=True)
    _emit(result, output_format)

    if plan_diff and not result.is_equivalent:
        typer.echo("")
        typer.echo(render_plan_diff(left_plan, right_plan))

    raise typer.Exit(code=EXIT_EQUIVALENT if result.is_equivalent else EXIT_DIVERGENT)


@app.command()
def plan(
    ctx: typer.Context,
    schema: Annotated[
        Path,
        typer.Option("--schema", "-s", help="Supergraph schema file", exists=True, readable=True),
    ],
    operation: Annotated[
        Path,
        typer.Option(
            "--operation",
            "-o",
            help="Operation file, or a directory of .graphql operations",
            exists=True,
            readable=True,
        ),
    ],
    legacy_cmd: Annotated[
        str,
        typer.Option("--legacy-cmd", help="Command running the legacy planner"),
    ],
    native_cmd: Annotated[
        str,
        typer.Option("--native-cmd", help="Command running the native planner"),
    ],
    dump_plans: Annotated[
        Optional[Path],
        typer.Option("--dump-plans", help="Directory to write both plans to"),
    ] = None,
    fail_fast: Annotated[
        Optional[bool],
        typer.Option("--fail-fast/--exhaustive", help="Stop at the first mismatch."),
    ] = None,
    output_format: Annotated[
        OutputFormat,
        typer.Option("--format", "-f", help="Output format."),
    ] = OutputFormat.TEXT,
    generate_fragments: Annotated[
        bool,
        typer.Option("--generate-fragments/--no-generate-fragments", help="Planner fragment generation."),
    ] = True,
    type_conditioned_fetching: Annotated[
        bool,
        typer.Option("--type-conditioned-fetching", help="Enable type-conditioned fetching."),
    ] = False,
) -> None:
    """
    Run both planners on an operation (or directory) and compare the plans.

    Each command receives the schema and operation file paths (appended,
    or substituted for {schema} and {operation}) and prints its plan as
    JSON on stdout.
    """
    config = _config(ctx)
    options = PlannerOptions(
        generate_fragments=generate_fragments,
        type_conditioned_fetching=type_conditioned_fetching,
    )

    def adapter(command: str, name: str) -> CommandPlannerAdapter:
        return CommandPlannerAdapter(
            command,
            name=name,
            timeout_seconds=config.planner_timeout_seconds,
            options=options,
            loader_config=config.loader_limits(),
        )

    service = ComparisonService.from_config(
        adapter(legacy_cmd, "legacy"),
        adapter(native_cmd, "native"),
        config,
        mode=_mode(fail_fast, config),
        dump_dir=dump_plans,
    )
    schema_text = schema.read_text(encoding="utf-8")

    if operation.is_dir():
        operations = _collect_operations(operation)
        if not operations:
            error_console.print(f"[red]Error:[/red] no operations found in {operation}")
            raise typer.Exit(code=EXIT_ERROR)
        corpus = service.run_corpus(schema_text, operations)
        _print_corpus(corpus, output_format)
        if corpus.error_count:
            raise typer.Exit(code=EXIT_ERROR)
        raise typer.Exit(code=EXIT_DIVERGENT if corpus.divergent_count else EXIT_EQUIVALENT)

    try:
        report = service.run(schema_text, operation.read_text(encoding="utf-8"), operation.stem)
    except QPCompareError as e:
        _fail(e)

    if report.result is not None:
        _emit(report.result, output_format)
    raise typer.Exit(code=EXIT_EQUIVALENT if report.is_equivalent else EXIT_DIVERGENT)


@app.command()
def canonicalize(
    ctx: typer.Context,
    plan_file: Annotated[
        Path,
        typer.Argument(help="Plan JSON", exists=True, readable=True),
    ],
    compact: Annotated[
        bool,
        typer.Option("--compact", help="Print the single-line canonical rendering."),
    ] = False,
    strict: Annotated[
        bool,
        typer.Option("--strict", help="Fail on empty Sequence/Parallel or unknown nodes."),
    ] = False,
) -> None:
    """Print the canonical form of a plan."""
    config = _config(ctx)
    try:
        loaded = canonicalize_plan(load_plan_file(plan_file, config.loader_limits()), config.canonical_options())
        if loaded.node is not None:
            for anomaly in validate_plan(loaded.node, strict=strict):
                error_console.print(f"[yellow]warning:[/yellow] {escape(anomaly)}", highlight=False)
    except QPCompareError as e:
        _fail(e)

    if compact:
        typer.echo(loaded.node.render() if loaded.node is not None else "null")
    else:
        typer.echo(json.dumps(loaded.to_dict(), indent=2, sort_keys=True))


@app.command()
def schema() -> None:
    """Print the JSON Schema of `compare --format json` output."""
    typer.echo(json.dumps(get_json_schema(), indent=2))


# =============================================================================
# Helpers
# =============================================================================


def _mode(fail_fast: bool | None, config: Config) -> CompareMode:
    if fail_fast is None:
        return config.default_mode
    return CompareMode.FAIL_FAST if fail_fast else CompareMode.EXHAUSTIVE


def _collect_operations(directory: Path) -> list[tuple[str, str]]:
    operations = []
    for path in sorted(directory.rglob("*")):
        if path.is_file() and path.suffix in OPERATION_SUFFIXES:
            operation_id = str(path.relative_to(directory).with_suffix(""))
            operations.append((operation_id, path.read_text(encoding="utf-8")))
    return operations


def _print_corpus(corpus: CorpusReport, output_format: OutputFormat) -> None:
    if output_format == OutputFormat.JSON:
        typer.echo(
            json.dumps(
                {
                    "summary": corpus.to_summary_dict(),
                    "operations": [r.to_dict() for r in corpus.reports],
                },
                indent=2,
            )
        )
        return

    table = Table(title="Query plan comparison")
    table.add_column("Operation", style="cyan")
    table.add_column("Status")
    table.add_column("Mismatches", justify="right")

    styles = {"equivalent": "green", "divergent": "yellow", "error": "red bold"}
    for report in corpus.reports:
        style = styles[report.status]
        count = str(len(report.result.mismatches)) if report.result else "-"
        table.add_row(report.operation_id, f"[{style}]{report.status}[/{style}]", count)
    console.print(table)

    for report in corpus.reports:
        if report.error is not None:
            error_console.print(f"[red]{report.operation_id}:[/red] {escape(report.error.message)}", highlight=False)
        elif report.result is not None and not report.result.is_equivalent:
            typer.echo("")
            typer.echo(f"## {report.operation_id}")
            typer.echo(render(report.result, output_format))

    console.print(
        f"[dim]{corpus.total} operation(s): {corpus.equivalent_count} equivalent, "
        f"{corpus.divergent_count} divergent, {corpus.error_count} error(s)[/dim]"
    )


if __name__ == "__main__":
    app()
