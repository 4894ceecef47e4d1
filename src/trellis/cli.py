"""
Trellis CLI.

Commands for inspecting structure documents offline:
- validate: Report every validation issue in a document
- policy: Show what a cache policy compiles to
- resolve: Resolve $$CONTEXT tokens in a parameter map
- nav: Show visible navigation in display order
- plan: Show the per-section plan for a page
"""

from __future__ import annotations

import json
import logging
import math
from pathlib import Path
from typing import Annotated, Any

import typer
from pydantic import ValidationError as PydanticValidationError
from rich.console import Console
from rich.table import Table

from trellis._version import get_version
from trellis.core.config import TrellisConfig, load_config
from trellis.core.errors import ConfigError
from trellis.core.validator import check_cache_policy, validate
from trellis.runtime.cache_policy import compile_policy, describe_policy
from trellis.runtime.context import RuntimeContext, resolve_params
from trellis.runtime.interpreter import StructureInterpreter
from trellis.runtime.logging import setup_logging
from trellis.runtime.query_client import QueryClient
from trellis.runtime.registry import ComponentRegistry
from trellis.specs.policy import CachePolicy
from trellis.specs.structure import StructureDocument

console = Console()

app = typer.Typer(
    help="Trellis: validate and inspect server-driven structure documents",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    if value:
        console.print(f"trellis {get_version()}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: Annotated[
        bool | None,
        typer.Option("--version", callback=version_callback, is_eager=True, help="Show version"),
    ] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging")] = False,
) -> None:
    """Trellis CLI main callback for global options."""
    setup_logging(level=logging.DEBUG if verbose else logging.WARNING, jsonl=False)


# =============================================================================
# Helpers
# =============================================================================


def _read_json(source: str) -> Any:
    """Parse JSON from a file path or an inline JSON string."""
    text = source
    if not source.lstrip().startswith(("{", "[")):
        try:
            text = Path(source).read_text()
        except OSError as e:
            console.print(f"[red]Cannot read {source}: {e}[/red]")
            raise typer.Exit(code=1) from e
    try:
        return json.loads(text)
    except ValueError as e:
        console.print(f"[red]Invalid JSON in {source}: {e}[/red]")
        raise typer.Exit(code=1) from e


def _load_settings() -> TrellisConfig:
    try:
        return load_config()
    except ConfigError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(code=1) from e


def _load_document(path: Path) -> StructureDocument:
    result = validate(_read_json(str(path)))
    if isinstance(result, StructureDocument):
        return result
    console.print(f"[red]{path} is invalid ({len(result)} issue(s)); run 'trellis validate'[/red]")
    raise typer.Exit(code=1)


def _load_context(path: Path | None) -> RuntimeContext:
    if path is None:
        return RuntimeContext()
    data = _read_json(str(path))
    try:
        return RuntimeContext.from_namespaces(data)
    except (KeyError, TypeError, PydanticValidationError) as e:
        console.print(f"[red]Invalid context file {path}: {e}[/red]")
        raise typer.Exit(code=1) from e


def _fmt_ms(value: float | None) -> str:
    if value is None:
        return "-"
    if math.isinf(value):
        return "inf"
    return f"{value:g}"


# =============================================================================
# Commands
# =============================================================================


@app.command(name="validate")
def validate_command(
    file: Annotated[Path, typer.Argument(help="Structure document (JSON)")],
    output_json: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """Validate a structure document and report every issue."""
    result = validate(_read_json(str(file)))

    if isinstance(result, StructureDocument):
        if output_json:
            console.print_json(json.dumps({"valid": True, "stats": result.stats}))
        else:
            stats = ", ".join(f"{v} {k.replace('_', ' ')}" for k, v in result.stats.items())
            console.print(f"[green]Valid[/green] {file} ({stats})")
        return

    if output_json:
        issues = [{"loc": i.loc, "rule": i.rule, "message": i.message} for i in result]
        console.print_json(json.dumps({"valid": False, "issues": issues}))
    else:
        table = Table(title=f"{len(result)} issue(s) in {file}")
        table.add_column("Location", style="cyan")
        table.add_column("Rule", style="yellow")
        table.add_column("Message")
        for issue in result:
            table.add_row(issue.loc or "<document>", issue.rule, issue.message)
        console.print(table)
    raise typer.Exit(code=1)


@app.command(name="policy")
def policy_command(
    policy_json: Annotated[str, typer.Argument(help="Cache policy as JSON or a JSON file")],
) -> None:
    """Show the effective cache config a policy compiles to."""
    try:
        policy = CachePolicy.model_validate(_read_json(policy_json))
    except PydanticValidationError as e:
        console.print(f"[red]Invalid cache policy:[/red] {e}")
        raise typer.Exit(code=1) from e

    issues = check_cache_policy(policy)
    for issue in issues:
        console.print(f"[yellow]warning:[/yellow] {issue.format()}")

    settings = _load_settings()
    config = compile_policy(policy, settings=settings)

    table = Table(title=describe_policy(policy, settings=settings))
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    table.add_row("strategy", str(config.strategy))
    table.add_row("stale_time_ms", _fmt_ms(config.stale_time_ms))
    table.add_row("gc_time_ms", _fmt_ms(config.gc_time_ms))
    table.add_row("refetch_on_mount", str(config.refetch_on_mount))
    table.add_row("refetch_on_window_focus", str(config.refetch_on_window_focus))
    table.add_row("refetch_on_reconnect", str(config.refetch_on_reconnect))
    table.add_row("refetch_interval_ms", _fmt_ms(config.refetch_interval_ms))
    table.add_row("retry", str(config.retry))
    table.add_row("persist", str(config.persist))
    table.add_row("prefetch", str(config.prefetch))
    table.add_row("adaptive", str(config.is_adaptive))
    console.print(table)
    if issues:
        raise typer.Exit(code=1)


@app.command(name="resolve")
def resolve_command(
    params_json: Annotated[str, typer.Argument(help="Parameter map as JSON or a JSON file")],
    context_file: Annotated[
        Path | None, typer.Option("--context", "-c", help="Runtime context JSON file")
    ] = None,
    optional: Annotated[
        list[str] | None, typer.Option("--optional", "-o", help="Optional param name")
    ] = None,
) -> None:
    """Resolve $$NAMESPACE.FIELD tokens against a runtime context."""
    params = _read_json(params_json)
    if not isinstance(params, dict):
        console.print("[red]Parameters must be a JSON object[/red]")
        raise typer.Exit(code=1)

    resolved = resolve_params(params, _load_context(context_file), optional or ())
    console.print_json(
        json.dumps(
            {
                "params": resolved.params,
                "queryEnabled": resolved.query_enabled,
                "missingContext": resolved.missing_context,
                "warnings": [w.format() for w in resolved.warnings],
            },
            default=str,
        )
    )


@app.command(name="nav")
def nav_command(
    file: Annotated[Path, typer.Argument(help="Structure document (JSON)")],
) -> None:
    """Show visible navigation items in display order."""
    document = _load_document(file)
    interpreter = StructureInterpreter(
        document, executor=QueryClient(_NoTransport()), registry=ComponentRegistry()
    )

    table = Table(title=document.meta.app_name)
    table.add_column("Order", justify="right")
    table.add_column("Id", style="cyan")
    table.add_column("Label")
    table.add_column("Page")
    table.add_column("Badge")
    for item in interpreter.navigation_items():
        badge = item.badge_source or (str(item.badge) if item.badge is not None else "")
        table.add_row(str(item.order), item.id, item.label, item.page_id, badge)
    console.print(table)


@app.command(name="plan")
def plan_command(
    file: Annotated[Path, typer.Argument(help="Structure document (JSON)")],
    page: Annotated[str | None, typer.Option("--page", "-p", help="Page id")] = None,
    context_file: Annotated[
        Path | None, typer.Option("--context", "-c", help="Runtime context JSON file")
    ] = None,
) -> None:
    """Show what each section of a page would do under a runtime context."""
    document = _load_document(file)
    page_id = page or document.meta.default_page
    interpreter = StructureInterpreter(
        document,
        executor=QueryClient(_NoTransport()),
        registry=ComponentRegistry(),
        settings=_load_settings(),
    )

    try:
        plans = interpreter.plan_page(page_id, _load_context(context_file))
    except KeyError as e:
        console.print(f"[red]Unknown page: {page_id}[/red]")
        raise typer.Exit(code=1) from e

    table = Table(title=f"Page {page_id}")
    table.add_column("Section", style="cyan")
    table.add_column("Query")
    table.add_column("Status")
    table.add_column("Params")
    table.add_column("Cache")
    for plan in plans:
        if plan.skipped:
            status = f"[dim]skipped ({plan.skip_reason})[/dim]"
            params = ""
        elif plan.enabled:
            status = "[green]enabled[/green]"
            params = json.dumps(plan.resolved.params if plan.resolved else {}, default=str)
        else:
            missing = ", ".join(plan.resolved.missing_context) if plan.resolved else ""
            status = f"[yellow]pending (missing {missing})[/yellow]"
            params = json.dumps(plan.resolved.params if plan.resolved else {}, default=str)
        cache = ""
        if plan.cache_config is not None:
            cache = (
                f"{plan.cache_config.strategy} "
                f"stale={_fmt_ms(plan.cache_config.stale_time_ms)} "
                f"gc={_fmt_ms(plan.cache_config.gc_time_ms)}"
            )
        table.add_row(plan.section_id, plan.query_name, status, params, cache)
    console.print(table)


class _NoTransport:
    """Planning never issues queries."""

    async def query(self, query_name: str, params: Any) -> Any:
        raise RuntimeError(f"Offline CLI cannot run query {query_name!r}")


def main(argv: list[str] | None = None) -> None:
    app(args=argv, standalone_mode=True)
