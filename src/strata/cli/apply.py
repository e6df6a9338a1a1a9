"""
CLI commands for applying and destroying a catalog.
"""

from __future__ import annotations

import json
from typing import Any

from rich.markup import escape

from strata.cli.session import open_orchestrator, resolve_settings, run_cancellable
from strata.cli.ux import console, error, success, warning
from strata.core.errors import StrataError, format_error_message
from strata.graph.models import UnitState
from strata.orchestration.results import RunOutcome, RunResult, UnitReport

STATE_STYLES = {
    UnitState.RUNNING: ("→", "info"),
    UnitState.SUCCEEDED: ("✓", "success"),
    UnitState.FAILED: ("✗", "error"),
    UnitState.SKIPPED: ("○", "warning"),
}


def print_transition(unit_id: str, state: UnitState, report: UnitReport) -> None:
    """Stream one line per unit state change."""
    symbol, style = STATE_STYLES.get(state, ("•", "muted"))
    line = f"  [{style}]{symbol} {escape(unit_id)}[/{style}] {state}"
    if report.action is not None and state != UnitState.RUNNING:
        line += f" [muted]({report.action})[/muted]"
    if state == UnitState.SUCCEEDED and report.attempts > 1:
        line += f" [muted]after {report.attempts} attempts[/muted]"
    if state == UnitState.FAILED and report.error:
        line += f": {escape(report.error)}"
    if state == UnitState.SKIPPED and report.skipped_because:
        line += f" [muted](because {escape(report.skipped_because)} failed)[/muted]"
    console.print(line)


def print_run_summary(result: RunResult) -> None:
    """Print the run outcome and the failure summary."""
    console.print()
    if result.outcome == RunOutcome.ALL_SUCCEEDED:
        success(f"{result.mode.capitalize()} complete: {len(result.succeeded)} units succeeded")
        console.print()
        return

    if result.outcome == RunOutcome.ABORTED:
        error(f"{result.mode.capitalize()} aborted: {result.reason}")
    else:
        warning(
            f"{result.mode.capitalize()} finished with failures: "
            f"{len(result.succeeded)} succeeded, {len(result.failed)} failed, "
            f"{len(result.skipped)} skipped"
        )

    if result.failed:
        console.print()
        console.print("[bold]Failed:[/bold]")
        for unit_id in result.failed:
            report = result.units[unit_id]
            console.print(
                f"  [error]✗[/error] {escape(unit_id)}: "
                f"{escape(report.error or 'unknown error')} [muted]({report.error_kind})[/muted]"
            )
    if result.skipped:
        console.print()
        console.print("[bold]Skipped:[/bold]")
        for unit_id in result.skipped:
            report = result.units[unit_id]
            console.print(
                f"  [warning]○[/warning] {escape(unit_id)} "
                f"[muted](failed ancestor: {escape(report.skipped_because or '?')})[/muted]"
            )
    if result.not_started:
        console.print()
        console.print(f"[muted]Not started: {escape(', '.join(result.not_started))}[/muted]")
    console.print()


def print_run_json(result: RunResult) -> None:
    """Print run result in JSON format."""
    print(json.dumps(result.to_dict(), indent=2, default=str))


def _run_command(
    operation: str,
    catalog_path: str,
    variables: dict[str, Any] | None,
    output_format: str,
    overrides: dict[str, Any],
) -> int:
    settings = resolve_settings(**overrides)
    stream = print_transition if output_format != "json" else None
    try:
        orchestrator = open_orchestrator(catalog_path, variables, settings, on_transition=stream)
    except StrataError as exc:
        error(format_error_message(exc))
        return exc.exit_code

    run = orchestrator.apply if operation == "apply" else orchestrator.destroy
    result = run_cancellable(orchestrator, run)

    if output_format == "json":
        print_run_json(result)
    else:
        print_run_summary(result)
    return result.exit_code


def apply_command(
    catalog_path: str,
    variables: dict[str, Any] | None = None,
    output_format: str = "text",
    **overrides: Any,
) -> int:
    """
    Create, update and replace resources to match the catalog.

    Returns:
        Exit code (0 all succeeded, 1 partial failure, 2 or the error's code when aborted)
    """
    return _run_command("apply", catalog_path, variables, output_format, overrides)


def destroy_command(
    catalog_path: str,
    variables: dict[str, Any] | None = None,
    output_format: str = "text",
    **overrides: Any,
) -> int:
    """Tear down every resource in state, dependents first."""
    return _run_command("destroy", catalog_path, variables, output_format, overrides)
