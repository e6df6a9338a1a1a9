"""
CLI command for planning changes without side effects.
"""

from __future__ import annotations

import json
from typing import Any

from rich.markup import escape

from strata.cli.session import open_orchestrator, resolve_settings, run_cancellable
from strata.cli.ux import console, error, header, info, success
from strata.core.errors import StrataError, format_error_message
from strata.orchestration.results import PlanResult
from strata.state.models import ChangeAction

ACTION_SYMBOLS = {
    ChangeAction.CREATE: ("+", "success"),
    ChangeAction.UPDATE: ("~", "warning"),
    ChangeAction.REPLACE: ("-/+", "highlight"),
    ChangeAction.DESTROY: ("-", "error"),
    ChangeAction.UNCHANGED: ("=", "muted"),
}


def print_plan_summary(plan: PlanResult, catalog_path: str, verbose: bool = False) -> None:
    """Print the per-resource diff."""
    header(f"Plan: {catalog_path}")
    console.print()

    if plan.diff is None:
        error("Plan aborted:")
        for err in plan.errors:
            console.print(f"   [error]•[/error] {escape(err)}")
        console.print()
        return

    for resource_id, change in sorted(plan.diff.changes.items()):
        symbol, style = ACTION_SYMBOLS[change.action]
        line = f"  [{style}]{symbol:>3}[/{style}] {escape(resource_id)} [muted]({change.kind})[/muted]"
        if change.action in (ChangeAction.UPDATE, ChangeAction.REPLACE) and change.changed:
            line += f"  [muted]changed: {escape(', '.join(change.changed))}[/muted]"
        console.print(line)
        if verbose and change.after:
            for name, value in sorted(change.after.items()):
                console.print(f"        [muted]{escape(name)} = {escape(repr(value))}[/muted]")

    counts = plan.diff.to_dict()
    console.print()
    console.print(
        f"[bold]Plan:[/bold] {len(counts['create'])} to create, "
        f"{len(counts['update'])} to update, {len(counts['destroy'])} to destroy, "
        f"{len(counts['unchanged'])} unchanged"
    )
    console.print()
    if plan.diff.has_changes:
        info(f"To apply these changes, run: strata apply {catalog_path}")
    else:
        success("No changes. Infrastructure matches the catalog.")
    console.print()


def print_plan_json(plan: PlanResult) -> None:
    """Print plan in JSON format."""
    print(json.dumps(plan.to_dict(), indent=2, default=str))


def plan_command(
    catalog_path: str,
    variables: dict[str, Any] | None = None,
    output_format: str = "text",
    verbose: bool = False,
    **overrides: Any,
) -> int:
    """
    Show what apply would change.

    Args:
        catalog_path: Path to the catalog YAML file
        variables: Variable bindings overriding the catalog's defaults
        output_format: Output format (text, json)
        verbose: Show desired attribute values
        **overrides: Settings overrides (state_path, provider, region, ...)

    Returns:
        Exit code (0 for success, the error's exit code when aborted)
    """
    settings = resolve_settings(**overrides)
    try:
        orchestrator = open_orchestrator(catalog_path, variables, settings)
    except StrataError as exc:
        error(format_error_message(exc))
        return exc.exit_code

    plan = run_cancellable(orchestrator, orchestrator.plan)

    if output_format == "json":
        print_plan_json(plan)
    else:
        print_plan_summary(plan, catalog_path, verbose=verbose)

    return plan.exit_code
