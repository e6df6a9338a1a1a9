"""Strata command line entry point."""

from __future__ import annotations

import argparse
import sys
from typing import Sequence

from strata import __version__
from strata.catalog.loader import parse_variable_bindings
from strata.cli.ux import error
from strata.config.settings import get_settings
from strata.core.errors import ConfigError, main_with_error_handling
from strata.logging import configure_logging
from strata.providers import list_providers


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("catalog", help="Path to the catalog YAML file")
    parser.add_argument(
        "--var",
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Set a catalog variable (repeatable)",
    )
    parser.add_argument("--state", dest="state_path", help="Path to the state file")
    parser.add_argument(
        "--provider",
        choices=[spec.name for spec in list_providers()],
        help="Cloud provider to use",
    )
    parser.add_argument(
        "--inventory",
        dest="inventory_path",
        help="Inventory/persistence file for the memory provider",
    )
    parser.add_argument("--region", help="Provider region")
    parser.add_argument("--workers", type=int, help="Maximum units running concurrently")
    parser.add_argument("--output", choices=["text", "json"], default="text", help="Output format")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output and logging")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="strata", description="Infrastructure resource orchestration")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command")

    plan_parser = subparsers.add_parser("plan", help="Preview changes without side effects")
    _add_common_arguments(plan_parser)

    apply_parser = subparsers.add_parser("apply", help="Create or update resources to match the catalog")
    _add_common_arguments(apply_parser)

    destroy_parser = subparsers.add_parser("destroy", help="Tear down every resource in state")
    _add_common_arguments(destroy_parser)

    return parser


@main_with_error_handling()
def run(args: argparse.Namespace) -> int:
    settings = get_settings()
    level = "DEBUG" if args.verbose else settings.log_level
    configure_logging(level, json=settings.log_json)

    try:
        variables = parse_variable_bindings(args.var)
    except ConfigError as exc:
        error(exc.message)
        return exc.exit_code

    overrides = {
        "state_path": args.state_path,
        "provider": args.provider,
        "inventory_path": args.inventory_path,
        "region": args.region,
        "workers": args.workers,
    }

    if args.command == "plan":
        from strata.cli.plan import plan_command

        return plan_command(
            args.catalog,
            variables,
            output_format=args.output,
            verbose=args.verbose,
            **overrides,
        )

    if args.command == "apply":
        from strata.cli.apply import apply_command

        return apply_command(args.catalog, variables, output_format=args.output, **overrides)

    from strata.cli.apply import destroy_command

    return destroy_command(args.catalog, variables, output_format=args.output, **overrides)


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 1
    return run(args)


if __name__ == "__main__":  # pragma: no cover - exercised via console script
    sys.exit(main())
