"""CLI entry point: ``apiconform validate``."""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Any

from pydantic import ValidationError

from apiconform import __version__
from apiconform.config import Settings
from apiconform.constants import ReportFormat, StageProgress
from apiconform.logging_config import set_level, setup_logging
from apiconform.resilience.errors import SetupError
from apiconform.schemas import EntrySelector
from apiconform.services.events import StageEvent


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point. Returns the process exit code."""
    setup_logging()
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(f"apiconform {__version__}")
        return 0

    if args.command == "validate":
        return _run_validate(args, parser)
    parser.print_help()
    return 0


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="apiconform",
        description=(
            "Validate every API in a publisher catalog "
            "against governance rulesets."
        ),
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print version and exit",
    )

    sub = parser.add_subparsers(dest="command")

    validate = sub.add_parser(
        "validate",
        help="Export and validate APIs",
    )
    target = validate.add_mutually_exclusive_group(required=True)
    target.add_argument(
        "--all",
        "-a",
        action="store_true",
        help="Validate every API in the catalog",
    )
    target.add_argument(
        "--id",
        dest="api_id",
        default=None,
        help="Validate the API with this identifier",
    )
    target.add_argument(
        "--name",
        "-n",
        default=None,
        help="Validate the API with this name (needs --api-version)",
    )
    validate.add_argument(
        "--api-version",
        "-V",
        default=None,
        help="API version, used together with --name",
    )
    validate.add_argument(
        "--token",
        "-t",
        default=None,
        help="Bearer token (default: APICONFORM_TOKEN)",
    )
    validate.add_argument(
        "--base-url",
        default=None,
        help="Publisher REST API base URL",
    )
    validate.add_argument(
        "--verify-tls",
        action="store_true",
        default=None,
        help="Verify the publisher's TLS certificate",
    )
    validate.add_argument(
        "--concurrency",
        "-c",
        type=int,
        default=None,
        help="Maximum APIs processed at once",
    )
    validate.add_argument(
        "--ruleset-dir",
        "-r",
        default=None,
        help="Directory holding the ruleset files",
    )
    validate.add_argument(
        "--output-dir",
        "-o",
        default=None,
        help="Directory for report files",
    )
    validate.add_argument(
        "--format",
        "-f",
        default=",".join(ReportFormat),
        help="Comma-separated report formats: csv, log, json (default: all)",
    )
    validate.add_argument(
        "--keep-artifacts",
        action="store_true",
        default=None,
        help="Keep downloaded archives and extracted files",
    )
    validate.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose output",
    )
    return parser


_OVERRIDES = {
    "token": "token",
    "base_url": "base_url",
    "verify_tls": "verify_tls",
    "concurrency": "max_concurrency",
    "ruleset_dir": "ruleset_dir",
    "output_dir": "output_dir",
    "keep_artifacts": "keep_artifacts",
}


def _settings_from_args(args: argparse.Namespace) -> Settings:
    """Environment settings, with explicitly passed flags on top."""
    overrides: dict[str, Any] = {
        field: getattr(args, arg)
        for arg, field in _OVERRIDES.items()
        if getattr(args, arg) is not None
    }
    return Settings(**overrides)


def _parse_formats(raw: str) -> list[ReportFormat]:
    formats: list[ReportFormat] = []
    for part in raw.split(","):
        name = part.strip().lower()
        if not name:
            continue
        formats.append(ReportFormat(name))
    if not formats:
        raise ValueError("at least one report format is required")
    return formats


def _run_validate(
    args: argparse.Namespace, parser: argparse.ArgumentParser
) -> int:
    """Execute the validate command."""
    from apiconform.services.validation_service import run_validation

    if args.name and not args.api_version:
        parser.error("--name requires --api-version")
    if args.api_version and not args.name:
        parser.error("--api-version requires --name")

    try:
        formats = _parse_formats(args.format)
    except ValueError as exc:
        parser.error(f"invalid --format: {exc}")

    selector = None
    if args.api_id:
        selector = EntrySelector(api_id=args.api_id)
    elif args.name:
        selector = EntrySelector(name=args.name, version=args.api_version)

    try:
        settings = _settings_from_args(args)
    except ValidationError as exc:
        print(f"Error: invalid configuration: {exc}", file=sys.stderr)
        return 1

    if args.verbose:
        set_level("DEBUG")
    else:
        set_level(settings.log_level)

    def on_progress(event: StageEvent) -> None:
        if not args.verbose:
            return
        if event.completed is not None:
            print(f"  [{event.completed}/{event.total}] {event.message}")
        elif event.status == StageProgress.RUNNING:
            print(f"  {event.label}...")

    print("Validating APIs")
    try:
        run = asyncio.run(
            run_validation(
                settings,
                selector,
                formats=formats,
                on_progress=on_progress,
            )
        )
    except SetupError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    report = run.report
    if run.catalog.degraded:
        print(
            f"Warning: catalog incomplete ({run.catalog.error}); "
            "results cover the entries fetched before the error"
        )
    if run.no_match:
        print(f"No matching entry for '{selector.slug if selector else ''}'")
        return 0

    print(
        f"\nDone! {len(report.results)} APIs checked, "
        f"{report.violation_count} violations, "
        f"{report.failed_count} failed "
        f"({run.total_duration_ms:.0f}ms)"
    )
    for path in run.artifacts:
        print(f"Output: {path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
