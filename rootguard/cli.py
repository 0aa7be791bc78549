"""Command line entry point.

    rootguard status
    rootguard validate DIR [--profile production]
    rootguard roots DIR [DIR ...]
    rootguard ensure DIR
"""

import argparse
import asyncio
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table

from rootguard.app import RootGuard, build_roots_manager
from rootguard.config import RootGuardConfig
from rootguard.exceptions import ConfigurationError
from rootguard.logging_utils import setup_logging
from rootguard.models import RootsValidationResult
from rootguard.policy import parse_policy_kind

EXIT_OK = 0
EXIT_REJECTED = 1
EXIT_CONFIG_ERROR = 2

console = Console()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rootguard", description="Validate client roots and show the resolved output directory"
    )
    parser.add_argument("--config", type=Path, help="Config file (default: ~/.rootguard/config.yaml)")
    parser.add_argument("--policy", help="Security policy: strict, standard or permissive")
    parser.add_argument(
        "-A", "--allow", action="append", default=[], metavar="DIR", help="Allowed root (repeatable)"
    )
    parser.add_argument("--log-level", help="Console log level (default: WARNING)")

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("status", help="Show the current directory and its source")

    validate = commands.add_parser("validate", help="Check a directory without adopting it")
    validate.add_argument("directory")
    validate.add_argument(
        "--profile",
        choices=["development", "production", "environment"],
        help="Validate against a built-in profile instead of the configured policy",
    )

    roots = commands.add_parser("roots", help="Apply a roots notification")
    roots.add_argument("directories", nargs="+")

    ensure = commands.add_parser("ensure", help="Validate a directory and create it if missing")
    ensure.add_argument("directory")
    return parser


def _print_result(result: RootsValidationResult) -> None:
    if result.valid:
        console.print(f"[green]allowed[/green] {result.normalized_path}")
    else:
        code = result.code.value if result.code else "rejected"
        console.print(f"[red]{code}[/red] {result.directory or result.normalized_path}: {result.reason}")


def _print_details(result: RootsValidationResult) -> None:
    table = Table(title="Declared roots")
    table.add_column("Root")
    table.add_column("Outcome")
    table.add_column("Reason")
    for detail in result.details:
        outcome = "[green]valid[/green]" if detail.valid else f"[red]{detail.code.value}[/red]"
        table.add_row(detail.directory, outcome, detail.reason or detail.normalized_path)
    console.print(table)


async def _run(args: argparse.Namespace) -> int:
    config = RootGuardConfig.load(config_path=args.config)
    if args.policy:
        config.policy = parse_policy_kind(args.policy)
    if args.allow:
        config.allowed_roots = [str(Path(p).expanduser()) for p in args.allow]

    guard: RootGuard = await build_roots_manager(config)

    if args.command == "status":
        status = guard.manager.get_current_roots()
        info = await guard.provider.get_directory_info()
        console.print(f"Directory: [cyan]{status.current_directory}[/cyan]")
        console.print(f"Source:    [cyan]{status.source.value}[/cyan]")
        console.print(f"Exists: {info.exists}  Writable: {info.writable}  Whitelisted: {info.within_whitelist}")
        for allowed in guard.provider.get_allowed_directories():
            console.print(f"  allowed: {allowed}")
        return EXIT_OK

    if args.command == "validate":
        if args.profile:
            validator = guard.factory.create_for_profile(args.profile)
            result = await validator.validate_directory_security(args.directory)
        else:
            result = await guard.manager.validate_directory(args.directory)
        _print_result(result)
        return EXIT_OK if result.valid else EXIT_REJECTED

    if args.command == "roots":
        result = await guard.manager.handle_roots_changed({"roots": args.directories})
        if result.details:
            _print_details(result)
        _print_result(result)
        if result.valid:
            console.print(f"Current directory: [cyan]{guard.provider.get_current_qr_directory()}[/cyan]")
        return EXIT_OK if result.valid else EXIT_REJECTED

    if args.command == "ensure":
        ready = await guard.manager.ensure_directory_with_security_check(args.directory)
        if ready:
            console.print(f"[green]ready[/green] {args.directory}")
            return EXIT_OK
        console.print(f"[red]not usable[/red] {args.directory}")
        return EXIT_REJECTED

    return EXIT_CONFIG_ERROR


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)
    try:
        return asyncio.run(_run(args))
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        return EXIT_CONFIG_ERROR


if __name__ == "__main__":
    sys.exit(main())
