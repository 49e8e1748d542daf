"""
Command-line interface for solbuild.

This module provides the `solbuild` CLI tool for building multi-version
smart-contract projects.
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import requests
from rich.console import Console
from rich.table import Table

from . import __version__
from .build.models import BuildReport, BuildStatus, ProcessorStatus, UnitOutcome
from .build.orchestrator import BuildOrchestrator
from .build.progress_display import BuildProgressDisplay
from .config import CONFIG_FILENAME, load_defaults, load_project_config, merge_config, read_config_file
from .config.project_config import ProjectConfig
from .errors import BuildCancelledError, ConfigError, SolbuildError
from .output import init_timer, log, log_build_complete, log_error, log_header, set_verbose

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

_OUTCOME_STYLES = {
    UnitOutcome.COMPILED: "green",
    UnitOutcome.CACHED: "cyan",
    UnitOutcome.FAILED: "red bold",
    UnitOutcome.SKIPPED: "yellow",
}


@dataclass
class BuildArgs:
    """Arguments for the build, coverage and docgen commands."""

    project_dir: Path
    config_file: Optional[Path] = None
    force: bool = False
    no_postprocess: bool = False
    jobs: Optional[int] = None
    verbose: bool = False
    json_output: bool = False


def setup_logging(verbose: bool) -> None:
    """Send library logging to stderr; DEBUG with --verbose, WARNING otherwise."""
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.WARNING)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))
    root.handlers = [handler]


def _load_config(args: BuildArgs) -> ProjectConfig:
    config = load_project_config(args.project_dir, args.config_file)
    if args.jobs is not None:
        if args.jobs < 1:
            raise ConfigError(f"--jobs must be >= 1, got {args.jobs}")
        config = dataclasses.replace(config, max_workers=args.jobs)
    return config


def print_report(report: BuildReport, console: Console) -> None:
    """Render a build report as Rich tables."""
    table = Table(title="Source units")
    table.add_column("Unit", style="bold")
    table.add_column("solc")
    table.add_column("Result")
    table.add_column("Contracts")
    for unit in report.units:
        style = _OUTCOME_STYLES[unit.outcome]
        table.add_row(unit.identifier, unit.version, f"[{style}]{unit.outcome.value}[/]", ", ".join(unit.contracts))
    if report.units:
        console.print(table)

    for unit in report.failed:
        console.print(f"[red bold]✗ {unit.identifier}[/]")
        for diagnostic in unit.diagnostics:
            console.print(diagnostic.formatted.rstrip() or diagnostic.format(), markup=False, highlight=False)

    if report.processors:
        processors = Table(title="Post-processors")
        processors.add_column("Processor", style="bold")
        processors.add_column("Status")
        processors.add_column("Detail")
        for result in report.processors:
            if result.status == ProcessorStatus.FAILED:
                status, detail = "[red bold]failed[/]", result.error
            elif result.status == ProcessorStatus.SKIPPED:
                status, detail = "[dim]skipped[/]", result.error
            else:
                status, detail = "[green]ok[/]", result.output.detail if result.output else ""
            processors.add_row(result.name, status, detail)
        console.print(processors)

    for warning in report.warnings:
        console.print(f"[yellow]{warning}[/]")


def _exit_code(report: BuildReport) -> int:
    if report.status == BuildStatus.CANCELLED:
        return EXIT_CANCELLED
    return EXIT_OK if report.ok else EXIT_FAILED


def run_build(args: BuildArgs, processor_names: Optional[list[str]] = None, without_optimizer: bool = False) -> int:
    """Shared implementation of build, coverage and docgen.

    Returns:
        Process exit code.
    """
    console = Console()
    init_timer()
    set_verbose(args.verbose)
    log_header("solbuild", __version__)

    config = _load_config(args)
    registry = config.compiler_registry()
    if without_optimizer:
        registry = registry.without_optimizer()
    orchestrator = BuildOrchestrator(config, registry=registry)
    log(f"Building project: {config.root}")

    display = BuildProgressDisplay(console, config.root.name)
    try:
        with display:
            report = orchestrator.build(
                force=args.force,
                run_post_processors=not args.no_postprocess,
                processor_names=processor_names,
                callback=display,
            )
    except KeyboardInterrupt:
        log_error("Build interrupted")
        return EXIT_CANCELLED

    if args.json_output:
        print(json.dumps(report.to_dict(), indent=2, sort_keys=True))
    else:
        print_report(report, console)
        orchestrator.gas_reporter.render(console)
        log(report.format_summary())
        if report.status == BuildStatus.COMPLETED:
            log_build_complete(report.elapsed)
    return _exit_code(report)


def build_command(args: BuildArgs) -> int:
    """Compile every source unit and run run-on-build post-processors.

    Examples:
        solbuild build                    # Build the current project
        solbuild build ./my-contracts     # Build a specific project
        solbuild build --force            # Ignore the incremental cache
        solbuild build --no-postprocess   # Compile only
        solbuild build --jobs 2           # At most two concurrent solc processes
    """
    return run_build(args)


def coverage_command(args: BuildArgs) -> int:
    """Build with the optimizer disabled and write instrumented sources."""
    args.no_postprocess = False
    return run_build(args, processor_names=["coverage"], without_optimizer=True)


def docgen_command(args: BuildArgs) -> int:
    """Build and generate markdown documentation."""
    args.no_postprocess = False
    return run_build(args, processor_names=["docgen"])


def resolve_command(args: BuildArgs) -> int:
    """Print the compiler version every source unit resolves to."""
    config = _load_config(args)
    orchestrator = BuildOrchestrator(config)
    assignments = orchestrator.resolve()
    if args.json_output:
        print(json.dumps({a.identifier: a.version for a in assignments}, indent=2, sort_keys=True))
        return EXIT_OK
    table = Table(title="Compiler assignments")
    table.add_column("Unit", style="bold")
    table.add_column("Constraint")
    table.add_column("solc")
    for assignment in assignments:
        unit = assignment.source_unit
        constraint = unit.declared_version or "-"
        if unit.pinned:
            constraint += " (override)"
        table.add_row(unit.identifier, constraint, assignment.version)
    Console().print(table)
    return EXIT_OK


def clean_command(args: BuildArgs) -> int:
    """Remove artifacts, the cache and generated output."""
    config = _load_config(args)
    removed = BuildOrchestrator(config).clean()
    for path in removed:
        print(f"Removed {path}")
    if not removed:
        print("Nothing to clean")
    return EXIT_OK


def compilers_command(args: BuildArgs) -> int:
    """List registered compiler profiles."""
    registry = _load_config(args).compiler_registry()
    table = Table(title="Compiler profiles")
    table.add_column("Version", style="bold")
    table.add_column("Optimizer")
    table.add_column("Runs", justify="right")
    table.add_column("Binary")
    for profile in registry.profiles():
        marker = " (default)" if profile.version == registry.default_version else ""
        table.add_row(
            profile.version + marker,
            "on" if profile.optimizer_enabled else "off",
            str(profile.optimizer_runs),
            profile.solc_path or "solcx",
        )
    Console().print(table)
    return EXIT_OK


def networks_command(args: BuildArgs, check: bool = False) -> int:
    """List network targets, optionally verifying each endpoint's chain id."""
    networks = _load_config(args).network_registry()
    table = Table(title="Networks")
    table.add_column("Name", style="bold")
    table.add_column("Chain id", justify="right")
    table.add_column("Gas price (gwei)", justify="right")
    table.add_column("URL")
    if check:
        table.add_column("Check")
    exit_code = EXIT_OK
    for target in networks:
        row = [
            target.name + (" (default)" if target.name == networks.default_name else ""),
            str(target.chain_id),
            f"{target.gas_price_gwei:g}",
            target.url,
        ]
        if check:
            try:
                ok, remote = networks.check_chain_id(target.name)
                row.append("[green]ok[/]" if ok else f"[red]chain id {remote}[/]")
                if not ok:
                    exit_code = EXIT_FAILED
            except (requests.RequestException, ValueError) as e:
                row.append(f"[red]{e}[/]")
                exit_code = EXIT_FAILED
        table.add_row(*row)
    Console().print(table)
    return exit_code


def config_command(args: BuildArgs) -> int:
    """Print the effective configuration (packaged defaults merged with solbuild.json)."""
    _load_config(args)
    data = load_defaults()
    path = args.config_file or args.project_dir / CONFIG_FILENAME
    if path.is_file():
        data = merge_config(data, read_config_file(path))
    print(json.dumps(data, indent=2, sort_keys=True))
    return EXIT_OK


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "project_dir",
        nargs="?",
        type=Path,
        default=Path.cwd(),
        help="Project directory (default: current directory)",
    )
    parser.add_argument(
        "--config",
        dest="config_file",
        type=Path,
        default=None,
        help=f"Configuration file (default: <project_dir>/{CONFIG_FILENAME})",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show verbose output",
    )


def _add_build_arguments(parser: argparse.ArgumentParser, postprocess_flag: bool = True) -> None:
    parser.add_argument(
        "-f",
        "--force",
        action="store_true",
        help="Recompile everything, ignoring the incremental cache",
    )
    if postprocess_flag:
        parser.add_argument(
            "--no-postprocess",
            action="store_true",
            help="Skip post-processors",
        )
    parser.add_argument(
        "-j",
        "--jobs",
        type=int,
        default=None,
        help="Maximum concurrent compiler processes (default: CPU count)",
    )
    parser.add_argument(
        "--json",
        dest="json_output",
        action="store_true",
        help="Print the build report as JSON",
    )


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="solbuild",
        description="solbuild - multi-version smart-contract build orchestrator",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"solbuild {__version__}",
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    build_parser = subparsers.add_parser("build", help="Compile contracts and run post-processors")
    _add_common_arguments(build_parser)
    _add_build_arguments(build_parser)

    coverage_parser = subparsers.add_parser("coverage", help="Build without optimizer and instrument sources for coverage")
    _add_common_arguments(coverage_parser)
    _add_build_arguments(coverage_parser, postprocess_flag=False)

    docgen_parser = subparsers.add_parser("docgen", help="Build and generate markdown documentation")
    _add_common_arguments(docgen_parser)
    _add_build_arguments(docgen_parser, postprocess_flag=False)

    resolve_parser = subparsers.add_parser("resolve", help="Show the compiler version of every source unit")
    _add_common_arguments(resolve_parser)
    resolve_parser.add_argument("--json", dest="json_output", action="store_true", help="Print assignments as JSON")

    for name, help_text in (
        ("clean", "Remove artifacts, cache and generated output"),
        ("compilers", "List registered compiler profiles"),
        ("config", "Print the effective configuration"),
    ):
        _add_common_arguments(subparsers.add_parser(name, help=help_text))

    networks_parser = subparsers.add_parser("networks", help="List network targets")
    _add_common_arguments(networks_parser)
    networks_parser.add_argument(
        "--check",
        action="store_true",
        help="Query each endpoint's chain id and compare with the configured one",
    )
    return parser


def _to_build_args(parsed: argparse.Namespace) -> BuildArgs:
    return BuildArgs(
        project_dir=parsed.project_dir,
        config_file=parsed.config_file,
        force=getattr(parsed, "force", False),
        no_postprocess=getattr(parsed, "no_postprocess", False),
        jobs=getattr(parsed, "jobs", None),
        verbose=parsed.verbose,
        json_output=getattr(parsed, "json_output", False),
    )


def main(argv: Optional[list[str]] = None) -> int:
    """solbuild - multi-version smart-contract build orchestrator."""
    parser = create_parser()
    parsed = parser.parse_args(argv)
    if not parsed.command:
        parser.print_help()
        return EXIT_FAILED

    args = _to_build_args(parsed)
    setup_logging(args.verbose)

    commands = {
        "build": build_command,
        "coverage": coverage_command,
        "docgen": docgen_command,
        "resolve": resolve_command,
        "clean": clean_command,
        "compilers": compilers_command,
        "config": config_command,
    }
    try:
        if parsed.command == "networks":
            return networks_command(args, check=parsed.check)
        return commands[parsed.command](args)
    except BuildCancelledError as e:
        log_error(str(e))
        return EXIT_CANCELLED
    except KeyboardInterrupt:
        log_error("Interrupted")
        return EXIT_CANCELLED
    except (SolbuildError, ValueError) as e:
        log_error(str(e))
        return EXIT_FAILED


def entry_point() -> None:
    sys.exit(main())


if __name__ == "__main__":
    entry_point()
