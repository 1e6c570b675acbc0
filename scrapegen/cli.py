#!/usr/bin/env python3
"""
Command-Line Interface for scrapegen.

This module provides the CLI entry point for compiling PodMonitor manifests
into Prometheus scrape configs and for validating manifests.

Usage:
    # Compile manifests to a scrape_configs document
    python3 -m scrapegen compile podmonitors.yaml -o scrape_configs.yaml

    # Compile with settings and an explicit API server
    python3 -m scrapegen -c settings.yaml compile --api-server https://10.0.0.1:6443 monitors/*.yaml

    # Validate manifests and show a summary table
    python3 -m scrapegen validate podmonitors.yaml
"""

import logging
import sys
from pathlib import Path
from typing import Optional

import click
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .compiler.config import SECRET_SOURCES, CompilerSettings, load_settings
from .compiler.errors import CompileError, ConfigValidationError
from .compiler.generator import CompileReport, ConfigGenerator, compile_monitors
from .compiler.manifest import load_pod_monitors
from .compiler.models import PodMonitor, scrape_configs_to_yaml

# Set up logging with rich handler
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    handlers=[RichHandler(rich_tracebacks=True, show_time=False, console=Console(stderr=True))],
)
logger = logging.getLogger(__name__)
console = Console(stderr=True)


class CLIContext:
    """Context object for CLI commands."""

    def __init__(self):
        self.verbose = False
        self.config_path: Optional[Path] = None


pass_context = click.make_pass_decorator(CLIContext, ensure=True)


def _load_monitors(
    manifests: tuple[Path, ...], settings: CompilerSettings
) -> tuple[list[PodMonitor], dict[str, CompileError]]:
    """Load selected monitors; documents that fail to parse are returned as errors."""
    monitors = []
    errors: dict[str, CompileError] = {}
    for path in manifests:
        for monitor in load_pod_monitors(path, errors=errors):
            if settings.selects(monitor):
                monitors.append(monitor)
            else:
                logger.debug(f"Skipping podmonitor {monitor.key}: not selected by settings")

    if settings.namespaces:
        errors = {k: e for k, e in errors.items() if e.namespace in settings.namespaces}
    return monitors, errors


def _print_errors(report: CompileReport) -> None:
    for key, error in sorted(report.errors.items()):
        label = type(error).__name__
        console.print(f"[bold red]{label}:[/bold red] {error}")


def _report_settings_error(ctx: CLIContext, e: Exception) -> None:
    console.print(f"[bold red]Error:[/bold red] {e}", style="red")
    if isinstance(e, ConfigValidationError):
        for error in e.errors:
            console.print(f"  • {error}")
    if ctx.verbose:
        console.print_exception()


@click.group()
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Enable verbose output"
)
@click.option(
    "-c", "--config",
    type=click.Path(exists=True, path_type=Path),
    help="Path to settings file"
)
@click.version_option(version=__version__, prog_name="scrapegen")
@pass_context
def cli(ctx: CLIContext, verbose: bool, config: Optional[Path]):
    """
    PodMonitor to Prometheus scrape config compiler.

    Compile PodMonitor manifests into scrape configs and validate them.
    """
    ctx.verbose = verbose
    ctx.config_path = config

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.debug("Verbose mode enabled")


def settings_options(func):
    """Options shared by commands that build a ConfigGenerator."""
    options = [
        click.option("--api-server", type=str, help="Kubernetes API server URL (overrides settings)"),
        click.option("--kubeconfig", type=str, help="Path to a kubeconfig file (overrides settings)"),
        click.option("--secrets-root", type=str, help="Directory secrets and config maps are mounted under"),
        click.option(
            "--secret-source",
            type=click.Choice(SECRET_SOURCES, case_sensitive=False),
            help="Where inline credential values are read from",
        ),
        click.option(
            "--namespace", "-n", "namespaces",
            multiple=True,
            help="Only compile monitors from this namespace (can be specified multiple times)",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@cli.command(name="compile")
@click.argument(
    "manifests",
    nargs=-1,
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@settings_options
@click.option(
    "--output", "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write the scrape_configs document to this file instead of stdout"
)
@pass_context
def compile_command(
    ctx: CLIContext,
    manifests: tuple[Path, ...],
    api_server: Optional[str],
    kubeconfig: Optional[str],
    secrets_root: Optional[str],
    secret_source: Optional[str],
    namespaces: tuple[str, ...],
    output: Optional[Path],
):
    """
    Compile PodMonitor manifests into a scrape_configs document.

    Monitors that fail to compile are reported and left out; the exit code
    is 1 if any monitor failed.

    Examples:

        python3 -m scrapegen compile podmonitors.yaml

        python3 -m scrapegen compile -n monitoring -o out.yaml monitors.yaml
    """
    try:
        settings = load_settings(
            ctx.config_path,
            api_server=api_server,
            kubeconfig_file=kubeconfig,
            secrets_root=secrets_root,
            secret_source=secret_source,
            namespaces=list(namespaces),
        )
        monitors, load_errors = _load_monitors(manifests, settings)
        generator = ConfigGenerator(settings.client, settings.secrets.build_resolver(settings.client))
    except (CompileError, ConfigValidationError, FileNotFoundError, OSError, yaml.YAMLError) as e:
        _report_settings_error(ctx, e)
        sys.exit(1)

    report = compile_monitors(generator, monitors)
    report.errors.update(load_errors)
    document = scrape_configs_to_yaml(report.scrape_configs())

    if output:
        output.write_text(document, encoding="utf-8")
        console.print(f"Wrote [cyan]{len(report.scrape_configs())}[/cyan] scrape config(s) to [cyan]{output}[/cyan]")
    else:
        click.echo(document, nl=False)

    _print_errors(report)
    sys.exit(0 if report.ok else 1)


@cli.command()
@click.argument(
    "manifests",
    nargs=-1,
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@settings_options
@pass_context
def validate(
    ctx: CLIContext,
    manifests: tuple[Path, ...],
    api_server: Optional[str],
    kubeconfig: Optional[str],
    secrets_root: Optional[str],
    secret_source: Optional[str],
    namespaces: tuple[str, ...],
):
    """
    Validate PodMonitor manifests by compiling them.

    Prints a per-monitor summary table.

    Examples:

        python3 -m scrapegen validate podmonitors.yaml
    """
    try:
        settings = load_settings(
            ctx.config_path,
            api_server=api_server,
            kubeconfig_file=kubeconfig,
            secrets_root=secrets_root,
            secret_source=secret_source,
            namespaces=list(namespaces),
        )
        monitors, load_errors = _load_monitors(manifests, settings)
        generator = ConfigGenerator(settings.client, settings.secrets.build_resolver(settings.client))
    except (CompileError, ConfigValidationError, FileNotFoundError, OSError, yaml.YAMLError) as e:
        _report_settings_error(ctx, e)
        sys.exit(1)

    report = compile_monitors(generator, monitors)
    report.errors.update(load_errors)

    table = Table(title="PodMonitor Validation", show_header=True, header_style="bold magenta")
    table.add_column("Monitor", style="cyan")
    table.add_column("Endpoints", justify="right")
    table.add_column("Status")
    table.add_column("Details")

    for monitor in monitors:
        error = report.errors.get(monitor.key)
        if error is None:
            status = "[green]✓ OK[/green]"
            details = ", ".join(c.job_name for c in report.configs[monitor.key])
        else:
            status = f"[red]✗ {type(error).__name__}[/red]"
            details = str(error)
        table.add_row(monitor.key, str(len(monitor.spec.pod_metrics_endpoints)), status, details)

    for key, error in sorted(load_errors.items()):
        table.add_row(key, "-", f"[red]✗ {type(error).__name__}[/red]", str(error))

    console.print(table)
    sys.exit(0 if report.ok else 1)


def main():
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
