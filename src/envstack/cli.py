"""envstack CLI.

Usage:
    envstack provision-infrastructure   # Apply the stack and resolve its outputs
    envstack reconcile-environments     # Init the application, reconcile environments
    envstack reconcile                  # Both, in order

Exit codes:
    0  every mandatory step and every environment succeeded
    1  fatal error (stack, outputs, application init, environment creation)
    2  a required dependency (credentials, template) is missing
    3  partial success: some environment redeploys failed
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import click

from .config import Config, ConfigurationError
from .main import format_summary, run_operation, setup_logging
from .reconciler import EXIT_FATAL, Operation
from .spec_loader import SpecLoadError


def _common_options(fn):  # type: ignore[no-untyped-def]
    options = [
        click.option(
            "--spec",
            "spec_path",
            type=click.Path(path_type=Path),
            default=None,
            help="Deployment spec YAML (env: ENVSTACK_SPEC, default: ./envstack.yaml)",
        ),
        click.option("--region", default=None, help="AWS region (env: AWS_REGION)"),
        click.option(
            "--poll-interval",
            "poll_interval_seconds",
            type=int,
            default=None,
            help="Seconds between status polls (env: POLL_INTERVAL)",
        ),
        click.option(
            "--log-format",
            type=click.Choice(["json", "text"]),
            default="json",
            show_default=True,
            help="Log output format",
        ),
    ]
    for option in reversed(options):
        fn = option(fn)
    return fn


def _execute(operation: Operation, log_format: str, **overrides: object) -> None:
    setup_logging(log_format)

    try:
        config = Config.from_env(**overrides)
    except ConfigurationError as e:
        click.secho(str(e), fg="red", err=True)
        sys.exit(EXIT_FATAL)

    try:
        report = asyncio.run(run_operation(operation, config))
    except SpecLoadError as e:
        click.secho(f"Failed to load deployment spec: {e}", fg="red", err=True)
        sys.exit(EXIT_FATAL)

    color = "green" if report.success else ("yellow" if report.partial else "red")
    for line in format_summary(report):
        click.secho(line, fg=color, err=True)

    sys.exit(report.exit_code)


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version="0.1.0", prog_name="envstack")
def cli() -> None:
    """envstack: provision shared infrastructure and reconcile app environments."""
    pass


@cli.command("provision-infrastructure")
@_common_options
def provision_infrastructure(
    spec_path: Path | None,
    region: str | None,
    poll_interval_seconds: int | None,
    log_format: str,
) -> None:
    """Create or update the infrastructure stack and resolve its outputs."""
    _execute(
        Operation.PROVISION_INFRASTRUCTURE,
        log_format,
        spec_path=spec_path,
        region=region,
        poll_interval_seconds=poll_interval_seconds,
    )


@cli.command("reconcile-environments")
@_common_options
@click.option(
    "--parallel/--sequential",
    default=None,
    help="Reconcile environments concurrently (env: PARALLEL_ENVIRONMENTS)",
)
@click.option(
    "--fail-fast/--no-fail-fast",
    default=None,
    help="Stop after an environment creation failure (env: FAIL_FAST, default: on)",
)
def reconcile_environments(
    spec_path: Path | None,
    region: str | None,
    poll_interval_seconds: int | None,
    log_format: str,
    parallel: bool | None,
    fail_fast: bool | None,
) -> None:
    """Register the application and create or redeploy each environment."""
    _execute(
        Operation.RECONCILE_ENVIRONMENTS,
        log_format,
        spec_path=spec_path,
        region=region,
        poll_interval_seconds=poll_interval_seconds,
        parallel_environments=parallel,
        fail_fast=fail_fast,
    )


@cli.command("reconcile")
@_common_options
@click.option(
    "--parallel/--sequential",
    default=None,
    help="Reconcile environments concurrently (env: PARALLEL_ENVIRONMENTS)",
)
@click.option(
    "--fail-fast/--no-fail-fast",
    default=None,
    help="Stop after an environment creation failure (env: FAIL_FAST, default: on)",
)
def reconcile(
    spec_path: Path | None,
    region: str | None,
    poll_interval_seconds: int | None,
    log_format: str,
    parallel: bool | None,
    fail_fast: bool | None,
) -> None:
    """Run the full pipeline: application, stack, outputs, environments."""
    _execute(
        Operation.RECONCILE,
        log_format,
        spec_path=spec_path,
        region=region,
        poll_interval_seconds=poll_interval_seconds,
        parallel_environments=parallel,
        fail_fast=fail_fast,
    )


if __name__ == "__main__":
    cli()
