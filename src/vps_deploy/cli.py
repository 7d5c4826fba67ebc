"""Command-line interface: vps-deploy SERVICE... [options]."""

import asyncio
import sys
from typing import Optional, Tuple

import click
import structlog
from pydantic import ValidationError

from .config import DeployerConfig
from .errors import PlanningError
from .models import DeploymentReport, DeployMode, Outcome
from .orchestrator import Deployer
from .planner import build_plan
from .remote import create_engine
from .utils.logging import setup_logging

logger = structlog.get_logger()

OUTCOME_COLORS = {
    Outcome.SUCCESS: "green",
    Outcome.SKIPPED: "yellow",
    Outcome.HEALTH_CHECK_FAILED: "red",
    Outcome.EXECUTION_FAILED: "red",
    Outcome.ROLLED_BACK: "yellow",
}

RULE = "━" * 50


def _print_banner(config: DeployerConfig, services: Tuple[str, ...], build: bool,
                  health_check: bool, dry_run: bool) -> None:
    click.echo("")
    click.secho("VPS Deploy", bold=True)
    click.echo(f"  Target:   {config.remote}")
    click.echo(f"  Dir:      {config.app_dir}")
    click.echo(f"  Build:    {str(build).lower()}")
    click.echo(f"  Health:   {str(health_check).lower()}")
    click.echo(f"  Dry Run:  {str(dry_run).lower()}")
    click.echo(f"  Services: {' '.join(services)}")


def print_report(report: DeploymentReport) -> None:
    """Print the per-target outcomes and the final verdict."""
    click.echo("")
    click.echo(RULE)
    for record in report.records:
        duration = f" ({record.duration:.0f}s)" if record.duration is not None else ""
        click.secho(
            f"{record.target:<24} {record.outcome.value}{duration}",
            fg=OUTCOME_COLORS[record.outcome],
        )
        if record.error_detail:
            click.echo(f"    {record.error_detail}")
        for command in record.commands:
            click.echo(f"    [DRY RUN] {command}")
        if record.requires_manual_action:
            click.secho(
                f"    Manual action required. Check logs: docker logs {record.target} --tail 50",
                fg="red",
            )
    click.echo(RULE)

    if report.cancelled:
        skipped = [r.target for r in report.records if r.outcome == Outcome.SKIPPED]
        click.secho(f"Deployment cancelled; not started: {' '.join(skipped)}", fg="yellow")
    if report.failed_targets:
        click.secho(f"Failed deployments: {' '.join(report.failed_targets)}", fg="red")
    elif report.ok:
        if report.plan.dry_run:
            click.secho("Dry run complete; nothing was changed.", fg="green")
        else:
            click.secho("All deployments completed successfully!", fg="green")


@click.command(name="vps-deploy", context_settings={"help_option_names": ["-h", "--help"]})
@click.argument("services", nargs=-1)
@click.option("--build", is_flag=True, help="Build from Dockerfile instead of pulling")
@click.option("--health-check", is_flag=True, help="Verify service health after deployment")
@click.option("--dry-run", is_flag=True, help="Preview commands without executing")
@click.option(
    "--no-rollback",
    is_flag=True,
    help="Leave unhealthy services in place instead of rolling back",
)
@click.option("--remote", default=None, help="SSH target, or 'local' (env: REMOTE)")
@click.option("--app-dir", default=None, help="Remote project directory (env: APP_DIR)")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def main(
    services: Tuple[str, ...],
    build: bool,
    health_check: bool,
    dry_run: bool,
    no_rollback: bool,
    remote: Optional[str],
    app_dir: Optional[str],
    verbose: bool,
) -> None:
    """Deploy one or more Compose SERVICES on the VPS, one at a time.

    Examples:

        vps-deploy app-chatbot

        vps-deploy app-chatbot --build --health-check

        vps-deploy app-chatbot app-portfolio --dry-run
    """
    overrides = {}
    if remote:
        overrides["remote"] = remote
    if app_dir:
        overrides["app_dir"] = app_dir

    try:
        config = DeployerConfig(**overrides)
    except ValidationError as e:
        click.secho(f"Error: invalid configuration\n{e}", fg="red", err=True)
        sys.exit(2)

    setup_logging(
        "DEBUG" if verbose else config.log_level,
        json_format=config.log_format == "json",
    )

    try:
        plan = build_plan(
            services,
            mode=DeployMode.BUILD if build else DeployMode.PULL,
            verify_health=health_check,
            dry_run=dry_run,
            rollback_on_failure=not no_rollback,
        )
    except PlanningError as e:
        logger.error("cli.plan_rejected", error=e.message)
        click.secho(f"Error: {e.message}", fg="red", err=True)
        sys.exit(2)

    _print_banner(config, plan.targets, build, health_check, dry_run)

    deployer = Deployer.from_config(config, create_engine(config))
    report = asyncio.run(deployer.run(plan, install_signal_handlers=True))

    print_report(report)
    sys.exit(report.exit_code)
