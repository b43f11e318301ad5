"""Command-line interface for the M365 bulk recovery client.

Provides commands for configuration validation and for starting, watching,
cancelling and completing Microsoft 365 bulk recoveries.

Usage:
    python -m m365_recovery validate-config
    python -m m365_recovery start-recovery -n Migration1 -w OneDrive -s Contoso \\
        --recovery-point 2024-01-01T00:00:00Z --ad-group-id grp-123 --in-place
    python -m m365_recovery recovery-progress -i <instance id> -s Contoso
    python -m m365_recovery wait-recovery -i <instance id> -s Contoso
"""

from __future__ import annotations

import os
import sys
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click
from dotenv import find_dotenv, load_dotenv
from rich.console import Console
from rich.table import Table

from m365_recovery.config import validate_config_file
from m365_recovery.core.logging import configure_logging, get_logger
from m365_recovery.core.timeutil import parse_user_time
from m365_recovery.recovery.models import (
    ArchiveFolderAction,
    BulkRecoveryStatus,
    OperationalFilter,
    SubWorkloadType,
    WorkloadType,
)

if TYPE_CHECKING:
    from m365_recovery.auth.service_account import TokenProvider
    from m365_recovery.config_schema import AppConfig
    from m365_recovery.core.result import RecoveryResult
    from m365_recovery.graphql.client import RscClient
    from m365_recovery.recovery.models import BulkRecoveryProgress, LaunchReport
    from m365_recovery.recovery.service import BulkRecoveryService

console = Console()
logger = get_logger(__name__)

STATUS_STYLES = {
    BulkRecoveryStatus.SUCCEEDED: "green",
    BulkRecoveryStatus.PARTIALLY_SUCCEEDED: "yellow",
    BulkRecoveryStatus.FAILED: "red",
    BulkRecoveryStatus.CANCELED: "magenta",
    BulkRecoveryStatus.CANCELING: "magenta",
}


@dataclass(frozen=True, slots=True)
class CLIDeps:
    """Shared dependencies initialized by _init_cli_deps()."""

    config: AppConfig
    auth: TokenProvider
    client: RscClient
    service: BulkRecoveryService


def build_token_provider(config: AppConfig) -> TokenProvider:
    """Pick the token provider the configuration asks for.

    A token in the environment variable named by ``rsc.access_token_env``
    wins; otherwise the service account credentials are used.

    Raises:
        ValueError: If neither a token nor complete service account
            credentials are available
    """
    from m365_recovery.auth import ServiceAccountAuth, StaticTokenAuth

    rsc = config.rsc
    token = os.environ.get(rsc.access_token_env)
    if token:
        return StaticTokenAuth(token)
    return ServiceAccountAuth(
        base_url=rsc.base_url,
        client_id=rsc.client_id or "",
        client_secret=os.environ.get(rsc.client_secret_env, ""),
        timeout=rsc.request_timeout_seconds,
    )


def _init_cli_deps() -> CLIDeps:
    """Initialize shared CLI dependencies.

    Loads config, applies its logging settings (--debug forces DEBUG),
    builds the token provider, GraphQL client and recovery service, and
    returns them in a frozen dataclass. Prints actionable error messages
    and calls sys.exit(1) on failure.
    """
    from m365_recovery.config import get_config
    from m365_recovery.core.errors import ConfigLoadError, ConfigValidationError
    from m365_recovery.graphql.client import RscClient
    from m365_recovery.recovery.service import BulkRecoveryService

    # 1. Load config
    try:
        config = get_config()
    except (ConfigLoadError, ConfigValidationError) as e:
        console.print(
            f"[red]Config error:[/red] {e}\n\n"
            "Create config/config.yaml with at least an [cyan]rsc[/cyan] section.\n"
            "See config/config.yaml.example."
        )
        sys.exit(1)

    debug = click.get_current_context().find_root().params.get("debug", False)
    configure_logging(
        log_level="DEBUG" if debug else config.logging.level,
        json_output=config.logging.json_output,
    )
    logger.debug("Configuration loaded", base_url=config.rsc.base_url)

    # 2. Initialize auth
    try:
        auth = build_token_provider(config)
    except ValueError as e:
        console.print(f"[red]Authentication error:[/red] {e}")
        sys.exit(1)

    # 3. Initialize client and service
    client = RscClient(
        auth,
        config.rsc.base_url,
        max_retries=config.rsc.max_retries,
        timeout=config.rsc.request_timeout_seconds,
        requests_per_second=config.rsc.requests_per_second,
    )
    service = BulkRecoveryService(client)

    return CLIDeps(config=config, auth=auth, client=client, service=service)


def _run_guarded(command: Callable[[], None]) -> None:
    """Run a command body, mapping interrupts and unexpected errors to exit codes."""
    try:
        command()
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled.[/yellow]")
        sys.exit(130)
    except SystemExit:
        raise
    except Exception as e:
        console.print(f"\n[red]Error:[/red] {e}")
        sys.exit(1)


# ---------------------------------------------------------------------------
# Option parsing
# ---------------------------------------------------------------------------


def _parse_time_option(
    ctx: click.Context, param: click.Parameter, value: str | None
) -> datetime | None:
    if value is None:
        return None
    try:
        return parse_user_time(value)
    except ValueError:
        raise click.BadParameter(
            f"'{value}' is not an ISO-8601 timestamp (e.g. 2024-01-01T00:00:00Z)"
        ) from None


def _workload_choice() -> click.Choice:
    return click.Choice([w.value for w in WorkloadType], case_sensitive=False)


def _sub_workload_choice() -> click.Choice:
    return click.Choice(["Mailbox", "Calendar", "Contacts"], case_sensitive=False)


def _recovery_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Options shared by both start commands."""
    options = [
        click.option(
            "--name", "-n", required=True, help="Base name; each sub-workload gets a suffix"
        ),
        click.option(
            "--workload", "-w", required=True, type=_workload_choice(), help="Workload to recover"
        ),
        click.option(
            "--subscription", "-s", required=True, help="Microsoft 365 subscription display name"
        ),
        click.option(
            "--recovery-point",
            required=True,
            callback=_parse_time_option,
            help="Point in time to restore to (ISO-8601)",
        ),
        click.option(
            "--sub-workload",
            type=_sub_workload_choice(),
            default=None,
            help="Restrict an Exchange recovery to one sub-workload",
        ),
        click.option("--ad-group-id", default=None, help="AD group id (OneDrive, Exchange)"),
        click.option(
            "--group-name", default=None, help="Configured group name (SharePoint)"
        ),
        click.option(
            "--in-place",
            is_flag=True,
            help="Restore to the original location, overwriting name collisions",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _instance_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Options shared by commands that act on an existing instance."""
    func = click.option(
        "--subscription", "-s", required=True, help="Microsoft 365 subscription display name"
    )(func)
    func = click.option(
        "--instance-id", "-i", required=True, help="Bulk recovery instance id (UUID)"
    )(func)
    return func


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _print_launch_report(report: LaunchReport) -> None:
    table = Table(title=f"Bulk recovery '{report.base_name}'")
    table.add_column("Recovery", style="cyan")
    table.add_column("Instance ID")
    table.add_column("Result")

    for submission in report.submissions:
        if submission.ok and submission.value is not None:
            instance = submission.value
            table.add_row(instance.name, instance.instance_id, "[green]started[/green]")
        else:
            name = getattr(submission.error, "recovery_name", "?")
            table.add_row(name, "-", f"[red]{submission.message}[/red]")

    console.print(table)
    started = len(report.instances)
    failed = len(report.failures)
    console.print(f"Started: {started}  Failed: {failed}")


def _print_progress(progress: BulkRecoveryProgress) -> None:
    table = Table(title="Bulk recovery progress", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")

    style = STATUS_STYLES.get(progress.status)
    for key, value in progress.to_row().items():
        text = "-" if value is None else str(value)
        if key == "status" and style:
            text = f"[{style}]{text}[/{style}]"
        table.add_row(key, text)

    console.print(table)


def _progress_line(progress: BulkRecoveryProgress) -> None:
    console.print(
        f"[dim]{progress.status.value}[/dim] "
        f"succeeded={progress.succeeded} failed={progress.failed} "
        f"in_progress={progress.in_progress} total={progress.total}"
    )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@click.group()
@click.option("--debug/--no-debug", default=False, help="Enable debug logging")
def cli(debug: bool) -> None:
    """M365 bulk recovery - start and track Microsoft 365 bulk recoveries.

    Logging is configured by each command once the config (and its
    logging section) is known.
    """


@cli.command("validate-config")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file (default: config/config.yaml)",
)
def validate_config(config_path: Path | None) -> None:
    """Validate the configuration file.

    Checks that config.yaml exists, passes Pydantic schema validation and
    that credentials are available for the selected auth mode.
    """
    debug = click.get_current_context().find_root().params.get("debug", False)
    configure_logging(log_level="DEBUG" if debug else "INFO")

    if config_path:
        console.print(f"Validating config: [cyan]{config_path}[/cyan]")
    else:
        console.print("Validating config: [cyan]config/config.yaml[/cyan]")

    is_valid, message = validate_config_file(config_path)

    if is_valid:
        console.print(f"\n[green]✓[/green] {message}")
        sys.exit(0)
    else:
        console.print(f"\n[red]✗[/red] {message}")
        sys.exit(1)


@cli.command("start-recovery")
@_recovery_options
def start_recovery(
    name: str,
    workload: str,
    subscription: str,
    recovery_point: datetime,
    sub_workload: str | None,
    ad_group_id: str | None,
    group_name: str | None,
    in_place: bool,
) -> None:
    """Start a full bulk recovery, one backend recovery per sub-workload."""

    def run() -> None:
        deps = _init_cli_deps()
        result = deps.service.start_bulk_recovery(
            name,
            WorkloadType.parse(workload),
            recovery_point,
            subscription,
            sub_workload_type=SubWorkloadType.parse(sub_workload) if sub_workload else None,
            ad_group_id=ad_group_id,
            configured_group_name=group_name,
            in_place=in_place,
        )
        _finish_launch(result)

    _run_guarded(run)


@cli.command("start-operational-recovery")
@_recovery_options
@click.option(
    "--from", "from_time", callback=_parse_time_option, default=None, help="Window start (ISO-8601)"
)
@click.option(
    "--until", "until_time", callback=_parse_time_option, default=None, help="Window end (ISO-8601)"
)
@click.option(
    "--archive-action",
    type=click.Choice([a.value for a in ArchiveFolderAction], case_sensitive=False),
    default=None,
    help="Archive folder policy (Exchange mailbox only)",
)
@click.option(
    "--skip-permissions",
    is_flag=True,
    help="Do not restore item permissions (OneDrive, SharePoint)",
)
@click.option("--site-owner-email", default=None, help="Owner for restored sites (SharePoint only)")
def start_operational_recovery(
    name: str,
    workload: str,
    subscription: str,
    recovery_point: datetime,
    sub_workload: str | None,
    ad_group_id: str | None,
    group_name: str | None,
    in_place: bool,
    from_time: datetime | None,
    until_time: datetime | None,
    archive_action: str | None,
    skip_permissions: bool,
    site_owner_email: str | None,
) -> None:
    """Start the first, time-bounded stage of an operational recovery.

    Run complete-operational-recovery on each returned instance id to restore
    the rest.
    """

    def run() -> None:
        deps = _init_cli_deps()
        operational = OperationalFilter(
            from_time=from_time,
            until_time=until_time,
            archive_folder_action=(
                ArchiveFolderAction(archive_action.upper()) if archive_action else None
            ),
            should_skip_item_permission=skip_permissions,
            site_owner_email=site_owner_email,
        )
        result = deps.service.start_operational_recovery(
            name,
            WorkloadType.parse(workload),
            recovery_point,
            subscription,
            operational,
            sub_workload_type=SubWorkloadType.parse(sub_workload) if sub_workload else None,
            ad_group_id=ad_group_id,
            configured_group_name=group_name,
            in_place=in_place,
        )
        _finish_launch(result)

    _run_guarded(run)


def _finish_launch(result: RecoveryResult[LaunchReport]) -> None:
    if not result.ok:
        console.print(f"[red]✗[/red] {result.message}")
        sys.exit(1)

    report = result.value
    _print_launch_report(report)
    if not report.all_succeeded:
        sys.exit(1)


@cli.command("recovery-progress")
@_instance_options
def recovery_progress(instance_id: str, subscription: str) -> None:
    """Show the current progress of a bulk recovery."""

    def run() -> None:
        deps = _init_cli_deps()
        result = deps.service.get_progress(instance_id, subscription)
        if not result.ok:
            console.print(f"[red]✗[/red] {result.message}")
            sys.exit(1)
        _print_progress(result.value)

    _run_guarded(run)


@cli.command("wait-recovery")
@_instance_options
@click.option(
    "--interval",
    type=float,
    default=None,
    help="Seconds between polls (default: polling.interval_seconds)",
)
@click.option(
    "--timeout-minutes",
    type=int,
    default=None,
    help="Stop waiting after this many minutes (default: polling.timeout_minutes)",
)
def wait_recovery(
    instance_id: str,
    subscription: str,
    interval: float | None,
    timeout_minutes: int | None,
) -> None:
    """Poll a bulk recovery until it finishes.

    Exits 0 only if the recovery SUCCEEDED. Stopping the wait (timeout or
    Ctrl+C) leaves the recovery running on the backend.
    """

    def run() -> None:
        deps = _init_cli_deps()
        polling = deps.config.polling
        minutes = timeout_minutes if timeout_minutes is not None else polling.timeout_minutes
        result = deps.service.wait_for_recovery(
            instance_id,
            subscription,
            timeout=minutes * 60.0,
            poll_interval=interval if interval is not None else polling.interval_seconds,
            on_progress=_progress_line,
        )
        if not result.ok:
            console.print(f"[red]✗[/red] {result.message}")
            sys.exit(1)

        progress = result.value
        _print_progress(progress)
        if progress.status is not BulkRecoveryStatus.SUCCEEDED:
            sys.exit(1)

    _run_guarded(run)


@cli.command("cancel-recovery")
@_instance_options
def cancel_recovery(instance_id: str, subscription: str) -> None:
    """Request cancellation of a bulk recovery."""

    def run() -> None:
        deps = _init_cli_deps()
        result = deps.service.cancel_bulk_recovery(instance_id, subscription)
        if not result.ok:
            console.print(f"[red]✗[/red] {result.message}")
            sys.exit(1)
        console.print(f"[green]✓[/green] {result.value}")

    _run_guarded(run)


@cli.command("complete-operational-recovery")
@_instance_options
def complete_operational_recovery(instance_id: str, subscription: str) -> None:
    """Restore everything outside the initial window of an operational recovery."""

    def run() -> None:
        deps = _init_cli_deps()
        result = deps.service.complete_operational_recovery(instance_id, subscription)
        if not result.ok:
            console.print(f"[red]✗[/red] {result.message}")
            sys.exit(1)
        instance = result.value
        console.print(
            f"[green]✓[/green] Completion started for [cyan]{instance.instance_id}[/cyan]"
        )
        if instance.taskchain_id:
            console.print(f"  Taskchain: {instance.taskchain_id}")

    _run_guarded(run)


def main() -> None:
    """Entry point for the CLI (the m365-recovery script and python -m).

    Reads .env from the working directory (or a parent) before any command
    looks at RSC_* environment variables. Variables already exported win.
    """
    load_dotenv(find_dotenv(usecwd=True))
    cli()


if __name__ == "__main__":
    main()
