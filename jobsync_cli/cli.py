"""
Command line for synchronizing repository records with Jenkins jobs.

Usage:
    jobsync sync --from-csv repos.csv --controller-url URL --user U --api-token T ...
    jobsync version
"""

import asyncio
import logging
import signal
import sys
from importlib.metadata import PackageNotFoundError, version as distribution_version
from pathlib import Path
from typing import Any

import click

from jobsync_client import JenkinsClient
from jobsync_common.errors import InputError
from jobsync_common.models import ExtraCredential, GlobalSettings, JobOutcome, JobType
from jobsync_common.records import RecordDefaults, load_csv
from jobsync_controller import JobReconciler, RunReport

from .config import build_settings, get_timeout, get_value

logger = logging.getLogger(__name__)

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def configure_logging(log_level: str, verbose: bool) -> None:
    """Configure root logging once for the process."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, log_level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def parse_extra_credentials(values: tuple[str, ...]) -> tuple[ExtraCredential, ...]:
    """Parse repeated --credentials NAME=SPEC options, keeping their order."""
    try:
        return tuple(ExtraCredential.parse(value) for value in values)
    except InputError as e:
        raise click.BadParameter(str(e), param_hint="--credentials") from e


async def run_sync(
    reconciler: JobReconciler, records: list, timeout: float | None
) -> RunReport:
    """
    Run the reconciler, stopping new work on SIGINT/SIGTERM.

    Records already in flight complete; the rest are reported as cancelled.
    """

    def signal_handler(sig: Any, _frame: Any) -> None:
        """Handle shutdown signals."""
        logger.info(f"Received signal {sig}, finishing records in flight...")
        reconciler.stop()

    previous = {
        sig: signal.signal(sig, signal_handler) for sig in (signal.SIGINT, signal.SIGTERM)
    }
    try:
        return await reconciler.reconcile(records, timeout=timeout)
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def print_report(report: RunReport) -> None:
    for result in report.results:
        line = f"{result.outcome.value:<10} {result.name}"
        if result.error:
            line += f"  ({result.error})"
        click.echo(line, err=result.outcome is JobOutcome.FAILED)
    click.echo(report.summary())


@click.group()
def cli():
    """jobsync - Keep Jenkins jobs in sync with a list of repositories."""
    pass


@cli.command()
@click.option(
    "--from-csv",
    "csv_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="CSV file with one repository per row",
)
@click.option("--controller-url", help="Jenkins URL (or JOBSYNC_CONTROLLER_URL)")
@click.option("--user", help="Jenkins user (or JOBSYNC_USER)")
@click.option("--api-token", help="Jenkins API token (or JOBSYNC_API_TOKEN)")
@click.option("--password", help="Jenkins password (or JOBSYNC_PASSWORD)")
@click.option("--publish-creds-id", help="Credentials id used to publish artifacts")
@click.option("--git-creds-id", help="Credentials id used to clone repositories")
@click.option("--publish-url", help="Artifact repository URL (or JOBSYNC_PUBLISH_URL)")
@click.option("--mirror-url", help="Dependency mirror URL (or JOBSYNC_MIRROR_URL)")
@click.option("--gradle-plugin-version", help="Default Gradle plugin version")
@click.option("--mvn-plugin-version", help="Default Maven plugin version")
@click.option(
    "--folder", help="Folder for all ingest jobs, overriding the CSV (or JOBSYNC_FOLDER)"
)
@click.option("--agent", help="Agent label or agent block, e.g. \"{ label 'linux' }\"")
@click.option(
    "--job-type",
    type=click.Choice([t.value for t in JobType], case_sensitive=False),
    default=JobType.PIPELINE.value,
    show_default=True,
    help="Job type for rows without a job type column",
)
@click.option(
    "--maven-settings-config-file-id", help="Managed Maven settings.xml config file id"
)
@click.option(
    "--credentials",
    "extra_credentials",
    multiple=True,
    metavar="NAME=SPEC",
    help="Extra credentials to bind; SPEC is VARIABLE or USER_VARIABLE:PASSWORD_VARIABLE",
)
@click.option("--workspace-cleanup", is_flag=True, help="Clean the workspace after builds")
@click.option(
    "--create-validate-jobs", is_flag=True, help="Also manage a validate job per repository"
)
@click.option(
    "--verify-credentials",
    is_flag=True,
    help="Fail records whose credential ids are missing on the controller",
)
@click.option("--max-workers", type=int, help="Records processed concurrently")
@click.option("--timeout", type=float, help="Seconds before unstarted records are cancelled")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="INFO",
    show_default=True,
)
@click.option("--verbose", is_flag=True, help="Shortcut for --log-level DEBUG")
def sync(
    csv_path: Path,
    controller_url: str | None,
    user: str | None,
    api_token: str | None,
    password: str | None,
    publish_creds_id: str | None,
    git_creds_id: str | None,
    publish_url: str | None,
    mirror_url: str | None,
    gradle_plugin_version: str | None,
    mvn_plugin_version: str | None,
    folder: str | None,
    agent: str | None,
    job_type: str,
    maven_settings_config_file_id: str | None,
    extra_credentials: tuple[str, ...],
    workspace_cleanup: bool,
    create_validate_jobs: bool,
    verify_credentials: bool,
    max_workers: int | None,
    timeout: float | None,
    log_level: str,
    verbose: bool,
):
    """Create, update or delete jobs so they match the CSV file."""
    configure_logging(log_level, verbose)

    if api_token and password:
        raise click.UsageError("Use either --api-token or --password, not both")

    settings: GlobalSettings = build_settings(
        controller_url=controller_url,
        user=user,
        api_token=api_token,
        password=password,
        publish_url=publish_url,
        mirror_url=mirror_url,
        gradle_plugin_version=gradle_plugin_version,
        mvn_plugin_version=mvn_plugin_version,
        folder=folder,
        maven_settings_config_file_id=maven_settings_config_file_id,
        max_workers=max_workers,
        verify_credentials=verify_credentials,
    )
    defaults = RecordDefaults(
        job_type=JobType.parse(job_type),
        agent_label=agent,
        publish_credentials_id=publish_creds_id,
        git_credentials_id=git_creds_id,
        extra_credentials=parse_extra_credentials(extra_credentials),
        folder=get_value(folder, "FOLDER", None),
        workspace_cleanup=workspace_cleanup,
        create_validate_variant=create_validate_jobs,
    )

    try:
        records = load_csv(csv_path, defaults)
    except (OSError, UnicodeDecodeError) as e:
        click.echo(f"Error: Cannot read {csv_path}: {e}", err=True)
        sys.exit(1)

    logger.info(f"Controller: {settings.controller_url} ({settings.auth_mode} auth)")
    logger.info(f"Folder: {settings.folder}")

    reconciler = JobReconciler(JenkinsClient(settings), settings)
    try:
        report = asyncio.run(run_sync(reconciler, records, get_timeout(timeout)))
    except KeyboardInterrupt:
        click.echo("Interrupted", err=True)
        sys.exit(130)

    print_report(report)
    sys.exit(report.exit_code)


@cli.command("version")
def version_command():
    """Print the installed jobsync version."""
    try:
        click.echo(distribution_version("jobsync"))
    except PackageNotFoundError:
        click.echo("development")
