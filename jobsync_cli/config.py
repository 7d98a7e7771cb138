"""
Settings resolution for the jobsync command line.

Every value is taken from the command line option when given, otherwise
from its JOBSYNC_* environment variable, otherwise from the default.

Environment Variables:
    JOBSYNC_CONTROLLER_URL: Jenkins controller URL
    JOBSYNC_USER: Controller user
    JOBSYNC_API_TOKEN: API token (preferred over the password)
    JOBSYNC_PASSWORD: Password
    JOBSYNC_PUBLISH_URL: Artifact repository the ingest jobs publish to
    JOBSYNC_MIRROR_URL: Build dependency mirror
    JOBSYNC_FOLDER: Folder for ingest jobs, overriding the CSV folder column
        (default: moderne-ingest)
    JOBSYNC_MAX_WORKERS: Records processed concurrently (default: 4)
    JOBSYNC_TIMEOUT: Seconds before unstarted records are cancelled (default: none)
"""

import logging
import os

import click

from jobsync_common.models import DEFAULT_FOLDER, GlobalSettings, PluginVersions

logger = logging.getLogger(__name__)

ENV_PREFIX = "JOBSYNC_"
DEFAULT_MAX_WORKERS = 4


def get_value(cli_value: str | None, name: str, default: str | None = None) -> str | None:
    """
    Get a text setting from the command line, the environment or the default.

    Args:
        cli_value: Value given on the command line (highest priority)
        name: Setting name without prefix, e.g. "CONTROLLER_URL"
        default: Value used when neither source provides one

    Returns:
        The resolved value, or default
    """
    if cli_value:
        return cli_value
    env_value = os.environ.get(f"{ENV_PREFIX}{name}")
    if env_value:
        return env_value
    return default


def get_max_workers(cli_value: int | None) -> int:
    """
    Get the worker count from the command line or environment.

    Args:
        cli_value: Value given with --max-workers

    Returns:
        A positive worker count
    """
    if cli_value is not None:
        if cli_value <= 0:
            logger.warning(
                f"Invalid max workers={cli_value}, using default {DEFAULT_MAX_WORKERS}"
            )
            return DEFAULT_MAX_WORKERS
        return cli_value

    raw = os.environ.get(f"{ENV_PREFIX}MAX_WORKERS", str(DEFAULT_MAX_WORKERS))
    try:
        workers = int(raw)
    except ValueError:
        logger.warning(
            f"Invalid {ENV_PREFIX}MAX_WORKERS={raw}, using default {DEFAULT_MAX_WORKERS}"
        )
        return DEFAULT_MAX_WORKERS
    if workers <= 0:
        logger.warning(
            f"Invalid {ENV_PREFIX}MAX_WORKERS={workers}, using default {DEFAULT_MAX_WORKERS}"
        )
        return DEFAULT_MAX_WORKERS
    return workers


def get_timeout(cli_value: float | None) -> float | None:
    """
    Get the run timeout from the command line or environment.

    Returns:
        Seconds, or None when the run is not time limited
    """
    if cli_value is not None:
        if cli_value <= 0:
            logger.warning(f"Invalid timeout={cli_value}, running without a timeout")
            return None
        return cli_value

    raw = os.environ.get(f"{ENV_PREFIX}TIMEOUT")
    if not raw:
        return None
    try:
        timeout = float(raw)
    except ValueError:
        logger.warning(f"Invalid {ENV_PREFIX}TIMEOUT={raw}, running without a timeout")
        return None
    if timeout <= 0:
        logger.warning(f"Invalid {ENV_PREFIX}TIMEOUT={timeout}, running without a timeout")
        return None
    return timeout


def build_settings(
    *,
    controller_url: str | None = None,
    user: str | None = None,
    api_token: str | None = None,
    password: str | None = None,
    publish_url: str | None = None,
    mirror_url: str | None = None,
    gradle_plugin_version: str | None = None,
    mvn_plugin_version: str | None = None,
    folder: str | None = None,
    maven_settings_config_file_id: str | None = None,
    max_workers: int | None = None,
    verify_credentials: bool = False,
) -> GlobalSettings:
    """
    Resolve the run-wide settings.

    Raises:
        click.UsageError: If the controller URL, the user or both secrets
            are missing
    """
    resolved_url = get_value(controller_url, "CONTROLLER_URL")
    if not resolved_url:
        raise click.UsageError(
            f"A controller URL is required (--controller-url or {ENV_PREFIX}CONTROLLER_URL)"
        )
    resolved_user = get_value(user, "USER")
    if not resolved_user:
        raise click.UsageError(f"A user is required (--user or {ENV_PREFIX}USER)")

    # an explicit password on the command line beats a token from the environment
    resolved_token = api_token or (None if password else get_value(None, "API_TOKEN"))
    resolved_password = get_value(password, "PASSWORD")
    if not resolved_token and not resolved_password:
        raise click.UsageError(
            f"An API token or a password is required (--api-token/--password or "
            f"{ENV_PREFIX}API_TOKEN/{ENV_PREFIX}PASSWORD)"
        )

    return GlobalSettings(
        controller_url=resolved_url.rstrip("/"),
        user=resolved_user,
        api_token=resolved_token,
        password=resolved_password,
        publish_url=get_value(publish_url, "PUBLISH_URL"),
        mirror_url=get_value(mirror_url, "MIRROR_URL"),
        default_plugin_versions=PluginVersions(
            gradle=gradle_plugin_version, maven=mvn_plugin_version
        ),
        folder=get_value(folder, "FOLDER", DEFAULT_FOLDER),
        maven_settings_config_file_id=maven_settings_config_file_id,
        max_workers=get_max_workers(max_workers),
        verify_credentials=verify_credentials,
    )
