"""
Authentication utilities for the Jenkins controller.

This module resolves the configured credentials (API token or password),
validates them against the controller and acquires the CSRF crumb that
Jenkins expects on every mutating request.
"""

import logging
from dataclasses import dataclass, field

import requests

from jobsync_common.errors import AuthError, ControllerError, TransientNetworkError
from jobsync_common.models import GlobalSettings

logger = logging.getLogger(__name__)

WHO_AM_I_PATH = "whoAmI/api/json"
CRUMB_PATH = "crumbIssuer/api/json"

# failures of the connection itself, including one dropped mid-response
TRANSIENT_ERRORS = (
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
    requests.exceptions.ChunkedEncodingError,
    requests.exceptions.ContentDecodingError,
)


@dataclass(frozen=True)
class Credentials:
    """
    HTTP basic credentials for the controller.

    mode is "token" for a long-lived API token, "password" for a user
    password. Both are sent the same way; only password sessions depend on
    the session cookie for their crumb.
    """

    user: str
    secret: str = field(repr=False)
    mode: str = "token"

    @classmethod
    def from_settings(cls, settings: GlobalSettings) -> "Credentials":
        """
        Pick the API token when configured, otherwise the password.

        Raises:
            AuthError: If the user or both secrets are missing
        """
        if not settings.user:
            raise AuthError("A controller user is required")
        if settings.api_token:
            return cls(user=settings.user, secret=settings.api_token, mode="token")
        if settings.password:
            return cls(user=settings.user, secret=settings.password, mode="password")
        raise AuthError("Either an API token or a password is required")

    def as_tuple(self) -> tuple[str, str]:
        return (self.user, self.secret)


@dataclass(frozen=True)
class SessionContext:
    """
    Authenticated session state shared read-only by all concurrent calls.

    crumb_field and crumb are None when the controller has CSRF protection
    disabled.
    """

    base_url: str
    credentials: Credentials
    crumb_field: str | None = None
    crumb: str | None = field(default=None, repr=False)

    def headers(self) -> dict[str, str]:
        """Headers to attach to mutating requests."""
        if self.crumb_field and self.crumb:
            return {self.crumb_field: self.crumb}
        return {}


def _get(
    session: requests.Session, url: str, timeout: float, verify: bool
) -> requests.Response:
    try:
        return session.get(url, timeout=timeout, verify=verify)
    except TRANSIENT_ERRORS as e:
        raise TransientNetworkError(f"Cannot reach controller at {url}: {e}") from e


def fetch_crumb(
    session: requests.Session, base_url: str, timeout: float, verify: bool
) -> tuple[str | None, str | None]:
    """
    Fetch the CSRF crumb.

    Returns:
        Tuple of (header field, crumb), or (None, None) when the controller
        does not issue crumbs

    Raises:
        AuthError: If the controller rejects the credentials
        ControllerError: If the crumb issuer answers with anything but a crumb
    """
    response = _get(session, f"{base_url}/{CRUMB_PATH}", timeout, verify)
    if response.status_code == 404:
        logger.debug("Controller does not issue crumbs, CSRF protection is off")
        return None, None
    if response.status_code in (401, 403):
        raise AuthError(
            f"Controller rejected credentials while fetching crumb "
            f"(HTTP {response.status_code})",
            status=response.status_code,
        )
    if response.status_code >= 500:
        raise TransientNetworkError(
            f"Controller error while fetching crumb (HTTP {response.status_code})"
        )
    if response.status_code != 200:
        raise ControllerError(
            f"Unexpected response from crumb issuer (HTTP {response.status_code})",
            status=response.status_code,
        )
    try:
        data = response.json()
    except requests.exceptions.JSONDecodeError as e:
        raise ControllerError(
            f"Crumb issuer did not return JSON: {e}", status=response.status_code
        ) from e
    if not isinstance(data, dict) or not data.get("crumb"):
        raise ControllerError(
            "Crumb issuer response has no crumb", status=response.status_code
        )
    return data.get("crumbRequestField", "Jenkins-Crumb"), data["crumb"]


def authenticate(
    session: requests.Session,
    base_url: str,
    credentials: Credentials,
    timeout: float = 30.0,
    verify: bool = True,
) -> SessionContext:
    """
    Validate credentials and acquire a crumb.

    The session is configured with basic auth; its cookie jar keeps the
    web session that password-authenticated crumbs are bound to.

    Args:
        session: requests session used for all further calls
        base_url: Controller URL without trailing slash
        credentials: User and token/password
        timeout: Request timeout in seconds
        verify: Whether to verify TLS certificates

    Returns:
        SessionContext with the crumb (if any)

    Raises:
        AuthError: If the credentials are rejected
        ControllerError: If the controller answers with something unexpected
        TransientNetworkError: If the controller cannot be reached
    """
    session.auth = credentials.as_tuple()

    response = _get(session, f"{base_url}/{WHO_AM_I_PATH}", timeout, verify)
    if response.status_code in (401, 403):
        raise AuthError(
            f"Controller rejected credentials for user {credentials.user} "
            f"(HTTP {response.status_code})",
            status=response.status_code,
        )
    if response.status_code >= 500:
        raise TransientNetworkError(
            f"Controller error while authenticating (HTTP {response.status_code})"
        )
    if response.status_code >= 400:
        raise ControllerError(
            f"Unexpected response from {WHO_AM_I_PATH} (HTTP {response.status_code})",
            status=response.status_code,
        )

    crumb_field, crumb = fetch_crumb(session, base_url, timeout, verify)
    logger.info(
        f"Authenticated to {base_url} as {credentials.user} using {credentials.mode}"
        f"{' with crumb' if crumb else ''}"
    )
    return SessionContext(
        base_url=base_url,
        credentials=credentials,
        crumb_field=crumb_field,
        crumb=crumb,
    )
