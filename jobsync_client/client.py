"""
HTTP client for the Jenkins control-plane API.

Wraps the REST endpoints needed to manage job definitions: fetching and
probing jobs, createItem, config.xml updates, doDelete, folder creation
and credential lookups. Transient failures are retried with exponential
backoff; rejected credentials trigger a single re-authentication.
"""

import logging
import threading
import time
from collections.abc import Callable
from urllib.parse import quote

import requests

from jobsync_common.controller import ControllerClient
from jobsync_common.errors import AuthError, ControllerError, TransientNetworkError
from jobsync_common.models import (
    ExistingJobState,
    GlobalSettings,
    JobDefinition,
    JobPath,
    MutationStatus,
)

from .auth import TRANSIENT_ERRORS, Credentials, SessionContext, authenticate

logger = logging.getLogger(__name__)

FOLDER_XML = (
    "<?xml version='1.1' encoding='UTF-8'?>\n"
    '<com.cloudbees.hudson.plugins.folder.Folder plugin="cloudbees-folder"/>\n'
)

XML_HEADERS = {"Content-Type": "application/xml; charset=utf-8"}


class JenkinsClient(ControllerClient):
    """
    Authenticated client for one Jenkins controller.

    The session context (basic auth + crumb) is acquired once and shared by
    all threads; it is only replaced when the controller rejects it.
    """

    def __init__(
        self,
        settings: GlobalSettings,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the client.

        Args:
            settings: Run-wide settings (URL, credentials, timeouts, retries)
            session: Optional requests session (a new one is created otherwise)
            sleep: Function used to wait between retries
        """
        self.settings = settings
        self.base_url = settings.controller_url.rstrip("/")
        self.session = session or requests.Session()
        self._sleep = sleep
        self._context: SessionContext | None = None
        self._lock = threading.Lock()
        self._known_folders: set[str] = set()

    # ------------------------------------------------------------------
    # Session handling
    # ------------------------------------------------------------------

    def _acquire(self) -> SessionContext:
        return authenticate(
            self.session,
            self.base_url,
            Credentials.from_settings(self.settings),
            timeout=self.settings.request_timeout,
            verify=self.settings.verify_ssl,
        )

    def authenticate(self) -> SessionContext:
        """
        Validate credentials and fetch the crumb.

        Raises:
            AuthError: If the controller rejects the credentials
            ControllerError: If the crumb issuer answers without a crumb
            TransientNetworkError: If the controller cannot be reached
        """
        with self._lock:
            self._context = self._acquire()
            return self._context

    @property
    def context(self) -> SessionContext | None:
        return self._context

    def _current_context(self) -> SessionContext:
        if self._context is None:
            return self.authenticate()
        return self._context

    def _reauthenticate(self, stale: SessionContext) -> SessionContext:
        with self._lock:
            # another thread may have refreshed it already
            if self._context is not stale and self._context is not None:
                return self._context
            logger.warning(f"Session for {self.base_url} rejected, re-authenticating")
            self._context = self._acquire()
            return self._context

    # ------------------------------------------------------------------
    # Request plumbing
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        *,
        mutating: bool = False,
        params: dict[str, str] | None = None,
        data: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> requests.Response:
        """
        Send a request with retry and re-authentication handling.

        Returns responses with status < 500 that are not auth failures;
        the caller interprets 2xx/3xx/4xx.

        Raises:
            AuthError: If the request is rejected after re-authenticating
            TransientNetworkError: If retries are exhausted
        """
        context = self._current_context()
        url = f"{self.base_url}/{path}"
        reauthenticated = False
        attempt = 0

        while True:
            request_headers = dict(headers or {})
            if mutating:
                request_headers.update(context.headers())
            try:
                response = self.session.request(
                    method,
                    url,
                    params=params,
                    data=data,
                    headers=request_headers,
                    timeout=self.settings.request_timeout,
                    verify=self.settings.verify_ssl,
                    allow_redirects=not mutating,
                )
            except TRANSIENT_ERRORS as e:
                last_error = f"{type(e).__name__}: {e}"
            else:
                status = response.status_code
                if status == 401 or (status == 403 and mutating):
                    if reauthenticated:
                        raise AuthError(
                            f"{method} {path} rejected by controller (HTTP {status})",
                            status=status,
                        )
                    context = self._reauthenticate(context)
                    reauthenticated = True
                    continue
                if status == 403:
                    raise AuthError(
                        f"Permission denied for {method} {path} (HTTP 403)", status=403
                    )
                if status < 500:
                    return response
                last_error = f"HTTP {status}"

            if attempt >= self.settings.max_retries:
                raise TransientNetworkError(
                    f"{method} {path} failed after {attempt + 1} attempts: {last_error}"
                )
            delay = self.settings.retry_backoff * (2**attempt)
            logger.warning(
                f"{method} {path} failed ({last_error}), retrying in {delay}s "
                f"(attempt {attempt + 1}/{self.settings.max_retries})"
            )
            self._sleep(delay)
            attempt += 1

    @staticmethod
    def _unexpected(response: requests.Response, action: str) -> ControllerError:
        detail = response.headers.get("X-Error") or response.text[:200]
        return ControllerError(
            f"Failed to {action}: HTTP {response.status_code} {detail}".rstrip(),
            status=response.status_code,
        )

    def _create_item(self, folder: JobPath, xml: str) -> MutationStatus:
        prefix = folder.folder_url_path
        path = f"{prefix}/createItem" if prefix else "createItem"
        response = self._request(
            "POST",
            path,
            mutating=True,
            params={"name": folder.name},
            data=xml.encode("utf-8"),
            headers=XML_HEADERS,
        )
        if response.status_code < 400:
            return MutationStatus.OK
        if response.status_code == 400:
            detail = f"{response.headers.get('X-Error', '')} {response.text}"
            if "already exists" in detail:
                return MutationStatus.CONFLICT
        raise self._unexpected(response, f"create {folder}")

    # ------------------------------------------------------------------
    # Job operations
    # ------------------------------------------------------------------

    def get_job(self, path: JobPath) -> ExistingJobState:
        """Fetch config.xml; xml is None when the job does not exist."""
        response = self._request("GET", f"{path.url_path}/config.xml")
        if response.status_code == 404:
            return ExistingJobState(path=path)
        if response.status_code != 200:
            raise self._unexpected(response, f"fetch {path}")
        return ExistingJobState(path=path, xml=response.content.decode("utf-8"))

    def job_exists(self, path: JobPath) -> bool:
        """Probe the item's api/json endpoint."""
        response = self._request("GET", f"{path.url_path}/api/json")
        if response.status_code == 404:
            return False
        if response.status_code != 200:
            raise self._unexpected(response, f"probe {path}")
        return True

    def create_job(self, path: JobPath, definition: JobDefinition) -> MutationStatus:
        status = self._create_item(path, definition.xml)
        if status is MutationStatus.OK:
            logger.debug(f"Created job {path}")
        return status

    def update_job(self, path: JobPath, definition: JobDefinition) -> MutationStatus:
        response = self._request(
            "POST",
            f"{path.url_path}/config.xml",
            mutating=True,
            data=definition.xml.encode("utf-8"),
            headers=XML_HEADERS,
        )
        if response.status_code == 404:
            return MutationStatus.NOT_FOUND
        if response.status_code >= 400:
            raise self._unexpected(response, f"update {path}")
        logger.debug(f"Updated job {path}")
        return MutationStatus.OK

    def delete_job(self, path: JobPath) -> MutationStatus:
        response = self._request("POST", f"{path.url_path}/doDelete", mutating=True)
        if response.status_code == 404:
            return MutationStatus.NOT_FOUND
        if response.status_code >= 400:
            raise self._unexpected(response, f"delete {path}")
        logger.debug(f"Deleted job {path}")
        return MutationStatus.OK

    def ensure_folder(self, folder: str) -> None:
        """Create every missing level of a nested folder path."""
        segments = [s for s in folder.split("/") if s]
        for depth in range(1, len(segments) + 1):
            level = JobPath(folder="/".join(segments[: depth - 1]), name=segments[depth - 1])
            key = str(level)
            with self._lock:
                if key in self._known_folders:
                    continue
            if not self.job_exists(level):
                status = self._create_item(level, FOLDER_XML)
                if status is MutationStatus.OK:
                    logger.info(f"Created folder {level}")
            with self._lock:
                self._known_folders.add(key)

    def credential_exists(self, credentials_id: str) -> bool:
        """Look the id up in the system credential store."""
        credential = quote(credentials_id, safe="")
        response = self._request(
            "GET", f"credentials/store/system/domain/_/credential/{credential}/api/json"
        )
        if response.status_code == 404:
            return False
        if response.status_code != 200:
            raise self._unexpected(response, f"look up credential {credentials_id}")
        return True
