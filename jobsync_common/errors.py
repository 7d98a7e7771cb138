"""
Error taxonomy for synchronization runs.

Client calls raise these; the reconciler turns them into per-record
outcomes so that one failing record never aborts the others.
"""


class JobSyncError(Exception):
    """Base class for all expected synchronization failures."""


class InputError(JobSyncError):
    """A record is malformed or ambiguous (fatal for that record only)."""


class RenderError(InputError):
    """A record reached the renderer without a field the template needs."""


class AuthError(JobSyncError):
    """Credentials were rejected, or the session/crumb could not be refreshed."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class TransientNetworkError(JobSyncError):
    """Connection failure, timeout or 5xx that persisted through all retries."""


class ControllerError(JobSyncError):
    """The controller answered with a status the client does not expect."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status
