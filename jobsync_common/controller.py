"""
Abstract controller interface for job management.

This module defines the contract any CI controller backend must follow,
so the reconciler can run against Jenkins or an in-memory stand-in.
Calls are blocking; the reconciler runs them in worker threads.
"""

from abc import ABC, abstractmethod

from .models import ExistingJobState, JobDefinition, JobPath, MutationStatus


class ControllerClient(ABC):
    """
    Abstract base class for the control-plane operations the reconciler needs.

    Implementations must be safe to call from several threads once
    authenticate() has returned.
    """

    @abstractmethod
    def authenticate(self):
        """
        Validate credentials and acquire any CSRF crumb.

        Returns:
            Implementation-specific session context

        Raises:
            AuthError: If the controller rejects the credentials
        """
        pass

    @abstractmethod
    def get_job(self, path: JobPath) -> ExistingJobState:
        """
        Fetch the current job document.

        Args:
            path: Folder and name of the job

        Returns:
            ExistingJobState with xml=None when the job does not exist
        """
        pass

    @abstractmethod
    def create_job(self, path: JobPath, definition: JobDefinition) -> MutationStatus:
        """
        Create a job from a rendered definition.

        Returns:
            OK, or CONFLICT if an item with that name already exists
        """
        pass

    @abstractmethod
    def update_job(self, path: JobPath, definition: JobDefinition) -> MutationStatus:
        """
        Replace the document of an existing job.

        Returns:
            OK, or NOT_FOUND if the job does not exist
        """
        pass

    @abstractmethod
    def delete_job(self, path: JobPath) -> MutationStatus:
        """
        Delete a job.

        Returns:
            OK, or NOT_FOUND if the job was already absent
        """
        pass

    @abstractmethod
    def ensure_folder(self, folder: str) -> None:
        """
        Make sure a (possibly nested) folder exists; no-op when it does.

        Args:
            folder: Slash-separated folder path, empty for the root
        """
        pass

    @abstractmethod
    def credential_exists(self, credentials_id: str) -> bool:
        """Check whether a credential id is defined on the controller."""
        pass
