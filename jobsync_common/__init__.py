"""
Jobsync common module.

This module contains the domain models, error types and the abstract
controller interface shared by the renderer, client and reconciler.

It has no dependencies on other jobsync_* modules, making it a pure
domain layer that can be imported by any component.
"""

from .controller import ControllerClient
from .errors import (
    AuthError,
    ControllerError,
    InputError,
    JobSyncError,
    RenderError,
    TransientNetworkError,
)
from .models import (
    BuildTool,
    ExistingJobState,
    ExtraCredential,
    GlobalSettings,
    JobDefinition,
    JobOutcome,
    JobPath,
    JobType,
    JobVariant,
    MutationStatus,
    PluginVersions,
    RepositoryRecord,
)

__all__ = [
    "AuthError",
    "BuildTool",
    "ControllerClient",
    "ControllerError",
    "ExistingJobState",
    "ExtraCredential",
    "GlobalSettings",
    "InputError",
    "JobDefinition",
    "JobOutcome",
    "JobPath",
    "JobSyncError",
    "JobType",
    "JobVariant",
    "MutationStatus",
    "PluginVersions",
    "RenderError",
    "RepositoryRecord",
    "TransientNetworkError",
]
