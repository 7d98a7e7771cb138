"""
Jobsync client module.

HTTP client for the Jenkins controller: authentication with crumb
handling and the job/folder/credential endpoints used by the reconciler.
"""

from .auth import Credentials, SessionContext, authenticate
from .client import JenkinsClient

__all__ = ["Credentials", "JenkinsClient", "SessionContext", "authenticate"]
