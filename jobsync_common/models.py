"""
Data models for repository-to-job synchronization.

These models describe the desired state (one RepositoryRecord per job),
the run-wide settings, and the state observed on the Jenkins controller.
They carry no I/O and can be imported by every other jobsync package.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from urllib.parse import quote, urlsplit

from .errors import InputError

DEFAULT_BRANCH = "main"
DEFAULT_FOLDER = "moderne-ingest"
DEFAULT_VALIDATE_FOLDER = "validate"
DEFAULT_SCM_BASE_URL = "https://github.com"

# Characters Jenkins accepts in item names without surprises
_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")

# Characters that cannot appear in an XML document, even escaped
_XML_ILLEGAL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\ud800-\udfff\ufffe\uffff]")


class JobType(Enum):
    """Kind of Jenkins job rendered for a repository."""

    PIPELINE = "PIPELINE"
    FREESTYLE = "FREESTYLE"

    @classmethod
    def parse(cls, value: str) -> "JobType":
        try:
            return cls(value.strip().upper())
        except ValueError:
            raise InputError(
                f"Unknown job type {value!r} (expected PIPELINE or FREESTYLE)"
            ) from None


class BuildTool(Enum):
    """Build tool used to produce the artifacts of a repository."""

    GRADLE = "GRADLE"
    MAVEN = "MAVEN"
    AUTO = "AUTO"  # detected from the workspace at build time

    @classmethod
    def parse(cls, value: str | None) -> "BuildTool":
        if not value or not value.strip():
            return cls.AUTO
        try:
            return cls(value.strip().upper())
        except ValueError:
            raise InputError(
                f"Unknown build tool {value!r} (expected gradle, maven or auto)"
            ) from None


class JobVariant(Enum):
    """Which template a record is rendered with."""

    PRIMARY = "primary"
    VALIDATE = "validate"


class MutationStatus(Enum):
    """Result of a mutating controller call that did not raise."""

    OK = "ok"
    CONFLICT = "conflict"  # create on an item that already exists
    NOT_FOUND = "not_found"  # update/delete on an item that is gone


class JobOutcome(Enum):
    """Terminal outcome of reconciling one job path."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    DELETED = "deleted"
    FAILED = "failed"


@dataclass(frozen=True)
class ExtraCredential:
    """
    An additional credential bound into the job environment.

    The variable spec is either a single variable name (secret text) or a
    "USER_VARIABLE:PASSWORD_VARIABLE" pair (username with password).
    """

    name: str
    variable_spec: str

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise InputError("Extra credential name must not be empty")
        parts = self.variable_spec.split(":")
        if len(parts) > 2 or not all(p.strip() for p in parts):
            raise InputError(
                f"Invalid variable spec {self.variable_spec!r} for credential "
                f"{self.name!r} (expected VARIABLE or USER_VARIABLE:PASSWORD_VARIABLE)"
            )

    @classmethod
    def parse(cls, value: str) -> "ExtraCredential":
        """Parse the "name=SPEC" command line form."""
        name, sep, spec = value.partition("=")
        if not sep:
            raise InputError(f"Invalid credentials {value!r} (expected NAME=SPEC)")
        return cls(name=name.strip(), variable_spec=spec.strip())

    @property
    def is_username_password(self) -> bool:
        return ":" in self.variable_spec

    @property
    def token_variable(self) -> str | None:
        return None if self.is_username_password else self.variable_spec

    @property
    def username_variable(self) -> str | None:
        if not self.is_username_password:
            return None
        return self.variable_spec.split(":")[0]

    @property
    def password_variable(self) -> str | None:
        if not self.is_username_password:
            return None
        return self.variable_spec.split(":")[1]


@dataclass(frozen=True)
class PluginVersions:
    """Build plugin versions, either per-record overrides or run-wide defaults."""

    gradle: str | None = None
    maven: str | None = None

    def merged_over(self, defaults: "PluginVersions") -> "PluginVersions":
        """Overrides from self where present, otherwise the defaults."""
        return PluginVersions(
            gradle=self.gradle or defaults.gradle,
            maven=self.maven or defaults.maven,
        )


@dataclass(frozen=True)
class GlobalSettings:
    """
    Process-wide settings for one synchronization run.

    Settings are immutable for the duration of a run and are passed
    explicitly to the renderer, the client and the reconciler.
    """

    controller_url: str
    user: str | None = None
    api_token: str | None = field(default=None, repr=False)
    password: str | None = field(default=None, repr=False)
    publish_url: str | None = None
    mirror_url: str | None = None
    default_plugin_versions: PluginVersions = field(default_factory=PluginVersions)
    folder: str = DEFAULT_FOLDER
    validate_folder: str = DEFAULT_VALIDATE_FOLDER
    scm_base_url: str = DEFAULT_SCM_BASE_URL
    maven_settings_config_file_id: str | None = None
    verify_ssl: bool = True
    request_timeout: float = 30.0
    max_retries: int = 3
    retry_backoff: float = 1.0
    max_workers: int = 4
    verify_credentials: bool = False

    @property
    def auth_mode(self) -> str:
        """"token" when an API token is configured, otherwise "password"."""
        return "token" if self.api_token else "password"


@dataclass(frozen=True)
class JobPath:
    """Location of a job on the controller: folder (may be nested) + name."""

    folder: str
    name: str

    @property
    def folder_segments(self) -> list[str]:
        return [s for s in self.folder.split("/") if s]

    @property
    def folder_url_path(self) -> str:
        """URL path of the containing folder, e.g. "job/a/job/b" (empty at root)."""
        return _job_url_path(self.folder_segments)

    @property
    def url_path(self) -> str:
        """URL path of the job itself, e.g. "job/a/job/b/job/name"."""
        return _job_url_path(self.folder_segments + [self.name])

    def __str__(self) -> str:
        return "/".join(self.folder_segments + [self.name])


def _job_url_path(segments: list[str]) -> str:
    return "/".join(f"job/{quote(segment, safe='')}" for segment in segments)


def _sanitize_name_part(value: str) -> str:
    return _UNSAFE_NAME_CHARS.sub("-", value.replace("/", "_"))


@dataclass(frozen=True)
class RepositoryRecord:
    """
    One row of desired state: a repository branch that should have a job.

    A record with skip=True means the job must be absent after the run.
    """

    repo_url: str
    branch: str = DEFAULT_BRANCH
    job_type: JobType = JobType.PIPELINE
    skip: bool = False
    agent_label: str | None = None
    publish_credentials_id: str | None = None
    git_credentials_id: str | None = None
    extra_credentials: tuple[ExtraCredential, ...] = ()
    plugin_versions: PluginVersions = field(default_factory=PluginVersions)
    folder: str | None = None
    workspace_cleanup: bool = False
    create_validate_variant: bool = False
    build_tool: BuildTool = BuildTool.AUTO

    def validate(self) -> None:
        """
        Check that the record can be reconciled.

        Raises:
            InputError: If a required field is missing or a field holds
                characters that XML cannot carry
        """
        if not self.repo_url or not self.repo_url.strip():
            raise InputError("Repository URL is required")
        if not self.repo_path:
            raise InputError(f"Cannot derive a repository path from {self.repo_url!r}")
        if not self.branch or not self.branch.strip():
            raise InputError(f"Branch is required for {self.repo_url}")
        if not self.skip and not self.publish_credentials_id:
            raise InputError(f"Publish credentials id is required for {self.repo_url}")
        for label, value in self._text_fields():
            if value and _XML_ILLEGAL_CHARS.search(value):
                raise InputError(
                    f"{label} for {self.repo_url!r} contains characters "
                    "that cannot be written to a job document"
                )

    def _text_fields(self) -> list[tuple[str, str | None]]:
        fields = [
            ("Repository URL", self.repo_url),
            ("Branch", self.branch),
            ("Agent", self.agent_label),
            ("Publish credentials id", self.publish_credentials_id),
            ("Git credentials id", self.git_credentials_id),
            ("Folder", self.folder),
            ("Gradle plugin version", self.plugin_versions.gradle),
            ("Maven plugin version", self.plugin_versions.maven),
        ]
        for credential in self.extra_credentials:
            fields.append(("Extra credential", credential.name))
            fields.append(("Extra credential variables", credential.variable_spec))
        return fields

    @property
    def repo_path(self) -> str:
        """
        The "org/name" path of the repository.

        Accepts full URLs (https://host/org/name.git), scp-like git URLs
        (git@host:org/name.git) and bare "org/name" paths.
        """
        url = self.repo_url.strip()
        if "://" in url:
            path = urlsplit(url).path
        elif "@" in url and ":" in url:
            path = url.split(":", 1)[1]
        else:
            path = url
        path = path.strip("/")
        if path.endswith(".git"):
            path = path[: -len(".git")]
        return path

    @property
    def job_name(self) -> str:
        """Job name derived from the repository path and branch."""
        return (
            f"{_sanitize_name_part(self.repo_path)}_"
            f"{_sanitize_name_part(self.branch.strip())}"
        )

    def clone_url(self, settings: GlobalSettings) -> str:
        """URL the SCM step clones from; bare paths resolve against the SCM base URL."""
        url = self.repo_url.strip()
        if "://" in url or "@" in url:
            return url
        return f"{settings.scm_base_url.rstrip('/')}/{self.repo_path}"

    def job_path(
        self, settings: GlobalSettings, variant: JobVariant = JobVariant.PRIMARY
    ) -> JobPath:
        """Target path of this record's job for the given variant."""
        if variant is JobVariant.VALIDATE:
            folder = settings.validate_folder
        else:
            folder = self.folder or settings.folder
        return JobPath(folder=folder.strip("/"), name=self.job_name)

    def variants(self) -> list[JobVariant]:
        """All job variants this record manages."""
        if self.create_validate_variant:
            return [JobVariant.PRIMARY, JobVariant.VALIDATE]
        return [JobVariant.PRIMARY]


@dataclass(frozen=True)
class JobDefinition:
    """Rendered config.xml for one job, deterministic for equal inputs."""

    path: JobPath
    variant: JobVariant
    job_type: JobType
    xml: str


@dataclass(frozen=True)
class ExistingJobState:
    """Job document as currently stored on the controller (None when absent)."""

    path: JobPath
    xml: str | None = None

    @property
    def exists(self) -> bool:
        return self.xml is not None
