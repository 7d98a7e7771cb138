"""
Build RepositoryRecords from already-parsed input rows.

Rows are plain mappings (for example from csv.DictReader). Run-wide
defaults from the command line are applied to every record.
"""

import csv
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .errors import InputError
from .models import (
    DEFAULT_BRANCH,
    BuildTool,
    ExtraCredential,
    JobType,
    PluginVersions,
    RepositoryRecord,
)

logger = logging.getLogger(__name__)

TRUTHY = {"true", "yes", "y", "1"}

# column aliases, first match wins
COLUMNS = {
    "repo_url": ("repourl", "reponame", "repo"),
    "branch": ("repobranch", "branch"),
    "job_type": ("repojobtype", "jobtype"),
    "build_tool": ("repobuildtool", "buildtool"),
    "skip": ("reposkip", "skip"),
    "folder": ("repofolder", "folder"),
    "agent": ("repoagent", "agent"),
    "gradle_plugin_version": ("gradlepluginversion",),
    "maven_plugin_version": ("mvnpluginversion", "mavenpluginversion"),
}


@dataclass(frozen=True)
class RecordDefaults:
    """Run-wide values applied to every record unless a row overrides them."""

    job_type: JobType = JobType.PIPELINE
    agent_label: str | None = None
    publish_credentials_id: str | None = None
    git_credentials_id: str | None = None
    extra_credentials: tuple[ExtraCredential, ...] = ()
    folder: str | None = None
    workspace_cleanup: bool = False
    create_validate_variant: bool = False


@dataclass(frozen=True)
class InvalidRow:
    """Placeholder for an input row that could not be turned into a record."""

    line: int
    repo_url: str
    error: InputError = field(compare=False)

    @property
    def job_name(self) -> str:
        return self.repo_url or f"<row {self.line}>"


def _lookup(row: Mapping[str, str | None], key: str) -> str | None:
    normalized = {
        (k or "").strip().lower(): v for k, v in row.items() if k is not None
    }
    for alias in COLUMNS[key]:
        value = normalized.get(alias)
        if value is not None and value.strip():
            return value.strip()
    return None


def record_from_row(
    row: Mapping[str, str | None], defaults: RecordDefaults
) -> RepositoryRecord:
    """
    Build one record from a row.

    Raises:
        InputError: If a column holds a value that cannot be interpreted
    """
    job_type = _lookup(row, "job_type")
    skip = _lookup(row, "skip")
    return RepositoryRecord(
        repo_url=_lookup(row, "repo_url") or "",
        branch=_lookup(row, "branch") or DEFAULT_BRANCH,
        job_type=JobType.parse(job_type) if job_type else defaults.job_type,
        skip=bool(skip) and skip.lower() in TRUTHY,
        agent_label=_lookup(row, "agent") or defaults.agent_label,
        publish_credentials_id=defaults.publish_credentials_id,
        git_credentials_id=defaults.git_credentials_id,
        extra_credentials=defaults.extra_credentials,
        plugin_versions=PluginVersions(
            gradle=_lookup(row, "gradle_plugin_version"),
            maven=_lookup(row, "maven_plugin_version"),
        ),
        folder=defaults.folder or _lookup(row, "folder"),
        workspace_cleanup=defaults.workspace_cleanup,
        create_validate_variant=defaults.create_validate_variant,
        build_tool=BuildTool.parse(_lookup(row, "build_tool")),
    )


def records_from_rows(
    rows: Iterable[Mapping[str, str | None]], defaults: RecordDefaults
) -> list[RepositoryRecord | InvalidRow]:
    """
    Build records for all rows, keeping input order.

    Rows that fail to parse become InvalidRow entries so the run can report
    them without skipping the remaining rows.
    """
    records: list[RepositoryRecord | InvalidRow] = []
    # line 1 is the header when rows come from a CSV file
    for line, row in enumerate(rows, start=2):
        try:
            records.append(record_from_row(row, defaults))
        except InputError as e:
            logger.warning(f"Row {line} is invalid: {e}")
            records.append(
                InvalidRow(line=line, repo_url=_lookup(row, "repo_url") or "", error=e)
            )
    return records


def load_csv(path: Path, defaults: RecordDefaults) -> list[RepositoryRecord | InvalidRow]:
    """Read a CSV file with a header row and build records from it."""
    with open(path, newline="", encoding="utf-8") as f:
        rows = list(csv.DictReader(f))
    logger.info(f"Loaded {len(rows)} rows from {path}")
    return records_from_rows(rows, defaults)
