"""
Unit tests for the jobsync command line.

The Jenkins client and the reconciler are mocked; these tests cover
option handling, record loading, output and exit codes.
"""

from importlib.metadata import PackageNotFoundError
from pathlib import Path
from unittest.mock import AsyncMock, Mock, patch

import pytest
from click.testing import CliRunner

from jobsync_cli.cli import cli
from jobsync_common.models import JobOutcome, JobPath, JobType, JobVariant
from jobsync_controller.reconciler import JobResult, RunReport

CSV = "repoName,repoBranch,skip\nopenrewrite/rewrite-spring,main,\norg/old,main,true\n"

BASE_ARGS = [
    "sync",
    "--controller-url",
    "https://jenkins.example.com",
    "--user",
    "admin",
    "--api-token",
    "token",
    "--publish-creds-id",
    "artifactory",
    "--git-creds-id",
    "github",
    "--publish-url",
    "https://repo.example.com",
]


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def csv_file(tmp_path) -> Path:
    path = tmp_path / "repos.csv"
    path.write_text(CSV)
    return path


def report_for(records, outcome=JobOutcome.CREATED, error=None) -> RunReport:
    return RunReport(
        [
            JobResult(
                record,
                JobPath(folder="moderne-ingest", name=record.job_name),
                JobVariant.PRIMARY,
                outcome,
                error,
            )
            for record in records
        ]
    )


@pytest.fixture
def reconciler_cls():
    """Patch the reconciler to echo its records back as results."""
    with patch("jobsync_cli.cli.JenkinsClient") as client_cls, patch(
        "jobsync_cli.cli.JobReconciler"
    ) as cls:
        instance = Mock()

        async def reconcile(records, timeout=None):
            return report_for(records)

        instance.reconcile = AsyncMock(side_effect=reconcile)
        cls.return_value = instance
        cls.client_cls = client_cls
        yield cls


class TestSyncCommand:
    """Test suite for the sync command."""

    def test_sync_reports_results(self, runner, csv_file, reconciler_cls):
        """Test a successful run: one line per job plus a summary."""
        result = runner.invoke(cli, [*BASE_ARGS, "--from-csv", str(csv_file)])

        assert result.exit_code == 0, result.output
        assert "created    moderne-ingest/openrewrite_rewrite-spring_main" in result.output
        assert "2 jobs: 2 created" in result.output

        records = reconciler_cls.return_value.reconcile.call_args.args[0]
        assert [r.repo_url for r in records] == ["openrewrite/rewrite-spring", "org/old"]
        assert records[0].publish_credentials_id == "artifactory"
        assert records[0].git_credentials_id == "github"
        assert records[1].skip

    def test_settings_passed_to_client(self, runner, csv_file, reconciler_cls):
        runner.invoke(
            cli,
            [*BASE_ARGS, "--from-csv", str(csv_file), "--max-workers", "2"],
        )

        settings = reconciler_cls.client_cls.call_args.args[0]
        assert settings.controller_url == "https://jenkins.example.com"
        assert settings.publish_url == "https://repo.example.com"
        assert settings.max_workers == 2

    def test_record_defaults_from_options(self, runner, csv_file, reconciler_cls):
        """Test that run-wide options reach every record."""
        result = runner.invoke(
            cli,
            [
                *BASE_ARGS,
                "--from-csv",
                str(csv_file),
                "--job-type",
                "freestyle",
                "--agent",
                "{ label 'linux' }",
                "--credentials",
                "sonar=SONAR_TOKEN",
                "--credentials",
                "nexus=NEXUS_USER:NEXUS_PASS",
                "--workspace-cleanup",
                "--create-validate-jobs",
                "--folder",
                "teams/ingest",
            ],
        )

        assert result.exit_code == 0, result.output
        record = reconciler_cls.return_value.reconcile.call_args.args[0][0]
        assert record.job_type is JobType.FREESTYLE
        assert record.agent_label == "{ label 'linux' }"
        assert [c.name for c in record.extra_credentials] == ["sonar", "nexus"]
        assert record.workspace_cleanup
        assert record.create_validate_variant
        assert record.folder == "teams/ingest"

    @pytest.mark.parametrize(
        "args, env",
        [
            (["--folder", "teams/ingest"], {}),
            ([], {"JOBSYNC_FOLDER": "teams/ingest"}),
        ],
    )
    def test_folder_overrides_csv_column(
        self, runner, tmp_path, reconciler_cls, args, env
    ):
        """Test that --folder and JOBSYNC_FOLDER both win over the CSV column."""
        csv_path = tmp_path / "repos.csv"
        csv_path.write_text("repoName,repoFolder\norg/a,from-csv\n")

        result = runner.invoke(
            cli, [*BASE_ARGS, "--from-csv", str(csv_path), *args], env=env
        )

        assert result.exit_code == 0, result.output
        record = reconciler_cls.return_value.reconcile.call_args.args[0][0]
        assert record.folder == "teams/ingest"

    def test_csv_folder_used_without_override(self, runner, tmp_path, reconciler_cls):
        csv_path = tmp_path / "repos.csv"
        csv_path.write_text("repoName,repoFolder\norg/a,from-csv\n")

        with patch.dict("os.environ", {}, clear=True):
            runner.invoke(cli, [*BASE_ARGS, "--from-csv", str(csv_path)])

        record = reconciler_cls.return_value.reconcile.call_args.args[0][0]
        assert record.folder == "from-csv"

    def test_failures_set_exit_code(self, runner, csv_file, reconciler_cls):
        """Test that any failed job makes the run exit non-zero."""

        async def reconcile(records, timeout=None):
            return report_for(records, JobOutcome.FAILED, "boom")

        reconciler_cls.return_value.reconcile.side_effect = reconcile

        result = runner.invoke(cli, [*BASE_ARGS, "--from-csv", str(csv_file)])

        assert result.exit_code == 1
        assert "(boom)" in result.output

    def test_timeout_passed_to_reconciler(self, runner, csv_file, reconciler_cls):
        runner.invoke(cli, [*BASE_ARGS, "--from-csv", str(csv_file), "--timeout", "60"])
        assert reconciler_cls.return_value.reconcile.call_args.kwargs["timeout"] == 60.0

    def test_token_and_password_are_exclusive(self, runner, csv_file, reconciler_cls):
        result = runner.invoke(
            cli, [*BASE_ARGS, "--from-csv", str(csv_file), "--password", "pw"]
        )
        assert result.exit_code == 2
        assert "not both" in result.output

    def test_invalid_extra_credentials(self, runner, csv_file, reconciler_cls):
        result = runner.invoke(
            cli,
            [*BASE_ARGS, "--from-csv", str(csv_file), "--credentials", "no-spec"],
        )
        assert result.exit_code == 2
        assert "NAME=SPEC" in result.output

    def test_missing_controller_url(self, runner, csv_file, reconciler_cls):
        with patch.dict("os.environ", {}, clear=True):
            result = runner.invoke(
                cli, ["sync", "--from-csv", str(csv_file), "--user", "u", "--api-token", "t"]
            )
        assert result.exit_code == 2
        assert "controller URL" in result.output

    def test_missing_csv_file(self, runner, reconciler_cls):
        result = runner.invoke(cli, [*BASE_ARGS, "--from-csv", "/nonexistent/repos.csv"])
        assert result.exit_code == 2


class TestVersionCommand:
    """Test suite for the version command."""

    def test_installed_version(self, runner):
        with patch("jobsync_cli.cli.distribution_version", return_value="1.2.3"):
            result = runner.invoke(cli, ["version"])
        assert result.exit_code == 0
        assert result.output.strip() == "1.2.3"

    def test_development_version(self, runner):
        with patch(
            "jobsync_cli.cli.distribution_version",
            side_effect=PackageNotFoundError("jobsync"),
        ):
            result = runner.invoke(cli, ["version"])
        assert result.output.strip() == "development"
