"""
Unit tests for jobsync_render.

Tests the config.xml documents rendered for pipeline and freestyle jobs.
"""

import pytest

from jobsync_common.errors import RenderError
from jobsync_common.models import (
    BuildTool,
    ExtraCredential,
    GlobalSettings,
    JobPath,
    JobType,
    JobVariant,
    PluginVersions,
    RepositoryRecord,
)
from jobsync_render import parse_document, render
from jobsync_render.pipeline import agent_directive, groovy_string
from jobsync_render.steps import label_expression

BINDING = "org.jenkinsci.plugins.credentialsbinding.impl"


@pytest.fixture
def settings():
    return GlobalSettings(
        controller_url="https://jenkins.example.com",
        user="admin",
        api_token="token",
        publish_url="https://artifactory.example.com/moderne-ingest/",
    )


@pytest.fixture
def record():
    return RepositoryRecord(
        repo_url="https://github.com/openrewrite/rewrite-spring",
        branch="main",
        publish_credentials_id="artifactory",
        git_credentials_id="github",
    )


def script_of(xml: str) -> str:
    return parse_document(xml).find("definition/script").text


class TestPipelineRendering:
    """Test suite for pipeline job documents."""

    def test_openrewrite_scenario(self, record, settings):
        """Test the documented example: path, credential ids, no agent label."""
        definition = render(record, settings)

        assert definition.path == JobPath(
            folder="moderne-ingest", name="openrewrite_rewrite-spring_main"
        )
        assert definition.job_type is JobType.PIPELINE
        assert definition.variant is JobVariant.PRIMARY

        root = parse_document(definition.xml)
        assert root.tag == "flow-definition"
        script = root.find("definition/script").text
        assert "credentialsId: 'github'" in script
        assert "credentialsId: 'artifactory'" in script
        assert "agent any" in script
        assert "label" not in script
        assert "https://github.com/openrewrite/rewrite-spring" in script
        assert "MODERNE_PUBLISH_URL = 'https://artifactory.example.com/moderne-ingest'" in script

    def test_xml_declaration(self, record, settings):
        """Test that documents start with the declaration Jenkins writes."""
        assert render(record, settings).xml.startswith(
            "<?xml version='1.1' encoding='UTF-8'?>\n<flow-definition"
        )

    def test_rendering_is_deterministic(self, record, settings):
        """Test that equal inputs give byte-identical documents."""
        copy = RepositoryRecord(**record.__dict__)
        assert render(record, settings).xml == render(copy, settings).xml

    def test_agent_block_round_trips(self, record, settings):
        """Test that an agent block survives XML escaping unchanged."""
        label = "{ label 'os=windows && !reserved' }"
        definition = render(
            RepositoryRecord(**{**record.__dict__, "agent_label": label}), settings
        )

        assert "&amp;&amp;" in definition.xml
        assert f"agent {label}" in script_of(definition.xml)

    def test_bare_agent_label_is_quoted(self, record, settings):
        """Test that a bare label expression is wrapped into a label block."""
        definition = render(
            RepositoryRecord(**{**record.__dict__, "agent_label": "linux && docker"}),
            settings,
        )
        assert "agent { label 'linux && docker' }" in script_of(definition.xml)

    def test_hostile_text_produces_well_formed_xml(self, settings):
        """Test that markup in free-text fields cannot break the document."""
        record = RepositoryRecord(
            repo_url="org/repo",
            branch="feat/<x>&'\"]]>",
            publish_credentials_id="id</script><x a='1'>",
            agent_label="a<b>'c\\d",
        )
        definition = render(record, settings)

        script = script_of(definition.xml)
        assert "id</script><x a=\\'1\\'>" in script
        assert "agent { label 'a<b>\\'c\\\\d' }" in script

    def test_extra_credentials_in_input_order(self, record, settings):
        """Test that extras follow the publish binding in input order."""
        extras = (
            ExtraCredential("zeta", "ZETA_TOKEN"),
            ExtraCredential("alpha", "ALPHA_USER:ALPHA_PASS"),
        )
        script = script_of(
            render(
                RepositoryRecord(**{**record.__dict__, "extra_credentials": extras}),
                settings,
            ).xml
        )

        publish = script.index("credentialsId: 'artifactory'")
        zeta = script.index("string(credentialsId: 'zeta', variable: 'ZETA_TOKEN')")
        alpha = script.index(
            "usernamePassword(credentialsId: 'alpha', "
            "usernameVariable: 'ALPHA_USER', passwordVariable: 'ALPHA_PASS')"
        )
        assert publish < zeta < alpha

    def test_plugin_version_defaults(self, record, settings):
        """Test the fallback versions when nothing is configured."""
        script = script_of(render(record, settings).xml)
        assert "MODERNE_GRADLE_PLUGIN_VERSION = 'latest.release'" in script
        assert "MODERNE_MAVEN_PLUGIN_VERSION = 'RELEASE'" in script

    def test_record_plugin_versions_override_defaults(self, record):
        """Test that per-record versions replace run-wide defaults."""
        settings = GlobalSettings(
            controller_url="https://jenkins.example.com",
            publish_url="https://repo.example.com",
            default_plugin_versions=PluginVersions(gradle="1.0.0", maven="2.0.0"),
        )
        overridden = RepositoryRecord(
            **{**record.__dict__, "plugin_versions": PluginVersions(gradle="3.0.0")}
        )
        script = script_of(render(overridden, settings).xml)
        assert "MODERNE_GRADLE_PLUGIN_VERSION = '3.0.0'" in script
        assert "MODERNE_MAVEN_PLUGIN_VERSION = '2.0.0'" in script

    def test_optional_settings_absent(self, record, settings):
        """Test that unset mirror and settings file leave no trace."""
        script = script_of(render(record, settings).xml)
        assert "MIRROR" not in script
        assert "configFileProvider" not in script
        assert "cleanWs" not in script

    def test_optional_settings_present(self, record):
        """Test mirror URL, Maven settings and workspace cleanup."""
        settings = GlobalSettings(
            controller_url="https://jenkins.example.com",
            publish_url="https://repo.example.com",
            mirror_url="https://mirror.example.com",
            maven_settings_config_file_id="maven-settings",
        )
        cleaned = RepositoryRecord(
            **{**record.__dict__, "workspace_cleanup": True, "build_tool": BuildTool.MAVEN}
        )
        script = script_of(render(cleaned, settings).xml)
        assert "MODERNE_MIRROR_URL = 'https://mirror.example.com'" in script
        assert "configFile(fileId: 'maven-settings', variable: 'MAVEN_SETTINGS')" in script
        assert '-s "$MAVEN_SETTINGS"' in script
        assert "cleanWs()" in script

    def test_validate_variant(self, record, settings):
        """Test that the validate template builds without publishing."""
        definition = render(record, settings, JobVariant.VALIDATE)

        assert definition.path.folder == "validate"
        script = script_of(definition.xml)
        assert "stage('Publish')" not in script
        assert "artifactory" not in script
        assert "MODERNE_PUBLISH_URL" not in script
        assert "archiveArtifacts artifacts: '**/moderne/*.jar'" in script
        assert "credentialsId: 'github'" in script

    def test_primary_requires_publish_url(self, record):
        """Test that the primary template needs a publish URL."""
        settings = GlobalSettings(controller_url="https://jenkins.example.com")
        with pytest.raises(RenderError, match="publish URL"):
            render(record, settings)

    def test_validate_does_not_require_publish_url(self, record):
        settings = GlobalSettings(controller_url="https://jenkins.example.com")
        assert render(record, settings, JobVariant.VALIDATE).xml

    def test_primary_requires_publish_credentials(self, settings):
        with pytest.raises(RenderError, match="Publish credentials"):
            render(RepositoryRecord(repo_url="org/repo"), settings)

    def test_build_tool_commands(self, record, settings):
        """Test the build command chosen for each build tool."""
        gradle = script_of(
            render(
                RepositoryRecord(**{**record.__dict__, "build_tool": BuildTool.GRADLE}),
                settings,
            ).xml
        )
        assert "./gradlew --no-daemon moderneJar" in gradle
        assert "mvn -B" not in gradle

        auto = script_of(render(record, settings).xml)
        assert "if [ -f gradlew ]; then" in auto
        assert "mvn -B" in auto


class TestFreestyleRendering:
    """Test suite for freestyle job documents."""

    @pytest.fixture
    def freestyle(self, record):
        return RepositoryRecord(**{**record.__dict__, "job_type": JobType.FREESTYLE})

    def test_document_structure(self, freestyle, settings):
        """Test SCM, builders and credential bindings."""
        root = parse_document(render(freestyle, settings).xml)

        assert root.tag == "project"
        remote = root.find("scm/userRemoteConfigs/hudson.plugins.git.UserRemoteConfig")
        assert remote.find("url").text == "https://github.com/openrewrite/rewrite-spring"
        assert remote.find("credentialsId").text == "github"
        assert root.find("scm/branches/hudson.plugins.git.BranchSpec/name").text == "main"
        assert len(root.findall("builders/hudson.tasks.Shell")) == 2

        binding = root.find(
            f"buildWrappers/{BINDING}.SecretBuildWrapper/bindings/"
            f"{BINDING}.UsernamePasswordMultiBinding"
        )
        assert binding.find("credentialsId").text == "artifactory"
        assert binding.find("usernameVariable").text == "MODERNE_PUBLISH_USER"
        assert binding.find("passwordVariable").text == "MODERNE_PUBLISH_PWD"

    def test_no_agent_label(self, freestyle, settings):
        """Test that no assignedNode is emitted without a label."""
        root = parse_document(render(freestyle, settings).xml)
        assert root.find("assignedNode") is None
        assert root.find("canRoam").text == "true"

    def test_agent_label_round_trips(self, freestyle, settings):
        """Test that a pipeline-style label is unwrapped verbatim."""
        labelled = RepositoryRecord(
            **{**freestyle.__dict__, "agent_label": "{ label 'os=windows && !reserved' }"}
        )
        root = parse_document(render(labelled, settings).xml)
        assert root.find("assignedNode").text == "os=windows && !reserved"
        assert root.find("canRoam").text == "false"

    def test_environment_values_are_shell_quoted(self, settings):
        """Test that branch text cannot escape its export line."""
        record = RepositoryRecord(
            repo_url="org/repo",
            branch="x'; rm -rf /",
            job_type=JobType.FREESTYLE,
            publish_credentials_id="pub",
        )
        root = parse_document(render(record, settings).xml)
        command = root.find("builders/hudson.tasks.Shell/command").text
        assert "export MODERNE_BRANCH='x'\"'\"'; rm -rf /'" in command

    def test_workspace_cleanup(self, freestyle, settings):
        """Test pre-build and post-build cleanup when requested."""
        cleaned = RepositoryRecord(**{**freestyle.__dict__, "workspace_cleanup": True})
        root = parse_document(render(cleaned, settings).xml)
        assert root.find("buildWrappers/hudson.plugins.ws__cleanup.PreBuildCleanup") is not None
        assert root.find("publishers/hudson.plugins.ws__cleanup.WsCleanup") is not None

        plain = parse_document(render(freestyle, settings).xml)
        assert plain.find("buildWrappers/hudson.plugins.ws__cleanup.PreBuildCleanup") is None

    def test_extra_string_binding(self, freestyle, settings):
        """Test that token extras become string bindings."""
        extra = RepositoryRecord(
            **{
                **freestyle.__dict__,
                "extra_credentials": (ExtraCredential("sonar", "SONAR_TOKEN"),),
            }
        )
        root = parse_document(render(extra, settings).xml)
        bindings = root.find(f"buildWrappers/{BINDING}.SecretBuildWrapper/bindings")
        assert [b.tag.rsplit(".", 1)[1] for b in bindings] == [
            "UsernamePasswordMultiBinding",
            "StringBinding",
        ]
        assert bindings[1].find("variable").text == "SONAR_TOKEN"

    def test_validate_variant(self, freestyle, settings):
        """Test that the validate template archives instead of publishing."""
        root = parse_document(render(freestyle, settings, JobVariant.VALIDATE).xml)
        assert len(root.findall("builders/hudson.tasks.Shell")) == 1
        assert root.find("publishers/hudson.tasks.ArtifactArchiver/artifacts").text == (
            "**/moderne/*.jar"
        )
        assert root.find(f"buildWrappers/{BINDING}.SecretBuildWrapper") is None


class TestHelpers:
    """Test suite for the quoting helpers."""

    def test_groovy_string_escapes(self):
        assert groovy_string("it's") == "'it\\'s'"
        assert groovy_string("a\\b") == "'a\\\\b'"

    def test_agent_directive(self):
        assert agent_directive(None) == "agent any"
        assert agent_directive("  ") == "agent any"
        assert agent_directive("{ docker 'maven' }") == "agent { docker 'maven' }"

    def test_label_expression(self):
        assert label_expression("{ label 'linux' }") == "linux"
        assert label_expression('{ label "linux" }') == "linux"
        assert label_expression("linux && docker") == "linux && docker"
        assert label_expression("{ docker 'maven' }") == "{ docker 'maven' }"
