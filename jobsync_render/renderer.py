"""
Render RepositoryRecords into Jenkins config.xml documents.

Documents are assembled with ElementTree, so every value taken from a
record is escaped by the serializer. Rendering is deterministic: equal
inputs produce byte-identical output.
"""

import shlex
import xml.etree.ElementTree as ET

from jobsync_common.errors import RenderError
from jobsync_common.models import (
    GlobalSettings,
    JobDefinition,
    JobType,
    JobVariant,
    RepositoryRecord,
)

from .pipeline import pipeline_script
from .steps import (
    ARTIFACT_GLOB,
    MAVEN_SETTINGS_VARIABLE,
    CredentialBinding,
    build_command,
    credential_bindings,
    environment,
    label_expression,
    publish_command,
)

XML_DECLARATION = "<?xml version='1.1' encoding='UTF-8'?>"

DESCRIPTION = (
    "Managed by jobsync. Changes made on the controller are overwritten "
    "on the next synchronization."
)
VALIDATE_DESCRIPTION = (
    "Validation build managed by jobsync. Builds the repository without "
    "publishing artifacts."
)

BINDING_PACKAGE = "org.jenkinsci.plugins.credentialsbinding.impl"


def _sub(parent: ET.Element, tag: str, text: str | None = None, **attrib) -> ET.Element:
    element = ET.SubElement(parent, tag, attrib)
    if text is not None:
        element.text = text
    return element


def _common_head(root: ET.Element, variant: JobVariant) -> None:
    _sub(root, "actions")
    description = DESCRIPTION if variant is JobVariant.PRIMARY else VALIDATE_DESCRIPTION
    _sub(root, "description", description)
    _sub(root, "keepDependencies", "false")
    _sub(root, "properties")


def _render_pipeline(
    record: RepositoryRecord, settings: GlobalSettings, variant: JobVariant
) -> ET.Element:
    root = ET.Element("flow-definition", {"plugin": "workflow-job"})
    _common_head(root, variant)
    definition = _sub(
        root,
        "definition",
        **{
            "class": "org.jenkinsci.plugins.workflow.cps.CpsFlowDefinition",
            "plugin": "workflow-cps",
        },
    )
    _sub(definition, "script", pipeline_script(record, settings, variant))
    _sub(definition, "sandbox", "true")
    _sub(root, "triggers")
    _sub(root, "disabled", "false")
    return root


def _scm(root: ET.Element, record: RepositoryRecord, settings: GlobalSettings) -> None:
    scm = _sub(root, "scm", **{"class": "hudson.plugins.git.GitSCM", "plugin": "git"})
    _sub(scm, "configVersion", "2")
    remotes = _sub(scm, "userRemoteConfigs")
    remote = _sub(remotes, "hudson.plugins.git.UserRemoteConfig")
    _sub(remote, "url", record.clone_url(settings))
    if record.git_credentials_id:
        _sub(remote, "credentialsId", record.git_credentials_id)
    branches = _sub(scm, "branches")
    branch = _sub(branches, "hudson.plugins.git.BranchSpec")
    _sub(branch, "name", record.branch.strip())
    _sub(scm, "doGenerateSubmoduleConfigurations", "false")
    _sub(scm, "submoduleCfg", **{"class": "empty-list"})
    _sub(scm, "extensions")


def _binding_element(parent: ET.Element, binding: CredentialBinding) -> None:
    if binding.kind == "usernamePassword":
        element = _sub(parent, f"{BINDING_PACKAGE}.UsernamePasswordMultiBinding")
        _sub(element, "credentialsId", binding.credentials_id)
        _sub(element, "usernameVariable", binding.username_variable)
        _sub(element, "passwordVariable", binding.password_variable)
    else:
        element = _sub(parent, f"{BINDING_PACKAGE}.StringBinding")
        _sub(element, "credentialsId", binding.credentials_id)
        _sub(element, "variable", binding.variable)


def _shell(builders: ET.Element, exports: str, script: str) -> None:
    shell = _sub(builders, "hudson.tasks.Shell")
    _sub(shell, "command", f"{exports}\n{script}\n")


def _render_freestyle(
    record: RepositoryRecord, settings: GlobalSettings, variant: JobVariant
) -> ET.Element:
    root = ET.Element("project")
    _common_head(root, variant)
    _scm(root, record, settings)
    if record.agent_label and record.agent_label.strip():
        _sub(root, "assignedNode", label_expression(record.agent_label))
        _sub(root, "canRoam", "false")
    else:
        _sub(root, "canRoam", "true")
    _sub(root, "disabled", "false")
    _sub(root, "blockBuildWhenDownstreamBuilding", "false")
    _sub(root, "blockBuildWhenUpstreamBuilding", "false")
    _sub(root, "triggers")
    _sub(root, "concurrentBuild", "false")

    exports = "\n".join(
        f"export {name}={shlex.quote(value)}"
        for name, value in environment(record, settings, variant)
    )
    builders = _sub(root, "builders")
    _shell(builders, exports, build_command(record, settings))
    if variant is JobVariant.PRIMARY:
        _shell(builders, exports, publish_command())

    publishers = _sub(root, "publishers")
    if variant is JobVariant.VALIDATE:
        archiver = _sub(publishers, "hudson.tasks.ArtifactArchiver")
        _sub(archiver, "artifacts", ARTIFACT_GLOB)
        _sub(archiver, "allowEmptyArchive", "false")
        _sub(archiver, "onlyIfSuccessful", "false")
        _sub(archiver, "fingerprint", "false")
        _sub(archiver, "defaultExcludes", "true")
        _sub(archiver, "caseSensitive", "true")
    if record.workspace_cleanup:
        cleanup = _sub(publishers, "hudson.plugins.ws__cleanup.WsCleanup", plugin="ws-cleanup")
        _sub(cleanup, "patterns", **{"class": "empty-list"})
        _sub(cleanup, "deleteDirs", "false")
        _sub(cleanup, "skipWhenFailed", "false")
        _sub(cleanup, "cleanWhenSuccess", "true")
        _sub(cleanup, "cleanWhenUnstable", "true")
        _sub(cleanup, "cleanWhenFailure", "true")
        _sub(cleanup, "cleanWhenNotBuilt", "true")
        _sub(cleanup, "cleanWhenAborted", "true")
        _sub(cleanup, "notFailBuild", "false")
        _sub(cleanup, "cleanupMatrixParent", "false")
        _sub(cleanup, "externalDelete")
        _sub(cleanup, "disableDeferredWipeout", "false")

    wrappers = _sub(root, "buildWrappers")
    if record.workspace_cleanup:
        pre_build = _sub(
            wrappers, "hudson.plugins.ws__cleanup.PreBuildCleanup", plugin="ws-cleanup"
        )
        _sub(pre_build, "deleteDirs", "false")
        _sub(pre_build, "cleanupParameter")
        _sub(pre_build, "externalDelete")
        _sub(pre_build, "disableDeferredWipeout", "false")
    bindings = credential_bindings(record, variant)
    if bindings:
        secret_wrapper = _sub(
            wrappers, f"{BINDING_PACKAGE}.SecretBuildWrapper", plugin="credentials-binding"
        )
        binding_list = _sub(secret_wrapper, "bindings")
        for binding in bindings:
            _binding_element(binding_list, binding)
    if settings.maven_settings_config_file_id:
        config_wrapper = _sub(
            wrappers,
            "org.jenkinsci.plugins.configfiles.buildwrapper.ConfigFileBuildWrapper",
            plugin="config-file-provider",
        )
        managed_files = _sub(config_wrapper, "managedFiles")
        managed = _sub(
            managed_files, "org.jenkinsci.plugins.configfiles.buildwrapper.ManagedFile"
        )
        _sub(managed, "fileId", settings.maven_settings_config_file_id)
        _sub(managed, "variable", MAVEN_SETTINGS_VARIABLE)
    return root


# closed dispatch on job type
_TEMPLATES = {
    JobType.PIPELINE: _render_pipeline,
    JobType.FREESTYLE: _render_freestyle,
}


def to_xml(root: ET.Element) -> str:
    """Serialize a document the way Jenkins stores it (1.1 declaration, indented)."""
    ET.indent(root, space="  ")
    return f"{XML_DECLARATION}\n{ET.tostring(root, encoding='unicode')}\n"


def render(
    record: RepositoryRecord,
    settings: GlobalSettings,
    variant: JobVariant = JobVariant.PRIMARY,
) -> JobDefinition:
    """
    Render the job definition for one record.

    Args:
        record: Desired state of the job
        settings: Run-wide settings (URLs, plugin defaults, folders)
        variant: PRIMARY for the ingest job, VALIDATE for its companion

    Returns:
        JobDefinition whose xml is a complete config.xml document

    Raises:
        RenderError: If the primary template has no publish URL or credentials
    """
    if variant is JobVariant.PRIMARY:
        if not settings.publish_url:
            raise RenderError("A publish URL is required to render ingest jobs")
        if not record.publish_credentials_id:
            raise RenderError(f"Publish credentials id is required for {record.repo_url}")
    root = _TEMPLATES[record.job_type](record, settings, variant)
    return JobDefinition(
        path=record.job_path(settings, variant),
        variant=variant,
        job_type=record.job_type,
        xml=to_xml(root),
    )
