"""Declarative pipeline script for pipeline jobs."""

from jobsync_common.models import GlobalSettings, JobVariant, RepositoryRecord

from .steps import (
    ARTIFACT_GLOB,
    MAVEN_SETTINGS_VARIABLE,
    CredentialBinding,
    build_command,
    credential_bindings,
    environment,
    publish_command,
)

INDENT = "    "


def groovy_string(value: str) -> str:
    """Single-quoted Groovy string literal (no interpolation)."""
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def agent_directive(agent_label: str | None) -> str:
    """
    The pipeline agent directive.

    A label written as a directive body ("{ label '...' }") is used as
    authored; a bare label expression is quoted into one.
    """
    if not agent_label or not agent_label.strip():
        return "agent any"
    text = agent_label.strip()
    if text.startswith("{"):
        return f"agent {text}"
    return f"agent {{ label {groovy_string(text)} }}"


def _binding_call(binding: CredentialBinding) -> str:
    if binding.kind == "usernamePassword":
        return (
            f"usernamePassword(credentialsId: {groovy_string(binding.credentials_id)}, "
            f"usernameVariable: {groovy_string(binding.username_variable)}, "
            f"passwordVariable: {groovy_string(binding.password_variable)})"
        )
    return (
        f"string(credentialsId: {groovy_string(binding.credentials_id)}, "
        f"variable: {groovy_string(binding.variable)})"
    )


def _sh(script: str) -> list[str]:
    if "\n" not in script:
        return [f"sh {groovy_string(script)}"]
    escaped = script.replace("\\", "\\\\").replace("'''", "\\'\\'\\'")
    return ["sh '''"] + escaped.split("\n") + ["'''"]


def _wrap(header: str | None, body: list[str]) -> list[str]:
    if header is None:
        return body
    return [f"{header} {{"] + [INDENT + line for line in body] + ["}"]


def _block(name: str, body: list[str]) -> list[str]:
    return [f"{name} {{"] + [INDENT + line for line in body] + ["}"]


def _checkout(record: RepositoryRecord, settings: GlobalSettings) -> str:
    remote = [f"url: {groovy_string(record.clone_url(settings))}"]
    if record.git_credentials_id:
        remote.insert(0, f"credentialsId: {groovy_string(record.git_credentials_id)}")
    return (
        f"checkout scmGit(branches: [[name: {groovy_string(record.branch.strip())}]], "
        f"userRemoteConfigs: [[{', '.join(remote)}]])"
    )


def pipeline_script(
    record: RepositoryRecord, settings: GlobalSettings, variant: JobVariant
) -> str:
    """Render the full declarative pipeline for one record and variant."""
    bindings = credential_bindings(record, variant)
    credentials_header = None
    if bindings:
        calls = ", ".join(_binding_call(b) for b in bindings)
        credentials_header = f"withCredentials([{calls}])"

    config_header = None
    if settings.maven_settings_config_file_id:
        config_header = (
            "configFileProvider([configFile(fileId: "
            f"{groovy_string(settings.maven_settings_config_file_id)}, "
            f"variable: {groovy_string(MAVEN_SETTINGS_VARIABLE)})])"
        )

    build_steps = _wrap(
        credentials_header, _wrap(config_header, _sh(build_command(record, settings)))
    )
    stages = [
        _block("stage('Checkout')", _block("steps", [_checkout(record, settings)])),
        _block("stage('Build')", _block("steps", build_steps)),
    ]
    if variant is JobVariant.PRIMARY:
        publish_steps = _wrap(credentials_header, _sh(publish_command()))
        stages.append(_block("stage('Publish')", _block("steps", publish_steps)))
    else:
        archive = (
            f"archiveArtifacts artifacts: {groovy_string(ARTIFACT_GLOB)}, "
            "allowEmptyArchive: false"
        )
        stages.append(_block("stage('Archive')", _block("steps", [archive])))

    env_lines = [
        f"{name} = {groovy_string(value)}"
        for name, value in environment(record, settings, variant)
    ]
    body = [agent_directive(record.agent_label)]
    body += _block("environment", env_lines)
    body += _block("stages", [line for stage in stages for line in stage])
    if record.workspace_cleanup:
        body += _block("post", _block("always", ["cleanWs()"]))
    return "\n".join(_block("pipeline", body)) + "\n"
