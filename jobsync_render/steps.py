"""
Build steps shared by the pipeline and freestyle templates.

The shell commands are constant strings that read their inputs from
environment variables, so record values are only ever embedded as
environment values (quoted for the target language by the caller).
"""

from dataclasses import dataclass

from jobsync_common.models import (
    BuildTool,
    GlobalSettings,
    JobVariant,
    RepositoryRecord,
)

PUBLISH_USER_VARIABLE = "MODERNE_PUBLISH_USER"
PUBLISH_PASSWORD_VARIABLE = "MODERNE_PUBLISH_PWD"
MAVEN_SETTINGS_VARIABLE = "MAVEN_SETTINGS"

DEFAULT_GRADLE_PLUGIN_VERSION = "latest.release"
DEFAULT_MAVEN_PLUGIN_VERSION = "RELEASE"

ARTIFACT_GLOB = "**/moderne/*.jar"


@dataclass(frozen=True)
class CredentialBinding:
    """
    A credentials-binding declaration.

    kind is "usernamePassword" (username_variable + password_variable set)
    or "string" (variable set).
    """

    kind: str
    credentials_id: str
    variable: str | None = None
    username_variable: str | None = None
    password_variable: str | None = None


def credential_bindings(
    record: RepositoryRecord, variant: JobVariant
) -> list[CredentialBinding]:
    """Publish credentials first (primary jobs only), then extras in input order."""
    bindings = []
    if variant is JobVariant.PRIMARY and record.publish_credentials_id:
        bindings.append(
            CredentialBinding(
                kind="usernamePassword",
                credentials_id=record.publish_credentials_id,
                username_variable=PUBLISH_USER_VARIABLE,
                password_variable=PUBLISH_PASSWORD_VARIABLE,
            )
        )
    for extra in record.extra_credentials:
        if extra.is_username_password:
            bindings.append(
                CredentialBinding(
                    kind="usernamePassword",
                    credentials_id=extra.name,
                    username_variable=extra.username_variable,
                    password_variable=extra.password_variable,
                )
            )
        else:
            bindings.append(
                CredentialBinding(
                    kind="string",
                    credentials_id=extra.name,
                    variable=extra.token_variable,
                )
            )
    return bindings


def environment(
    record: RepositoryRecord, settings: GlobalSettings, variant: JobVariant
) -> list[tuple[str, str]]:
    """Ordered environment variables the build and publish commands read."""
    versions = record.plugin_versions.merged_over(settings.default_plugin_versions)
    env = [
        ("MODERNE_REPO_PATH", record.repo_path),
        ("MODERNE_BRANCH", record.branch.strip()),
        ("MODERNE_GRADLE_PLUGIN_VERSION", versions.gradle or DEFAULT_GRADLE_PLUGIN_VERSION),
        ("MODERNE_MAVEN_PLUGIN_VERSION", versions.maven or DEFAULT_MAVEN_PLUGIN_VERSION),
    ]
    if settings.mirror_url:
        env.append(("MODERNE_MIRROR_URL", settings.mirror_url))
    if variant is JobVariant.PRIMARY and settings.publish_url:
        env.append(("MODERNE_PUBLISH_URL", settings.publish_url.rstrip("/")))
    return env


def _gradle_command(settings: GlobalSettings) -> str:
    command = (
        "./gradlew --no-daemon moderneJar"
        ' -Pmoderne.pluginVersion="$MODERNE_GRADLE_PLUGIN_VERSION"'
    )
    if settings.mirror_url:
        command += ' -Pmoderne.mirrorUrl="$MODERNE_MIRROR_URL"'
    return command


def _maven_command(settings: GlobalSettings) -> str:
    command = "mvn -B"
    if settings.maven_settings_config_file_id:
        command += f' -s "${MAVEN_SETTINGS_VARIABLE}"'
    command += ' "io.moderne:moderne-maven-plugin:$MODERNE_MAVEN_PLUGIN_VERSION:ast"'
    if settings.mirror_url:
        command += ' -Dmoderne.mirrorUrl="$MODERNE_MIRROR_URL"'
    return command


def build_command(record: RepositoryRecord, settings: GlobalSettings) -> str:
    """Shell script that produces the artifacts for the record's build tool."""
    if record.build_tool is BuildTool.GRADLE:
        return _gradle_command(settings)
    if record.build_tool is BuildTool.MAVEN:
        return _maven_command(settings)
    return "\n".join(
        [
            "if [ -f gradlew ]; then",
            f"    {_gradle_command(settings)}",
            "else",
            f"    {_maven_command(settings)}",
            "fi",
        ]
    )


def publish_command() -> str:
    """Shell script that uploads every built artifact to the publish URL."""
    return (
        "find . -path '*/moderne/*.jar' -print0 | xargs -0 -r -I{} "
        f'curl --fail --silent --show-error -u "${PUBLISH_USER_VARIABLE}:${PUBLISH_PASSWORD_VARIABLE}" '
        '-T {} "$MODERNE_PUBLISH_URL/$MODERNE_REPO_PATH/$MODERNE_BRANCH/"'
    )


def label_expression(agent_label: str) -> str:
    """
    Plain label expression for an agent label.

    Labels written in pipeline form ("{ label 'expr' }") are unwrapped;
    anything else is already a label expression.
    """
    text = agent_label.strip()
    if text.startswith("{") and text.endswith("}"):
        inner = text[1:-1].strip()
        if inner.startswith("label"):
            inner = inner[len("label"):].strip()
            if len(inner) >= 2 and inner[0] == inner[-1] and inner[0] in "'\"":
                return inner[1:-1]
    return text
