from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, cast

import yaml

from .errors import ConfigurationError

SETTINGS_DIR = ".loom"
SETTINGS_FILE = "settings.yaml"

ISSUE_PROVIDERS = ("github", "linear", "jira", "bitbucket")
VCS_PROVIDERS = ("github", "bitbucket")


@dataclass
class GitHubSettings:
    remote: str | None = None
    repo: str | None = None  # owner/repo; gh falls back to the cwd remote


@dataclass
class LinearSettings:
    team_id: str | None = None
    api_token: str | None = None


@dataclass
class JiraSettings:
    host: str | None = None
    username: str | None = None
    api_token: str | None = None
    project_key: str | None = None
    done_statuses: list[str] = field(default_factory=lambda: ["Done"])
    default_issue_type: str = "Task"
    default_subtask_type: str = "Subtask"


@dataclass
class IssueManagementSettings:
    provider: str = "github"
    github: GitHubSettings = field(default_factory=GitHubSettings)
    linear: LinearSettings = field(default_factory=LinearSettings)
    jira: JiraSettings = field(default_factory=JiraSettings)


@dataclass
class BitBucketSettings:
    username: str | None = None
    api_token: str | None = None
    workspace: str | None = None
    repo_slug: str | None = None
    done_statuses: list[str] = field(default_factory=list)


@dataclass
class VersionControlSettings:
    provider: str = "github"
    bitbucket: BitBucketSettings = field(default_factory=BitBucketSettings)


@dataclass
class LoomSettings:
    issue_management: IssueManagementSettings = field(default_factory=IssueManagementSettings)
    version_control: VersionControlSettings = field(default_factory=VersionControlSettings)
    base_port: int = 3000
    source_file: Path | None = None


def _resolve_env_var(value: Any) -> Any:
    """Resolve ``$NAME`` strings from the environment (unchanged when unset)."""
    if isinstance(value, str) and value.startswith('$') and len(value) > 1:
        return os.getenv(value[1:], value)
    return value


def _section(raw: dict[str, Any], *keys: str) -> dict[str, Any]:
    for key in keys:
        value = raw.get(key)
        if isinstance(value, dict):
            return cast(dict[str, Any], value)
    return {}


def _opt_str(section: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = _resolve_env_var(section.get(key))
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def _base_port(raw: dict[str, Any]) -> int:
    value = _resolve_env_var(raw.get('basePort', raw.get('base_port', 3000)))
    if isinstance(value, bool):
        raise ConfigurationError(f'basePort must be an integer, got {value!r}')
    try:
        port = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f'basePort must be an integer, got {value!r}') from exc
    if not 0 < port < 65535:
        raise ConfigurationError(f'basePort must be between 1 and 65534, got {port}')
    return port


def _provider(value: Any, allowed: tuple[str, ...], what: str) -> str:
    if value is None or value == "":
        return "github"
    name = str(value).strip().lower()
    if name not in allowed:
        raise ConfigurationError(
            f"Unsupported {what} provider: {value} (expected one of {', '.join(allowed)})"
        )
    return name


def parse_settings(raw: dict[str, Any], source_file: Path | None = None) -> LoomSettings:
    """Build ``LoomSettings`` from a decoded mapping (camelCase or snake_case keys)."""
    im = _section(raw, 'issueManagement', 'issue_management')
    vc = _section(raw, 'versionControl', 'version_control')
    gh = _section(im, 'github')
    lin = _section(im, 'linear')
    jira = _section(im, 'jira')
    bb = _section(vc, 'bitbucket')

    done_statuses = jira.get('doneStatuses', jira.get('done_statuses')) or ['Done']

    return LoomSettings(
        issue_management=IssueManagementSettings(
            provider=_provider(im.get('provider'), ISSUE_PROVIDERS, 'issue tracker'),
            github=GitHubSettings(remote=_opt_str(gh, 'remote'), repo=_opt_str(gh, 'repo')),
            linear=LinearSettings(
                team_id=_opt_str(lin, 'teamId', 'team_id'),
                api_token=_opt_str(lin, 'apiToken', 'api_token'),
            ),
            jira=JiraSettings(
                host=_opt_str(jira, 'host'),
                username=_opt_str(jira, 'username'),
                api_token=_opt_str(jira, 'apiToken', 'api_token'),
                project_key=_opt_str(jira, 'projectKey', 'project_key'),
                done_statuses=[str(s) for s in done_statuses],
                default_issue_type=_opt_str(jira, 'defaultIssueType', 'default_issue_type')
                or 'Task',
                default_subtask_type=_opt_str(jira, 'defaultSubtaskType', 'default_subtask_type')
                or 'Subtask',
            ),
        ),
        version_control=VersionControlSettings(
            provider=_provider(vc.get('provider'), VCS_PROVIDERS, 'version control'),
            bitbucket=BitBucketSettings(
                username=_opt_str(bb, 'username'),
                api_token=_opt_str(bb, 'apiToken', 'api_token'),
                workspace=_opt_str(bb, 'workspace'),
                repo_slug=_opt_str(bb, 'repoSlug', 'repo_slug'),
                done_statuses=[
                    str(s) for s in bb.get('doneStatuses', bb.get('done_statuses')) or []
                ],
            ),
        ),
        base_port=_base_port(raw),
        source_file=source_file,
    )


def settings_path(project_path: str | Path | None = None) -> Path:
    root = Path(project_path) if project_path else Path.cwd()
    return root / SETTINGS_DIR / SETTINGS_FILE


def load_settings(project_path: str | Path | None = None) -> LoomSettings:
    """Load ``<project>/.loom/settings.yaml``; a missing file yields defaults."""
    p = settings_path(project_path)
    if not p.exists():
        return LoomSettings()
    try:
        raw = yaml.safe_load(p.read_text(encoding='utf-8')) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f'Invalid settings file {p}: {exc}') from exc
    if not isinstance(raw, dict):
        raise ConfigurationError(f'Settings file {p} must contain a mapping')
    return parse_settings(cast(dict[str, Any], raw), source_file=p)


__all__ = [
    "GitHubSettings",
    "LinearSettings",
    "JiraSettings",
    "IssueManagementSettings",
    "BitBucketSettings",
    "VersionControlSettings",
    "LoomSettings",
    "parse_settings",
    "settings_path",
    "load_settings",
]
