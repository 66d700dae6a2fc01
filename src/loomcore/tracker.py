"""Common issue-tracker contract.

Each backend (GitHub, Linear, Jira, BitBucket) ships one adapter class that
satisfies :class:`IssueTracker`. ``create_tracker`` picks exactly one adapter
per invocation from ``TRACKER_REGISTRY``; callers hold that single reference
instead of switching on provider names at each call site.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from pathlib import Path
from typing import TYPE_CHECKING, Literal, Protocol, Union

from .errors import ConfigurationError
from .models import (
    CommentResult,
    CommentSummary,
    CreateIssueResult,
    IssueListItem,
    IssueResult,
    IssueState,
)

if TYPE_CHECKING:  # pragma: no cover
    from .bitbucket import BitBucketTracker
    from .config import LoomSettings
    from .env_auth import EnvironmentAuthManager
    from .github_tracker import GitHubTracker
    from .jira_tracker import JiraTracker
    from .linear_tracker import LinearTracker

InputKind = Literal["issue", "pr"]

# Providers whose list_issues honours a sprint filter (mirrors ``supports_sprint``).
SPRINT_PROVIDERS = frozenset({"jira"})


class IssueTracker(Protocol):  # pragma: no cover - interface only
    provider_name: str
    supports_pull_requests: bool
    uses_project_keys: bool
    supports_sprint: bool

    def get_issue(self, identifier: str, include_comments: bool = True) -> IssueResult: ...

    def get_comment(self, comment_id: str, issue_id: str) -> CommentSummary: ...

    def create_comment(
        self, issue_id: str, body: str, kind: InputKind = "issue"
    ) -> CommentResult: ...

    def update_comment(self, comment_id: str, issue_id: str, body: str) -> CommentResult: ...

    def create_issue(
        self,
        title: str,
        body: str,
        labels: Iterable[str] | None = None,
        team_key: str | None = None,
    ) -> CreateIssueResult: ...

    def create_child_issue(
        self,
        parent_id: str,
        title: str,
        body: str,
        labels: Iterable[str] | None = None,
        team_key: str | None = None,
    ) -> CreateIssueResult: ...

    def issue_exists(self, identifier: str) -> str | None: ...

    def detect_input_type(self, number: int) -> InputKind | None: ...

    def list_issues(
        self, limit: int, sprint: str | None = None, mine: bool = False
    ) -> list[IssueListItem]: ...


TrackerAdapter = Union["GitHubTracker", "LinearTracker", "JiraTracker", "BitBucketTracker"]

TrackerBuilder = Callable[..., "TrackerAdapter"]


def normalize_state(raw: str | None, closed_states: Iterable[str]) -> IssueState:
    """Collapse a backend status name onto ``open``/``closed``.

    Matching is case-insensitive against ``closed_states``; anything not in
    the table is open.
    """
    if not raw:
        return "open"
    closed = {s.strip().lower() for s in closed_states}
    return "closed" if raw.strip().lower() in closed else "open"


def _build_github(
    settings: LoomSettings, auth: EnvironmentAuthManager, project_path: Path | None
) -> TrackerAdapter:
    from .gh import GhRunner
    from .github_tracker import GitHubTracker

    runner = GhRunner.from_settings(settings.issue_management.github, project_path)
    return GitHubTracker(runner=runner)


def _build_linear(
    settings: LoomSettings, auth: EnvironmentAuthManager, project_path: Path | None
) -> TrackerAdapter:
    from .linear_tracker import LinearTracker

    return LinearTracker.from_settings(settings.issue_management.linear, auth)


def _build_jira(
    settings: LoomSettings, auth: EnvironmentAuthManager, project_path: Path | None
) -> TrackerAdapter:
    from .jira_tracker import JiraTracker

    return JiraTracker.from_settings(settings.issue_management.jira, auth)


def _build_bitbucket(
    settings: LoomSettings, auth: EnvironmentAuthManager, project_path: Path | None
) -> TrackerAdapter:
    from .bitbucket import BitBucketTracker

    return BitBucketTracker.from_settings(settings.version_control.bitbucket, auth, project_path)


TRACKER_REGISTRY: dict[str, TrackerBuilder] = {
    "github": _build_github,
    "linear": _build_linear,
    "jira": _build_jira,
    "bitbucket": _build_bitbucket,
}


def create_tracker(
    settings: LoomSettings,
    *,
    auth: EnvironmentAuthManager | None = None,
    project_path: Path | None = None,
) -> TrackerAdapter:
    from .env_auth import create_env_auth_manager

    provider = settings.issue_management.provider
    builder = TRACKER_REGISTRY.get(provider)
    if builder is None:
        raise ConfigurationError(f"Unsupported issue tracker provider: {provider}")
    return builder(settings, auth or create_env_auth_manager(), project_path)


__all__ = [
    "InputKind",
    "SPRINT_PROVIDERS",
    "IssueTracker",
    "TrackerAdapter",
    "TRACKER_REGISTRY",
    "normalize_state",
    "create_tracker",
]
