"""Issue + pull request listing across the configured backends.

The listing merges open issues from the issue tracker with open pull
requests from the VCS provider; the two are configured independently (a
project can track issues in Linear and host code on GitHub). Work is
sequential: cache lookup, issue fetch, then PR fetch.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from .config import LoomSettings, load_settings
from .env_auth import EnvironmentAuthManager, create_env_auth_manager
from .errors import EXPECTED_KINDS, classify_error
from .git import find_main_worktree_path
from .issue_cache import IssueListCache, cache_key
from .logging import get_logger
from .models import IssueListItem
from .tracker import SPRINT_PROVIDERS, IssueTracker, create_tracker

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100
_EPOCH = datetime.min.replace(tzinfo=timezone.utc)
_COMPACT_OFFSET = re.compile(r"([+-])(\d{2})(\d{2})$")


class PullRequestSource(Protocol):  # pragma: no cover - interface only
    provider_name: str

    def list_pull_requests(self, limit: int, mine: bool = False) -> list[IssueListItem]: ...


def create_pr_source(
    settings: LoomSettings,
    *,
    auth: EnvironmentAuthManager | None = None,
    project_path: Path | None = None,
) -> PullRequestSource:
    """Build the PR source for ``version_control.provider``."""
    if settings.version_control.provider == "bitbucket":
        from .bitbucket import BitBucketPullRequests

        return BitBucketPullRequests.from_settings(
            settings.version_control.bitbucket, auth or create_env_auth_manager(), project_path
        )
    from .gh import GhRunner
    from .github_tracker import GitHubPullRequests

    runner = GhRunner.from_settings(settings.issue_management.github, project_path)
    return GitHubPullRequests(runner=runner)


def normalize_timestamp(text: str) -> str:
    """Rewrite ``Z`` and ``+HHMM`` offsets (Jira) into ``fromisoformat`` form."""
    text = text.strip()
    if text.endswith("Z"):
        return text[:-1] + "+00:00"
    return _COMPACT_OFFSET.sub(r"\1\2:\3", text)


def _updated_key(item: IssueListItem) -> datetime:
    text = normalize_timestamp(item.updated_at)
    if not text:
        return _EPOCH
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return _EPOCH
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class IssuesAggregator:
    def __init__(
        self,
        *,
        settings_loader: Callable[[Path], LoomSettings] = load_settings,
        root_resolver: Callable[[], Any] = find_main_worktree_path,
        cache: IssueListCache | None = None,
        tracker_factory: Callable[..., IssueTracker] = create_tracker,
        pr_source_factory: Callable[..., PullRequestSource] = create_pr_source,
    ):
        self.settings_loader = settings_loader
        self.root_resolver = root_resolver
        self.cache = cache or IssueListCache()
        self.tracker_factory = tracker_factory
        self.pr_source_factory = pr_source_factory
        self.logger = get_logger()

    def resolve_project_root(self, project_path: str | Path | None = None) -> Path:
        if project_path:
            return Path(project_path)
        try:
            return Path(self.root_resolver())
        except Exception as exc:  # noqa: BLE001
            logger.debug("Failed to resolve worktree path, falling back to cwd: %s", exc)
            return Path.cwd()

    def list_issues(
        self,
        project_path: str | Path | None = None,
        limit: int = DEFAULT_LIMIT,
        sprint: str | None = None,
        mine: bool = False,
    ) -> list[IssueListItem]:
        root = self.resolve_project_root(project_path)
        settings = self.settings_loader(root)
        provider = settings.issue_management.provider

        if sprint and provider not in SPRINT_PROVIDERS:
            self.logger.warning(
                f"--sprint is only supported for Jira; ignoring it for provider {provider}"
            )
            sprint = None

        key = cache_key(root, provider, limit, sprint, mine)
        cached = self.cache.read(key)
        if cached is not None:
            logger.debug("Returning cached issues (%d items)", len(cached))
            return cached

        with self.logger.timed_operation("list_issues", provider=provider):
            tracker = self.tracker_factory(settings, project_path=root)
            issues = tracker.list_issues(limit, sprint=sprint, mine=mine)
            results = [_tagged(item, "issue") for item in issues]
            results.extend(self._fetch_pull_requests(settings, root, limit, mine))

        results.sort(key=_updated_key, reverse=True)
        results = results[:limit]
        self.cache.write(key, root, provider, results)
        return results

    def _fetch_pull_requests(
        self, settings: LoomSettings, root: Path, limit: int, mine: bool
    ) -> list[IssueListItem]:
        try:
            source = self.pr_source_factory(settings, project_path=root)
            prs = source.list_pull_requests(limit, mine=mine)
        except Exception as exc:
            info = classify_error(exc)
            if info.kind not in EXPECTED_KINDS:
                raise
            self.logger.warning(
                f"PR fetch failed (non-fatal), continuing with issues only: {info.message}",
                error_kind=info.kind.value,
            )
            return []
        return [_tagged(item, "pr") for item in prs]


def _tagged(item: IssueListItem, item_type: str) -> IssueListItem:
    item.type = "pr" if item_type == "pr" else "issue"
    return item


def list_issues(
    project_path: str | Path | None = None,
    limit: int = DEFAULT_LIMIT,
    sprint: str | None = None,
    mine: bool = False,
) -> list[IssueListItem]:
    """List open issues and PRs using the default collaborators."""
    return IssuesAggregator().list_issues(project_path, limit=limit, sprint=sprint, mine=mine)


__all__ = [
    "IssuesAggregator",
    "PullRequestSource",
    "create_pr_source",
    "list_issues",
    "normalize_timestamp",
    "DEFAULT_LIMIT",
]
