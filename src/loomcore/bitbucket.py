"""BitBucket Cloud (REST API 2.0) client, issue tracker and PR source.

Workspace and repository slug come from settings when configured, otherwise
from the first ``bitbucket.org`` git remote of the project.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import requests

from . import git
from .config import BitBucketSettings
from .env_auth import EnvironmentAuthManager, create_env_auth_manager
from .errors import ErrorKind, NotFoundError, ProviderError, ValidationError
from .logging import get_logger
from .models import (
    CommentResult,
    CommentSummary,
    CreateIssueResult,
    FlexibleAuthor,
    IssueListItem,
    IssueResult,
)
from .rest_client import JsonApiClient
from .tracker import InputKind, normalize_state

BITBUCKET_API_URL = "https://api.bitbucket.org/2.0"
MAX_PAGELEN = 50
BUILTIN_CLOSED_STATES = ("resolved", "closed", "invalid", "duplicate", "wontfix")
OPEN_ISSUE_QUERY = '(state = "new" OR state = "open" OR state = "on hold" OR state = "submitted")'

_REMOTE_PATTERN = re.compile(r"bitbucket\.org[/:]([^/]+)/([^/]+?)(?:\.git)?/?$")


def parse_remote(url: str) -> tuple[str, str] | None:
    """Return ``(workspace, repo_slug)`` for a bitbucket.org remote URL."""
    match = _REMOTE_PATTERN.search(url.strip())
    if match is None:
        return None
    return match.group(1), match.group(2)


def normalize_author(raw: Any) -> FlexibleAuthor | None:
    if not isinstance(raw, dict):
        return None
    nickname = raw.get("nickname")
    author_id = raw.get("uuid") or raw.get("account_id") or nickname
    if not author_id:
        return None
    links = raw.get("links") or {}
    return FlexibleAuthor(
        id=str(author_id),
        display_name=str(raw.get("display_name") or nickname or author_id),
        login=nickname or None,
        avatar_url=(links.get("avatar") or {}).get("href"),
        url=(links.get("html") or {}).get("href"),
    )


def _html_url(raw: dict[str, Any]) -> str:
    return str(((raw.get("links") or {}).get("html") or {}).get("href", ""))


class BitBucketClient:
    """Repository-scoped wrapper over :class:`JsonApiClient`."""

    def __init__(
        self,
        *,
        username: str,
        api_token: str,
        workspace: str,
        repo_slug: str,
        session: requests.Session | None = None,
    ):
        self.workspace = workspace
        self.repo_slug = repo_slug
        self.api = JsonApiClient(
            base_url=BITBUCKET_API_URL,
            provider="bitbucket",
            auth=(username, api_token),
            session=session,
        )
        self._current_user: dict[str, Any] | None = None

    @classmethod
    def from_settings(
        cls,
        settings: BitBucketSettings,
        auth: EnvironmentAuthManager | None = None,
        project_path: str | Path | None = None,
        *,
        session: requests.Session | None = None,
    ) -> BitBucketClient:
        auth = auth or create_env_auth_manager()
        username = auth.get_bitbucket_username(settings.username)
        token = auth.get_bitbucket_token(settings.api_token)
        if not username or not token:
            raise ProviderError(
                "BitBucket missing credentials: configure versionControl.bitbucket "
                "username/apiToken or BITBUCKET_USERNAME/BITBUCKET_API_TOKEN",
                kind=ErrorKind.MISSING_CREDENTIALS,
                provider="bitbucket",
            )
        workspace, repo_slug = settings.workspace, settings.repo_slug
        if not workspace or not repo_slug:
            workspace, repo_slug = cls._repo_from_remotes(project_path)
        return cls(
            username=username,
            api_token=token,
            workspace=workspace,
            repo_slug=repo_slug,
            session=session,
        )

    @staticmethod
    def _repo_from_remotes(project_path: str | Path | None) -> tuple[str, str]:
        try:
            urls = git.remote_urls(project_path)
        except ProviderError as exc:
            raise ProviderError(
                f"No git remotes available to infer the BitBucket repository: {exc}",
                kind=ErrorKind.NO_REMOTES,
                provider="bitbucket",
            ) from exc
        for url in urls:
            parsed = parse_remote(url)
            if parsed:
                return parsed
        raise ProviderError(
            "No git remotes point to bitbucket.org; configure "
            "versionControl.bitbucket.workspace and repoSlug",
            kind=ErrorKind.NO_REMOTES,
            provider="bitbucket",
        )

    def repo_path(self, path: str = "") -> str:
        base = f"/repositories/{self.workspace}/{self.repo_slug}"
        return f"{base}/{path.lstrip('/')}" if path else base

    def paginate(self, path: str, params: dict[str, Any], limit: int) -> list[dict[str, Any]]:
        """Collect up to ``limit`` entries following ``next`` links."""
        out: list[dict[str, Any]] = []
        page_params: dict[str, Any] | None = {**params, "pagelen": min(limit, MAX_PAGELEN)}
        url: str | None = self.repo_path(path)
        while url and len(out) < limit:
            data = self.api.get(url, params=page_params)
            if not isinstance(data, dict):
                break
            out.extend(v for v in data.get("values") or [] if isinstance(v, dict))
            url = data.get("next")
            # ``next`` already embeds the query string.
            page_params = None
        return out[:limit]

    def current_user(self) -> dict[str, Any]:
        if self._current_user is None:
            data = self.api.get("/user")
            self._current_user = data if isinstance(data, dict) else {}
        return self._current_user


class BitBucketTracker:
    provider_name = "bitbucket"
    supports_pull_requests = True
    uses_project_keys = False
    supports_sprint = False

    def __init__(self, client: BitBucketClient, *, done_statuses: Iterable[str] = ()):
        self.client = client
        self.closed_states = [*BUILTIN_CLOSED_STATES, *done_statuses]
        self.logger = get_logger()

    @classmethod
    def from_settings(
        cls,
        settings: BitBucketSettings,
        auth: EnvironmentAuthManager | None = None,
        project_path: str | Path | None = None,
        *,
        session: requests.Session | None = None,
    ) -> BitBucketTracker:
        client = BitBucketClient.from_settings(settings, auth, project_path, session=session)
        return cls(client, done_statuses=settings.done_statuses)

    @staticmethod
    def _number(value: str | int) -> int:
        text = str(value).strip().lstrip("#")
        if not text.isdigit():
            raise ValidationError(
                f"Invalid BitBucket issue id: {value}. BitBucket issue IDs must be numeric."
            )
        return int(text)

    def get_issue(self, identifier: str, include_comments: bool = True) -> IssueResult:
        number = self._number(identifier)
        raw = self.client.api.get(self.client.repo_path(f"issues/{number}"))
        if not isinstance(raw, dict):
            raise ProviderError(
                f"BitBucket returned no data for issue {number}", provider="bitbucket"
            )
        assignee = normalize_author(raw.get("assignee"))
        result = IssueResult(
            id=str(raw.get("id", number)),
            title=str(raw.get("title", "")),
            body=str((raw.get("content") or {}).get("raw") or ""),
            state=normalize_state(raw.get("state"), self.closed_states),
            url=_html_url(raw),
            provider=self.provider_name,
            author=normalize_author(raw.get("reporter")),
            assignees=[assignee] if assignee else [],
            extras={
                k: raw[k] for k in ("kind", "priority", "state") if raw.get(k) is not None
            },
        )
        if include_comments:
            result.comments = [self._comment(c) for c in self._comments(number)]
        return result

    def _comments(self, number: int) -> list[dict[str, Any]]:
        return self.client.paginate(f"issues/{number}/comments", {}, limit=1000)

    @staticmethod
    def _comment(raw: dict[str, Any]) -> CommentSummary:
        url = _html_url(raw)
        return CommentSummary(
            id=str(raw.get("id", "")),
            body=str((raw.get("content") or {}).get("raw") or ""),
            author=normalize_author(raw.get("user")),
            created_at=str(raw.get("created_on", "")),
            updated_at=raw.get("updated_on") or None,
            extras={"url": url} if url else {},
        )

    def get_comment(self, comment_id: str, issue_id: str) -> CommentSummary:
        number = self._number(issue_id)
        raw = self.client.api.get(self.client.repo_path(f"issues/{number}/comments/{comment_id}"))
        if not isinstance(raw, dict):
            raise NotFoundError(f"Comment {comment_id} not found on BitBucket issue {number}")
        return self._comment(raw)

    def issue_exists(self, identifier: str) -> str | None:
        text = str(identifier).strip().lstrip("#")
        if not text.isdigit():
            return None
        return text if self._exists(f"issues/{text}") else None

    def is_pull_request(self, number: int) -> bool:
        return self._exists(f"pullrequests/{number}")

    def detect_input_type(self, number: int) -> InputKind | None:
        if self.is_pull_request(number):
            return "pr"
        if self._exists(f"issues/{number}"):
            return "issue"
        return None

    def _exists(self, path: str) -> bool:
        try:
            self.client.api.get(self.client.repo_path(path))
        except ProviderError as exc:
            if exc.kind is ErrorKind.NOT_FOUND:
                return False
            raise
        return True

    def list_issues(
        self, limit: int, sprint: str | None = None, mine: bool = False
    ) -> list[IssueListItem]:
        query = OPEN_ISSUE_QUERY
        if mine:
            uuid = self.client.current_user().get("uuid")
            if uuid:
                query += f' AND assignee.uuid = "{uuid}"'
        values = self.client.paginate("issues", {"q": query, "sort": "-updated_on"}, limit)
        return [
            IssueListItem(
                id=str(v.get("id", "")),
                title=str(v.get("title", "")),
                updated_at=str(v.get("updated_on", "")),
                url=_html_url(v),
                state=str(v.get("state", "")),
            )
            for v in values
        ]

    def create_comment(self, issue_id: str, body: str, kind: InputKind = "issue") -> CommentResult:
        number = self._number(issue_id)
        collection = "pullrequests" if kind == "pr" else "issues"
        raw = self.client.api.post(
            self.client.repo_path(f"{collection}/{number}/comments"), {"content": {"raw": body}}
        )
        if not isinstance(raw, dict):
            raise ProviderError("BitBucket returned no comment payload", provider="bitbucket")
        return CommentResult(
            id=str(raw.get("id")), url=_html_url(raw), created_at=raw.get("created_on")
        )

    def update_comment(self, comment_id: str, issue_id: str, body: str) -> CommentResult:
        number = self._number(issue_id)
        raw = self.client.api.put(
            self.client.repo_path(f"issues/{number}/comments/{comment_id}"),
            {"content": {"raw": body}},
        )
        raw = raw if isinstance(raw, dict) else {}
        return CommentResult(
            id=str(raw.get("id", comment_id)), url=_html_url(raw), updated_at=raw.get("updated_on")
        )

    def create_issue(
        self,
        title: str,
        body: str,
        labels: Iterable[str] | None = None,
        team_key: str | None = None,
    ) -> CreateIssueResult:
        if labels:
            self.logger.debug("BitBucket issues have no labels; ignoring", labels=list(labels))
        raw = self.client.api.post(
            self.client.repo_path("issues"), {"title": title, "content": {"raw": body}}
        )
        if not isinstance(raw, dict) or raw.get("id") is None:
            raise ProviderError("BitBucket issue creation returned no id", provider="bitbucket")
        number = int(raw["id"])
        self.logger.log_operation("issue_created", provider="bitbucket", issue_number=number)
        return CreateIssueResult(id=str(number), url=_html_url(raw), number=number)

    def create_child_issue(
        self,
        parent_id: str,
        title: str,
        body: str,
        labels: Iterable[str] | None = None,
        team_key: str | None = None,
    ) -> CreateIssueResult:
        parent = self._number(parent_id)
        # No native hierarchy: the link lives in the child's body.
        linked_body = f"Parent issue: #{parent}\n\n{body}" if body else f"Parent issue: #{parent}"
        return self.create_issue(title, linked_body, labels)


class BitBucketPullRequests:
    provider_name = "bitbucket"

    def __init__(self, client: BitBucketClient):
        self.client = client

    @classmethod
    def from_settings(
        cls,
        settings: BitBucketSettings,
        auth: EnvironmentAuthManager | None = None,
        project_path: str | Path | None = None,
        *,
        session: requests.Session | None = None,
    ) -> BitBucketPullRequests:
        return cls(BitBucketClient.from_settings(settings, auth, project_path, session=session))

    def list_pull_requests(self, limit: int, mine: bool = False) -> list[IssueListItem]:
        params: dict[str, Any] = {"state": "OPEN"}
        if mine:
            uuid = self.client.current_user().get("uuid")
            if uuid:
                params["q"] = f'author.uuid = "{uuid}"'
        values = self.client.paginate("pullrequests", params, limit)
        return [
            IssueListItem(
                id=str(v.get("id", "")),
                title=str(v.get("title", "")),
                updated_at=str(v.get("updated_on", "")),
                url=_html_url(v),
                state=str(v.get("state", "")).lower(),
                type="pr",
            )
            for v in values
        ]


__all__ = [
    "BitBucketClient",
    "BitBucketTracker",
    "BitBucketPullRequests",
    "parse_remote",
    "normalize_author",
]
