"""Jira Cloud adapter (REST API v3 over ``requests``).

Bodies are sent as single-paragraph Atlassian Document Format (ADF)
documents and read back through :func:`adf_to_text`, a deliberately small
flattener covering text, hard breaks and block separators.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import requests

from .config import JiraSettings
from .env_auth import EnvironmentAuthManager, create_env_auth_manager
from .errors import ConfigurationError, ErrorKind, NotFoundError, ProviderError
from .logging import get_logger
from .models import (
    CommentResult,
    CommentSummary,
    CreateIssueResult,
    FlexibleAuthor,
    IssueListItem,
    IssueResult,
    Label,
)
from .rest_client import JsonApiClient
from .tracker import InputKind, normalize_state

API_PREFIX = "/rest/api/3"
BUILTIN_CLOSED_STATUSES = ("done", "closed", "resolved", "cancelled", "canceled")
LIST_FIELDS = ["summary", "status", "updated"]
_BLOCK_NODES = {"paragraph", "heading", "blockquote", "codeBlock", "listItem", "rule"}


def escape_jql(value: str) -> str:
    """Escape a value for use inside a double-quoted JQL string."""
    return value.replace("\\", "\\\\").replace('"', '\\"')


def build_list_jql(
    project_key: str,
    done_statuses: Iterable[str],
    sprint: str | None = None,
    mine: bool = False,
) -> str:
    exclusions = ", ".join(f'"{escape_jql(s)}"' for s in done_statuses)
    jql = f'project = "{escape_jql(project_key)}"'
    if exclusions:
        jql += f" AND status NOT IN ({exclusions})"
    if sprint == "current":
        jql += " AND sprint in openSprints()"
    elif sprint:
        jql += f' AND sprint = "{escape_jql(sprint)}"'
    if mine:
        jql += " AND assignee = currentUser()"
    return jql + " ORDER BY updated DESC"


def text_to_adf(text: str) -> dict[str, Any]:
    content = [{"type": "text", "text": text}] if text else []
    return {
        "type": "doc",
        "version": 1,
        "content": [{"type": "paragraph", "content": content}],
    }


def adf_to_text(node: Any) -> str:
    """Flatten an ADF node (or plain string) to text."""
    if node is None:
        return ""
    if isinstance(node, str):
        return node
    if isinstance(node, list):
        return "".join(adf_to_text(n) for n in node)
    if not isinstance(node, dict):
        return ""
    kind = node.get("type")
    if kind == "text":
        return str(node.get("text", ""))
    if kind == "hardBreak":
        return "\n"
    if kind == "mention":
        return str((node.get("attrs") or {}).get("text", ""))
    inner = adf_to_text(node.get("content"))
    if kind == "doc":
        return inner.strip("\n")
    if kind in _BLOCK_NODES:
        return inner + "\n\n"
    return inner


def normalize_author(raw: Any) -> FlexibleAuthor | None:
    if not isinstance(raw, dict):
        return None
    account_id = raw.get("accountId")
    email = raw.get("emailAddress")
    author_id = account_id or email or "unknown"
    extras: dict[str, Any] = {}
    if email:
        extras["email"] = email
    if account_id:
        extras["accountId"] = account_id
    avatars = raw.get("avatarUrls")
    return FlexibleAuthor(
        id=str(author_id),
        display_name=str(raw.get("displayName") or author_id),
        avatar_url=avatars.get("48x48") if isinstance(avatars, dict) else None,
        url=raw.get("self") or None,
        extras=extras,
    )


class JiraTracker:
    provider_name = "jira"
    supports_pull_requests = False
    uses_project_keys = True
    supports_sprint = True

    def __init__(
        self,
        *,
        host: str,
        username: str,
        api_token: str,
        project_key: str,
        done_statuses: Iterable[str] = ("Done",),
        default_issue_type: str = "Task",
        default_subtask_type: str = "Subtask",
        session: requests.Session | None = None,
    ):
        self.host = host.rstrip("/")
        self.project_key = project_key
        self.done_statuses = list(done_statuses)
        self.closed_statuses = [*BUILTIN_CLOSED_STATUSES, *self.done_statuses]
        self.default_issue_type = default_issue_type
        self.default_subtask_type = default_subtask_type
        self.client = JsonApiClient(
            base_url=f"{self.host}{API_PREFIX}",
            provider="jira",
            headers={"Content-Type": "application/json"},
            auth=(username, api_token),
            session=session,
        )
        self.logger = get_logger()

    @classmethod
    def from_settings(
        cls,
        settings: JiraSettings,
        auth: EnvironmentAuthManager | None = None,
        *,
        session: requests.Session | None = None,
    ) -> JiraTracker:
        auth = auth or create_env_auth_manager()
        values = {
            "host": auth.get_jira_value("HOST", settings.host),
            "username": auth.get_jira_value("USERNAME", settings.username),
            "apiToken": auth.get_jira_token(settings.api_token),
            "projectKey": auth.get_jira_value("PROJECT_KEY", settings.project_key),
        }
        missing = [name for name, value in values.items() if not value]
        if missing:
            raise ConfigurationError(
                f"Jira configuration incomplete; missing issueManagement.jira.{', '.join(missing)}"
            )
        return cls(
            host=str(values["host"]),
            username=str(values["username"]),
            api_token=str(values["apiToken"]),
            project_key=str(values["projectKey"]),
            done_statuses=settings.done_statuses,
            default_issue_type=settings.default_issue_type,
            default_subtask_type=settings.default_subtask_type,
            session=session,
        )

    def browse_url(self, key: str) -> str:
        return f"{self.host}/browse/{key}"

    # --- reads -----------------------------------------------------------
    def get_issue(self, identifier: str, include_comments: bool = True) -> IssueResult:
        key = identifier.strip().upper()
        raw = self.client.get(f"/issue/{key}")
        if not isinstance(raw, dict):
            raise ProviderError(f"Jira returned no data for {key}", provider="jira")
        fields = raw.get("fields") or {}
        status = (fields.get("status") or {}).get("name")
        assignee = normalize_author(fields.get("assignee"))
        issue_type = (fields.get("issuetype") or {}).get("name")
        result = IssueResult(
            id=str(raw.get("key", key)),
            title=str(fields.get("summary", "")),
            body=adf_to_text(fields.get("description")),
            state=normalize_state(status, self.closed_statuses),
            url=self.browse_url(str(raw.get("key", key))),
            provider=self.provider_name,
            author=normalize_author(fields.get("reporter")),
            assignees=[assignee] if assignee else [],
            labels=[Label(name=str(n)) for n in fields.get("labels") or []],
            extras={"status": status, "issueType": issue_type, "jiraId": raw.get("id")},
        )
        if include_comments:
            result.comments = [self._comment(c) for c in self._comments(key)]
        return result

    def _comments(self, key: str) -> list[dict[str, Any]]:
        data = self.client.get(f"/issue/{key}/comment")
        comments = data.get("comments") if isinstance(data, dict) else None
        return [c for c in comments or [] if isinstance(c, dict)]

    @staticmethod
    def _comment(raw: dict[str, Any]) -> CommentSummary:
        return CommentSummary(
            id=str(raw.get("id", "")),
            body=adf_to_text(raw.get("body")),
            author=normalize_author(raw.get("author")),
            created_at=str(raw.get("created", "")),
            updated_at=raw.get("updated") or None,
        )

    def get_comment(self, comment_id: str, issue_id: str) -> CommentSummary:
        key = issue_id.strip().upper()
        for raw in self._comments(key):
            if str(raw.get("id")) == str(comment_id):
                return self._comment(raw)
        raise NotFoundError(f"Comment {comment_id} not found on Jira issue {key}")

    def issue_exists(self, identifier: str) -> str | None:
        key = identifier.strip().upper()
        try:
            raw = self.client.get(f"/issue/{key}", params={"fields": "summary"})
        except ProviderError as exc:
            if exc.kind is ErrorKind.NOT_FOUND:
                return None
            raise
        return str(raw.get("key", key)) if isinstance(raw, dict) else key

    def detect_input_type(self, number: int) -> InputKind | None:
        # Jira has no pull requests; bare numbers can only mean issues.
        return "issue"

    def list_issues(
        self, limit: int, sprint: str | None = None, mine: bool = False
    ) -> list[IssueListItem]:
        jql = build_list_jql(self.project_key, self.done_statuses, sprint, mine)
        self.logger.debug("Jira issue search", jql=jql)
        data = self.client.post(
            "/search/jql", {"jql": jql, "maxResults": limit, "fields": LIST_FIELDS}
        )
        issues = data.get("issues") if isinstance(data, dict) else None
        out: list[IssueListItem] = []
        for issue in (issues or [])[:limit]:
            if not isinstance(issue, dict):
                continue
            fields = issue.get("fields") or {}
            key = str(issue.get("key", ""))
            out.append(
                IssueListItem(
                    id=key,
                    title=str(fields.get("summary", "")),
                    updated_at=str(fields.get("updated", "")),
                    url=self.browse_url(key),
                    state=str((fields.get("status") or {}).get("name", "")),
                )
            )
        return out

    # --- writes ----------------------------------------------------------
    def create_comment(self, issue_id: str, body: str, kind: InputKind = "issue") -> CommentResult:
        key = issue_id.strip().upper()
        raw = self.client.post(f"/issue/{key}/comment", {"body": text_to_adf(body)})
        if not isinstance(raw, dict):
            raise ProviderError(f"Jira returned no comment for {key}", provider="jira")
        comment_id = str(raw.get("id"))
        return CommentResult(
            id=comment_id,
            url=f"{self.browse_url(key)}?focusedCommentId={comment_id}",
            created_at=raw.get("created"),
        )

    def update_comment(self, comment_id: str, issue_id: str, body: str) -> CommentResult:
        key = issue_id.strip().upper()
        raw = self.client.put(f"/issue/{key}/comment/{comment_id}", {"body": text_to_adf(body)})
        updated = raw.get("updated") if isinstance(raw, dict) else None
        return CommentResult(
            id=str(comment_id),
            url=f"{self.browse_url(key)}?focusedCommentId={comment_id}",
            updated_at=updated,
        )

    def create_issue(
        self,
        title: str,
        body: str,
        labels: Iterable[str] | None = None,
        team_key: str | None = None,
    ) -> CreateIssueResult:
        fields = self._fields(title, body, labels, team_key or self.project_key)
        fields["issuetype"] = {"name": self.default_issue_type}
        return self._create(fields)

    def create_child_issue(
        self,
        parent_id: str,
        title: str,
        body: str,
        labels: Iterable[str] | None = None,
        team_key: str | None = None,
    ) -> CreateIssueResult:
        fields = self._fields(title, body, labels, team_key or self.project_key)
        fields["issuetype"] = {"name": self.default_subtask_type}
        fields["parent"] = {"key": parent_id.strip().upper()}
        return self._create(fields)

    @staticmethod
    def _fields(
        title: str, body: str, labels: Iterable[str] | None, project_key: str
    ) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "project": {"key": project_key},
            "summary": title,
            "description": text_to_adf(body),
        }
        label_list = [lbl for lbl in (labels or []) if lbl]
        if label_list:
            fields["labels"] = label_list
        return fields

    def _create(self, fields: dict[str, Any]) -> CreateIssueResult:
        raw = self.client.post("/issue", {"fields": fields})
        if not isinstance(raw, dict) or not raw.get("key"):
            raise ProviderError("Jira issue creation returned no key", provider="jira")
        key = str(raw["key"])
        self.logger.log_operation("issue_created", provider="jira", key=key)
        return CreateIssueResult(id=key, url=self.browse_url(key))


__all__ = [
    "JiraTracker",
    "escape_jql",
    "build_list_jql",
    "adf_to_text",
    "text_to_adf",
    "normalize_author",
]
