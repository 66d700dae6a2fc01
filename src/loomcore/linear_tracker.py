"""Linear adapter (GraphQL API over ``requests``).

Linear identifiers are project-key shaped (``ENG-123``) and are passed to the
API verbatim; the numeric-only form used by GitHub never reaches this
adapter. The team key seen on the last fetched issue is remembered so a
follow-up ``create_issue`` without an explicit team lands in the same team.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Any

import requests

from .config import LinearSettings
from .env_auth import EnvironmentAuthManager, create_env_auth_manager
from .errors import ConfigurationError, ErrorKind, ProviderError
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
from .tracker import InputKind

LINEAR_API_URL = "https://api.linear.app/graphql"
CLOSED_STATE_TOKENS = ("done", "completed", "canceled", "cancelled")
TEAM_KEY_PATTERN = re.compile(r"^([A-Z]{2,})-\d+$", re.IGNORECASE)
PARENT_PREFIX_PATTERN = re.compile(r"^([A-Z]{2,})-", re.IGNORECASE)

_USER_FIELDS = "id name displayName avatarUrl url"

ISSUE_QUERY = f"""
query Issue($id: String!) {{
  issue(id: $id) {{
    id identifier title description url
    state {{ name type }}
    team {{ key }}
    creator {{ {_USER_FIELDS} }}
    assignee {{ {_USER_FIELDS} }}
    labels {{ nodes {{ name color }} }}
  }}
}}
"""

ISSUE_COMMENTS_QUERY = f"""
query IssueComments($id: String!) {{
  issue(id: $id) {{
    comments {{ nodes {{ id body createdAt updatedAt url user {{ {_USER_FIELDS} }} }} }}
  }}
}}
"""

COMMENT_QUERY = f"""
query Comment($id: String!) {{
  comment(id: $id) {{ id body createdAt updatedAt url user {{ {_USER_FIELDS} }} }}
}}
"""

COMMENT_CREATE = """
mutation CommentCreate($issueId: String!, $body: String!) {
  commentCreate(input: { issueId: $issueId, body: $body }) {
    success
    comment { id url createdAt }
  }
}
"""

COMMENT_UPDATE = """
mutation CommentUpdate($id: String!, $body: String!) {
  commentUpdate(id: $id, input: { body: $body }) {
    success
    comment { id url updatedAt }
  }
}
"""

TEAM_QUERY = """
query Team($id: String!) {
  team(id: $id) { id key }
}
"""

LABELS_QUERY = """
query Labels($names: [String!]) {
  issueLabels(filter: { name: { in: $names } }) { nodes { id name } }
}
"""

ISSUE_CREATE = """
mutation IssueCreate($input: IssueCreateInput!) {
  issueCreate(input: $input) {
    success
    issue { id identifier url }
  }
}
"""

LIST_QUERY = """
query TeamIssues($teamId: String!, $first: Int!, $filter: IssueFilter) {
  team(id: $teamId) {
    issues(first: $first, filter: $filter, orderBy: updatedAt) {
      nodes { identifier title updatedAt url state { name } }
    }
  }
}
"""


def normalize_linear_state(raw: str | None) -> str:
    low = (raw or "").lower()
    return "closed" if any(tok in low for tok in CLOSED_STATE_TOKENS) else "open"


def normalize_author(raw: Any) -> FlexibleAuthor | None:
    if not isinstance(raw, dict):
        return None
    name = raw.get("name")
    author_id = raw.get("id") or name
    if not author_id:
        return None
    return FlexibleAuthor(
        id=str(author_id),
        display_name=str(raw.get("displayName") or name or author_id),
        avatar_url=raw.get("avatarUrl") or None,
        url=raw.get("url") or None,
        extras={"name": name} if name else {},
    )


def derive_team_key(identifier: str) -> str | None:
    match = PARENT_PREFIX_PATTERN.match(identifier.strip())
    return match.group(1).upper() if match else None


def _comment(raw: dict[str, Any]) -> CommentSummary:
    extras = {"url": raw["url"]} if raw.get("url") else {}
    return CommentSummary(
        id=str(raw.get("id", "")),
        body=str(raw.get("body") or ""),
        author=normalize_author(raw.get("user")),
        created_at=str(raw.get("createdAt", "")),
        updated_at=raw.get("updatedAt") or None,
        extras=extras,
    )


class LinearTracker:
    provider_name = "linear"
    supports_pull_requests = False
    uses_project_keys = True
    supports_sprint = False

    def __init__(
        self,
        *,
        api_token: str,
        team_id: str | None = None,
        env_team_key: str | None = None,
        session: requests.Session | None = None,
    ):
        if not api_token:
            raise ConfigurationError(
                "Linear API token not configured; set issueManagement.linear.apiToken "
                "or LINEAR_API_TOKEN"
            )
        self.team_id = team_id
        self.env_team_key = env_team_key
        self.cached_team_key: str | None = None
        self.client = JsonApiClient(
            base_url=LINEAR_API_URL,
            provider="linear",
            headers={"Authorization": api_token, "Content-Type": "application/json"},
            session=session,
        )
        self.logger = get_logger()

    @classmethod
    def from_settings(
        cls,
        settings: LinearSettings,
        auth: EnvironmentAuthManager | None = None,
        *,
        session: requests.Session | None = None,
    ) -> LinearTracker:
        auth = auth or create_env_auth_manager()
        token = auth.get_linear_token(settings.api_token)
        if not token:
            raise ConfigurationError(
                "Linear API token not configured; set issueManagement.linear.apiToken "
                "or LINEAR_API_TOKEN"
            )
        return cls(
            api_token=token,
            team_id=settings.team_id,
            env_team_key=auth.get_linear_team_key(),
            session=session,
        )

    # --- reads -----------------------------------------------------------
    def _fetch_issue(self, identifier: str) -> dict[str, Any]:
        data = self.client.graphql(ISSUE_QUERY, {"id": identifier})
        issue = data.get("issue")
        if not isinstance(issue, dict):
            raise ProviderError(
                f"Linear issue {identifier} not found",
                kind=ErrorKind.NOT_FOUND,
                provider="linear",
            )
        return issue

    def get_issue(self, identifier: str, include_comments: bool = True) -> IssueResult:
        raw = self._fetch_issue(identifier)
        ident = str(raw.get("identifier") or identifier)
        key_match = TEAM_KEY_PATTERN.match(ident)
        if key_match:
            self.cached_team_key = key_match.group(1).upper()

        state = raw.get("state") or {}
        state_name = state.get("name") if isinstance(state, dict) else None
        labels = raw.get("labels") or {}
        assignee = normalize_author(raw.get("assignee"))
        result = IssueResult(
            id=ident,
            title=str(raw.get("title", "")),
            body=str(raw.get("description") or ""),
            state=normalize_linear_state(state_name),  # type: ignore[arg-type]
            url=str(raw.get("url", "")),
            provider=self.provider_name,
            author=normalize_author(raw.get("creator")),
            assignees=[assignee] if assignee else [],
            labels=[
                Label(name=str(n.get("name")), extras={"color": n.get("color")})
                for n in labels.get("nodes", [])
                if isinstance(n, dict) and n.get("name")
            ],
            extras={"linearState": state_name, "linearId": raw.get("id")},
        )
        if include_comments:
            data = self.client.graphql(ISSUE_COMMENTS_QUERY, {"id": ident})
            nodes = ((data.get("issue") or {}).get("comments") or {}).get("nodes") or []
            result.comments = [_comment(c) for c in nodes if isinstance(c, dict)]
        return result

    def get_comment(self, comment_id: str, issue_id: str) -> CommentSummary:
        data = self.client.graphql(COMMENT_QUERY, {"id": comment_id})
        raw = data.get("comment")
        if not isinstance(raw, dict):
            raise ProviderError(
                f"Linear comment {comment_id} not found",
                kind=ErrorKind.NOT_FOUND,
                provider="linear",
            )
        return _comment(raw)

    def issue_exists(self, identifier: str) -> str | None:
        try:
            raw = self._fetch_issue(identifier)
        except ProviderError as exc:
            if exc.kind is ErrorKind.NOT_FOUND:
                return None
            raise
        return str(raw.get("identifier") or identifier)

    def detect_input_type(self, number: int) -> InputKind | None:
        # Linear has no pull requests; bare numbers can only mean issues.
        return "issue"

    def list_issues(
        self, limit: int, sprint: str | None = None, mine: bool = False
    ) -> list[IssueListItem]:
        if not self.team_id:
            raise ConfigurationError(
                "Linear team id not configured; set issueManagement.linear.teamId"
            )
        issue_filter: dict[str, Any] = {"state": {"type": {"nin": ["completed", "canceled"]}}}
        if mine:
            issue_filter["assignee"] = {"isMe": {"eq": True}}
        data = self.client.graphql(
            LIST_QUERY, {"teamId": self.team_id, "first": limit, "filter": issue_filter}
        )
        nodes = (((data.get("team") or {}).get("issues")) or {}).get("nodes") or []
        return [
            IssueListItem(
                id=str(n.get("identifier", "")),
                title=str(n.get("title", "")),
                updated_at=str(n.get("updatedAt", "")),
                url=str(n.get("url", "")),
                state=str((n.get("state") or {}).get("name", "")).lower(),
            )
            for n in nodes
            if isinstance(n, dict)
        ]

    # --- writes ----------------------------------------------------------
    def create_comment(self, issue_id: str, body: str, kind: InputKind = "issue") -> CommentResult:
        data = self.client.graphql(COMMENT_CREATE, {"issueId": issue_id, "body": body})
        comment = self._mutation_payload(data, "commentCreate", "comment")
        return CommentResult(
            id=str(comment.get("id")),
            url=str(comment.get("url", "")),
            created_at=comment.get("createdAt"),
        )

    def update_comment(self, comment_id: str, issue_id: str, body: str) -> CommentResult:
        data = self.client.graphql(COMMENT_UPDATE, {"id": comment_id, "body": body})
        comment = self._mutation_payload(data, "commentUpdate", "comment")
        return CommentResult(
            id=str(comment.get("id")),
            url=str(comment.get("url", "")),
            updated_at=comment.get("updatedAt"),
        )

    def resolve_team_key(self, team_key: str | None = None) -> str:
        key = team_key or self.team_id or self.env_team_key or self.cached_team_key
        if not key:
            raise ConfigurationError(
                "Linear team key not configured; pass a team key, set "
                "issueManagement.linear.teamId or LINEAR_TEAM_KEY"
            )
        return key

    def create_issue(
        self,
        title: str,
        body: str,
        labels: Iterable[str] | None = None,
        team_key: str | None = None,
    ) -> CreateIssueResult:
        return self._create(title, body, labels, self.resolve_team_key(team_key))

    def create_child_issue(
        self,
        parent_id: str,
        title: str,
        body: str,
        labels: Iterable[str] | None = None,
        team_key: str | None = None,
    ) -> CreateIssueResult:
        key = team_key or derive_team_key(parent_id)
        if not key:
            raise ConfigurationError("teamKey is required for child issue creation")
        parent = self._fetch_issue(parent_id)
        return self._create(title, body, labels, key, parent_uuid=str(parent.get("id")))

    def _create(
        self,
        title: str,
        body: str,
        labels: Iterable[str] | None,
        team_key: str,
        *,
        parent_uuid: str | None = None,
    ) -> CreateIssueResult:
        team = self.client.graphql(TEAM_QUERY, {"id": team_key}).get("team")
        if not isinstance(team, dict) or not team.get("id"):
            raise ProviderError(
                f"Linear team {team_key} not found",
                kind=ErrorKind.NOT_FOUND,
                provider="linear",
            )
        payload: dict[str, Any] = {"teamId": team["id"], "title": title, "description": body}
        label_ids = self._label_ids(labels)
        if label_ids:
            payload["labelIds"] = label_ids
        if parent_uuid:
            payload["parentId"] = parent_uuid
        data = self.client.graphql(ISSUE_CREATE, {"input": payload})
        issue = self._mutation_payload(data, "issueCreate", "issue")
        identifier = str(issue.get("identifier"))
        self.logger.log_operation("issue_created", provider="linear", identifier=identifier)
        return CreateIssueResult(id=identifier, url=str(issue.get("url", "")))

    def _label_ids(self, labels: Iterable[str] | None) -> list[str]:
        names = [n for n in (labels or []) if n]
        if not names:
            return []
        data = self.client.graphql(LABELS_QUERY, {"names": names})
        nodes = (data.get("issueLabels") or {}).get("nodes") or []
        found = {n.get("name"): n.get("id") for n in nodes if isinstance(n, dict)}
        missing = [n for n in names if n not in found]
        if missing:
            self.logger.warning(f"Ignoring unknown Linear labels: {', '.join(missing)}")
        return [str(found[n]) for n in names if n in found]

    @staticmethod
    def _mutation_payload(data: dict[str, Any], mutation: str, entity: str) -> dict[str, Any]:
        result = data.get(mutation)
        if not isinstance(result, dict) or not result.get("success"):
            raise ProviderError(f"Linear {mutation} did not succeed", provider="linear")
        payload = result.get(entity)
        if not isinstance(payload, dict):
            raise ProviderError(f"Linear {mutation} returned no {entity}", provider="linear")
        return payload


__all__ = ["LinearTracker", "normalize_author", "normalize_linear_state", "derive_team_key"]
