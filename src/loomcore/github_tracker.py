"""GitHub adapter for the common tracker contract.

Design notes:
 - Every call goes through :class:`~loomcore.gh.GhRunner`; issue/PR numbers
   are validated locally first so non-numeric input fails with a
   ``ValidationError`` instead of a ``gh`` usage error.
 - ``gh issue view`` lists comments with GraphQL node ids, while the REST
   comment endpoints need numeric ids. The numeric id is recovered from the
   comment URL fragment (``#issuecomment-<digits>``).
 - Child issues are created in two steps (create, then ``addSubIssue``).
   A failed link leaves the child issue in place; the raised
   ``ChildIssueLinkError`` carries it.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from .errors import (
    ChildIssueLinkError,
    ErrorKind,
    ProviderError,
    ValidationError,
)
from .gh import GhRunner
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
from .tracker import InputKind, normalize_state

ISSUE_URL_PATTERN = re.compile(r"https?://[^/\s]+/[^/\s]+/[^/\s]+/issues/(\d+)")
COMMENT_FRAGMENT_PATTERN = re.compile(r"#issuecomment-(\d+)$")
CLOSED_STATES = ("closed", "merged")

ISSUE_FIELDS = "body,title,labels,assignees,milestone,author,state,number,url"
LIST_FIELDS = "number,title,updatedAt,url,state"

ADD_SUB_ISSUE_MUTATION = """
mutation addSubIssue($parentId: ID!, $subIssueId: ID!) {
  addSubIssue(input: { issueId: $parentId, subIssueId: $subIssueId }) {
    issue { id }
    subIssue { id }
  }
}
"""


def normalize_author(raw: Any) -> FlexibleAuthor | None:
    """Map ``gh``/REST user payloads onto ``FlexibleAuthor``.

    ``id`` prefers the native id (numeric REST id or node id) and falls
    back to the login.
    """
    if not isinstance(raw, dict):
        return None
    login = raw.get("login")
    native_id = raw.get("id")
    if native_id in (None, "") and not login:
        return None
    author_id = str(native_id) if native_id not in (None, "") else str(login)
    return FlexibleAuthor(
        id=author_id,
        display_name=str(raw.get("name") or login or author_id),
        login=str(login) if login else None,
        avatar_url=raw.get("avatarUrl") or raw.get("avatar_url") or None,
        url=raw.get("url") or raw.get("html_url") or None,
    )


def extract_comment_id(url: str | None) -> str:
    """Return the numeric REST id from a comment web URL."""
    if not url:
        raise ValidationError("Cannot extract comment id: comment URL is missing")
    match = COMMENT_FRAGMENT_PATTERN.search(url)
    if match is None:
        raise ValidationError(
            f"Cannot extract comment id from URL {url!r}: expected a '#issuecomment-<id>' fragment"
        )
    return match.group(1)


def require_number(value: str | int, what: str = "issue") -> int:
    text = str(value).strip().lstrip("#")
    if not text.isdigit():
        raise ValidationError(
            f"Invalid GitHub {what} number: {value}. GitHub {what} IDs must be numeric."
        )
    return int(text)


def _labels(raw: Any) -> list[Label]:
    out: list[Label] = []
    if not isinstance(raw, list):
        return out
    for lbl in raw:
        if isinstance(lbl, dict) and isinstance(lbl.get("name"), str):
            extras = {k: v for k, v in lbl.items() if k != "name"}
            out.append(Label(name=lbl["name"], extras=extras))
        elif isinstance(lbl, str):
            out.append(Label(name=lbl))
    return out


def _list_item(entry: dict[str, Any], item_type: str) -> IssueListItem:
    return IssueListItem(
        id=str(entry.get("number")),
        title=str(entry.get("title", "")),
        updated_at=str(entry.get("updatedAt", "")),
        url=str(entry.get("url", "")),
        state=str(entry.get("state", "")).lower(),
        type="pr" if item_type == "pr" else "issue",
    )


class GitHubTracker:
    provider_name = "github"
    supports_pull_requests = True
    uses_project_keys = False
    supports_sprint = False

    def __init__(
        self,
        *,
        runner: GhRunner | None = None,
        cwd: str | Path | None = None,
        repo: str | None = None,
    ):
        self.runner = runner or GhRunner(cwd=cwd, repo=repo)
        self.logger = get_logger()

    # --- reads -----------------------------------------------------------
    def get_issue(self, identifier: str, include_comments: bool = True) -> IssueResult:
        number = require_number(identifier)
        fields = f"{ISSUE_FIELDS},comments" if include_comments else ISSUE_FIELDS
        raw = self.runner.run_json(["issue", "view", str(number), "--json", fields], scoped=True)
        if not isinstance(raw, dict):
            raise ProviderError(f"gh returned no data for issue #{number}", provider="github")

        extras: dict[str, Any] = {}
        if raw.get("milestone"):
            extras["milestone"] = raw["milestone"]
        assignees = raw.get("assignees")
        result = IssueResult(
            id=str(raw.get("number", number)),
            title=str(raw.get("title", "")),
            body=str(raw.get("body") or ""),
            state=normalize_state(raw.get("state"), CLOSED_STATES),
            url=str(raw.get("url", "")),
            provider=self.provider_name,
            author=normalize_author(raw.get("author")),
            assignees=(
                [a for a in (normalize_author(x) for x in assignees) if a is not None]
                if isinstance(assignees, list)
                else None
            ),
            labels=_labels(raw.get("labels")) if "labels" in raw else None,
            extras=extras,
        )
        if include_comments and isinstance(raw.get("comments"), list):
            result.comments = [self._comment_from_view(c) for c in raw["comments"]]
        return result

    @staticmethod
    def _comment_from_view(comment: dict[str, Any]) -> CommentSummary:
        extras: dict[str, Any] = {}
        if comment.get("id"):
            extras["nodeId"] = comment["id"]
        if comment.get("url"):
            extras["url"] = comment["url"]
        return CommentSummary(
            id=extract_comment_id(comment.get("url")),
            body=str(comment.get("body") or ""),
            author=normalize_author(comment.get("author")),
            created_at=str(comment.get("createdAt", "")),
            updated_at=comment.get("updatedAt") or None,
            extras=extras,
        )

    def get_comment(self, comment_id: str, issue_id: str) -> CommentSummary:
        # Comment ids are repository-unique; issue_id is accepted for contract parity.
        numeric = require_number(comment_id, "comment")
        raw = self.runner.run_json(["api", self.runner.api_path(f"issues/comments/{numeric}")])
        if not isinstance(raw, dict):
            raise ProviderError(f"gh returned no data for comment {numeric}", provider="github")
        extras = {k: raw[k] for k in ("html_url", "reactions") if raw.get(k)}
        return CommentSummary(
            id=str(raw.get("id", numeric)),
            body=str(raw.get("body") or ""),
            author=normalize_author(raw.get("user")),
            created_at=str(raw.get("created_at", "")),
            updated_at=raw.get("updated_at") or None,
            extras=extras,
        )

    def issue_exists(self, identifier: str) -> str | None:
        text = str(identifier).strip().lstrip("#")
        if not text.isdigit():
            return None
        return text if self._exists("issue", int(text)) else None

    def is_pull_request(self, number: int) -> bool:
        return self._exists("pr", number)

    def detect_input_type(self, number: int) -> InputKind | None:
        self.logger.debug("Checking if input is a PR", number=number)
        if self._exists("pr", number):
            return "pr"
        self.logger.debug("Checking if input is an issue", number=number)
        if self._exists("issue", number):
            return "issue"
        return None

    def _exists(self, noun: str, number: int) -> bool:
        try:
            self.runner.run_json([noun, "view", str(number), "--json", "number"], scoped=True)
        except ProviderError as exc:
            if exc.kind is ErrorKind.NOT_FOUND:
                return False
            raise
        return True

    def list_issues(
        self, limit: int, sprint: str | None = None, mine: bool = False
    ) -> list[IssueListItem]:
        args = ["issue", "list", "--state", "open", "--limit", str(limit), "--json", LIST_FIELDS]
        if mine:
            args.extend(["--assignee", "@me"])
        data = self.runner.run_json(args, scoped=True) or []
        return [_list_item(e, "issue") for e in data if isinstance(e, dict)]

    # --- writes ----------------------------------------------------------
    def create_comment(self, issue_id: str, body: str, kind: InputKind = "issue") -> CommentResult:
        # PR conversation comments share the issues endpoint.
        number = require_number(issue_id, kind)
        raw = self.runner.run_json(
            ["api", self.runner.api_path(f"issues/{number}/comments"), "-f", f"body={body}"]
        )
        return self._comment_result(raw, created=True)

    def update_comment(self, comment_id: str, issue_id: str, body: str) -> CommentResult:
        numeric = require_number(comment_id, "comment")
        raw = self.runner.run_json(
            [
                "api",
                self.runner.api_path(f"issues/comments/{numeric}"),
                "-X",
                "PATCH",
                "-f",
                f"body={body}",
            ]
        )
        return self._comment_result(raw, created=False)

    @staticmethod
    def _comment_result(raw: Any, *, created: bool) -> CommentResult:
        if not isinstance(raw, dict):
            raise ProviderError("gh returned no comment payload", provider="github")
        return CommentResult(
            id=str(raw.get("id")),
            url=str(raw.get("html_url", "")),
            created_at=raw.get("created_at") if created else None,
            updated_at=None if created else raw.get("updated_at"),
        )

    def create_issue(
        self,
        title: str,
        body: str,
        labels: Iterable[str] | None = None,
        team_key: str | None = None,
    ) -> CreateIssueResult:
        number, url = self._create(title, body, labels)
        return CreateIssueResult(id=str(number), url=url, number=number)

    def _create(self, title: str, body: str, labels: Iterable[str] | None) -> tuple[int, str]:
        args = ["issue", "create", "--title", title, "--body", body]
        label_list = list(labels or [])
        if label_list:
            args.extend(["--label", ",".join(label_list)])
        out = self.runner.run(args, scoped=True)
        match = ISSUE_URL_PATTERN.search(out)
        if match is None:
            raise ProviderError(
                f"Failed to parse issue URL from gh output: {out.strip()}", provider="github"
            )
        number = int(match.group(1))
        self.logger.log_operation("issue_created", provider="github", issue_number=number)
        return number, match.group(0)

    def create_child_issue(
        self,
        parent_id: str,
        title: str,
        body: str,
        labels: Iterable[str] | None = None,
        team_key: str | None = None,
    ) -> CreateIssueResult:
        parent = require_number(parent_id)
        number, url = self._create(title, body, labels)
        child = CreateIssueResult(id=str(number), url=url, number=number)
        try:
            parent_node = self._node_id(parent)
            child_node = self._node_id(number)
            self.runner.run_json(
                [
                    "api",
                    "graphql",
                    "-H",
                    "GraphQL-Features: sub_issues",
                    "-f",
                    f"query={ADD_SUB_ISSUE_MUTATION}",
                    "-f",
                    f"parentId={parent_node}",
                    "-f",
                    f"subIssueId={child_node}",
                ]
            )
        except ProviderError as exc:
            raise ChildIssueLinkError(
                f"Created issue #{number} ({url}) but failed to link it "
                f"to parent #{parent}: {exc}",
                created=child,
                kind=exc.kind,
                provider="github",
                output=exc.output,
            ) from exc
        return child

    def _node_id(self, number: int) -> str:
        raw = self.runner.run_json(["issue", "view", str(number), "--json", "id"], scoped=True)
        node = raw.get("id") if isinstance(raw, dict) else None
        if not node:
            raise ProviderError(f"No GraphQL node id for issue #{number}", provider="github")
        return str(node)


class GitHubPullRequests:
    """Open pull requests for the listing view."""

    provider_name = "github"

    def __init__(self, *, runner: GhRunner | None = None, cwd: str | Path | None = None):
        self.runner = runner or GhRunner(cwd=cwd)

    def list_pull_requests(self, limit: int, mine: bool = False) -> list[IssueListItem]:
        args = ["pr", "list", "--state", "open", "--limit", str(limit), "--json", LIST_FIELDS]
        if mine:
            args.extend(["--author", "@me"])
        data = self.runner.run_json(args, scoped=True) or []
        return [_list_item(e, "pr") for e in data if isinstance(e, dict)]


__all__ = [
    "GitHubTracker",
    "GitHubPullRequests",
    "normalize_author",
    "extract_comment_id",
    "require_number",
]
