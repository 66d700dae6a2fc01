from __future__ import annotations

import json
from typing import Any

import pytest

from loomcore.errors import ChildIssueLinkError, ErrorKind, ProviderError, ValidationError
from loomcore.gh import GhRunner
from loomcore.github_tracker import (
    GitHubPullRequests,
    GitHubTracker,
    extract_comment_id,
    normalize_author,
)


class _FakeRunner(GhRunner):
    """Replays queued stdout (or errors) instead of shelling out to gh."""

    def __init__(self, replies: list[Any], repo: str | None = "acme/widgets"):
        super().__init__(repo=repo)
        self.replies = list(replies)
        self.calls: list[tuple[list[str], bool]] = []

    def run(self, args, *, scoped: bool = False) -> str:
        self.calls.append((list(args), scoped))
        if not self.replies:
            raise AssertionError(f"No reply queued for gh {' '.join(args)}")
        nxt = self.replies.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return nxt if isinstance(nxt, str) else json.dumps(nxt)


def _not_found(what: str = "issue") -> ProviderError:
    return ProviderError(
        f"GraphQL: Could not resolve to an {what} with the number of 5",
        kind=ErrorKind.NOT_FOUND,
        provider="github",
    )


ISSUE_VIEW = {
    "number": 42,
    "title": "Fix login",
    "body": "Steps to reproduce",
    "state": "OPEN",
    "url": "https://github.com/acme/widgets/issues/42",
    "author": {"login": "octocat", "name": "The Octocat"},
    "assignees": [{"id": "MDQ6VXNlcjE=", "login": "hubot", "name": ""}],
    "labels": [{"name": "bug", "color": "d73a4a"}],
    "milestone": {"title": "v1"},
    "comments": [
        {
            "id": "IC_kwDOA",
            "body": "On it",
            "author": {"login": "hubot"},
            "createdAt": "2024-05-01T00:00:00Z",
            "url": "https://github.com/acme/widgets/issues/42#issuecomment-1234",
        }
    ],
}


def test_get_issue_normalizes_payload():
    runner = _FakeRunner([ISSUE_VIEW])
    issue = GitHubTracker(runner=runner).get_issue("#42")

    assert issue.id == "42"
    assert issue.state == "open"
    assert issue.provider == "github"
    assert issue.author is not None and issue.author.id == "octocat"
    assert issue.author.display_name == "The Octocat"
    assert issue.assignees is not None
    assert issue.assignees[0].id == "MDQ6VXNlcjE=" and issue.assignees[0].display_name == "hubot"
    assert issue.labels is not None and issue.labels[0].name == "bug"
    assert issue.comments is not None and issue.comments[0].id == "1234"
    assert issue.comments[0].extras["nodeId"] == "IC_kwDOA"
    assert issue.to_dict()["milestone"] == {"title": "v1"}

    args, scoped = runner.calls[0]
    assert args[:3] == ["issue", "view", "42"]
    assert args[-1].endswith(",comments")
    assert scoped is True


def test_get_issue_without_comments_skips_comment_field():
    payload = {k: v for k, v in ISSUE_VIEW.items() if k != "comments"}
    payload["state"] = "CLOSED"
    runner = _FakeRunner([payload])
    issue = GitHubTracker(runner=runner).get_issue("42", include_comments=False)
    assert issue.state == "closed"
    assert issue.comments is None
    assert not runner.calls[0][0][-1].endswith(",comments")


def test_non_numeric_identifier_fails_before_gh():
    runner = _FakeRunner([])
    with pytest.raises(ValidationError, match="must be numeric"):
        GitHubTracker(runner=runner).get_issue("ENG-12")
    assert runner.calls == []


def test_get_comment_uses_rest_path():
    runner = _FakeRunner(
        [
            {
                "id": 1234,
                "body": "On it",
                "user": {"login": "hubot", "id": 9},
                "created_at": "2024-05-01T00:00:00Z",
                "html_url": "https://github.com/acme/widgets/issues/42#issuecomment-1234",
            }
        ]
    )
    comment = GitHubTracker(runner=runner).get_comment("1234", "42")
    assert comment.id == "1234"
    assert comment.author is not None and comment.author.id == "9"
    assert runner.calls[0][0] == ["api", "repos/acme/widgets/issues/comments/1234"]


def test_issue_exists_and_detect_input_type():
    runner = _FakeRunner([{"number": 5}, _not_found(), {"number": 5}])
    tracker = GitHubTracker(runner=runner)

    assert tracker.issue_exists("#5") == "5"
    assert tracker.issue_exists("ENG-5") is None
    assert tracker.detect_input_type(5) == "issue"
    assert [c[0][0] for c in runner.calls] == ["issue", "pr", "issue"]


def test_detect_input_type_prefers_pull_requests():
    runner = _FakeRunner([{"number": 7}])
    assert GitHubTracker(runner=runner).detect_input_type(7) == "pr"


def test_detect_input_type_none_when_neither_exists():
    runner = _FakeRunner([_not_found("pull request"), _not_found()])
    assert GitHubTracker(runner=runner).detect_input_type(5) is None


def test_existence_probe_propagates_other_failures():
    auth = ProviderError("gh: not logged in", kind=ErrorKind.AUTH, provider="github")
    with pytest.raises(ProviderError) as excinfo:
        GitHubTracker(runner=_FakeRunner([auth])).is_pull_request(5)
    assert excinfo.value.kind is ErrorKind.AUTH


def test_list_issues_and_mine_filter():
    rows = [
        {"number": 1, "title": "A", "updatedAt": "2024-05-01", "url": "u1", "state": "OPEN"}
    ]
    runner = _FakeRunner([rows, rows])
    tracker = GitHubTracker(runner=runner)

    items = tracker.list_issues(10)
    tracker.list_issues(10, mine=True)

    assert items[0].id == "1" and items[0].state == "open" and items[0].type == "issue"
    assert "--assignee" not in runner.calls[0][0]
    assert runner.calls[1][0][-2:] == ["--assignee", "@me"]


def test_create_and_update_comment():
    runner = _FakeRunner(
        [
            {"id": 55, "html_url": "https://x/55", "created_at": "2024-05-01T00:00:00Z"},
            {"id": 55, "html_url": "https://x/55", "updated_at": "2024-05-02T00:00:00Z"},
        ]
    )
    tracker = GitHubTracker(runner=runner)

    created = tracker.create_comment("42", "hello")
    updated = tracker.update_comment("55", "42", "edited")

    assert created.to_dict() == {
        "id": "55",
        "url": "https://x/55",
        "created_at": "2024-05-01T00:00:00Z",
    }
    assert updated.updated_at == "2024-05-02T00:00:00Z" and updated.created_at is None
    assert runner.calls[0][0] == [
        "api",
        "repos/acme/widgets/issues/42/comments",
        "-f",
        "body=hello",
    ]
    assert "PATCH" in runner.calls[1][0]


def test_create_issue_parses_url_and_joins_labels():
    runner = _FakeRunner(["https://github.com/acme/widgets/issues/77\n"])
    result = GitHubTracker(runner=runner).create_issue("T", "B", labels=["bug", "ui"])
    assert result.number == 77 and result.id == "77"
    assert result.url == "https://github.com/acme/widgets/issues/77"
    assert runner.calls[0][0][-2:] == ["--label", "bug,ui"]


def test_create_issue_unparseable_output():
    with pytest.raises(ProviderError, match="Failed to parse issue URL"):
        GitHubTracker(runner=_FakeRunner(["something odd"])).create_issue("T", "B")


def test_create_child_issue_links_via_graphql():
    runner = _FakeRunner(
        [
            "https://github.com/acme/widgets/issues/78\n",
            {"id": "I_parent"},
            {"id": "I_child"},
            {"data": {"addSubIssue": {"issue": {"id": "I_parent"}}}},
        ]
    )
    result = GitHubTracker(runner=runner).create_child_issue("10", "Child", "Body")
    assert result.number == 78
    link_args = runner.calls[-1][0]
    assert link_args[:2] == ["api", "graphql"]
    assert "parentId=I_parent" in link_args and "subIssueId=I_child" in link_args


def test_child_link_failure_keeps_created_issue():
    runner = _FakeRunner(
        [
            "https://github.com/acme/widgets/issues/79\n",
            {"id": "I_parent"},
            {"id": "I_child"},
            ProviderError("sub-issues not enabled", provider="github"),
        ]
    )
    with pytest.raises(ChildIssueLinkError) as excinfo:
        GitHubTracker(runner=runner).create_child_issue("10", "Child", "Body")
    assert excinfo.value.created.number == 79
    assert "#79" in str(excinfo.value)


def test_child_issue_unparseable_create_output_stops_before_linking():
    runner = _FakeRunner(["Creating issue in acme/widgets\n"])
    with pytest.raises(ProviderError, match="Failed to parse issue URL") as excinfo:
        GitHubTracker(runner=runner).create_child_issue("10", "Child", "Body")
    assert not isinstance(excinfo.value, ChildIssueLinkError)
    assert len(runner.calls) == 1


def test_pull_request_listing():
    rows = [{"number": 3, "title": "PR", "updatedAt": "t", "url": "u", "state": "OPEN"}]
    runner = _FakeRunner([rows])
    items = GitHubPullRequests(runner=runner).list_pull_requests(5, mine=True)
    assert items[0].type == "pr"
    assert runner.calls[0][0][:2] == ["pr", "list"]
    assert runner.calls[0][0][-2:] == ["--author", "@me"]


def test_helpers():
    assert extract_comment_id("https://x/issues/1#issuecomment-99") == "99"
    with pytest.raises(ValidationError):
        extract_comment_id("https://x/issues/1")
    with pytest.raises(ValidationError):
        extract_comment_id(None)
    assert normalize_author(None) is None
    assert normalize_author({}) is None
    author = normalize_author({"login": "a", "avatar_url": "img", "html_url": "page"})
    assert author is not None
    assert (author.id, author.avatar_url, author.url) == ("a", "img", "page")
