from __future__ import annotations

from pathlib import Path

import pytest

from loomcore.config import LoomSettings, parse_settings
from loomcore.errors import ErrorKind, ProviderError
from loomcore.issue_cache import IssueListCache
from loomcore.issues import IssuesAggregator, create_pr_source, normalize_timestamp
from loomcore.models import IssueListItem


class _Clock:
    now = 1_700_000_000.0

    def __call__(self) -> float:
        return self.now


class _FakeTracker:
    provider_name = "github"
    supports_sprint = False

    def __init__(self, items: list[IssueListItem]):
        self.items = items
        self.calls: list[dict] = []

    def list_issues(self, limit, sprint=None, mine=False):
        self.calls.append({"limit": limit, "sprint": sprint, "mine": mine})
        return list(self.items)


class _FakePrSource:
    provider_name = "github"

    def __init__(self, items=None, error: Exception | None = None):
        self.items = items or []
        self.error = error
        self.calls: list[dict] = []

    def list_pull_requests(self, limit, mine=False):
        self.calls.append({"limit": limit, "mine": mine})
        if self.error:
            raise self.error
        return list(self.items)


def _issue(id_: str, updated: str) -> IssueListItem:
    return IssueListItem(id_, f"Issue {id_}", updated, f"https://x/issues/{id_}", "open")


def _pr(id_: str, updated: str) -> IssueListItem:
    return IssueListItem(id_, f"PR {id_}", updated, f"https://x/pull/{id_}", "open")


def _aggregator(
    tmp_path: Path,
    tracker: _FakeTracker,
    prs: _FakePrSource,
    settings: LoomSettings | None = None,
    root_resolver=None,
):
    counts = {"tracker": 0, "prs": 0, "settings": []}

    def settings_loader(root):
        counts["settings"].append(root)
        return settings or LoomSettings()

    def tracker_factory(_settings, project_path=None):
        counts["tracker"] += 1
        return tracker

    def pr_source_factory(_settings, project_path=None):
        counts["prs"] += 1
        return prs

    agg = IssuesAggregator(
        settings_loader=settings_loader,
        root_resolver=root_resolver or (lambda: tmp_path / "repo"),
        cache=IssueListCache(tmp_path / "cache", clock=_Clock()),
        tracker_factory=tracker_factory,
        pr_source_factory=pr_source_factory,
    )
    return agg, counts


def test_merges_sorts_and_truncates(tmp_path: Path):
    tracker = _FakeTracker(
        [_issue("1", "2024-05-01T00:00:00Z"), _issue("2", "2024-05-03T00:00:00Z")]
    )
    prs = _FakePrSource([_pr("9", "2024-05-02T00:00:00Z"), _pr("8", "2024-04-01T00:00:00Z")])
    agg, _ = _aggregator(tmp_path, tracker, prs)

    result = agg.list_issues(limit=3)

    assert [(i.id, i.type) for i in result] == [("2", "issue"), ("9", "pr"), ("1", "issue")]
    assert tracker.calls == [{"limit": 3, "sprint": None, "mine": False}]
    assert prs.calls == [{"limit": 3, "mine": False}]


def test_second_call_is_served_from_cache(tmp_path: Path):
    tracker = _FakeTracker([_issue("1", "2024-05-01T00:00:00Z")])
    prs = _FakePrSource([_pr("9", "2024-05-02T00:00:00Z")])
    agg, counts = _aggregator(tmp_path, tracker, prs)

    first = agg.list_issues()
    second = agg.list_issues()

    assert second == first
    assert counts["tracker"] == 1
    assert counts["prs"] == 1


def test_mine_is_passed_through_and_keyed_separately(tmp_path: Path):
    tracker = _FakeTracker([_issue("1", "2024-05-01T00:00:00Z")])
    prs = _FakePrSource()
    agg, counts = _aggregator(tmp_path, tracker, prs)

    agg.list_issues(mine=False)
    agg.list_issues(mine=True)

    assert counts["tracker"] == 2
    assert tracker.calls[-1]["mine"] is True
    assert prs.calls[-1]["mine"] is True


def test_expected_pr_failure_keeps_issues_and_caches(tmp_path: Path):
    tracker = _FakeTracker([_issue("1", "2024-05-01T00:00:00Z")])
    prs = _FakePrSource(error=RuntimeError("gh: not logged in to any hosts"))
    agg, counts = _aggregator(tmp_path, tracker, prs)

    result = agg.list_issues()

    assert [i.id for i in result] == ["1"]
    assert list((tmp_path / "cache").glob("issues-*.json"))
    agg.list_issues()
    assert counts["tracker"] == 1


@pytest.mark.parametrize(
    "kind",
    [
        ErrorKind.AUTH,
        ErrorKind.RATE_LIMIT,
        ErrorKind.TIMEOUT,
        ErrorKind.CONNECTION,
        ErrorKind.NO_REMOTES,
        ErrorKind.MISSING_CREDENTIALS,
    ],
)
def test_expected_provider_error_kinds_degrade(tmp_path: Path, kind: ErrorKind):
    tracker = _FakeTracker([_issue("1", "2024-05-01T00:00:00Z")])
    prs = _FakePrSource(error=ProviderError("pr fetch failed", kind=kind))
    agg, _ = _aggregator(tmp_path, tracker, prs)
    assert [i.id for i in agg.list_issues()] == ["1"]


def test_pr_source_construction_failure_is_classified(tmp_path: Path):
    tracker = _FakeTracker([_issue("1", "2024-05-01T00:00:00Z")])

    def failing_factory(_settings, project_path=None):
        raise ProviderError("no credentials", kind=ErrorKind.MISSING_CREDENTIALS)

    agg = IssuesAggregator(
        settings_loader=lambda _root: LoomSettings(),
        root_resolver=lambda: tmp_path,
        cache=IssueListCache(tmp_path / "cache", clock=_Clock()),
        tracker_factory=lambda _s, project_path=None: tracker,
        pr_source_factory=failing_factory,
    )
    assert [i.id for i in agg.list_issues()] == ["1"]


def test_unexpected_pr_failure_propagates_and_caches_nothing(tmp_path: Path):
    tracker = _FakeTracker([_issue("1", "2024-05-01T00:00:00Z")])
    boom = RuntimeError("kaboom")
    agg, _ = _aggregator(tmp_path, tracker, _FakePrSource(error=boom))

    with pytest.raises(RuntimeError) as excinfo:
        agg.list_issues()

    assert excinfo.value is boom
    assert not list((tmp_path / "cache").glob("issues-*.json"))


def test_sprint_ignored_for_non_jira(tmp_path: Path):
    tracker = _FakeTracker([])
    agg, _ = _aggregator(tmp_path, tracker, _FakePrSource())
    agg.list_issues(sprint="current")
    assert tracker.calls[0]["sprint"] is None


def test_sprint_passed_for_jira(tmp_path: Path):
    tracker = _FakeTracker([])
    settings = parse_settings({"issueManagement": {"provider": "jira"}})
    agg, _ = _aggregator(tmp_path, tracker, _FakePrSource(), settings=settings)
    agg.list_issues(sprint="current")
    assert tracker.calls[0]["sprint"] == "current"


def test_root_resolution(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    tracker = _FakeTracker([])
    agg, counts = _aggregator(tmp_path, tracker, _FakePrSource())
    agg.list_issues(project_path=tmp_path / "explicit")
    agg.list_issues()
    assert counts["settings"] == [tmp_path / "explicit", tmp_path / "repo"]

    def broken():
        raise ProviderError("fatal: not a git repository")

    monkeypatch.chdir(tmp_path)
    agg2, counts2 = _aggregator(tmp_path, tracker, _FakePrSource(), root_resolver=broken)
    agg2.list_issues()
    assert counts2["settings"] == [Path.cwd()]


def test_unparseable_timestamps_sort_last(tmp_path: Path):
    tracker = _FakeTracker([_issue("1", "garbage"), _issue("2", "2024-05-01T00:00:00+00:00")])
    agg, _ = _aggregator(tmp_path, tracker, _FakePrSource())
    assert [i.id for i in agg.list_issues()] == ["2", "1"]


def test_jira_compact_offsets_interleave_with_github_timestamps(tmp_path: Path):
    tracker = _FakeTracker(
        [
            _issue("MARK-1", "2024-05-01T10:00:00.000+0000"),
            _issue("MARK-2", "2024-05-03T12:00:00.000+0200"),
        ]
    )
    prs = _FakePrSource([_pr("7", "2024-05-02T00:00:00Z"), _pr("8", "2024-04-30T00:00:00Z")])
    agg, _ = _aggregator(tmp_path, tracker, prs)
    assert [i.id for i in agg.list_issues(limit=3)] == ["MARK-2", "7", "MARK-1"]


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("2024-05-01T10:00:00.000+0000", "2024-05-01T10:00:00.000+00:00"),
        ("2024-05-01T10:00:00.000-0530", "2024-05-01T10:00:00.000-05:30"),
        ("2024-05-01T10:00:00Z", "2024-05-01T10:00:00+00:00"),
        ("2024-05-01T10:00:00+02:00", "2024-05-01T10:00:00+02:00"),
        ("2024-05-01", "2024-05-01"),
    ],
)
def test_normalize_timestamp(raw: str, expected: str):
    assert normalize_timestamp(raw) == expected


def test_create_pr_source_selects_provider(tmp_path: Path):
    from loomcore.github_tracker import GitHubPullRequests

    source = create_pr_source(LoomSettings(), project_path=tmp_path)
    assert isinstance(source, GitHubPullRequests)

    bitbucket = parse_settings(
        {
            "versionControl": {
                "provider": "bitbucket",
                "bitbucket": {
                    "username": "me",
                    "apiToken": "tok",
                    "workspace": "acme",
                    "repoSlug": "widgets",
                },
            }
        }
    )
    from loomcore.bitbucket import BitBucketPullRequests

    bb_source = create_pr_source(bitbucket, project_path=tmp_path)
    assert isinstance(bb_source, BitBucketPullRequests)
    assert bb_source.client.workspace == "acme"
