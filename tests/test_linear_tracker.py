from __future__ import annotations

import pytest

from loomcore.config import LinearSettings
from loomcore.env_auth import EnvAuthConfig, EnvironmentAuthManager
from loomcore.errors import ConfigurationError, ErrorKind, ProviderError
from loomcore.linear_tracker import (
    LinearTracker,
    derive_team_key,
    normalize_author,
    normalize_linear_state,
)

ISSUE = {
    "id": "uuid-1",
    "identifier": "ENG-123",
    "title": "Dark mode",
    "description": "Add a toggle",
    "url": "https://linear.app/acme/issue/ENG-123",
    "state": {"name": "In Progress", "type": "started"},
    "team": {"key": "ENG"},
    "creator": {"id": "u1", "name": "ada", "displayName": "Ada"},
    "assignee": None,
    "labels": {"nodes": [{"name": "ui", "color": "#fff"}]},
}


def _tracker(session, **kw) -> LinearTracker:
    return LinearTracker(api_token="lin_api_test", session=session, **kw)


def _gql(data: dict) -> dict:
    return {"data": data}


def test_requires_token():
    with pytest.raises(ConfigurationError, match="LINEAR_API_TOKEN"):
        LinearTracker(api_token="")


def test_from_settings_reads_env(monkeypatch: pytest.MonkeyPatch, dummy_session):
    monkeypatch.setenv("LINEAR_API_TOKEN", "lin_api_env")
    monkeypatch.setenv("LINEAR_TEAM_KEY", "OPS")
    auth = EnvironmentAuthManager(EnvAuthConfig(load_dotenv=False))
    tracker = LinearTracker.from_settings(
        LinearSettings(team_id="team-uuid"), auth, session=dummy_session([])
    )
    assert tracker.team_id == "team-uuid"
    assert tracker.env_team_key == "OPS"
    assert tracker.client._session.headers["Authorization"] == "lin_api_env"


def test_from_settings_without_token_is_configuration_error():
    auth = EnvironmentAuthManager(EnvAuthConfig(load_dotenv=False))
    with pytest.raises(ConfigurationError):
        LinearTracker.from_settings(LinearSettings(), auth)


def test_get_issue_with_comments(dummy_session, response):
    session = dummy_session(
        [
            response(200, _gql({"issue": ISSUE})),
            response(
                200,
                _gql(
                    {
                        "issue": {
                            "comments": {
                                "nodes": [
                                    {
                                        "id": "c1",
                                        "body": "LGTM",
                                        "createdAt": "2024-05-01T00:00:00Z",
                                        "user": {"id": "u2", "name": "bob"},
                                    }
                                ]
                            }
                        }
                    }
                ),
            ),
        ]
    )
    tracker = _tracker(session)
    issue = tracker.get_issue("ENG-123")

    assert issue.id == "ENG-123"
    assert issue.state == "open"
    assert issue.author is not None and issue.author.display_name == "Ada"
    assert issue.assignees == []
    assert issue.labels is not None and issue.labels[0].name == "ui"
    assert issue.comments is not None and issue.comments[0].author is not None
    assert issue.comments[0].author.display_name == "bob"
    assert issue.to_dict()["linearState"] == "In Progress"
    assert tracker.cached_team_key == "ENG"
    method, url, kw = session.request_log[0]
    assert (method, url) == ("POST", "https://api.linear.app/graphql")
    assert kw["json"]["variables"] == {"id": "ENG-123"}


@pytest.mark.parametrize(
    "state, expected",
    [
        ("Done", "closed"),
        ("Canceled", "closed"),
        ("Cancelled", "closed"),
        ("Todo", "open"),
        (None, "open"),
    ],
)
def test_state_normalization(state, expected):
    assert normalize_linear_state(state) == expected


def test_issue_exists_maps_not_found_to_none(dummy_session, response):
    session = dummy_session(
        [
            response(200, {"errors": [{"message": "Entity not found: Issue"}]}),
            response(200, _gql({"issue": None})),
            response(200, _gql({"issue": ISSUE})),
        ]
    )
    tracker = _tracker(session)
    assert tracker.issue_exists("ENG-999") is None
    assert tracker.issue_exists("ENG-998") is None
    assert tracker.issue_exists("eng-123") == "ENG-123"


def test_issue_exists_propagates_auth_failures(dummy_session, response):
    session = dummy_session([response(401, {"errors": [{"message": "bad key"}]})])
    with pytest.raises(ProviderError) as excinfo:
        _tracker(session).issue_exists("ENG-1")
    assert excinfo.value.kind is ErrorKind.AUTH


def test_detect_input_type_never_calls_api(dummy_session):
    assert _tracker(dummy_session([])).detect_input_type(12) == "issue"


def test_list_issues_requires_team(dummy_session):
    with pytest.raises(ConfigurationError, match="teamId"):
        _tracker(dummy_session([])).list_issues(10)


def test_list_issues_filters_open_and_mine(dummy_session, response):
    nodes = [
        {
            "identifier": "ENG-1",
            "title": "A",
            "updatedAt": "2024-05-01T00:00:00Z",
            "url": "u",
            "state": {"name": "Todo"},
        }
    ]
    session = dummy_session([response(200, _gql({"team": {"issues": {"nodes": nodes}}}))])
    items = _tracker(session, team_id="team-uuid").list_issues(5, mine=True)

    assert [(i.id, i.state, i.type) for i in items] == [("ENG-1", "todo", "issue")]
    variables = session.request_log[0][2]["json"]["variables"]
    assert variables["first"] == 5
    assert variables["filter"]["assignee"] == {"isMe": {"eq": True}}
    assert variables["filter"]["state"] == {"type": {"nin": ["completed", "canceled"]}}


def test_comment_mutations(dummy_session, response):
    session = dummy_session(
        [
            response(
                200,
                _gql({"commentCreate": {"success": True, "comment": {"id": "c9", "url": "cu"}}}),
            ),
            response(
                200,
                _gql(
                    {
                        "commentUpdate": {
                            "success": True,
                            "comment": {"id": "c9", "url": "cu", "updatedAt": "later"},
                        }
                    }
                ),
            ),
            response(200, _gql({"commentCreate": {"success": False}})),
        ]
    )
    tracker = _tracker(session)
    assert tracker.create_comment("ENG-1", "hi").id == "c9"
    assert tracker.update_comment("c9", "ENG-1", "edit").updated_at == "later"
    with pytest.raises(ProviderError, match="did not succeed"):
        tracker.create_comment("ENG-1", "again")


def test_team_key_resolution_order(dummy_session):
    tracker = _tracker(dummy_session([]), env_team_key="ENV")
    tracker.cached_team_key = "CACHED"
    assert tracker.resolve_team_key("EXPLICIT") == "EXPLICIT"
    assert tracker.resolve_team_key() == "ENV"
    tracker.env_team_key = None
    assert tracker.resolve_team_key() == "CACHED"
    tracker.cached_team_key = None
    with pytest.raises(ConfigurationError):
        tracker.resolve_team_key()


def test_create_issue_resolves_team_and_labels(dummy_session, response):
    session = dummy_session(
        [
            response(200, _gql({"team": {"id": "team-uuid", "key": "ENG"}})),
            response(200, _gql({"issueLabels": {"nodes": [{"id": "l1", "name": "bug"}]}})),
            response(
                200,
                _gql(
                    {
                        "issueCreate": {
                            "success": True,
                            "issue": {"id": "i1", "identifier": "ENG-200", "url": "iu"},
                        }
                    }
                ),
            ),
        ]
    )
    result = _tracker(session).create_issue("T", "B", labels=["bug", "nope"], team_key="ENG")

    assert result.id == "ENG-200" and result.number is None
    create_input = session.request_log[2][2]["json"]["variables"]["input"]
    assert create_input == {
        "teamId": "team-uuid",
        "title": "T",
        "description": "B",
        "labelIds": ["l1"],
    }


def test_child_issue_needs_team_key_before_network(dummy_session):
    session = dummy_session([])
    with pytest.raises(ConfigurationError, match="teamKey is required"):
        _tracker(session).create_child_issue("123", "Child", "Body")
    assert session.request_log == []


def test_child_issue_derives_team_from_parent(dummy_session, response):
    session = dummy_session(
        [
            response(200, _gql({"issue": ISSUE})),
            response(200, _gql({"team": {"id": "team-uuid", "key": "ENG"}})),
            response(
                200,
                _gql(
                    {
                        "issueCreate": {
                            "success": True,
                            "issue": {"id": "i2", "identifier": "ENG-201", "url": "iu"},
                        }
                    }
                ),
            ),
        ]
    )
    result = _tracker(session).create_child_issue("ENG-123", "Child", "Body")
    assert result.id == "ENG-201"
    assert session.request_log[1][2]["json"]["variables"] == {"id": "ENG"}
    assert session.request_log[2][2]["json"]["variables"]["input"]["parentId"] == "uuid-1"


def test_helpers():
    assert derive_team_key("eng-12") == "ENG"
    assert derive_team_key("123") is None
    assert normalize_author({"name": "ada"}).id == "ada"  # type: ignore[union-attr]
    assert normalize_author({}) is None
