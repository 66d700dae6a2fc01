"""Pytest configuration for loomcore tests.

Ensures the in-repo ``src`` directory is on ``sys.path`` so the package can be
imported without an editable install (``pip install -e .``), and isolates
every test from the user's environment: credentials, config root and retry
sleeps.
"""

from __future__ import annotations

import json
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

_ISOLATED_ENV = (
    "GITHUB_TOKEN",
    "GH_TOKEN",
    "LINEAR_API_TOKEN",
    "LINEAR_TEAM_KEY",
    "JIRA_API_TOKEN",
    "JIRA_HOST",
    "JIRA_USERNAME",
    "JIRA_PROJECT_KEY",
    "BITBUCKET_API_TOKEN",
    "BITBUCKET_USERNAME",
    "LOOMCORE_QUIET",
    "LOOMCORE_RETRY_ATTEMPTS",
    "LOOMCORE_RETRY_MAX_SLEEP",
)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in _ISOLATED_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("LOOMCORE_CONFIG_DIR", str(tmp_path / "config"))
    monkeypatch.setenv("LOOMCORE_RETRY_BASE", "0")
    import loomcore.retry

    monkeypatch.setattr(loomcore.retry.time, "sleep", lambda _secs: None)


@dataclass
class DummyResponse:
    status_code: int
    payload: Any = None

    def json(self) -> Any:
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload

    @property
    def text(self) -> str:
        payload = self.payload
        if payload is None:
            return ""
        if isinstance(payload, (dict, list)):
            return json.dumps(payload)
        return str(payload)


class DummySession:
    """Stands in for ``requests.Session``; replies from a queue and logs calls."""

    def __init__(self, responses: list[DummyResponse | Exception]):
        self._responses = list(responses)
        self.request_log: list[tuple[str, str, dict[str, Any]]] = []
        self.headers: dict[str, str] = {}
        self.auth: Any = None

    def request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str],
        json: Any | None = None,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> DummyResponse:
        self.request_log.append((method, url, {"headers": headers, "json": json, "params": params}))
        if not self._responses:
            raise AssertionError(f"No response queued for {method} {url}")
        nxt = self._responses.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return nxt


@pytest.fixture
def dummy_session():
    """Factory: ``dummy_session([DummyResponse(200, {...}), ...])``."""
    return DummySession


@pytest.fixture
def response():
    return DummyResponse
