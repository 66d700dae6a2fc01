"""Normalized data model shared by the classifier, trackers and listing cache.

Python attributes are snake_case; ``to_dict`` renders the camelCase shape
used on the wire (``--json`` output) and in cache files.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

IdentifierType = Literal["issue", "pr", "branch", "description"]
IssueState = Literal["open", "closed"]
ItemType = Literal["issue", "pr"]


@dataclass(frozen=True)
class UserInput:
    """Raw identifier text captured once at input time.

    A leading space on the raw input means the user opted out of automatic
    capitalization; the flag travels with the text instead of being
    re-detected downstream.
    """

    text: str
    suppress_auto_capitalize: bool = False


@dataclass(frozen=True)
class ParsedIdentifier:
    type: IdentifierType
    original_input: str
    number: int | str | None = None
    branch_name: str | None = None
    suppress_auto_capitalize: bool = False

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.type, "originalInput": self.original_input}
        if self.number is not None:
            out["number"] = self.number
        if self.branch_name is not None:
            out["branchName"] = self.branch_name
        if self.suppress_auto_capitalize:
            out["suppressAutoCapitalize"] = True
        return out


@dataclass
class FlexibleAuthor:
    id: str
    display_name: str
    login: str | None = None
    avatar_url: str | None = None
    url: str | None = None
    extras: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"id": self.id, "displayName": self.display_name}
        if self.login:
            out["login"] = self.login
        if self.avatar_url:
            out["avatarUrl"] = self.avatar_url
        if self.url:
            out["url"] = self.url
        out.update(self.extras)
        return out


@dataclass
class Label:
    name: str
    extras: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, **self.extras}


@dataclass
class CommentSummary:
    id: str
    body: str
    author: FlexibleAuthor | None
    created_at: str
    updated_at: str | None = None
    extras: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "body": self.body,
            "author": self.author.to_dict() if self.author else None,
            "createdAt": self.created_at,
        }
        if self.updated_at:
            out["updatedAt"] = self.updated_at
        out.update(self.extras)
        return out


@dataclass
class CommentResult:
    id: str
    url: str
    created_at: str | None = None
    updated_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"id": self.id, "url": self.url}
        if self.created_at:
            out["created_at"] = self.created_at
        if self.updated_at:
            out["updated_at"] = self.updated_at
        return out


@dataclass
class CreateIssueResult:
    id: str
    url: str
    number: int | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"id": self.id, "url": self.url}
        if self.number is not None:
            out["number"] = self.number
        return out


@dataclass
class IssueResult:
    id: str
    title: str
    body: str
    state: IssueState
    url: str
    provider: str
    author: FlexibleAuthor | None
    assignees: list[FlexibleAuthor] | None = None
    labels: list[Label] | None = None
    comments: list[CommentSummary] | None = None
    # Backend-specific passthrough (milestone, linearState, issueType, ...)
    extras: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.id = str(self.id)
        if self.state not in ("open", "closed"):
            raise ValueError(f"state must be 'open' or 'closed', got {self.state!r}")

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "body": self.body,
            "state": self.state,
            "url": self.url,
            "provider": self.provider,
            "author": self.author.to_dict() if self.author else None,
        }
        if self.assignees is not None:
            out["assignees"] = [a.to_dict() for a in self.assignees]
        if self.labels is not None:
            out["labels"] = [lbl.to_dict() for lbl in self.labels]
        if self.comments is not None:
            out["comments"] = [c.to_dict() for c in self.comments]
        for key, value in self.extras.items():
            out.setdefault(key, value)
        return out


@dataclass
class IssueListItem:
    id: str
    title: str
    updated_at: str
    url: str
    state: str
    type: ItemType = "issue"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "updatedAt": self.updated_at,
            "url": self.url,
            "state": self.state,
            "type": self.type,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> IssueListItem:
        # Entries cached before PR support carry no ``type``.
        item_type = raw.get("type") or "issue"
        return cls(
            id=str(raw.get("id", "")),
            title=str(raw.get("title", "")),
            updated_at=str(raw.get("updatedAt", "")),
            url=str(raw.get("url", "")),
            state=str(raw.get("state", "")),
            type="pr" if item_type == "pr" else "issue",
        )


@dataclass
class CacheEntry:
    timestamp_ms: int
    project_path: str
    provider: str
    data: list[IssueListItem]

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp_ms,
            "projectPath": self.project_path,
            "provider": self.provider,
            "data": [item.to_dict() for item in self.data],
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> CacheEntry:
        timestamp = raw["timestamp"]
        if not isinstance(timestamp, (int, float)) or isinstance(timestamp, bool):
            raise TypeError("cache timestamp must be numeric")
        data = raw.get("data")
        if not isinstance(data, list):
            raise TypeError("cache data must be a list")
        return cls(
            timestamp_ms=int(timestamp),
            project_path=str(raw.get("projectPath", "")),
            provider=str(raw.get("provider", "")),
            data=[IssueListItem.from_dict(item) for item in data if isinstance(item, dict)],
        )


@dataclass
class PortAssignmentOptions:
    base_port: int = 3000
    issue_number: int | str | None = None
    pr_number: int | None = None
    branch_name: str | None = None


__all__ = [
    "IdentifierType",
    "IssueState",
    "ItemType",
    "UserInput",
    "ParsedIdentifier",
    "FlexibleAuthor",
    "Label",
    "CommentSummary",
    "CommentResult",
    "CreateIssueResult",
    "IssueResult",
    "IssueListItem",
    "CacheEntry",
    "PortAssignmentOptions",
]
