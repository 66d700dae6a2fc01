"""Identifier classification.

``classify`` turns a short user-typed token into a :class:`ParsedIdentifier`.
Checks run in a fixed order and the first match wins:

1. empty -> ``ValidationError``
2. long text with a space -> ``description``
3. ``pr/N`` / ``pr-N`` -> ``pr``
4. project key (``ENG-123``) -> tracker lookup -> ``issue`` or ``NotFoundError``
5. ``N`` / ``#N`` -> issue or PR, disambiguated by the tracker or a PR probe
6. branch-name charset -> ``branch``, else ``ValidationError``

Only steps 4 and 5 can touch the network.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from pathlib import Path
from typing import Literal

from .errors import NotFoundError, ProviderError, ValidationError
from .models import ParsedIdentifier, UserInput
from .tracker import IssueTracker

DESCRIPTION_MIN_LENGTH = 15

PR_PATTERN = re.compile(r"^pr[/-](\d+)$", re.IGNORECASE)
PROJECT_KEY_PATTERN = re.compile(r"^[A-Za-z]{2,}[A-Za-z0-9]*-\d+$")
NUMERIC_PATTERN = re.compile(r"^#?(\d+)$")
BRANCH_PATTERN = re.compile(r"^[a-zA-Z0-9/_-]+$")
LINEAR_STYLE_PATTERN = re.compile(r"^([A-Z]{2,}-\d+)$", re.IGNORECASE)

PR_DIR_SUFFIX = re.compile(r"_pr_(\d+)$")
_BRANCH_PR_PATTERNS = (
    re.compile(r"^pr/(\d+)", re.IGNORECASE),
    re.compile(r"^pull/(\d+)", re.IGNORECASE),
    re.compile(r"^(?:feature|hotfix)/pr[-_]?(\d+)", re.IGNORECASE),
    re.compile(r"pr[-_]?(\d+)", re.IGNORECASE),
)
_ISSUE_IN_TEXT = re.compile(r"issue[-_]?(\d+)", re.IGNORECASE)
_LEADING_NUMBER = re.compile(r"(?:^|/)(\d+)[-_]")
_KEY_IN_TEXT = re.compile(r"(?:^|[/_])([A-Z]{2,}-\d+)(?=$|[-_/])")

PrProbe = Callable[[int], bool]


def parse_user_input(raw: str) -> UserInput:
    """Capture raw input once; a leading space suppresses auto-capitalization."""
    return UserInput(text=raw.strip(), suppress_auto_capitalize=raw.startswith(" "))


def capitalize_description(user_input: UserInput) -> str:
    text = user_input.text
    if user_input.suppress_auto_capitalize or not text:
        return text
    return text[0].upper() + text[1:]


def match_issue_identifier(text: str) -> tuple[Literal["linear", "numeric"], str] | None:
    """Pure shape check; does not verify the issue exists."""
    trimmed = text.strip()
    m = LINEAR_STYLE_PATTERN.match(trimmed)
    if m:
        return "linear", m.group(1).upper()
    m = NUMERIC_PATTERN.match(trimmed)
    if m:
        return "numeric", m.group(1)
    return None


def extract_pr_number(branch: str) -> int | None:
    for pattern in _BRANCH_PR_PATTERNS:
        m = pattern.search(branch)
        if m:
            return int(m.group(1))
    return None


def extract_issue_identifier(text: str) -> str | None:
    """Find an issue reference inside a directory or branch name."""
    m = _ISSUE_IN_TEXT.search(text)
    if m:
        return m.group(1)
    m = _KEY_IN_TEXT.search(text)
    if m and not m.group(1).upper().startswith("PR-"):
        return m.group(1)
    m = _LEADING_NUMBER.search(text)
    if m:
        return m.group(1)
    return None


def _issue_number(identifier: str) -> int | str:
    return int(identifier) if identifier.isdigit() else identifier


def classify(
    raw_input: str,
    tracker: IssueTracker,
    *,
    pr_probe: PrProbe | None = None,
) -> ParsedIdentifier:
    """Classify ``raw_input`` against the configured ``tracker``.

    ``pr_probe`` answers "is N a pull request?" for trackers that have no PR
    concept of their own (Linear, Jira); it is normally backed by GitHub.
    """
    user = parse_user_input(raw_input)
    text = user.text
    suppress = user.suppress_auto_capitalize

    if not text:
        raise ValidationError("missing identifier")

    if len(text) > DESCRIPTION_MIN_LENGTH and " " in text:
        return ParsedIdentifier(
            type="description", original_input=text, suppress_auto_capitalize=suppress
        )

    m = PR_PATTERN.match(text)
    if m:
        return ParsedIdentifier(type="pr", original_input=text, number=int(m.group(1)))

    if PROJECT_KEY_PATTERN.match(text) and tracker.uses_project_keys:
        found = tracker.issue_exists(text)
        if found is None:
            raise NotFoundError(f"Could not find {tracker.provider_name} issue {text}")
        return ParsedIdentifier(type="issue", original_input=text, number=found)

    m = NUMERIC_PATTERN.match(text)
    if m:
        number = int(m.group(1))
        if tracker.supports_pull_requests:
            kind = tracker.detect_input_type(number)
            if kind is None:
                raise NotFoundError(
                    f"Could not find issue or pull request #{number} on {tracker.provider_name}"
                )
            return ParsedIdentifier(type=kind, original_input=text, number=number)
        if pr_probe is not None and pr_probe(number):
            return ParsedIdentifier(type="pr", original_input=text, number=number)
        return ParsedIdentifier(type="issue", original_input=text, number=number)

    if BRANCH_PATTERN.match(text):
        return ParsedIdentifier(type="branch", original_input=text, branch_name=text)
    raise ValidationError("invalid branch name")


def detect_from_environment(cwd: str | Path, branch: str | None) -> ParsedIdentifier:
    """Derive an identifier from the working directory and current branch."""
    dir_name = Path(cwd).name
    m = PR_DIR_SUFFIX.search(dir_name)
    if m:
        return ParsedIdentifier(type="pr", original_input=dir_name, number=int(m.group(1)))

    for source in (dir_name, branch or ""):
        ident = extract_issue_identifier(source)
        if ident:
            return ParsedIdentifier(
                type="issue", original_input=source, number=_issue_number(ident)
            )

    if branch:
        return ParsedIdentifier(type="branch", original_input=branch, branch_name=branch)
    raise ValidationError(
        "Could not detect an issue, PR or branch from the current directory; "
        "pass an identifier explicitly"
    )


def auto_detect(
    cwd: str | Path | None = None,
    git: Callable[[str | Path | None], str | None] | None = None,
) -> ParsedIdentifier:
    """``detect_from_environment`` wired to the current directory and git branch.

    ``git`` returns the current branch for a directory (None when detached).
    """
    if git is None:
        from .git import current_branch as git
    where = Path(cwd) if cwd else Path.cwd()
    try:
        branch = git(where)
    except ProviderError:
        branch = None
    return detect_from_environment(where, branch)


__all__ = [
    "classify",
    "parse_user_input",
    "capitalize_description",
    "match_issue_identifier",
    "extract_pr_number",
    "extract_issue_identifier",
    "detect_from_environment",
    "auto_detect",
    "PrProbe",
]
