"""Error taxonomy, classification & redaction.

Every failure raised by loomcore derives from :class:`LoomError` so the CLI
can render a clean message without a traceback. Provider failures carry an
explicit :class:`ErrorKind`; adapters set it from structured signals (HTTP
status, exception type) wherever the underlying client exposes them, and
``classify_error`` falls back to message inspection only for text-only
sources such as the ``gh`` CLI.

Public API:
- ``ErrorKind`` / ``EXPECTED_KINDS``
- exception classes (``ValidationError`` ... ``CacheError``)
- ``classify_error(exc) -> ErrorInfo``
- ``is_expected(exc) -> bool``
- ``redact(text) -> str``
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

_SENSITIVE_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"ghp_[A-Za-z0-9]{20,40}"),  # GitHub classic tokens
    re.compile(r"github_pat_\w{20,}"),  # GitHub fine-grained tokens
    re.compile(r"gho_[A-Za-z0-9]{20,40}"),  # gh CLI OAuth tokens
    re.compile(r"lin_api_[A-Za-z0-9]{20,}"),  # Linear personal API keys
    re.compile(r"ATATT[A-Za-z0-9_\-=]{20,}"),  # Atlassian API tokens
]

_REDACTION_PLACEHOLDER = "<redacted>"


class ErrorKind(str, Enum):
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    CONNECTION = "connection"
    NO_REMOTES = "no_remotes"
    MISSING_CREDENTIALS = "missing_credentials"
    NOT_FOUND = "not_found"
    UNEXPECTED = "unexpected"


# Failures that degrade a listing to partial results instead of aborting it.
EXPECTED_KINDS = frozenset(
    {
        ErrorKind.AUTH,
        ErrorKind.RATE_LIMIT,
        ErrorKind.TIMEOUT,
        ErrorKind.CONNECTION,
        ErrorKind.NO_REMOTES,
        ErrorKind.MISSING_CREDENTIALS,
    }
)


class LoomError(RuntimeError):
    """Base class for all loomcore failures."""


class ValidationError(LoomError):
    """Malformed local input; never retried."""


class NotFoundError(LoomError):
    """Identifier could not be resolved against the configured backend."""


class ConfigurationError(LoomError):
    """Missing or invalid configuration, detected before any network call."""


class ProviderError(LoomError):
    """A tracker or VCS backend call failed."""

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind = ErrorKind.UNEXPECTED,
        provider: str | None = None,
        status: int | None = None,
        output: str | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.provider = provider
        self.status = status
        self.output = output

    @property
    def expected(self) -> bool:
        return self.kind in EXPECTED_KINDS


class ChildIssueLinkError(ProviderError):
    """The child issue exists but linking it to its parent failed.

    The created issue is not rolled back; ``created`` describes it so callers
    can report or link it by hand.
    """

    def __init__(self, message: str, *, created: Any, **kw: Any):
        super().__init__(message, **kw)
        self.created = created


class CacheError(LoomError):
    """Cache read/parse/write failure. Absorbed inside the cache layer."""


@dataclass
class ErrorInfo:
    kind: ErrorKind
    message: str
    original_type: str
    transient: bool = False
    details: dict[str, Any] | None = None


_PHRASES: list[tuple[ErrorKind, tuple[str, ...]]] = [
    (
        ErrorKind.AUTH,
        (
            "not logged in",
            "auth login",
            "authentication required",
            "bad credentials",
            "unauthorized",
        ),
    ),
    (ErrorKind.RATE_LIMIT, ("rate limit", "secondary rate", "abuse detection")),
    (ErrorKind.TIMEOUT, ("etimedout", "timed out", "timeout")),
    (
        ErrorKind.CONNECTION,
        (
            "econnrefused",
            "connection refused",
            "connection reset",
            "could not resolve host",
            "temporarily unavailable",
        ),
    ),
    (
        ErrorKind.NO_REMOTES,
        ("no git remotes", "none of the git remotes", "no remote", "not a git repository"),
    ),
    (ErrorKind.MISSING_CREDENTIALS, ("missing credentials", "api token not configured")),
    (ErrorKind.NOT_FOUND, ("could not resolve to", "not found", "no pull requests found")),
]


def redact(text: str) -> str:
    """Replace known token shapes in ``text`` with a placeholder."""
    if not text:
        return text
    redacted = text
    for pat in _SENSITIVE_PATTERNS:
        redacted = pat.sub(_REDACTION_PLACEHOLDER, redacted)
    return redacted


def kind_from_text(text: str) -> ErrorKind:
    low = (text or "").lower()
    for kind, phrases in _PHRASES:
        if any(p in low for p in phrases):
            return kind
    return ErrorKind.UNEXPECTED


def classify_error(exc: BaseException) -> ErrorInfo:
    """Best-effort classification of an exception.

    ``ProviderError`` instances already know their kind. Anything else is
    classified from its message (and ``stderr``/``output`` attributes when a
    subprocess error carries them).
    """
    msg = str(exc) if exc else ""
    if isinstance(exc, ProviderError):
        kind = exc.kind
    else:
        text = msg
        for attr in ("stderr", "output"):
            extra = getattr(exc, attr, None)
            if isinstance(extra, str) and extra:
                text = f"{text}\n{extra}"
        kind = kind_from_text(text)
    transient = kind in (ErrorKind.RATE_LIMIT, ErrorKind.TIMEOUT, ErrorKind.CONNECTION)
    return ErrorInfo(kind, redact(msg), exc.__class__.__name__, transient=transient)


def is_expected(exc: BaseException) -> bool:
    return classify_error(exc).kind in EXPECTED_KINDS


__all__ = [
    "ErrorKind",
    "EXPECTED_KINDS",
    "LoomError",
    "ValidationError",
    "NotFoundError",
    "ConfigurationError",
    "ProviderError",
    "ChildIssueLinkError",
    "CacheError",
    "ErrorInfo",
    "classify_error",
    "kind_from_text",
    "is_expected",
    "redact",
]
