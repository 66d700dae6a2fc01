"""loomcore - resolution core for per-issue development workspaces ("looms").

High-level public API:

from loomcore import classify, calculate_port_from_identifier, list_issues

parsed = classify('ENG-123', tracker)
port = calculate_port_from_identifier(parsed.number, 3000)
items = list_issues(limit=20, mine=True)

``create_tracker(load_settings())`` returns the adapter for the configured
issue tracker (GitHub, Linear, Jira or BitBucket); every adapter satisfies
``IssueTracker``.
"""

from __future__ import annotations

from .config import LoomSettings, load_settings
from .errors import (
    CacheError,
    ChildIssueLinkError,
    ConfigurationError,
    ErrorKind,
    LoomError,
    NotFoundError,
    ProviderError,
    ValidationError,
)
from .identifiers import auto_detect, classify, parse_user_input
from .issue_cache import IssueListCache
from .issues import IssuesAggregator, list_issues
from .models import IssueListItem, IssueResult, ParsedIdentifier
from .ports import assign_port, calculate_port_for_branch, calculate_port_from_identifier
from .tracker import IssueTracker, create_tracker

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "LoomSettings",
    "load_settings",
    "CacheError",
    "ChildIssueLinkError",
    "ConfigurationError",
    "ErrorKind",
    "LoomError",
    "NotFoundError",
    "ProviderError",
    "ValidationError",
    "auto_detect",
    "classify",
    "parse_user_input",
    "IssueListCache",
    "IssuesAggregator",
    "list_issues",
    "IssueListItem",
    "IssueResult",
    "ParsedIdentifier",
    "assign_port",
    "calculate_port_for_branch",
    "calculate_port_from_identifier",
    "IssueTracker",
    "create_tracker",
]
