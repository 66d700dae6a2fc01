"""Deterministic port assignment for looms.

Every workspace gets a port derived purely from its identifier so repeated
invocations reuse the same port without any coordination service. Numeric
identifiers map linearly onto ``base_port``; branch names (and identifiers
without a numeric suffix) go through a SHA-256 derived offset in
``[1, 999]``. The hash path must stay bit-compatible with ports persisted by
earlier releases: first 8 hex digits of the SHA-256 of the UTF-8 name.
"""

from __future__ import annotations

import hashlib
import re

from .errors import ValidationError
from .models import ParsedIdentifier, PortAssignmentOptions

MAX_PORT = 65535
DEFAULT_BASE_PORT = 3000
BRANCH_OFFSET_RANGE = 999

_NUMERIC_SUFFIX = re.compile(r"[-_]?(\d+)$")
_NUMERIC = re.compile(r"^\d+$")


def wrap_port(raw_port: int, base_port: int) -> int:
    """Wrap ``raw_port`` into ``(base_port, 65535]`` when it overflows."""
    if raw_port <= MAX_PORT:
        return raw_port
    span = MAX_PORT - base_port
    return ((raw_port - base_port - 1) % span) + base_port + 1


def extract_numeric_suffix(identifier: str) -> int | None:
    """``MARK-324`` -> 324; None when there are no trailing digits."""
    match = _NUMERIC_SUFFIX.search(identifier)
    if match is None:
        return None
    return int(match.group(1))


def generate_port_offset_from_branch_name(branch_name: str) -> int:
    if not branch_name or not branch_name.strip():
        raise ValidationError("Branch name cannot be empty")
    digest = hashlib.sha256(branch_name.encode("utf-8")).hexdigest()
    return (int(digest[:8], 16) % BRANCH_OFFSET_RANGE) + 1


def calculate_port_for_branch(branch_name: str, base_port: int = DEFAULT_BASE_PORT) -> int:
    offset = generate_port_offset_from_branch_name(branch_name)
    return wrap_port(base_port + offset, base_port)


def calculate_port_from_identifier(
    identifier: int | str, base_port: int = DEFAULT_BASE_PORT
) -> int:
    if isinstance(identifier, bool):
        raise ValidationError(f"Invalid identifier: {identifier!r}")
    if isinstance(identifier, int):
        return wrap_port(base_port + identifier, base_port)
    text = str(identifier).strip()
    if _NUMERIC.match(text):
        return wrap_port(base_port + int(text), base_port)
    suffix = extract_numeric_suffix(text)
    if suffix is not None:
        return wrap_port(base_port + suffix, base_port)
    return calculate_port_for_branch(f"issue-{text}", base_port)


def assign_port(options: PortAssignmentOptions) -> int:
    """Resolve a port: issue number, then PR number, then branch, then base."""
    if options.issue_number is not None:
        return calculate_port_from_identifier(options.issue_number, options.base_port)
    if options.pr_number is not None:
        return calculate_port_from_identifier(options.pr_number, options.base_port)
    if options.branch_name:
        return calculate_port_for_branch(options.branch_name, options.base_port)
    return options.base_port


def port_for_identifier(parsed: ParsedIdentifier, base_port: int = DEFAULT_BASE_PORT) -> int:
    if parsed.type == "issue":
        opts = PortAssignmentOptions(base_port=base_port, issue_number=parsed.number)
    elif parsed.type == "pr":
        opts = PortAssignmentOptions(base_port=base_port, pr_number=_as_int(parsed.number))
    elif parsed.type == "branch":
        opts = PortAssignmentOptions(base_port=base_port, branch_name=parsed.branch_name)
    else:
        raise ValidationError("descriptions have no port until an issue is created for them")
    return assign_port(opts)


def _as_int(value: int | str | None) -> int | None:
    if value is None or isinstance(value, int):
        return value
    return int(value)


__all__ = [
    "MAX_PORT",
    "DEFAULT_BASE_PORT",
    "wrap_port",
    "extract_numeric_suffix",
    "generate_port_offset_from_branch_name",
    "calculate_port_for_branch",
    "calculate_port_from_identifier",
    "assign_port",
    "port_for_identifier",
]
