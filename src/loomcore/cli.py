"""loomcore CLI.

Subcommands:
  issues    -> list open issues and pull requests (cached for two minutes)
  classify  -> classify an identifier against the configured tracker
  detect    -> derive an identifier from the current directory / branch
  port      -> deterministic dev-server port for an identifier or branch

Machine-readable output (``--json``) goes to stdout; logs go to stderr.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

from . import __version__
from .config import LoomSettings, load_settings
from .errors import LoomError
from .git import find_main_worktree_path
from .identifiers import PrProbe, auto_detect, classify
from .issues import DEFAULT_LIMIT, IssuesAggregator
from .logging import configure_logging
from .models import IssueListItem, ParsedIdentifier
from .ports import calculate_port_for_branch, calculate_port_from_identifier, port_for_identifier
from .tracker import IssueTracker, create_tracker

_MAX_HELP_WIDTH = 100
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


class _HelpFormatter(argparse.HelpFormatter):
    def __init__(self, prog: str) -> None:
        super().__init__(prog, max_help_position=30, width=_MAX_HELP_WIDTH)


class _FormatterArgumentParser(argparse.ArgumentParser):
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("formatter_class", _HelpFormatter)
        super().__init__(*args, **kwargs)


def _build_parser() -> argparse.ArgumentParser:
    p = _FormatterArgumentParser(
        prog="loomcore", description="Identifier, port and issue resolution for looms"
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument(
        "--quiet",
        action="store_true",
        help="Only log errors (env: LOOMCORE_QUIET=1)",
    )
    p.add_argument("--log-json", action="store_true", help="Emit logs as JSON lines on stderr")
    p.add_argument("--log-level", choices=LOG_LEVELS, default="WARNING")
    sub = p.add_subparsers(
        dest="cmd",
        required=True,
        parser_class=_FormatterArgumentParser,
        metavar="<command>",
    )

    pi = sub.add_parser("issues", help="List open issues and pull requests")
    pi.add_argument("--project", help="Project root (default: main worktree or cwd)")
    pi.add_argument("--limit", type=int, default=DEFAULT_LIMIT)
    pi.add_argument("--sprint", help="Sprint name or 'current' (Jira only)")
    pi.add_argument("--mine", action="store_true", help="Only items assigned to / authored by me")
    pi.add_argument("--json", action="store_true")

    pc = sub.add_parser("classify", help="Classify an issue / PR / branch / description")
    pc.add_argument("identifier")
    pc.add_argument("--project", help="Project root (default: main worktree or cwd)")
    pc.add_argument("--json", action="store_true")

    pd = sub.add_parser("detect", help="Detect the identifier of the current loom")
    pd.add_argument("--json", action="store_true")

    pp = sub.add_parser("port", help="Print the port for an identifier or branch")
    target = pp.add_mutually_exclusive_group(required=True)
    target.add_argument("identifier", nargs="?")
    target.add_argument("--branch")
    pp.add_argument("--base-port", type=int, help="Base port (default: settings basePort)")
    pp.add_argument("--project", help="Project root used to read settings")
    return p


def _project_root(explicit: str | None) -> Path:
    if explicit:
        return Path(explicit)
    try:
        return find_main_worktree_path()
    except (LoomError, OSError):
        return Path.cwd()


def _pr_probe(settings: LoomSettings, root: Path, tracker: IssueTracker) -> PrProbe | None:
    if tracker.supports_pull_requests:
        return None
    if settings.version_control.provider == "bitbucket":
        from .bitbucket import BitBucketTracker

        def _bitbucket_probe(number: int) -> bool:
            bb = BitBucketTracker.from_settings(settings.version_control.bitbucket, None, root)
            return bb.is_pull_request(number)

        return _bitbucket_probe
    from .gh import GhRunner
    from .github_tracker import GitHubTracker

    github = GitHubTracker(runner=GhRunner.from_settings(settings.issue_management.github, root))
    return github.is_pull_request


def _render_identifier(parsed: ParsedIdentifier, base_port: int, as_json: bool) -> None:
    payload = parsed.to_dict()
    if parsed.type != "description":
        payload["port"] = port_for_identifier(parsed, base_port)
    if as_json:
        print(json.dumps(payload, indent=2))
        return
    value = parsed.branch_name if parsed.type == "branch" else parsed.number
    line = f"{parsed.type}"
    if value is not None:
        line += f" {value}"
    if "port" in payload:
        line += f" (port {payload['port']})"
    print(line)


def _render_items(items: list[IssueListItem], as_json: bool) -> None:
    if as_json:
        print(json.dumps([i.to_dict() for i in items], indent=2))
        return
    if not items:
        print("No open issues or pull requests")
        return
    for item in items:
        print(f"{item.type:<5} {item.id:<12} {item.state:<12} {item.title[:70]}")


def _cmd_issues(args: argparse.Namespace) -> int:
    items = IssuesAggregator().list_issues(
        args.project, limit=args.limit, sprint=args.sprint, mine=args.mine
    )
    _render_items(items, args.json)
    return 0


def _cmd_classify(args: argparse.Namespace) -> int:
    root = _project_root(args.project)
    settings = load_settings(root)
    tracker = create_tracker(settings, project_path=root)
    parsed = classify(args.identifier, tracker, pr_probe=_pr_probe(settings, root, tracker))
    _render_identifier(parsed, settings.base_port, args.json)
    return 0


def _cmd_detect(args: argparse.Namespace) -> int:
    parsed = auto_detect()
    settings = load_settings(_project_root(None))
    _render_identifier(parsed, settings.base_port, args.json)
    return 0


def _cmd_port(args: argparse.Namespace) -> int:
    base_port = args.base_port
    if base_port is None:
        base_port = load_settings(_project_root(args.project)).base_port
    if args.branch:
        port = calculate_port_for_branch(args.branch, base_port)
    else:
        port = calculate_port_from_identifier(args.identifier, base_port)
    print(port)
    return 0


_HANDLERS: dict[str, Callable[[argparse.Namespace], int]] = {
    "issues": _cmd_issues,
    "classify": _cmd_classify,
    "detect": _cmd_detect,
    "port": _cmd_port,
}


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if not args.quiet and os.environ.get("LOOMCORE_QUIET") == "1":
        args.quiet = True
    configure_logging(json_logging=args.log_json, level="ERROR" if args.quiet else args.log_level)
    handler = _HANDLERS.get(args.cmd)
    if handler is None:  # pragma: no cover - argparse enforces valid choices
        parser.print_help()
        return 1
    try:
        return handler(args)
    except LoomError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
