"""Thin ``git`` subprocess helpers used for root and remote discovery."""

from __future__ import annotations

import shutil
import subprocess  # nosec B404 - subprocess is required for git invocation
from collections.abc import Sequence
from pathlib import Path

from .errors import ErrorKind, ProviderError, kind_from_text

GIT_TIMEOUT = 15


def _git(args: Sequence[str], cwd: str | Path | None = None) -> str:
    git_path = shutil.which("git") or "git"
    try:
        proc = subprocess.run(  # nosec B603 - fixed git subcommands
            [git_path, *args],
            cwd=str(cwd) if cwd else None,
            capture_output=True,
            text=True,
            timeout=GIT_TIMEOUT,
            check=True,
        )
    except subprocess.CalledProcessError as exc:
        detail = (exc.stderr or exc.output or "").strip()
        raise ProviderError(
            f"git {' '.join(args[:2])} failed: {detail}",
            kind=kind_from_text(detail),
            provider="git",
            output=detail,
        ) from exc
    except subprocess.TimeoutExpired as exc:
        raise ProviderError(
            f"git {' '.join(args[:2])} timed out after {GIT_TIMEOUT}s",
            kind=ErrorKind.TIMEOUT,
            provider="git",
        ) from exc
    except OSError as exc:
        raise ProviderError(f"git not available: {exc}", provider="git") from exc
    return proc.stdout.strip()


def find_main_worktree_path(cwd: str | Path | None = None) -> Path:
    """Return the main worktree root, even when called from a linked worktree."""
    common = _git(["rev-parse", "--path-format=absolute", "--git-common-dir"], cwd)
    return Path(common).parent


def current_branch(cwd: str | Path | None = None) -> str | None:
    name = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd)
    return None if name in ("", "HEAD") else name


def remote_url(name: str = "origin", cwd: str | Path | None = None) -> str | None:
    try:
        url = _git(["remote", "get-url", name], cwd)
    except ProviderError:
        return None
    return url or None


def remote_urls(cwd: str | Path | None = None) -> list[str]:
    out = _git(["remote", "-v"], cwd)
    urls: list[str] = []
    for line in out.splitlines():
        parts = line.split()
        if len(parts) >= 2 and parts[1] not in urls:
            urls.append(parts[1])
    return urls


__all__ = ["find_main_worktree_path", "current_branch", "remote_url", "remote_urls"]
