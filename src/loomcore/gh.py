"""GitHub CLI (``gh``) runner.

All GitHub traffic goes through the user's authenticated ``gh`` binary so
loomcore never handles GitHub credentials itself. Failures surface as
``ProviderError`` whose kind is derived from the exit output, the only
signal ``gh`` exposes.
"""

from __future__ import annotations

import json
import re
import shutil
import subprocess  # nosec B404 - subprocess is required for GitHub CLI invocation
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from . import git
from .config import GitHubSettings
from .errors import ErrorKind, ProviderError, kind_from_text, redact
from .logging import get_logger
from .retry import run_with_retries

DEFAULT_TIMEOUT = 30

_GITHUB_REMOTE = re.compile(r"github\.com[/:]([^/]+)/([^/]+?)(?:\.git)?/?$")


def parse_github_remote(url: str) -> str | None:
    """Return ``owner/repo`` for a github.com remote URL."""
    match = _GITHUB_REMOTE.search(url.strip())
    if match is None:
        return None
    return f"{match.group(1)}/{match.group(2)}"


def resolve_repo(settings: GitHubSettings, cwd: str | Path | None = None) -> str | None:
    """``repo`` wins; a named ``remote`` is read from git; None lets gh use the cwd."""
    if settings.repo:
        return settings.repo
    if not settings.remote:
        return None
    url = git.remote_url(settings.remote, cwd)
    if url is None:
        raise ProviderError(
            f"git remote {settings.remote!r} is not configured",
            kind=ErrorKind.NO_REMOTES,
            provider="github",
        )
    repo = parse_github_remote(url)
    if repo is None:
        raise ProviderError(
            f"git remote {settings.remote!r} ({url}) does not point at github.com",
            kind=ErrorKind.NO_REMOTES,
            provider="github",
        )
    return repo


class GhRunner:
    """Executes ``gh`` commands and decodes their output."""

    def __init__(
        self,
        *,
        cwd: str | Path | None = None,
        repo: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.cwd = str(cwd) if cwd else None
        self.repo = repo
        self.timeout = timeout
        self._gh_path = shutil.which("gh")

    @classmethod
    def from_settings(
        cls, settings: GitHubSettings, cwd: str | Path | None = None
    ) -> GhRunner:
        return cls(cwd=cwd, repo=resolve_repo(settings, cwd))

    def _base_cmd(self, *parts: str, scoped: bool = False) -> list[str]:
        gh_base = self._gh_path if self._gh_path else "gh"
        cmd: list[str] = [gh_base, *parts]
        if scoped and self.repo:
            cmd.extend(["--repo", self.repo])
        return cmd

    def run(self, args: Sequence[str], *, scoped: bool = False) -> str:
        """Run ``gh <args>`` and return stdout.

        ``scoped`` appends ``--repo owner/repo`` for subcommands that accept
        it (``issue``/``pr``); ``gh api`` paths carry the repo themselves.
        """
        cmd = self._base_cmd(*args, scoped=scoped)
        get_logger().debug("gh command", command=" ".join(cmd[:3]))

        def _invoke() -> str:
            proc = subprocess.run(  # nosec B603 - command uses controlled arguments
                cmd,
                cwd=self.cwd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=True,
            )
            return proc.stdout

        try:
            return run_with_retries(_invoke)
        except subprocess.CalledProcessError as exc:
            detail = (exc.stderr or exc.output or "").strip()
            raise ProviderError(
                f"gh {' '.join(args[:2])} failed: {redact(detail)}",
                kind=kind_from_text(detail),
                provider="github",
                output=detail,
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise ProviderError(
                f"gh {' '.join(args[:2])} timed out after {self.timeout}s",
                kind=ErrorKind.TIMEOUT,
                provider="github",
            ) from exc
        except OSError as exc:
            raise ProviderError(
                f"gh not available: {exc}",
                kind=ErrorKind.MISSING_CREDENTIALS,
                provider="github",
            ) from exc

    def run_json(self, args: Sequence[str], *, scoped: bool = False) -> Any:
        out = self.run(args, scoped=scoped)
        if not out.strip():
            return None
        try:
            return json.loads(out)
        except json.JSONDecodeError as exc:
            raise ProviderError(
                f"gh {' '.join(args[:2])} returned invalid JSON",
                provider="github",
                output=out,
            ) from exc

    def api_path(self, path: str) -> str:
        """Prefix a REST path with the configured repo or gh's placeholders."""
        prefix = f"repos/{self.repo}" if self.repo else "repos/:owner/:repo"
        return f"{prefix}/{path.lstrip('/')}"


__all__ = ["GhRunner", "parse_github_remote", "resolve_repo"]
