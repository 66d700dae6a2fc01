"""Environment-based credential lookup.

Tokens configured in project settings always win; these helpers supply the
environment fallbacks (optionally primed from a ``.env`` file).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .logging import get_logger


@dataclass
class EnvAuthConfig:
    """Configuration for environment-based authentication."""

    load_dotenv: bool = True
    dotenv_path: str | None = None
    github_token_var: str = "GITHUB_TOKEN"
    linear_token_var: str = "LINEAR_API_TOKEN"
    jira_token_var: str = "JIRA_API_TOKEN"
    bitbucket_token_var: str = "BITBUCKET_API_TOKEN"


class EnvironmentAuthManager:
    """Resolves backend credentials from environment variables and .env files."""

    def __init__(self, config: EnvAuthConfig):
        self.config = config
        self.logger = get_logger()
        self._dotenv_loaded = False
        if config.load_dotenv:
            self._load_dotenv()

    def _load_dotenv(self) -> None:
        candidates = (
            [self.config.dotenv_path] if self.config.dotenv_path else [".env", ".env.local"]
        )
        for location in candidates:
            env_path = Path(location)
            if env_path.exists():
                # Never clobber variables the caller already exported.
                load_dotenv(str(env_path), override=False)
                self._dotenv_loaded = True
                self.logger.debug(f"Loaded environment variables from {env_path}")
                break

    @property
    def dotenv_loaded(self) -> bool:
        return self._dotenv_loaded

    @staticmethod
    def _first(*names: str) -> str | None:
        for name in names:
            raw = os.getenv(name)
            if raw is None:
                continue
            value = raw.strip()
            if value:
                return value
        return None

    def get_github_token(self) -> str | None:
        return self._first(self.config.github_token_var, "GH_TOKEN")

    def get_linear_token(self, configured: str | None = None) -> str | None:
        return configured or self._first(self.config.linear_token_var)

    def get_linear_team_key(self) -> str | None:
        return self._first("LINEAR_TEAM_KEY")

    def get_jira_token(self, configured: str | None = None) -> str | None:
        return configured or self._first(self.config.jira_token_var)

    def get_jira_value(self, name: str, configured: str | None = None) -> str | None:
        """``name`` is the suffix of a ``JIRA_*`` variable, e.g. ``HOST``."""
        return configured or self._first(f"JIRA_{name.upper()}")

    def get_bitbucket_token(self, configured: str | None = None) -> str | None:
        return configured or self._first(self.config.bitbucket_token_var)

    def get_bitbucket_username(self, configured: str | None = None) -> str | None:
        return configured or self._first("BITBUCKET_USERNAME")


def create_env_auth_manager(config: EnvAuthConfig | None = None) -> EnvironmentAuthManager:
    """Factory function to create environment authentication manager."""
    if config is None:
        config = EnvAuthConfig()
    return EnvironmentAuthManager(config)


__all__ = ["EnvAuthConfig", "EnvironmentAuthManager", "create_env_auth_manager"]
