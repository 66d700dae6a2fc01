"""Centralized retry / backoff helpers.

``run_with_retries`` wraps a thunk with exponential backoff plus jitter.
Only rate-limit style failures are retried: ``gh`` subprocess errors whose
output mentions a rate limit, and ``ProviderError`` instances raised by the
HTTP clients for 429/502/503 responses. Everything else propagates on the
first attempt.

Environment overrides:
  LOOMCORE_RETRY_ATTEMPTS (default 3)
  LOOMCORE_RETRY_BASE (seconds base, default 0.5)
  LOOMCORE_RETRY_MAX_SLEEP (optional cap in seconds)
"""

from __future__ import annotations

import os
import random
import re
import subprocess  # nosec B404 - retried thunks may shell out to gh
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

from .errors import ErrorKind, ProviderError
from .logging import get_logger

T = TypeVar("T")

TRANSIENT_TOKENS = (
    "rate limit",
    "abuse detection",
    "secondary rate",
)

_RE_RETRY_AFTER = re.compile(r"retry[-\s]after:?\s*(\d+)", re.IGNORECASE)
_RE_SECONDS_HINT = re.compile(r"wait\s*(\d+)\s*seconds", re.IGNORECASE)
_JITTER = random.SystemRandom()
RETRYABLE_STATUSES = frozenset({429, 502, 503})


def _extract_explicit_backoff(text: str) -> float | None:
    """Extract an explicit backoff (seconds) from error output.

    Supports ``Retry-After: 12``, ``retry after 12`` and ``wait 30 seconds``.
    """
    if not text:
        return None
    for pattern in (_RE_RETRY_AFTER, _RE_SECONDS_HINT):
        m = pattern.search(text)
        if m:
            val = float(m.group(1))
            return val if val > 0 else None
    return None


@dataclass
class RetryConfig:
    attempts: int = field(
        default_factory=lambda: int(os.environ.get("LOOMCORE_RETRY_ATTEMPTS", "3"))
    )
    base_sleep: float = field(
        default_factory=lambda: float(os.environ.get("LOOMCORE_RETRY_BASE", "0.5"))
    )


def is_transient(output: str) -> bool:
    out_lower = output.lower()
    return any(tok in out_lower for tok in TRANSIENT_TOKENS)


def _compute_sleep(attempt: int, cfg: RetryConfig, out: str) -> float:
    explicit = _extract_explicit_backoff(out)
    backoff = cfg.base_sleep * (2 ** (attempt - 1)) + _JITTER.uniform(0, 0.25)
    sleep_for: float = explicit if explicit is not None else backoff
    max_cap_env = os.environ.get("LOOMCORE_RETRY_MAX_SLEEP")
    if max_cap_env:
        try:
            cap = float(max_cap_env)
        except ValueError:
            return sleep_for
        if cap >= 0:
            sleep_for = min(sleep_for, cap)
    return sleep_for


def _retry_output(exc: Exception) -> str | None:
    """Return the text to inspect when ``exc`` is retryable, else None."""
    if isinstance(exc, subprocess.CalledProcessError):
        parts = [exc.output or "", exc.stderr or ""]
        out = "\n".join(
            p.decode("utf-8", "replace") if isinstance(p, bytes) else p for p in parts if p
        )
        return out if is_transient(out) else None
    if isinstance(exc, ProviderError) and (
        exc.kind is ErrorKind.RATE_LIMIT or exc.status in RETRYABLE_STATUSES
    ):
        return exc.output or str(exc)
    return None


def run_with_retries(fn: Callable[[], T], *, cfg: RetryConfig | None = None) -> T:
    cfg = cfg or RetryConfig()
    attempts = max(1, cfg.attempts)
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except (subprocess.CalledProcessError, ProviderError) as exc:
            out = _retry_output(exc)
            if out is None or attempt >= attempts:
                raise
            sleep_for = _compute_sleep(attempt, cfg, out)
            get_logger().warning(
                f"transient error, attempt {attempt}/{attempts}, sleeping {sleep_for:.2f}s"
            )
            time.sleep(sleep_for)
    raise RuntimeError("retry logic exited unexpectedly")  # pragma: no cover


__all__ = ["RetryConfig", "run_with_retries", "is_transient"]
