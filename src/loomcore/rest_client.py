"""Shared JSON-over-HTTP client for the REST/GraphQL trackers.

Linear, Jira and BitBucket all speak JSON over HTTPS with token auth; this
client owns session wiring, retries and the mapping of transport failures to
``ProviderError`` kinds so each adapter only deals with payload shapes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import requests

from .errors import ErrorKind, ProviderError
from .logging import get_logger
from .retry import run_with_retries

USER_AGENT = "loomcore/0.1.0"
HTTP_ERROR_STATUS = 400
DEFAULT_TIMEOUT = 30

_STATUS_KINDS = {
    401: ErrorKind.AUTH,
    403: ErrorKind.AUTH,
    404: ErrorKind.NOT_FOUND,
    429: ErrorKind.RATE_LIMIT,
    502: ErrorKind.CONNECTION,
    503: ErrorKind.CONNECTION,
    504: ErrorKind.TIMEOUT,
}


def kind_for_status(status: int) -> ErrorKind:
    return _STATUS_KINDS.get(status, ErrorKind.UNEXPECTED)


@dataclass
class JsonApiClient:
    """Minimal JSON API client bound to one base URL."""

    base_url: str
    provider: str
    headers: dict[str, str] = field(default_factory=dict)
    auth: tuple[str, str] | None = None
    session: requests.Session | None = None
    timeout: float = DEFAULT_TIMEOUT
    _session: requests.Session = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._session = self.session or requests.Session()
        self._session.headers.setdefault("Accept", "application/json")
        self._session.headers.setdefault("User-Agent", USER_AGENT)
        for key, value in self.headers.items():
            self._session.headers[key] = value
        if self.auth is not None:
            self._session.auth = self.auth

    def url_for(self, path: str) -> str:
        if path.startswith("http"):
            return path
        if not path:
            return self.base_url
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"

    def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any | None = None,
    ) -> Any:
        url = self.url_for(path)
        get_logger().debug(f"{self.provider} API {method} request", url=url)

        def _run() -> Any:
            try:
                response = self._session.request(
                    method,
                    url,
                    params=params,
                    json=json_body,
                    headers=self._session.headers,
                    timeout=self.timeout,
                )
            except requests.Timeout as exc:
                raise ProviderError(
                    f"{self.provider} API {method} {url} timed out",
                    kind=ErrorKind.TIMEOUT,
                    provider=self.provider,
                ) from exc
            except requests.ConnectionError as exc:
                raise ProviderError(
                    f"{self.provider} API {method} {url} connection failed: {exc}",
                    kind=ErrorKind.CONNECTION,
                    provider=self.provider,
                ) from exc
            if response.status_code >= HTTP_ERROR_STATUS:
                raise ProviderError(
                    f"{self.provider} API {method} {url} failed with {response.status_code}",
                    kind=kind_for_status(response.status_code),
                    provider=self.provider,
                    status=response.status_code,
                    output=response.text,
                )
            return response

        response = run_with_retries(_run)
        if response.status_code == 204 or not response.text:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderError(
                f"Failed to parse {self.provider} API response from {url}",
                provider=self.provider,
                status=response.status_code,
                output=response.text,
            ) from exc

    def get(self, path: str, *, params: dict[str, Any] | None = None) -> Any:
        return self.request("GET", path, params=params)

    def post(self, path: str, body: Any) -> Any:
        return self.request("POST", path, json_body=body)

    def put(self, path: str, body: Any) -> Any:
        return self.request("PUT", path, json_body=body)

    def graphql(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        payload = {"query": query, "variables": variables or {}}
        data = self.request("POST", "", json_body=payload)
        if not isinstance(data, dict):
            raise ProviderError(f"{self.provider} GraphQL returned no data", provider=self.provider)
        errors = data.get("errors")
        if errors:
            raise ProviderError(
                f"{self.provider} GraphQL query failed: {errors}",
                kind=_graphql_error_kind(errors),
                provider=self.provider,
            )
        payload_data = data.get("data")
        return payload_data if isinstance(payload_data, dict) else {}


def _graphql_error_kind(errors: Any) -> ErrorKind:
    if not isinstance(errors, list):
        return ErrorKind.UNEXPECTED
    for err in errors:
        if not isinstance(err, dict):
            continue
        ext = err.get("extensions")
        code = str(ext.get("code", "")).upper() if isinstance(ext, dict) else ""
        if code in {"AUTHENTICATION_ERROR", "FORBIDDEN", "UNAUTHENTICATED"}:
            return ErrorKind.AUTH
        if code == "RATELIMITED":
            return ErrorKind.RATE_LIMIT
        if code in {"ENTITY_NOT_FOUND", "NOT_FOUND"}:
            return ErrorKind.NOT_FOUND
        message = str(err.get("message", "")).lower()
        if "not found" in message:
            return ErrorKind.NOT_FOUND
    return ErrorKind.UNEXPECTED


__all__ = ["JsonApiClient", "kind_for_status", "USER_AGENT"]
