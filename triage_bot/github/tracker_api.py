"""GitHub REST API tracker implementation."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

import requests

from triage_bot.errors import TrackerError, TransientError
from triage_bot.github.auth import GitHubAuth
from triage_bot.github.tracker import Issue, issue_from_payload

logger = logging.getLogger(__name__)

PAGE_SIZE = 100
MAX_PAGES = 10
REQUEST_TIMEOUT_S = 15


class GitHubAPITracker:
    def __init__(
        self,
        repo: str,
        auth: GitHubAuth | None = None,
        base_url: str = "https://api.github.com",
        session: requests.Session | None = None,
        timeout_s: float = REQUEST_TIMEOUT_S,
    ) -> None:
        self.repo = repo
        self.auth = auth or GitHubAuth(read_token=None, write_token=None)
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout_s = timeout_s

    def get_issue(self, number: int) -> Issue:
        payload = self._request("GET", f"/repos/{self.repo}/issues/{number}")
        return issue_from_payload(payload)

    def search_candidates(self, query: str, limit: int) -> list[Issue]:
        if limit <= 0:
            return []
        q = f"{query} repo:{self.repo} is:issue is:open".strip()
        payload = self._request(
            "GET",
            "/search/issues",
            params={"q": q, "per_page": str(min(limit, PAGE_SIZE))},
        )
        items = payload.get("items", []) if isinstance(payload, dict) else []
        return [issue_from_payload(item) for item in items[:limit] if isinstance(item, dict)]

    def list_collaborators(self) -> list[str]:
        rows = self._paginate(f"/repos/{self.repo}/collaborators", params={})
        return [str(row.get("login")) for row in rows if isinstance(row, dict) and row.get("login")]

    def list_open_issues(
        self, since: datetime | None = None, unassigned_only: bool = False
    ) -> list[Issue]:
        params = {"state": "open", "sort": "created", "direction": "asc"}
        if since is not None:
            if since.tzinfo is None:
                since = since.replace(tzinfo=timezone.utc)
            params["since"] = since.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        if unassigned_only:
            params["assignee"] = "none"
        rows = self._paginate(f"/repos/{self.repo}/issues", params=params)
        # The issues endpoint also returns pull requests.
        return [
            issue_from_payload(row)
            for row in rows
            if isinstance(row, dict) and "pull_request" not in row
        ]

    def apply_label(self, number: int, label: str) -> None:
        self._request(
            "POST",
            f"/repos/{self.repo}/issues/{number}/labels",
            json={"labels": [label]},
            write=True,
        )

    def remove_label(self, number: int, label: str) -> None:
        try:
            self._request(
                "DELETE",
                f"/repos/{self.repo}/issues/{number}/labels/{quote(label, safe='')}",
                write=True,
            )
        except TrackerError as exc:
            if exc.status_code != 404:
                raise
            logger.debug("Label %s not present on #%d", label, number)

    def set_assignees(self, number: int, assignees: list[str]) -> None:
        self._request(
            "POST",
            f"/repos/{self.repo}/issues/{number}/assignees",
            json={"assignees": list(assignees)},
            write=True,
        )

    def post_comment(self, number: int, body: str) -> None:
        self._request(
            "POST",
            f"/repos/{self.repo}/issues/{number}/comments",
            json={"body": body},
            write=True,
        )

    def _paginate(self, path: str, params: dict[str, str]) -> list[Any]:
        rows: list[Any] = []
        for page in range(1, MAX_PAGES + 1):
            payload = self._request(
                "GET", path, params={**params, "per_page": str(PAGE_SIZE), "page": str(page)}
            )
            if not isinstance(payload, list):
                break
            rows.extend(payload)
            if len(payload) < PAGE_SIZE:
                break
        return rows

    def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
        write: bool = False,
    ) -> Any:
        if write and not self.auth.can_write:
            raise TrackerError(f"No write token configured for {method} {path}")
        try:
            response = self.session.request(
                method=method,
                url=f"{self.base_url}{path}",
                headers=self.auth.headers(write=write),
                json=json,
                params=params,
                timeout=self.timeout_s,
            )
        except requests.Timeout as exc:
            raise TransientError(f"GitHub API timeout: {method} {path}", reason_code="timeout") from exc
        except requests.ConnectionError as exc:
            raise TransientError(
                f"GitHub API connection error: {method} {path}", reason_code="connection_error"
            ) from exc

        status = response.status_code
        if _looks_like_rate_limit(response):
            raise TransientError(
                "GitHub API rate limit",
                reason_code="github_rate_limited",
                retry_after_s=_parse_retry_after((response.headers or {}).get("Retry-After")),
            )
        if status >= 500:
            raise TransientError(f"GitHub API {status} response", reason_code=f"github_{status}")
        if status >= 400:
            raise TrackerError(
                f"GitHub API {status} for {method} {path}: {_error_message(response)}",
                status_code=status,
            )
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise TrackerError(f"Malformed JSON from GitHub for {method} {path}") from exc


def _looks_like_rate_limit(response: requests.Response) -> bool:
    if response.status_code == 429:
        return True
    if response.status_code != 403:
        return False
    return "rate limit" in _error_message(response).lower()


def _error_message(response: requests.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return ""
    if isinstance(payload, dict):
        return str(payload.get("message", ""))
    return ""


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        parsed = float(value)
    except ValueError:
        return None
    return parsed if parsed >= 0 else None
