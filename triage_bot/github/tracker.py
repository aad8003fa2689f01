"""Issue-tracker contract, the Issue entity, and the adapter factory."""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from triage_bot.errors import ConfigurationError, TrackerError
from triage_bot.github.auth import GitHubAuth


@dataclass(frozen=True)
class Issue:
    number: int
    title: str
    body: str = ""
    labels: tuple[str, ...] = ()
    assignees: tuple[str, ...] = ()
    state: str = "open"
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def text(self) -> str:
        return f"{self.title} {self.body}".strip()

    def has_label(self, label: str) -> bool:
        wanted = label.lower()
        return any(existing.lower() == wanted for existing in self.labels)


class IssueTracker(Protocol):
    """Calls the triage flow makes against an issue tracker.

    Writes must be idempotent from the caller's side: applying a label that
    is already present, or removing one that is absent, is a no-op.
    """

    repo: str

    def get_issue(self, number: int) -> Issue: ...

    def search_candidates(self, query: str, limit: int) -> list[Issue]: ...

    def list_collaborators(self) -> list[str]: ...

    def list_open_issues(
        self, since: datetime | None = None, unassigned_only: bool = False
    ) -> list[Issue]: ...

    def apply_label(self, number: int, label: str) -> None: ...

    def remove_label(self, number: int, label: str) -> None: ...

    def set_assignees(self, number: int, assignees: list[str]) -> None: ...

    def post_comment(self, number: int, body: str) -> None: ...


def parse_timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def issue_from_payload(payload: Any) -> Issue:
    """Build an Issue from a GitHub REST issue object."""
    if not isinstance(payload, dict) or not isinstance(payload.get("number"), int):
        raise TrackerError("Malformed issue payload from tracker")
    labels = tuple(
        str(label.get("name", "")) if isinstance(label, dict) else str(label)
        for label in payload.get("labels") or []
    )
    assignees = tuple(
        str(user.get("login", "")) for user in payload.get("assignees") or [] if isinstance(user, dict)
    )
    return Issue(
        number=payload["number"],
        title=str(payload.get("title") or ""),
        body=str(payload.get("body") or ""),
        labels=tuple(label for label in labels if label),
        assignees=tuple(name for name in assignees if name),
        state=str(payload.get("state") or "open").lower(),
        created_at=parse_timestamp(payload.get("created_at")),
        updated_at=parse_timestamp(payload.get("updated_at")),
    )


def build_tracker_from_env(
    repo: str,
    env: dict[str, str] | None = None,
    kind: str | None = None,
) -> IssueTracker:
    env_map = os.environ if env is None else env
    tracker_type = (kind or env_map.get("TRIAGE_BOT_TRACKER") or "in_memory").strip().lower()

    if tracker_type == "api":
        if not repo:
            raise ConfigurationError("A repository (owner/name) is required for the API tracker")
        from triage_bot.github.tracker_api import GitHubAPITracker

        return GitHubAPITracker(repo=repo, auth=GitHubAuth.from_env(env_map))

    if tracker_type == "in_memory":
        from triage_bot.github.tracker_inmemory import InMemoryTracker

        return InMemoryTracker(repo=repo or "local/in-memory")

    raise ConfigurationError(f"Unknown tracker type: {tracker_type!r}")


__all__ = [
    "GitHubAuth",
    "Issue",
    "IssueTracker",
    "build_tracker_from_env",
    "issue_from_payload",
    "parse_timestamp",
]
