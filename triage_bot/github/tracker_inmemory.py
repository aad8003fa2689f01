"""In-memory issue tracker for deterministic tests and dry runs."""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any

from triage_bot.engine.tokenizer import normalize_text
from triage_bot.errors import TrackerError, TransientError
from triage_bot.github.tracker import Issue


@dataclass(frozen=True)
class TrackerCall:
    operation: str
    number: int
    payload: Any = None


class InMemoryTracker:
    WRITE_OPERATIONS = ("apply_label", "remove_label", "set_assignees", "post_comment")

    def __init__(
        self,
        repo: str = "local/in-memory",
        issues: list[Issue] | None = None,
        collaborators: list[str] | None = None,
    ) -> None:
        self.repo = repo
        self.issues: dict[int, Issue] = {issue.number: issue for issue in issues or []}
        self.collaborators = list(collaborators or [])
        self.calls: list[TrackerCall] = []
        self.comments: dict[int, list[str]] = {}
        self._fail_budget: dict[str, int] = {}
        self._lock = threading.Lock()

    def add_issue(self, issue: Issue) -> None:
        with self._lock:
            self.issues[issue.number] = issue

    def fail_next(self, operation: str, times: int = 1) -> None:
        """Make the next ``times`` calls of ``operation`` raise TransientError."""
        self._fail_budget[operation] = self._fail_budget.get(operation, 0) + times

    def writes(self, operation: str | None = None) -> list[TrackerCall]:
        return [
            call
            for call in self.calls
            if call.operation in self.WRITE_OPERATIONS and (operation is None or call.operation == operation)
        ]

    def get_issue(self, number: int) -> Issue:
        self._maybe_fail("get_issue")
        with self._lock:
            issue = self.issues.get(number)
        if issue is None:
            raise TrackerError(f"Issue #{number} not found", status_code=404)
        return issue

    def search_candidates(self, query: str, limit: int) -> list[Issue]:
        self._maybe_fail("search_candidates")
        terms = set(normalize_text(query).split())
        with self._lock:
            open_issues = sorted(
                (issue for issue in self.issues.values() if issue.state == "open"),
                key=lambda issue: issue.number,
            )
        if not terms:
            return []
        matched = [
            issue for issue in open_issues if terms & set(normalize_text(issue.text).split())
        ]
        return matched[: max(0, limit)]

    def list_collaborators(self) -> list[str]:
        self._maybe_fail("list_collaborators")
        return list(self.collaborators)

    def list_open_issues(
        self, since: datetime | None = None, unassigned_only: bool = False
    ) -> list[Issue]:
        self._maybe_fail("list_open_issues")
        with self._lock:
            issues = sorted(self.issues.values(), key=lambda issue: issue.number)
        selected: list[Issue] = []
        for issue in issues:
            if issue.state != "open":
                continue
            if unassigned_only and issue.assignees:
                continue
            if since is not None and issue.updated_at is not None and _aware(issue.updated_at) < _aware(since):
                continue
            selected.append(issue)
        return selected

    def apply_label(self, number: int, label: str) -> None:
        self._maybe_fail("apply_label")
        with self._lock:
            issue = self._require(number)
            self.calls.append(TrackerCall("apply_label", number, label))
            if not issue.has_label(label):
                self.issues[number] = replace(issue, labels=issue.labels + (label,))

    def remove_label(self, number: int, label: str) -> None:
        self._maybe_fail("remove_label")
        with self._lock:
            issue = self._require(number)
            self.calls.append(TrackerCall("remove_label", number, label))
            remaining = tuple(name for name in issue.labels if name.lower() != label.lower())
            self.issues[number] = replace(issue, labels=remaining)

    def set_assignees(self, number: int, assignees: list[str]) -> None:
        self._maybe_fail("set_assignees")
        with self._lock:
            issue = self._require(number)
            self.calls.append(TrackerCall("set_assignees", number, tuple(assignees)))
            merged = issue.assignees + tuple(name for name in assignees if name not in issue.assignees)
            self.issues[number] = replace(issue, assignees=merged)

    def post_comment(self, number: int, body: str) -> None:
        self._maybe_fail("post_comment")
        with self._lock:
            self._require(number)
            self.calls.append(TrackerCall("post_comment", number, body))
            self.comments.setdefault(number, []).append(body)

    def _require(self, number: int) -> Issue:
        issue = self.issues.get(number)
        if issue is None:
            raise TrackerError(f"Issue #{number} not found", status_code=404)
        return issue

    def _maybe_fail(self, operation: str) -> None:
        with self._lock:
            remaining = self._fail_budget.get(operation, 0)
            if remaining <= 0:
                return
            self._fail_budget[operation] = remaining - 1
        raise TransientError(f"Injected transient failure for {operation}", reason_code="transient_failure")


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)
