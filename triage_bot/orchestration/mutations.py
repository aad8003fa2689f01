"""Tracker mutation outbox: idempotency keys and the flush loop."""

from __future__ import annotations

import hashlib
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from triage_bot.errors import TrackerError, TransientError
from triage_bot.github.tracker import IssueTracker
from triage_bot.orchestration.resilience import ResilientCaller
from triage_bot.store.db import DEFAULT_CLAIM_LEASE_S, PendingMutation, TriageDB

logger = logging.getLogger(__name__)

APPLY_LABEL = "apply_label"
REMOVE_LABEL = "remove_label"
SET_ASSIGNEES = "set_assignees"
POST_COMMENT = "post_comment"
OPERATIONS = (APPLY_LABEL, REMOVE_LABEL, SET_ASSIGNEES, POST_COMMENT)


def build_idempotency_key(repo: str, issue_number: int, operation: str, payload: dict[str, Any]) -> str:
    payload_hash = hashlib.sha256(json.dumps(payload, sort_keys=True).encode()).hexdigest()[:16]
    return f"{operation}:{repo}:#{issue_number}:{payload_hash}"


def mutation(repo: str, issue_number: int, operation: str, payload: dict[str, Any]) -> PendingMutation:
    if operation not in OPERATIONS:
        raise ValueError(f"Unsupported tracker mutation: {operation}")
    return PendingMutation(
        issue_number=issue_number,
        operation=operation,
        payload=payload,
        idempotency_key=build_idempotency_key(repo, issue_number, operation, payload),
    )


def apply_label(repo: str, issue_number: int, label: str) -> PendingMutation:
    return mutation(repo, issue_number, APPLY_LABEL, {"label": label})


def remove_label(repo: str, issue_number: int, label: str) -> PendingMutation:
    return mutation(repo, issue_number, REMOVE_LABEL, {"label": label})


def set_assignees(repo: str, issue_number: int, assignees: list[str]) -> PendingMutation:
    return mutation(repo, issue_number, SET_ASSIGNEES, {"assignees": list(assignees)})


def post_comment(repo: str, issue_number: int, body: str) -> PendingMutation:
    return mutation(repo, issue_number, POST_COMMENT, {"body": body})


@dataclass
class FlushResult:
    applied: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failed == 0


class MutationDispatcher:
    """Applies outbox rows to the tracker and records the result of each one.

    A row is claimed before it is sent, so two processes (or two threads with
    their own connections) flushing the same issue never post it twice. Rows
    claimed by someone else are left alone until their lease expires.
    """

    def __init__(
        self,
        db: TriageDB,
        tracker: IssueTracker,
        caller: ResilientCaller,
        db_caller: ResilientCaller | None = None,
        worker_id: str | None = None,
        lease_seconds: int = DEFAULT_CLAIM_LEASE_S,
    ) -> None:
        self.db = db
        self.tracker = tracker
        self.caller = caller
        self.db_caller = db_caller or caller.without_limiter()
        self.worker_id = worker_id or f"triage-{uuid.uuid4().hex[:12]}"
        self.lease_seconds = lease_seconds

    def flush(self, issue_number: int | None = None) -> FlushResult:
        result = FlushResult()
        rows = self.db_caller.call(
            "list_unapplied_mutations", self.db.list_unapplied_mutations, issue_number
        )
        for row in rows:
            claimed = self.db_caller.call(
                "claim_mutation",
                self.db.claim_mutation,
                row["id"],
                self.worker_id,
                self.lease_seconds,
            )
            if not claimed:
                result.skipped += 1
                logger.debug("Mutation %s is claimed elsewhere; skipping", row["idempotency_key"])
                continue
            try:
                self._apply(row)
            except (TransientError, TrackerError) as exc:
                self.db_caller.call(
                    "mark_mutation_failed", self.db.mark_mutation_failed, row["id"], f"{exc.code}: {exc}"
                )
                result.failed += 1
                result.errors.append(f"{row['operation']} on #{row['issue_number']}: {exc}")
                logger.error(
                    "Tracker mutation %s for #%d failed: %s",
                    row["operation"],
                    row["issue_number"],
                    exc,
                )
                continue
            self.db_caller.call("mark_mutation_applied", self.db.mark_mutation_applied, row["id"])
            result.applied += 1
        return result

    def _apply(self, row: dict[str, Any]) -> None:
        number = row["issue_number"]
        payload = row["payload"]
        operation = row["operation"]
        if operation == APPLY_LABEL:
            self.caller.call(operation, self.tracker.apply_label, number, payload["label"])
        elif operation == REMOVE_LABEL:
            self.caller.call(operation, self.tracker.remove_label, number, payload["label"])
        elif operation == SET_ASSIGNEES:
            self.caller.call(operation, self.tracker.set_assignees, number, list(payload["assignees"]))
        elif operation == POST_COMMENT:
            self.caller.call(operation, self.tracker.post_comment, number, payload["body"])
        else:
            raise TrackerError(f"Unknown outbox operation: {operation}")
