"""Per-issue triage state machine with durable, idempotent steps."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Iterable

from triage_bot.config import TriageConfig
from triage_bot.engine.classifier import classify
from triage_bot.engine.complexity import complexity_comment, estimate
from triage_bot.engine.duplicates import (
    DuplicateCandidate,
    build_search_query,
    detect_duplicate,
    duplicate_comment,
)
from triage_bot.engine.ownership import OwnershipSource, assignment_comment, resolve_assignment
from triage_bot.errors import TriageError, ValidationError, validate_issue_number
from triage_bot.github.tracker import Issue, IssueTracker
from triage_bot.orchestration import mutations as outbox
from triage_bot.orchestration.mutations import FlushResult, MutationDispatcher
from triage_bot.orchestration.resilience import ResilientCaller, RetryPolicy, TokenBucket
from triage_bot.store.db import DBOwnershipSource, PendingMutation, TriageDB

logger = logging.getLogger(__name__)

STEP_CLASSIFY = "classify"
STEP_DUPLICATES = "duplicates"
STEP_ASSIGN = "assign"
STEP_COMPLEXITY = "complexity"
ALL_STEPS = (STEP_CLASSIFY, STEP_DUPLICATES, STEP_ASSIGN, STEP_COMPLEXITY)

STATE_PENDING = "pending"
STATE_PERSISTED = "persisted"
STATE_AFTER_STEP = {
    STEP_CLASSIFY: "classified",
    STEP_DUPLICATES: "duplicate_checked",
    STEP_ASSIGN: "assigned",
    STEP_COMPLEXITY: "complexity_estimated",
}

STATUS_IN_PROGRESS = "in_progress"
STATUS_SUCCEEDED = "succeeded"
STATUS_SKIPPED = "skipped"
STATUS_FAILED = "failed"

COMPLEXITY_LABEL_PREFIX = "complexity-"


@dataclass
class StepResult:
    step: str
    action: str
    detail: dict[str, Any] = field(default_factory=dict)


@dataclass
class IssueOutcome:
    issue_number: int | str
    status: str = STATUS_IN_PROGRESS
    steps: list[StepResult] = field(default_factory=list)
    error_code: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "issue_number": self.issue_number,
            "status": self.status,
            "steps": [{"step": s.step, "action": s.action, **s.detail} for s in self.steps],
            "error_code": self.error_code,
            "error": self.error,
        }


def build_caller(
    config: TriageConfig, sleep: Callable[[float], None] = time.sleep
) -> ResilientCaller:
    limiter = TokenBucket(rate_per_s=config.rate_limit_per_s, capacity=config.rate_limit_burst)
    policy = RetryPolicy(
        max_attempts=config.retry_max_attempts,
        base_delay_s=config.retry_base_delay_s,
        max_delay_s=config.retry_max_delay_s,
    )
    return ResilientCaller(limiter=limiter, policy=policy, sleep=sleep)


class TriageOrchestrator:
    """Runs classify -> duplicates -> assign -> complexity for one issue at a time.

    Each step writes its record and enqueues the tracker mutations it implies
    in a single transaction, then flushes the outbox. A step whose record
    already exists is skipped unless ``force`` is set. Safe to share across
    worker threads.
    """

    def __init__(
        self,
        config: TriageConfig,
        db: TriageDB,
        tracker: IssueTracker,
        caller: ResilientCaller | None = None,
        ownership_source: OwnershipSource | None = None,
    ) -> None:
        self.config = config
        self.db = db
        self.tracker = tracker
        self.caller = caller or build_caller(config)
        self.ownership_source = ownership_source or DBOwnershipSource(db)
        self.db_caller = self.caller.without_limiter()
        self.dispatcher = MutationDispatcher(db, tracker, self.caller, db_caller=self.db_caller)
        self._rules = config.rules()
        self._collaborators: list[str] | None = None
        self._collaborators_lock = threading.Lock()

    @property
    def repo(self) -> str:
        return self.tracker.repo

    def flush_pending(self) -> FlushResult:
        """Apply mutations left pending or failed by earlier runs."""
        result = self.dispatcher.flush()
        if result.applied or result.failed:
            logger.info("Outbox flush: %d applied, %d failed", result.applied, result.failed)
        return result

    def triage_issue(
        self,
        number: Any,
        steps: Iterable[str] = ALL_STEPS,
        force: bool = False,
    ) -> IssueOutcome:
        try:
            issue_number = validate_issue_number(number)
        except ValidationError as exc:
            logger.error("Rejected issue %r: %s", number, exc)
            return IssueOutcome(number, STATUS_FAILED, error_code=exc.code, error=str(exc))

        requested = set(steps)
        unknown = requested - set(ALL_STEPS)
        if unknown:
            raise ValueError(f"Unknown triage steps: {sorted(unknown)}")

        outcome = IssueOutcome(issue_number)
        try:
            self._run(issue_number, [step for step in ALL_STEPS if step in requested], force, outcome)
        except TriageError as exc:
            outcome.status = STATUS_FAILED
            outcome.error_code = exc.code
            outcome.error = str(exc)
            logger.error("Triage of #%d failed (%s): %s", issue_number, exc.code, exc)
            self._record_failure(issue_number, outcome)
        return outcome

    def _run(self, number: int, steps: list[str], force: bool, outcome: IssueOutcome) -> None:
        status = self.db.get_status(number)
        completed = set(status["completed_steps"]) if status and not force else set()
        state = status["state"] if status and not force else STATE_PENDING
        self._save_status(number, state, STATUS_IN_PROGRESS, completed)

        failures: list[str] = []
        applied = 0
        leftover = self.dispatcher.flush(number)
        applied += leftover.applied
        failures.extend(leftover.errors)

        issue = self.caller.call("get_issue", self.tracker.get_issue, number)
        for step in steps:
            if not force and (step in completed or self._already_done(step, issue)):
                outcome.steps.append(StepResult(step, "skipped"))
                completed.add(step)
                continue
            detail = self._perform(step, issue)
            outcome.steps.append(StepResult(step, "done", detail))
            completed.add(step)
            state = STATE_AFTER_STEP[step]
            self._save_status(number, state, STATUS_IN_PROGRESS, completed)
            flushed = self.dispatcher.flush(number)
            applied += flushed.applied
            failures.extend(flushed.errors)

        if completed.issuperset(ALL_STEPS):
            state = STATE_PERSISTED

        if failures:
            outcome.status = STATUS_FAILED
            outcome.error_code = "tracker_mutation_failed"
            outcome.error = "; ".join(failures)
        elif applied or any(result.action == "done" for result in outcome.steps):
            outcome.status = STATUS_SUCCEEDED
        else:
            outcome.status = STATUS_SKIPPED

        self._save_status(
            number,
            state,
            outcome.status,
            completed,
            error_code=outcome.error_code,
            last_error=outcome.error,
        )
        logger.info(
            "Triage of #%d %s (%s)",
            number,
            outcome.status,
            ", ".join(f"{result.step}={result.action}" for result in outcome.steps),
        )

    def _save_status(
        self, number: int, state: str, status: str, completed: Iterable[str], **errors: Any
    ) -> None:
        self.db_caller.call("set_status", self.db.set_status, number, state, status, completed, **errors)

    def _record_failure(self, number: int, outcome: IssueOutcome) -> None:
        status = self._status_or_none(number)
        completed = status["completed_steps"] if status else []
        state = status["state"] if status else STATE_PENDING
        try:
            self._save_status(
                number,
                state,
                STATUS_FAILED,
                completed,
                error_code=outcome.error_code,
                last_error=outcome.error,
            )
        except TriageError as exc:
            logger.error("Could not record failed status for #%d: %s", number, exc)

    def _status_or_none(self, number: int) -> dict[str, Any] | None:
        try:
            return self.db.get_status(number)
        except TriageError as exc:
            logger.error("Could not read status for #%d: %s", number, exc)
            return None

    def _already_done(self, step: str, issue: Issue) -> bool:
        number = issue.number
        if step == STEP_CLASSIFY:
            return self.db.get_triage_record(number) is not None
        if step == STEP_DUPLICATES:
            return issue.has_label(self.config.duplicate_label) or bool(self.db.list_duplicates(number))
        if step == STEP_ASSIGN:
            return bool(issue.assignees) or bool(self.db.list_assignments(number))
        if step == STEP_COMPLEXITY:
            return self.db.get_complexity(number) is not None
        return False

    def _perform(self, step: str, issue: Issue) -> dict[str, Any]:
        if step == STEP_CLASSIFY:
            return self._classify(issue)
        if step == STEP_DUPLICATES:
            return self._detect_duplicates(issue)
        if step == STEP_ASSIGN:
            return self._assign(issue)
        return self._estimate_complexity(issue)

    def _classify(self, issue: Issue) -> dict[str, Any]:
        config = self.config
        result = classify(
            issue.title,
            issue.body,
            rules=self._rules,
            stop_words=config.stop_words,
            min_token_length=config.min_token_length,
            default_category=config.default_category,
            default_confidence=config.default_confidence,
        )
        labels = [result.category] if config.apply_category_label else []
        pending = [outbox.apply_label(self.repo, issue.number, label) for label in labels]
        self.db_caller.call(
            "record_classification",
            self.db.record_classification,
            issue.number,
            result.category,
            result.confidence,
            labels,
            pending,
        )
        return {"category": result.category, "confidence": result.confidence}

    def _detect_duplicates(self, issue: Issue) -> dict[str, Any]:
        config = self.config
        query = build_search_query(issue.title)
        found: list[Issue] = []
        if query:
            found = self.caller.call(
                "search_candidates",
                self.tracker.search_candidates,
                query,
                config.duplicate_max_candidates,
            )
        result = detect_duplicate(
            issue.number,
            issue.title,
            issue.body,
            [DuplicateCandidate(c.number, c.title, c.body, c.state) for c in found],
            threshold=config.duplicate_threshold,
            max_candidates=config.duplicate_max_candidates,
            stop_words=config.stop_words,
            min_token_length=config.min_token_length,
            prefix_folding=config.duplicate_prefix_folding,
            prefix_min_length=config.duplicate_prefix_min_length,
        )

        pending: list[PendingMutation] = []
        selected = result.selected
        if selected is not None and not issue.has_label(config.duplicate_label):
            pending.append(outbox.apply_label(self.repo, issue.number, config.duplicate_label))
            if config.post_comments:
                body = duplicate_comment(selected.number, selected.similarity, repo=self.repo)
                pending.append(outbox.post_comment(self.repo, issue.number, body))
        self.db_caller.call(
            "record_duplicates",
            self.db.record_duplicates,
            issue.number,
            [(match.number, round(match.similarity, 4)) for match in result.matches],
            selected=selected.number if selected else None,
            mutations=pending,
        )
        return {
            "candidates": len(result.scored),
            "duplicate_of": selected.number if selected else None,
            "similarity": round(selected.similarity, 4) if selected else None,
        }

    def _assign(self, issue: Issue) -> dict[str, Any]:
        config = self.config
        decision = resolve_assignment(
            issue.text,
            self.ownership_source,
            self.collaborators(),
            modules=config.modules,
            default_assignees=config.default_assignees,
            top_k=config.max_assignees,
            min_score=config.min_owner_score,
        )
        rows = [(name, decision.matched_patterns.get(name, "")) for name in decision.assignees]
        pending: list[PendingMutation] = []
        if decision.assignees:
            pending.append(outbox.set_assignees(self.repo, issue.number, list(decision.assignees)))
            if config.post_comments:
                body = assignment_comment(decision.assignees, decision.method)
                pending.append(outbox.post_comment(self.repo, issue.number, body))
        self.db_caller.call(
            "record_assignments", self.db.record_assignments, issue.number, decision.method, rows, pending
        )
        return {"method": decision.method, "assignees": list(decision.assignees)}

    def _estimate_complexity(self, issue: Issue) -> dict[str, Any]:
        config = self.config
        now = self.db.clock()
        history = self.db.complexity_history(
            since=now - timedelta(days=config.history_lookback_days),
            exclude_issue=issue.number,
        )
        result = estimate(
            issue.title,
            issue.body,
            history=history,
            weights=config.complexity_weights.as_tuple(),
            history_blend=config.history_blend,
            lookback_days=config.history_lookback_days,
            now=now,
        )
        pending = [
            outbox.remove_label(self.repo, issue.number, label)
            for label in issue.labels
            if label.lower().startswith(COMPLEXITY_LABEL_PREFIX) and label != result.label
        ]
        pending.append(outbox.apply_label(self.repo, issue.number, result.label))
        if config.complexity_comment:
            pending.append(outbox.post_comment(self.repo, issue.number, complexity_comment(result)))
        self.db_caller.call(
            "record_complexity",
            self.db.record_complexity,
            issue.number,
            issue.title,
            result.score,
            result.lines_estimate,
            result.files_estimate,
            result.keyword_score,
            historical_avg=result.historical_avg,
            mutations=pending,
        )
        return {"score": result.score, "historical_avg": result.historical_avg}

    def collaborators(self) -> list[str]:
        with self._collaborators_lock:
            if self._collaborators is None:
                self._collaborators = self.caller.call(
                    "list_collaborators", self.tracker.list_collaborators
                )
            return list(self._collaborators)
