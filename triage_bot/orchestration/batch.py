"""Bounded worker pool for triaging many issues in one run."""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable

from triage_bot.errors import ValidationError, validate_issue_number
from triage_bot.orchestration.orchestrator import (
    ALL_STEPS,
    STATUS_FAILED,
    STATUS_SKIPPED,
    STATUS_SUCCEEDED,
    STEP_ASSIGN,
    STEP_CLASSIFY,
    IssueOutcome,
    TriageOrchestrator,
)

logger = logging.getLogger(__name__)

BATCH_TIMEOUT_CODE = "batch_timeout"
UNEXPECTED_ERROR_CODE = "unexpected_error"


@dataclass
class BatchReport:
    outcomes: list[IssueOutcome] = field(default_factory=list)
    duration_s: float = 0.0
    timed_out: bool = False

    def counts(self) -> dict[str, int]:
        totals = {STATUS_SUCCEEDED: 0, STATUS_SKIPPED: 0, STATUS_FAILED: 0}
        for outcome in self.outcomes:
            totals[outcome.status] = totals.get(outcome.status, 0) + 1
        totals["total"] = len(self.outcomes)
        return totals

    @property
    def failed(self) -> list[IssueOutcome]:
        return [outcome for outcome in self.outcomes if outcome.status == STATUS_FAILED]

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": self.counts(),
            "duration_s": round(self.duration_s, 3),
            "timed_out": self.timed_out,
            "issues": [outcome.to_dict() for outcome in self.outcomes],
        }


class BatchRunner:
    def __init__(
        self,
        orchestrator: TriageOrchestrator,
        workers: int | None = None,
        timeout_s: float | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.workers = max(1, workers or orchestrator.config.batch_workers)
        self.timeout_s = timeout_s if timeout_s is not None else orchestrator.config.batch_timeout_s

    def run(
        self,
        numbers: Iterable[Any],
        steps: Iterable[str] = ALL_STEPS,
        force: bool = False,
    ) -> BatchReport:
        """Triage every issue in ``numbers``; one issue's failure never stops the others.

        Entries are validated up front and repeats of the same issue (``11`` and
        ``"#11"``) run once, reported at the position of their first appearance.
        """
        steps = tuple(steps)
        report = BatchReport()
        started = time.monotonic()

        order: list[Any] = []
        by_number: dict[Any, IssueOutcome] = {}
        valid: list[int] = []
        seen: set[Any] = set()
        for raw in numbers:
            try:
                key: Any = validate_issue_number(raw)
            except ValidationError as exc:
                key = ("invalid", repr(raw))
                if key not in seen:
                    seen.add(key)
                    logger.error("Rejected issue %r: %s", raw, exc)
                    by_number[key] = IssueOutcome(raw, STATUS_FAILED, error_code=exc.code, error=str(exc))
                    order.append(key)
                continue
            if key not in seen:
                seen.add(key)
                order.append(key)
                valid.append(key)
        if not order:
            return report

        if valid:
            by_number.update(self._run_pool(valid, steps, force))

        report.outcomes = [by_number[key] for key in order]
        report.timed_out = any(outcome.error_code == BATCH_TIMEOUT_CODE for outcome in report.outcomes)
        report.duration_s = time.monotonic() - started
        counts = report.counts()
        logger.info(
            "Batch finished: %d succeeded, %d skipped, %d failed of %d",
            counts[STATUS_SUCCEEDED],
            counts[STATUS_SKIPPED],
            counts[STATUS_FAILED],
            counts["total"],
        )
        return report

    def _run_pool(
        self, numbers: list[int], steps: tuple[str, ...], force: bool
    ) -> dict[int, IssueOutcome]:
        self.orchestrator.flush_pending()

        executor = ThreadPoolExecutor(max_workers=min(self.workers, len(numbers)))
        try:
            futures: dict[Future[IssueOutcome], int] = {
                executor.submit(self.orchestrator.triage_issue, number, steps, force): number
                for number in numbers
            }
            done, not_done = wait(futures, timeout=self.timeout_s)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        outcomes: dict[int, IssueOutcome] = {}
        for future in done:
            number = futures[future]
            try:
                outcomes[number] = future.result()
            except Exception as exc:
                logger.exception("Unexpected error while triaging #%s", number)
                outcomes[number] = IssueOutcome(
                    number, STATUS_FAILED, error_code=UNEXPECTED_ERROR_CODE, error=str(exc)
                )
        for future in not_done:
            number = futures[future]
            outcomes[number] = IssueOutcome(
                number,
                STATUS_FAILED,
                error_code=BATCH_TIMEOUT_CODE,
                error=f"not finished within {self.timeout_s:.0f}s",
            )
        return outcomes

    def classify_new(self, since: datetime | None = None, force: bool = False) -> BatchReport:
        """Classify open issues that have no classification record yet."""
        orchestrator = self.orchestrator
        issues = orchestrator.caller.call(
            "list_open_issues", orchestrator.tracker.list_open_issues, since
        )
        numbers = [
            issue.number
            for issue in issues
            if force or orchestrator.db.get_triage_record(issue.number) is None
        ]
        logger.info("Found %d unclassified open issues", len(numbers))
        return self.run(numbers, steps=(STEP_CLASSIFY,), force=force)

    def assign_unassigned(self, force: bool = False) -> BatchReport:
        orchestrator = self.orchestrator
        issues = orchestrator.caller.call(
            "list_open_issues", orchestrator.tracker.list_open_issues, None, True
        )
        numbers = [issue.number for issue in issues]
        logger.info("Found %d unassigned open issues", len(numbers))
        return self.run(numbers, steps=(STEP_ASSIGN,), force=force)

    def triage_open(self, since: datetime | None = None, force: bool = False) -> BatchReport:
        orchestrator = self.orchestrator
        issues = orchestrator.caller.call(
            "list_open_issues", orchestrator.tracker.list_open_issues, since
        )
        return self.run([issue.number for issue in issues], force=force)
