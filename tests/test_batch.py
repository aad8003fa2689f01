from __future__ import annotations

import threading

from triage_bot.config import TriageConfig
from triage_bot.engine.ownership import StaticOwnershipSource
from triage_bot.github.tracker import Issue
from triage_bot.github.tracker_inmemory import InMemoryTracker
from triage_bot.orchestration.batch import BatchRunner
from triage_bot.orchestration.orchestrator import STATUS_FAILED, STATUS_SUCCEEDED, TriageOrchestrator
from triage_bot.orchestration.resilience import ResilientCaller, RetryPolicy
from triage_bot.store.db import TriageDB


class ExplodingTracker(InMemoryTracker):
    def get_issue(self, number: int) -> Issue:
        if number == 2:
            raise RuntimeError("tracker adapter bug")
        return super().get_issue(number)


class BlockingTracker(InMemoryTracker):
    def __init__(self, *args: object, **kwargs: object) -> None:
        super().__init__(*args, **kwargs)  # type: ignore[arg-type]
        self.release = threading.Event()

    def get_issue(self, number: int) -> Issue:
        if number == 3:
            self.release.wait(5)
        return super().get_issue(number)


def _issues() -> list[Issue]:
    return [
        Issue(1, "App crashes on login"),
        Issue(2, "Add CSV export", assignees=("bob",)),
        Issue(3, "Docs typo in README"),
        Issue(4, "Old closed thing", state="closed"),
    ]


def _orchestrator(db: TriageDB, tracker: InMemoryTracker) -> TriageOrchestrator:
    return TriageOrchestrator(
        TriageConfig(),
        db,
        tracker,
        caller=ResilientCaller(policy=RetryPolicy(max_attempts=1), sleep=lambda s: None),
        ownership_source=StaticOwnershipSource([]),
    )


def test_run_reports_each_issue_in_input_order(db: TriageDB) -> None:
    tracker = InMemoryTracker(issues=_issues(), collaborators=["bob"])
    runner = BatchRunner(_orchestrator(db, tracker), workers=2, timeout_s=30)

    report = runner.run([3, "nope", 1, 3, 99])

    assert [outcome.issue_number for outcome in report.outcomes] == [3, "nope", 1, 99]
    assert report.counts() == {"succeeded": 2, "skipped": 0, "failed": 2, "total": 4}
    assert {outcome.issue_number for outcome in report.failed} == {"nope", 99}
    assert not report.timed_out


def test_repeats_written_differently_run_once(db: TriageDB) -> None:
    tracker = InMemoryTracker(
        issues=[
            Issue(10, "App crashes when opening settings"),
            Issue(11, "Application crashes when opening settings page"),
        ]
    )
    runner = BatchRunner(_orchestrator(db, tracker), workers=2, timeout_s=30)

    report = runner.run([11, "#11", " 11 "], steps=["duplicates"])

    assert [outcome.issue_number for outcome in report.outcomes] == [11]
    assert report.outcomes[0].status == STATUS_SUCCEEDED
    assert len(tracker.comments[11]) == 1


def test_unexpected_exception_is_isolated_to_its_issue(db: TriageDB) -> None:
    tracker = ExplodingTracker(issues=_issues())
    runner = BatchRunner(_orchestrator(db, tracker), workers=3, timeout_s=30)

    report = runner.run([1, 2, 3], steps=["classify"])

    by_number = {outcome.issue_number: outcome for outcome in report.outcomes}
    assert by_number[2].status == STATUS_FAILED
    assert by_number[2].error_code == "unexpected_error"
    assert by_number[1].status == STATUS_SUCCEEDED
    assert by_number[3].status == STATUS_SUCCEEDED


def test_issues_unfinished_at_the_deadline_are_reported(db: TriageDB) -> None:
    tracker = BlockingTracker(issues=_issues())
    runner = BatchRunner(_orchestrator(db, tracker), workers=2, timeout_s=0.5)
    try:
        report = runner.run([1, 3], steps=["classify"])
    finally:
        tracker.release.set()

    assert report.timed_out
    outcomes = {outcome.issue_number: outcome for outcome in report.outcomes}
    assert outcomes[1].status == STATUS_SUCCEEDED
    assert outcomes[3].error_code == "batch_timeout"


def test_classify_new_only_picks_unclassified_open_issues(db: TriageDB) -> None:
    db.record_classification(1, "bug", 0.9)
    tracker = InMemoryTracker(issues=_issues())
    runner = BatchRunner(_orchestrator(db, tracker), workers=2, timeout_s=30)

    report = runner.classify_new()

    assert [outcome.issue_number for outcome in report.outcomes] == [2, 3]
    assert db.get_triage_record(3)["classification"] == "documentation"
    assert db.list_assignments(3) == []


def test_assign_unassigned_skips_assigned_issues(db: TriageDB) -> None:
    tracker = InMemoryTracker(issues=_issues(), collaborators=["bob"])
    runner = BatchRunner(_orchestrator(db, tracker), workers=2, timeout_s=30)

    report = runner.assign_unassigned()

    assert [outcome.issue_number for outcome in report.outcomes] == [1, 3]
    assert db.list_assignments(2) == []


def test_empty_batch_is_a_no_op(db: TriageDB) -> None:
    tracker = InMemoryTracker()
    report = BatchRunner(_orchestrator(db, tracker)).run([])
    assert report.to_dict()["summary"] == {"succeeded": 0, "skipped": 0, "failed": 0, "total": 0}
