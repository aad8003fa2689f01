from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from triage_bot.config import TriageConfig, build_config
from triage_bot.engine.ownership import OwnershipEntry, StaticOwnershipSource
from triage_bot.errors import PersistenceError, TransientPersistenceError
from triage_bot.github.tracker import Issue
from triage_bot.github.tracker_inmemory import InMemoryTracker
from triage_bot.orchestration.orchestrator import (
    ALL_STEPS,
    STATUS_FAILED,
    STATUS_SKIPPED,
    STATUS_SUCCEEDED,
    IssueOutcome,
    TriageOrchestrator,
)
from triage_bot.orchestration.resilience import ResilientCaller, RetryPolicy
from triage_bot.store.db import TriageDB

BODY = "Stack trace points at app/Main.kt"


def _tracker() -> InMemoryTracker:
    return InMemoryTracker(
        repo="acme/widgets",
        issues=[
            Issue(10, "App crashes when opening settings", BODY),
            Issue(11, "Application crashes when opening settings page", BODY),
            Issue(12, "Dark theme colours", "Would like a dark theme"),
        ],
        collaborators=["alice", "bob"],
    )


def _orchestrator(
    db: TriageDB,
    tracker: InMemoryTracker,
    config: TriageConfig | None = None,
) -> TriageOrchestrator:
    caller = ResilientCaller(policy=RetryPolicy(max_attempts=3, base_delay_s=0.0), sleep=lambda s: None)
    return TriageOrchestrator(
        config or TriageConfig(),
        db,
        tracker,
        caller=caller,
        ownership_source=StaticOwnershipSource([OwnershipEntry("app/**", "Alice", "alice", 0.8)]),
    )


def test_full_triage_records_and_applies_every_step(db: TriageDB) -> None:
    tracker = _tracker()
    orchestrator = _orchestrator(db, tracker)

    outcome = orchestrator.triage_issue(11)

    assert outcome.status == STATUS_SUCCEEDED
    assert [(step.step, step.action) for step in outcome.steps] == [(step, "done") for step in ALL_STEPS]
    assert db.get_triage_record(11)["classification"] == "bug"
    assert db.list_duplicates(11)[0]["duplicate_of"] == 10
    assert [row["assigned_to"] for row in db.list_assignments(11)] == ["alice"]
    assert db.get_complexity(11)["score"] == 1

    issue = tracker.get_issue(11)
    assert issue.labels == ("bug", "duplicate", "complexity-1")
    assert issue.assignees == ("alice",)
    assert len(tracker.comments[11]) == 3
    assert db.list_unapplied_mutations() == []

    status = db.get_status(11)
    assert status["state"] == "persisted"
    assert status["status"] == STATUS_SUCCEEDED
    assert status["completed_steps"] == sorted(ALL_STEPS)


def test_second_run_is_skipped_without_tracker_writes(db: TriageDB) -> None:
    tracker = _tracker()
    orchestrator = _orchestrator(db, tracker)
    orchestrator.triage_issue(11)
    writes = len(tracker.writes())

    outcome = orchestrator.triage_issue(11)

    assert outcome.status == STATUS_SKIPPED
    assert all(step.action == "skipped" for step in outcome.steps)
    assert len(tracker.writes()) == writes


def test_forced_rerun_does_not_repeat_tracker_writes(db: TriageDB) -> None:
    tracker = _tracker()
    orchestrator = _orchestrator(db, tracker)
    orchestrator.triage_issue(11)
    writes = len(tracker.writes())

    outcome = orchestrator.triage_issue(11, force=True)

    assert outcome.status == STATUS_SUCCEEDED
    assert len(tracker.writes()) == writes
    assert len(db.list_duplicates(11)) == 1
    assert len(db.list_assignments(11)) == 1


def test_existing_duplicate_label_skips_detection(db: TriageDB) -> None:
    tracker = _tracker()
    tracker.add_issue(Issue(11, "Application crashes when opening settings page", BODY, labels=("duplicate",)))
    orchestrator = _orchestrator(db, tracker)

    outcome = orchestrator.triage_issue(11, steps=["duplicates"])

    assert outcome.status == STATUS_SKIPPED
    assert db.list_duplicates(11) == []
    assert tracker.writes() == []


def test_unmatched_issue_falls_back_to_skip_assignment(db: TriageDB) -> None:
    tracker = _tracker()
    orchestrator = _orchestrator(db, tracker)

    outcome = orchestrator.triage_issue(12, steps=["assign"])

    assert outcome.status == STATUS_SUCCEEDED
    assert outcome.steps[0].detail == {"method": "skip", "assignees": []}
    assert db.list_assignments(12)[0]["method"] == "skip"
    assert tracker.writes() == []
    assert orchestrator.triage_issue(12, steps=["assign"]).status == STATUS_SKIPPED


def test_default_assignee_is_used_without_ownership_match(db: TriageDB) -> None:
    tracker = _tracker()
    config = build_config({"default_assignees": ["bob"], "post_comments": False})
    orchestrator = _orchestrator(db, tracker, config)

    outcome = orchestrator.triage_issue(12, steps=["assign"])

    assert outcome.steps[0].detail == {"method": "default", "assignees": ["bob"]}
    assert [call.operation for call in tracker.writes()] == ["set_assignees"]


def test_stale_complexity_label_is_replaced(db: TriageDB) -> None:
    tracker = _tracker()
    tracker.add_issue(Issue(12, "Dark theme colours", "", labels=("complexity-4",)))
    orchestrator = _orchestrator(db, tracker, build_config({"complexity_comment": False}))

    orchestrator.triage_issue(12, steps=["complexity"])

    assert [(call.operation, call.payload) for call in tracker.writes()] == [
        ("remove_label", "complexity-4"),
        ("apply_label", "complexity-1"),
    ]
    assert tracker.get_issue(12).labels == ("complexity-1",)


def test_failed_tracker_write_fails_issue_and_is_retried_next_run(db: TriageDB) -> None:
    tracker = _tracker()
    tracker.fail_next("apply_label", times=3)
    orchestrator = _orchestrator(db, tracker)

    outcome = orchestrator.triage_issue(11, steps=["classify"])

    assert outcome.status == STATUS_FAILED
    assert outcome.error_code == "tracker_mutation_failed"
    assert db.get_triage_record(11) is not None
    assert db.get_status(11)["status"] == STATUS_FAILED
    pending = db.list_unapplied_mutations(11)
    assert [(row["status"], row["retry_count"]) for row in pending] == [("failed", 1)]

    retry = orchestrator.triage_issue(11, steps=["classify"])

    assert retry.status == STATUS_SUCCEEDED
    assert retry.steps[0].action == "skipped"
    assert tracker.get_issue(11).labels == ("bug",)
    assert db.list_unapplied_mutations(11) == []


def test_transient_read_failure_is_retried(db: TriageDB) -> None:
    tracker = _tracker()
    tracker.fail_next("get_issue", times=2)
    orchestrator = _orchestrator(db, tracker)

    assert orchestrator.triage_issue(12, steps=["classify"]).status == STATUS_SUCCEEDED


def test_missing_issue_fails_with_tracker_error(db: TriageDB) -> None:
    orchestrator = _orchestrator(db, _tracker())

    outcome = orchestrator.triage_issue(404)

    assert outcome.status == STATUS_FAILED
    assert outcome.error_code == "tracker_error"
    assert db.get_status(404)["status"] == STATUS_FAILED


def test_invalid_issue_number_is_rejected_without_side_effects(db: TriageDB) -> None:
    tracker = _tracker()
    outcome = _orchestrator(db, tracker).triage_issue("abc")

    assert outcome.status == STATUS_FAILED
    assert outcome.error_code == "validation_error"
    assert db.status_counts() == {}
    assert tracker.calls == []


def test_unknown_step_is_a_programming_error(db: TriageDB) -> None:
    with pytest.raises(ValueError):
        _orchestrator(db, _tracker()).triage_issue(11, steps=["classify", "translate"])


def test_persistence_failure_prevents_tracker_side_effects(
    db: TriageDB, monkeypatch: pytest.MonkeyPatch
) -> None:
    tracker = _tracker()
    orchestrator = _orchestrator(db, tracker)

    def broken(*args: object, **kwargs: object) -> None:
        raise PersistenceError("disk full")

    monkeypatch.setattr(db, "record_classification", broken)

    outcome = orchestrator.triage_issue(11, steps=["classify"])

    assert outcome.status == STATUS_FAILED
    assert outcome.error_code == "persistence_error"
    assert tracker.writes() == []


def test_busy_database_write_is_retried(db: TriageDB, monkeypatch: pytest.MonkeyPatch) -> None:
    tracker = _tracker()
    orchestrator = _orchestrator(db, tracker)
    original = db.record_classification
    attempts: list[int] = []

    def busy_once(*args: object, **kwargs: object) -> None:
        attempts.append(1)
        if len(attempts) == 1:
            raise TransientPersistenceError("database is locked")
        original(*args, **kwargs)

    monkeypatch.setattr(db, "record_classification", busy_once)

    outcome = orchestrator.triage_issue(11, steps=["classify"])

    assert outcome.status == STATUS_SUCCEEDED
    assert len(attempts) == 2
    assert db.get_triage_record(11)["classification"] == "bug"
    assert tracker.get_issue(11).labels == ("bug",)


class SlowCommentTracker(InMemoryTracker):
    def post_comment(self, number: int, body: str) -> None:
        time.sleep(0.3)
        super().post_comment(number, body)


def test_workers_with_separate_connections_post_a_comment_once(tmp_path: Path) -> None:
    path = tmp_path / "shared.sqlite"
    tracker = SlowCommentTracker(
        repo="acme/widgets",
        issues=[
            Issue(10, "App crashes when opening settings", BODY),
            Issue(11, "Application crashes when opening settings page", BODY),
        ],
    )
    stores = [TriageDB(path), TriageDB(path)]
    outcomes: list[IssueOutcome] = []
    start = threading.Barrier(len(stores))

    def worker(store: TriageDB) -> None:
        orchestrator = _orchestrator(store, tracker)
        start.wait()
        outcomes.append(orchestrator.triage_issue(11, steps=["duplicates"]))

    threads = [threading.Thread(target=worker, args=(store,)) for store in stores]
    try:
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(10)
    finally:
        for store in stores:
            store.close()

    assert len(outcomes) == 2
    assert all(outcome.status != STATUS_FAILED for outcome in outcomes)
    assert len(tracker.comments[11]) == 1
    assert tracker.get_issue(11).labels == ("duplicate",)


def test_outcome_serializes_step_details(db: TriageDB) -> None:
    outcome = _orchestrator(db, _tracker()).triage_issue("#12", steps=["classify"])

    data = outcome.to_dict()
    assert data["issue_number"] == 12
    assert data["status"] == STATUS_SUCCEEDED
    assert data["steps"][0]["step"] == "classify"
    assert data["steps"][0]["category"] == "feature"
