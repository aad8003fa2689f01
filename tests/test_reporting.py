from __future__ import annotations

from pathlib import Path

from triage_bot.orchestration.reporting import ReportingService
from triage_bot.store.db import TriageDB


def _seed(db: TriageDB) -> None:
    db.record_classification(1, "bug", 0.9)
    db.record_classification(2, "bug", 0.7)
    db.record_classification(3, "documentation", 1.0)
    db.record_complexity(1, "Crash on login", 2, 50, 1, 0)
    db.record_complexity(3, "Typo", 1, 50, 0, 1)
    db.record_assignments(1, "ownership", [("alice", "app/**")])
    db.record_assignments(3, "skip", [])
    db.record_duplicates(2, [(1, 0.83)], selected=1)
    db.confirm_duplicate(2, 1, "bob")
    db.set_status(1, "persisted", "succeeded", ["classify"])
    db.set_status(2, "classified", "failed", ["classify"], "tracker_mutation_failed", "boom")


def test_build_summary_aggregates_the_window(db: TriageDB) -> None:
    _seed(db)

    summary = ReportingService(db).build_summary(days=30)

    assert summary["generated_at"] == "2026-03-01T12:00:00Z"
    assert summary["classified_total"] == 3
    assert summary["classifications"][0] == {
        "classification": "bug",
        "issues": 2,
        "avg_confidence": 0.8,
        "share": 2 / 3,
    }
    assert summary["complexity"] == {1: 1, 2: 1, 3: 0, 4: 0, 5: 0}
    assert summary["top_assignees"] == [{"assigned_to": "alice", "issues": 1}]
    assert summary["assignment_methods"] == {"ownership": 1, "skip": 1}
    assert summary["duplicates"] == {"confirmed": 1, "unconfirmed": 0}
    assert summary["outcomes"] == {"succeeded": 1, "failed": 1}


def test_records_outside_the_window_are_excluded(db: TriageDB, clock) -> None:
    _seed(db)
    clock.advance(days=60)

    summary = ReportingService(db).build_summary(days=30)

    assert summary["classified_total"] == 0
    assert summary["classifications"] == []
    assert sum(summary["complexity"].values()) == 0


def test_markdown_report_sections(db: TriageDB, tmp_path: Path) -> None:
    _seed(db)
    service = ReportingService(db)

    path = service.write_report(tmp_path / "reports" / "triage.md", days=30)
    text = path.read_text(encoding="utf-8")

    assert text.startswith("# Issue triage summary - 2026-03-01")
    for heading in ("## Classification", "## Complexity", "## Assignment", "## Duplicates", "## Outcomes"):
        assert heading in text
    assert "- bug: 2 (67%), avg confidence 0.80" in text
    assert "- 2 (Low): 1" in text
    assert "- @alice: 1" in text
    assert "- Methods: ownership=1, skip=1" in text
    assert "- failed=1, succeeded=1" in text


def test_empty_database_renders(db: TriageDB) -> None:
    service = ReportingService(db)
    text = service.render_markdown(service.build_summary())
    assert "## Classification\n- none" in text
    assert "- Methods: none" in text
