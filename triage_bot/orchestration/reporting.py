"""Triage summary report over the persisted records."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path
from typing import Any

from triage_bot.engine.complexity import DESCRIPTIONS
from triage_bot.store.db import TriageDB, format_ts


class ReportingService:
    def __init__(self, db: TriageDB) -> None:
        self.db = db

    def build_summary(self, days: int = 30, top: int = 10) -> dict[str, Any]:
        now = self.db.clock()
        since = now - timedelta(days=days)
        classifications = self.db.classification_summary(since)
        classified_total = sum(row["issues"] for row in classifications)
        for row in classifications:
            row["share"] = (row["issues"] / classified_total) if classified_total else 0.0
        return {
            "generated_at": format_ts(now),
            "window_days": days,
            "classifications": classifications,
            "classified_total": classified_total,
            "complexity": self.db.complexity_distribution(since),
            "top_assignees": self.db.top_assignees(since, limit=top),
            "assignment_methods": self.db.assignment_methods(since),
            "duplicates": self.db.duplicate_counts(since),
            "outcomes": self.db.status_counts(),
        }

    def render_markdown(self, summary: dict[str, Any]) -> str:
        lines = [
            f"# Issue triage summary - {summary['generated_at'][0:10]}",
            "",
            f"Window: last {summary['window_days']} days.",
            "",
            "## Classification",
        ]
        if summary["classifications"]:
            for row in summary["classifications"]:
                lines.append(
                    f"- {row['classification']}: {row['issues']} ({row['share']:.0%}), "
                    f"avg confidence {row['avg_confidence']:.2f}"
                )
        else:
            lines.append("- none")

        lines.extend(["", "## Complexity"])
        for score, count in sorted(summary["complexity"].items()):
            lines.append(f"- {score} ({DESCRIPTIONS[score].split(' - ')[0]}): {count}")

        lines.extend(["", "## Assignment"])
        methods = summary["assignment_methods"]
        lines.append(
            "- Methods: "
            + (", ".join(f"{name}={methods[name]}" for name in sorted(methods)) or "none")
        )
        if summary["top_assignees"]:
            for row in summary["top_assignees"]:
                lines.append(f"- @{row['assigned_to']}: {row['issues']}")

        duplicates = summary["duplicates"]
        outcomes = summary["outcomes"]
        lines.extend(
            [
                "",
                "## Duplicates",
                f"- Confirmed: {duplicates['confirmed']}",
                f"- Unconfirmed: {duplicates['unconfirmed']}",
                "",
                "## Outcomes",
                "- "
                + (", ".join(f"{name}={outcomes[name]}" for name in sorted(outcomes)) or "none"),
            ]
        )
        return "\n".join(lines) + "\n"

    def write_report(self, path: str | Path, days: int = 30) -> Path:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.render_markdown(self.build_summary(days=days)), encoding="utf-8")
        return target
