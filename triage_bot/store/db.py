"""SQLite persistence for triage records, ownership data, status, and the mutation outbox."""

from __future__ import annotations

import json
import logging
import math
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator

from triage_bot.engine.complexity import HistoricalSample
from triage_bot.engine.ownership import OwnershipEntry, Reference, match_entries
from triage_bot.errors import PersistenceError, TransientPersistenceError, ValidationError

logger = logging.getLogger(__name__)

MUTATION_PENDING = "pending"
MUTATION_APPLIED = "applied"
MUTATION_FAILED = "failed"
MUTATION_APPLYING = "applying"
DEFAULT_CLAIM_LEASE_S = 300


@dataclass(frozen=True)
class PendingMutation:
    """A tracker write to enqueue alongside the record that caused it."""

    issue_number: int
    operation: str
    payload: dict[str, Any]
    idempotency_key: str


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_ts(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.strptime(value, "%Y-%m-%dT%H:%M:%SZ").replace(tzinfo=timezone.utc)


def clamp_unit(value: float, field: str) -> float:
    number = float(value)
    if math.isnan(number):
        raise ValidationError(f"{field} is not a number", field=field)
    return min(max(number, 0.0), 1.0)


class TriageDB:
    """One SQLite connection shared by all workers; statements are serialized by a lock."""

    def __init__(
        self,
        db_path: Path | str = ":memory:",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.db_path = str(db_path)
        self.clock = clock
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        try:
            self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot open database {self.db_path}: {exc}") from exc
        self.conn.row_factory = sqlite3.Row
        with self.transaction():
            self._configure_connection()
            self._init_schema()

    def _configure_connection(self) -> None:
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA busy_timeout=5000")
        self.conn.execute("PRAGMA synchronous=NORMAL")

    def _init_schema(self) -> None:
        self.conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS triage_records (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                issue_number INTEGER NOT NULL UNIQUE,
                classification TEXT NOT NULL,
                confidence REAL NOT NULL CHECK (confidence >= 0 AND confidence <= 1),
                applied_labels_json TEXT NOT NULL DEFAULT '[]',
                classified_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS duplicate_records (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                issue_number INTEGER NOT NULL,
                duplicate_of INTEGER NOT NULL,
                similarity_score REAL NOT NULL CHECK (similarity_score >= 0 AND similarity_score <= 1),
                selected INTEGER NOT NULL DEFAULT 0,
                detected_at TEXT NOT NULL,
                confirmed INTEGER NOT NULL DEFAULT 0,
                confirmed_by TEXT,
                UNIQUE(issue_number, duplicate_of)
            );

            CREATE TABLE IF NOT EXISTS assignment_records (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                issue_number INTEGER NOT NULL,
                assigned_to TEXT NOT NULL DEFAULT '',
                method TEXT NOT NULL CHECK (method IN ('ownership', 'default', 'skip')),
                matched_pattern TEXT NOT NULL DEFAULT '',
                assigned_at TEXT NOT NULL,
                UNIQUE(issue_number, assigned_to)
            );

            CREATE TABLE IF NOT EXISTS complexity_records (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                issue_number INTEGER NOT NULL UNIQUE,
                issue_title TEXT NOT NULL DEFAULT '',
                score INTEGER NOT NULL CHECK (score >= 1 AND score <= 5),
                lines_estimate INTEGER NOT NULL DEFAULT 0,
                files_estimate INTEGER NOT NULL DEFAULT 0,
                keyword_score INTEGER NOT NULL DEFAULT 0,
                historical_avg REAL,
                estimated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS code_ownership (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                file_pattern TEXT NOT NULL,
                owner_name TEXT NOT NULL,
                github_username TEXT NOT NULL,
                ownership_strength REAL NOT NULL CHECK (ownership_strength >= 0 AND ownership_strength <= 1),
                updated_at TEXT NOT NULL,
                UNIQUE(file_pattern, github_username)
            );

            CREATE TABLE IF NOT EXISTS triage_status (
                issue_number INTEGER PRIMARY KEY,
                state TEXT NOT NULL DEFAULT 'pending',
                status TEXT NOT NULL DEFAULT 'in_progress',
                completed_steps_json TEXT NOT NULL DEFAULT '[]',
                error_code TEXT,
                last_error TEXT,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS tracker_mutations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                issue_number INTEGER NOT NULL,
                operation TEXT NOT NULL,
                payload_json TEXT NOT NULL,
                idempotency_key TEXT NOT NULL UNIQUE,
                status TEXT NOT NULL DEFAULT 'pending',
                retry_count INTEGER NOT NULL DEFAULT 0,
                last_error TEXT,
                created_at TEXT NOT NULL,
                applied_at TEXT,
                claimed_by TEXT,
                claim_expires_at TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_duplicate_issue ON duplicate_records(issue_number);
            CREATE INDEX IF NOT EXISTS idx_assignment_issue ON assignment_records(issue_number);
            CREATE INDEX IF NOT EXISTS idx_complexity_estimated ON complexity_records(estimated_at);
            CREATE INDEX IF NOT EXISTS idx_mutation_status ON tracker_mutations(status, issue_number);
            """
        )
        if not self._has_column("tracker_mutations", "claimed_by"):
            self.conn.execute("ALTER TABLE tracker_mutations ADD COLUMN claimed_by TEXT")
        if not self._has_column("tracker_mutations", "claim_expires_at"):
            self.conn.execute("ALTER TABLE tracker_mutations ADD COLUMN claim_expires_at TEXT")

    def _has_column(self, table: str, column: str) -> bool:
        rows = self.conn.execute(f"PRAGMA table_info({table})").fetchall()
        return any(row[1] == column for row in rows)

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    @contextmanager
    def _errors(self) -> Iterator[None]:
        try:
            yield
        except sqlite3.OperationalError as exc:
            message = str(exc).lower()
            if "locked" in message or "busy" in message:
                raise TransientPersistenceError(f"Database busy: {exc}") from exc
            raise PersistenceError(f"Database error: {exc}") from exc
        except sqlite3.Error as exc:
            raise PersistenceError(f"Database error: {exc}") from exc

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the enclosed statements atomically; nothing is committed on error."""
        with self._lock, self._errors():
            try:
                yield self.conn
            except BaseException:
                self.conn.rollback()
                raise
            self.conn.commit()

    def _fetchall(self, sql: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        with self._lock, self._errors():
            return self.conn.execute(sql, params).fetchall()

    def _fetchone(self, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Row | None:
        with self._lock, self._errors():
            return self.conn.execute(sql, params).fetchone()

    def _now(self) -> str:
        return format_ts(self.clock())

    # Records

    def record_classification(
        self,
        issue_number: int,
        classification: str,
        confidence: float,
        applied_labels: Iterable[str] = (),
        mutations: Iterable[PendingMutation] = (),
    ) -> None:
        confidence = clamp_unit(confidence, "confidence")
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO triage_records (
                  issue_number, classification, confidence, applied_labels_json, classified_at
                )
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(issue_number) DO UPDATE SET
                  classification = excluded.classification,
                  confidence = excluded.confidence,
                  applied_labels_json = excluded.applied_labels_json,
                  classified_at = excluded.classified_at
                """,
                (issue_number, classification, confidence, json.dumps(list(applied_labels)), self._now()),
            )
            self._enqueue(conn, mutations)

    def get_triage_record(self, issue_number: int) -> dict[str, Any] | None:
        row = self._fetchone("SELECT * FROM triage_records WHERE issue_number = ?", (issue_number,))
        if row is None:
            return None
        return {
            "issue_number": row["issue_number"],
            "classification": row["classification"],
            "confidence": row["confidence"],
            "applied_labels": json.loads(row["applied_labels_json"]),
            "classified_at": row["classified_at"],
        }

    def record_duplicates(
        self,
        issue_number: int,
        matches: Iterable[tuple[int, float]],
        selected: int | None = None,
        mutations: Iterable[PendingMutation] = (),
    ) -> int:
        """Append one row per candidate at or above threshold; existing pairs are kept."""
        inserted = 0
        now = self._now()
        with self.transaction() as conn:
            for duplicate_of, score in matches:
                cur = conn.execute(
                    """
                    INSERT INTO duplicate_records (
                      issue_number, duplicate_of, similarity_score, selected, detected_at
                    )
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(issue_number, duplicate_of) DO NOTHING
                    """,
                    (
                        issue_number,
                        duplicate_of,
                        clamp_unit(score, "similarity_score"),
                        1 if duplicate_of == selected else 0,
                        now,
                    ),
                )
                inserted += cur.rowcount
            self._enqueue(conn, mutations)
        return inserted

    def list_duplicates(self, issue_number: int) -> list[dict[str, Any]]:
        rows = self._fetchall(
            """
            SELECT * FROM duplicate_records
            WHERE issue_number = ?
            ORDER BY similarity_score DESC, duplicate_of ASC
            """,
            (issue_number,),
        )
        return [
            {
                "issue_number": row["issue_number"],
                "duplicate_of": row["duplicate_of"],
                "similarity_score": row["similarity_score"],
                "selected": bool(row["selected"]),
                "detected_at": row["detected_at"],
                "confirmed": bool(row["confirmed"]),
                "confirmed_by": row["confirmed_by"],
            }
            for row in rows
        ]

    def confirm_duplicate(self, issue_number: int, duplicate_of: int, confirmed_by: str) -> bool:
        with self.transaction() as conn:
            cur = conn.execute(
                """
                UPDATE duplicate_records
                SET confirmed = 1, confirmed_by = ?
                WHERE issue_number = ? AND duplicate_of = ?
                """,
                (confirmed_by, issue_number, duplicate_of),
            )
        return cur.rowcount > 0

    def cleanup_old_duplicates(self, days: int) -> int:
        cutoff = format_ts(self.clock() - timedelta(days=days))
        with self.transaction() as conn:
            cur = conn.execute(
                "DELETE FROM duplicate_records WHERE confirmed = 0 AND detected_at < ?",
                (cutoff,),
            )
        logger.info("Deleted %d unconfirmed duplicate records older than %d days", cur.rowcount, days)
        return cur.rowcount

    def record_assignments(
        self,
        issue_number: int,
        method: str,
        assignees: Iterable[tuple[str, str]],
        mutations: Iterable[PendingMutation] = (),
    ) -> None:
        """Write one row per (username, matched_pattern); a skip decision writes one empty row."""
        rows = list(assignees) or [("", "")]
        now = self._now()
        with self.transaction() as conn:
            for username, pattern in rows:
                conn.execute(
                    """
                    INSERT INTO assignment_records (
                      issue_number, assigned_to, method, matched_pattern, assigned_at
                    )
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(issue_number, assigned_to) DO NOTHING
                    """,
                    (issue_number, username, method, pattern or "", now),
                )
            self._enqueue(conn, mutations)

    def list_assignments(self, issue_number: int) -> list[dict[str, Any]]:
        rows = self._fetchall(
            "SELECT * FROM assignment_records WHERE issue_number = ? ORDER BY id",
            (issue_number,),
        )
        return [
            {
                "issue_number": row["issue_number"],
                "assigned_to": row["assigned_to"],
                "method": row["method"],
                "matched_pattern": row["matched_pattern"],
                "assigned_at": row["assigned_at"],
            }
            for row in rows
        ]

    def record_complexity(
        self,
        issue_number: int,
        issue_title: str,
        score: int,
        lines_estimate: int,
        files_estimate: int,
        keyword_score: int,
        historical_avg: float | None = None,
        mutations: Iterable[PendingMutation] = (),
    ) -> None:
        score = max(1, min(5, int(score)))
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO complexity_records (
                  issue_number, issue_title, score, lines_estimate, files_estimate,
                  keyword_score, historical_avg, estimated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(issue_number) DO UPDATE SET
                  issue_title = excluded.issue_title,
                  score = excluded.score,
                  lines_estimate = excluded.lines_estimate,
                  files_estimate = excluded.files_estimate,
                  keyword_score = excluded.keyword_score,
                  historical_avg = excluded.historical_avg,
                  estimated_at = excluded.estimated_at
                """,
                (
                    issue_number,
                    issue_title,
                    score,
                    max(0, int(lines_estimate)),
                    max(0, int(files_estimate)),
                    max(0, int(keyword_score)),
                    historical_avg,
                    self._now(),
                ),
            )
            self._enqueue(conn, mutations)

    def get_complexity(self, issue_number: int) -> dict[str, Any] | None:
        row = self._fetchone("SELECT * FROM complexity_records WHERE issue_number = ?", (issue_number,))
        if row is None:
            return None
        return {key: row[key] for key in row.keys() if key != "id"}

    def complexity_history(self, since: datetime, exclude_issue: int | None = None) -> list[HistoricalSample]:
        rows = self._fetchall(
            """
            SELECT issue_title, score, estimated_at FROM complexity_records
            WHERE estimated_at >= ? AND issue_number != ?
            ORDER BY estimated_at
            """,
            (format_ts(since), exclude_issue if exclude_issue is not None else -1),
        )
        return [
            HistoricalSample(
                title=row["issue_title"],
                score=row["score"],
                estimated_at=parse_ts(row["estimated_at"]) or since,
            )
            for row in rows
        ]

    # Ownership reference data

    def upsert_ownership(self, entries: Iterable[OwnershipEntry]) -> int:
        count = 0
        now = self._now()
        with self.transaction() as conn:
            for entry in entries:
                conn.execute(
                    """
                    INSERT INTO code_ownership (
                      file_pattern, owner_name, github_username, ownership_strength, updated_at
                    )
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(file_pattern, github_username) DO UPDATE SET
                      owner_name = excluded.owner_name,
                      ownership_strength = excluded.ownership_strength,
                      updated_at = excluded.updated_at
                    """,
                    (
                        entry.file_pattern,
                        entry.owner_name,
                        entry.github_username,
                        clamp_unit(entry.ownership_strength, "ownership_strength"),
                        now,
                    ),
                )
                count += 1
        return count

    def list_ownership(self) -> list[OwnershipEntry]:
        rows = self._fetchall(
            """
            SELECT file_pattern, owner_name, github_username, ownership_strength
            FROM code_ownership
            ORDER BY file_pattern, github_username
            """
        )
        return [
            OwnershipEntry(
                file_pattern=row["file_pattern"],
                owner_name=row["owner_name"],
                github_username=row["github_username"],
                ownership_strength=row["ownership_strength"],
            )
            for row in rows
        ]

    # Orchestrator status

    def get_status(self, issue_number: int) -> dict[str, Any] | None:
        row = self._fetchone("SELECT * FROM triage_status WHERE issue_number = ?", (issue_number,))
        if row is None:
            return None
        return {
            "issue_number": row["issue_number"],
            "state": row["state"],
            "status": row["status"],
            "completed_steps": json.loads(row["completed_steps_json"]),
            "error_code": row["error_code"],
            "last_error": row["last_error"],
            "updated_at": row["updated_at"],
        }

    def set_status(
        self,
        issue_number: int,
        state: str,
        status: str,
        completed_steps: Iterable[str] = (),
        error_code: str | None = None,
        last_error: str | None = None,
    ) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO triage_status (
                  issue_number, state, status, completed_steps_json, error_code, last_error, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(issue_number) DO UPDATE SET
                  state = excluded.state,
                  status = excluded.status,
                  completed_steps_json = excluded.completed_steps_json,
                  error_code = excluded.error_code,
                  last_error = excluded.last_error,
                  updated_at = excluded.updated_at
                """,
                (
                    issue_number,
                    state,
                    status,
                    json.dumps(sorted(set(completed_steps))),
                    error_code,
                    last_error,
                    self._now(),
                ),
            )

    # Mutation outbox

    def _enqueue(self, conn: sqlite3.Connection, mutations: Iterable[PendingMutation]) -> None:
        now = self._now()
        for mutation in mutations:
            conn.execute(
                """
                INSERT INTO tracker_mutations (
                  issue_number, operation, payload_json, idempotency_key, status, created_at
                )
                VALUES (?, ?, ?, ?, 'pending', ?)
                ON CONFLICT(idempotency_key) DO NOTHING
                """,
                (
                    mutation.issue_number,
                    mutation.operation,
                    json.dumps(mutation.payload, sort_keys=True),
                    mutation.idempotency_key,
                    now,
                ),
            )

    def enqueue_mutations(self, mutations: Iterable[PendingMutation]) -> None:
        with self.transaction() as conn:
            self._enqueue(conn, mutations)

    def list_unapplied_mutations(self, issue_number: int | None = None) -> list[dict[str, Any]]:
        sql = "SELECT * FROM tracker_mutations WHERE status != 'applied'"
        params: tuple[Any, ...] = ()
        if issue_number is not None:
            sql += " AND issue_number = ?"
            params = (issue_number,)
        rows = self._fetchall(sql + " ORDER BY id", params)
        return [self._mutation_row(row) for row in rows]

    def list_mutations(self, issue_number: int) -> list[dict[str, Any]]:
        rows = self._fetchall(
            "SELECT * FROM tracker_mutations WHERE issue_number = ? ORDER BY id", (issue_number,)
        )
        return [self._mutation_row(row) for row in rows]

    def _mutation_row(self, row: sqlite3.Row) -> dict[str, Any]:
        return {
            "id": row["id"],
            "issue_number": row["issue_number"],
            "operation": row["operation"],
            "payload": json.loads(row["payload_json"]),
            "idempotency_key": row["idempotency_key"],
            "status": row["status"],
            "retry_count": row["retry_count"],
            "last_error": row["last_error"],
            "claimed_by": row["claimed_by"],
            "claim_expires_at": row["claim_expires_at"],
        }

    def claim_mutation(
        self,
        mutation_id: int,
        worker_id: str,
        lease_seconds: int = DEFAULT_CLAIM_LEASE_S,
    ) -> bool:
        """Take the row for one sender; a live claim held by anyone blocks other claims until it expires."""
        now = self.clock()
        expires = format_ts(now + timedelta(seconds=lease_seconds))
        with self.transaction() as conn:
            cur = conn.execute(
                """
                UPDATE tracker_mutations
                SET status = 'applying', claimed_by = ?, claim_expires_at = ?
                WHERE id = ?
                  AND (
                    status IN ('pending', 'failed')
                    OR (status = 'applying' AND (claim_expires_at IS NULL OR claim_expires_at <= ?))
                  )
                """,
                (worker_id, expires, mutation_id, format_ts(now)),
            )
        return cur.rowcount > 0

    def mark_mutation_applied(self, mutation_id: int) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                UPDATE tracker_mutations
                SET status = 'applied', last_error = NULL, applied_at = ?,
                    claimed_by = NULL, claim_expires_at = NULL
                WHERE id = ?
                """,
                (self._now(), mutation_id),
            )

    def mark_mutation_failed(self, mutation_id: int, error: str) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                UPDATE tracker_mutations
                SET status = 'failed', retry_count = retry_count + 1, last_error = ?,
                    claimed_by = NULL, claim_expires_at = NULL
                WHERE id = ?
                """,
                (error, mutation_id),
            )

    # Reporting queries

    def classification_summary(self, since: datetime) -> list[dict[str, Any]]:
        rows = self._fetchall(
            """
            SELECT classification, COUNT(*) AS issues, AVG(confidence) AS avg_confidence
            FROM triage_records
            WHERE classified_at >= ?
            GROUP BY classification
            ORDER BY issues DESC, classification ASC
            """,
            (format_ts(since),),
        )
        return [
            {
                "classification": row["classification"],
                "issues": row["issues"],
                "avg_confidence": round(row["avg_confidence"] or 0.0, 2),
            }
            for row in rows
        ]

    def complexity_distribution(self, since: datetime) -> dict[int, int]:
        rows = self._fetchall(
            """
            SELECT score, COUNT(*) AS issues FROM complexity_records
            WHERE estimated_at >= ?
            GROUP BY score
            """,
            (format_ts(since),),
        )
        distribution = {score: 0 for score in range(1, 6)}
        for row in rows:
            distribution[int(row["score"])] = row["issues"]
        return distribution

    def top_assignees(self, since: datetime, limit: int = 10) -> list[dict[str, Any]]:
        rows = self._fetchall(
            """
            SELECT assigned_to, COUNT(*) AS issues FROM assignment_records
            WHERE assigned_to != '' AND assigned_at >= ?
            GROUP BY assigned_to
            ORDER BY issues DESC, assigned_to ASC
            LIMIT ?
            """,
            (format_ts(since), limit),
        )
        return [{"assigned_to": row["assigned_to"], "issues": row["issues"]} for row in rows]

    def assignment_methods(self, since: datetime) -> dict[str, int]:
        rows = self._fetchall(
            """
            SELECT method, COUNT(DISTINCT issue_number) AS issues FROM assignment_records
            WHERE assigned_at >= ?
            GROUP BY method
            """,
            (format_ts(since),),
        )
        return {row["method"]: row["issues"] for row in rows}

    def duplicate_counts(self, since: datetime) -> dict[str, int]:
        row = self._fetchone(
            """
            SELECT
              COALESCE(SUM(CASE WHEN confirmed = 1 THEN 1 ELSE 0 END), 0) AS confirmed,
              COALESCE(SUM(CASE WHEN confirmed = 0 THEN 1 ELSE 0 END), 0) AS unconfirmed
            FROM duplicate_records
            WHERE detected_at >= ?
            """,
            (format_ts(since),),
        )
        if row is None:
            return {"confirmed": 0, "unconfirmed": 0}
        return {"confirmed": row["confirmed"], "unconfirmed": row["unconfirmed"]}

    def status_counts(self) -> dict[str, int]:
        rows = self._fetchall("SELECT status, COUNT(*) AS issues FROM triage_status GROUP BY status")
        return {row["status"]: row["issues"] for row in rows}


class DBOwnershipSource:
    """Ownership source over the ``code_ownership`` table, loaded once per instance."""

    def __init__(self, db: TriageDB) -> None:
        self.db = db
        self._entries: list[OwnershipEntry] | None = None
        self._lock = threading.Lock()

    def entries(self) -> list[OwnershipEntry]:
        with self._lock:
            if self._entries is None:
                self._entries = self.db.list_ownership()
            return self._entries

    def entries_for(self, reference: Reference) -> list[OwnershipEntry]:
        return match_entries(reference, self.entries())
