"""Error taxonomy shared by the engine, store, tracker adapters, and orchestrator."""

from __future__ import annotations

from typing import Any


class TriageError(Exception):
    """Base class for all triage-bot failures."""

    code = "triage_error"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.context = dict(context)


class ValidationError(TriageError):
    """Malformed input for a single issue; fatal to that issue only."""

    code = "validation_error"


class TransientError(TriageError):
    """Retryable failure: timeouts, 5xx responses, rate limits, busy database."""

    code = "transient_error"

    def __init__(
        self,
        message: str,
        reason_code: str = "transient_failure",
        retry_after_s: float | None = None,
        **context: Any,
    ) -> None:
        super().__init__(message, **context)
        self.reason_code = reason_code
        self.retry_after_s = retry_after_s


class PersistenceError(TriageError):
    """A store read or write failed; side effects must not follow."""

    code = "persistence_error"


class TransientPersistenceError(PersistenceError, TransientError):
    code = "persistence_busy"

    def __init__(self, message: str, **context: Any) -> None:
        TransientError.__init__(self, message, reason_code="database_busy", **context)


class ConfigurationError(TriageError):
    """Invalid startup configuration; raised before any issue is processed."""

    code = "configuration_error"


class TrackerError(TriageError):
    """Non-transient issue-tracker failure (4xx, malformed response)."""

    code = "tracker_error"

    def __init__(self, message: str, status_code: int | None = None, **context: Any) -> None:
        super().__init__(message, **context)
        self.status_code = status_code


def validate_issue_number(value: Any) -> int:
    """Return ``value`` as a positive issue number or raise ValidationError."""
    if isinstance(value, bool):
        raise ValidationError(f"Invalid issue number: {value!r}", issue_number=value)
    if isinstance(value, str):
        cleaned = value.strip().lstrip("#")
        if not cleaned.isdigit():
            raise ValidationError(f"Invalid issue number: {value!r}", issue_number=value)
        value = int(cleaned)
    if not isinstance(value, int) or value <= 0:
        raise ValidationError(f"Invalid issue number: {value!r}", issue_number=value)
    return value
