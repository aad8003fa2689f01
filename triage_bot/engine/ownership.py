"""Ownership resolution: extract file/module references and rank likely owners."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Iterable, Protocol, Sequence

from triage_bot.engine.tokenizer import normalize_text

logger = logging.getLogger(__name__)

STRENGTH_SCALE = 100
DEFAULT_MAX_ASSIGNEES = 3
DEFAULT_MIN_OWNER_SCORE = 50

METHOD_OWNERSHIP = "ownership"
METHOD_DEFAULT = "default"
METHOD_SKIP = "skip"

GITHUB_USERNAME_RE = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9-]{0,37}[A-Za-z0-9])?$")
_URL_RE = re.compile(r"\b[a-z][a-z0-9+.-]*://\S+", re.IGNORECASE)
_PATH_RE = re.compile(
    r"(?<![\w/.-])"
    r"(?:[A-Za-z0-9_.-]+/)+[A-Za-z0-9_.*-]+"
    r"|(?<![\w/.-])[A-Za-z0-9_-]{2,}\.[A-Za-z]{1,5}\b"
)

# Slash phrases from ordinary prose that the path pattern would otherwise take.
_NOT_PATHS = frozenset(
    {
        "and/or",
        "client/server",
        "either/or",
        "i/o",
        "input/output",
        "on/off",
        "read/write",
        "true/false",
        "w/o",
        "yes/no",
    }
)


@dataclass(frozen=True)
class OwnershipEntry:
    file_pattern: str
    owner_name: str
    github_username: str
    ownership_strength: float

    @property
    def strength_points(self) -> int:
        """Strength in fixed-point units (0..100)."""
        clamped = min(max(float(self.ownership_strength), 0.0), 1.0)
        return int(round(clamped * STRENGTH_SCALE))


@dataclass(frozen=True)
class Reference:
    value: str
    is_module: bool = False


@dataclass
class OwnerScore:
    github_username: str
    owner_name: str
    score: int = 0
    best_pattern: str = ""
    best_points: int = -1
    matches: list[tuple[str, str]] = field(default_factory=list)


@dataclass(frozen=True)
class AssignmentDecision:
    method: str
    assignees: tuple[str, ...]
    matched_patterns: dict[str, str]
    scores: dict[str, int]
    dropped: tuple[str, ...] = ()


class OwnershipSource(Protocol):
    """Read-only ownership reference data."""

    def entries_for(self, reference: Reference) -> list[OwnershipEntry]: ...


class StaticOwnershipSource:
    """Ownership source backed by an in-memory entry table."""

    def __init__(self, entries: Iterable[OwnershipEntry]) -> None:
        self.entries = tuple(entries)

    def entries_for(self, reference: Reference) -> list[OwnershipEntry]:
        return match_entries(reference, self.entries)


@lru_cache(maxsize=1024)
def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Compile a CODEOWNERS-style glob.

    A leading ``/`` anchors at the repository root, otherwise a slash-less
    pattern matches at any depth. ``**`` spans directories, ``*`` stays
    within one path segment, ``?`` is a single character, and a trailing
    ``/`` (or a bare name) also matches everything beneath it.
    """
    glob = pattern.strip()
    anchored = glob.startswith("/") or "/" in glob.rstrip("/")
    glob = glob.lstrip("/")
    directory_only = glob.endswith("/")
    glob = glob.rstrip("/")

    parts: list[str] = []
    i = 0
    while i < len(glob):
        char = glob[i]
        if glob.startswith("**/", i):
            parts.append("(?:.*/)?")
            i += 3
        elif glob.startswith("**", i):
            parts.append(".*")
            i += 2
        elif char == "*":
            parts.append("[^/]*")
            i += 1
        elif char == "?":
            parts.append("[^/]")
            i += 1
        else:
            parts.append(re.escape(char))
            i += 1
    body = "".join(parts)
    prefix = "^" if anchored else "^(?:.*/)?"
    suffix = "/.*$" if directory_only else "(?:/.*)?$"
    return re.compile(prefix + body + suffix)


def pattern_matches_path(pattern: str, path: str) -> bool:
    if not pattern.strip():
        return False
    return bool(glob_to_regex(pattern).match(path.strip().lstrip("./").lstrip("/")))


def pattern_matches_module(pattern: str, module: str) -> bool:
    name = module.strip().strip("/")
    if not name:
        return False
    return pattern_matches_path(pattern, name) or pattern_matches_path(pattern, f"{name}/")


def match_entries(reference: Reference, entries: Iterable[OwnershipEntry]) -> list[OwnershipEntry]:
    check = pattern_matches_module if reference.is_module else pattern_matches_path
    return [entry for entry in entries if check(entry.file_pattern, reference.value)]


def extract_file_paths(text: str | None) -> list[str]:
    """Return sorted unique path-like tokens mentioned in ``text``."""
    if not text:
        return []
    without_urls = _URL_RE.sub(" ", text)
    found = {match.group(0).rstrip(".") for match in _PATH_RE.finditer(without_urls)}
    return sorted(
        path for path in found if path and not path.startswith(".") and path.lower() not in _NOT_PATHS
    )


def extract_modules(text: str | None, modules: Iterable[str]) -> list[str]:
    words = set(normalize_text(text).split())
    found: list[str] = []
    for module in modules:
        key = module.strip().strip("/")
        leaf = normalize_text(key.rsplit("/", 1)[-1])
        if not key or key in found:
            continue
        if key.lower() in words or (leaf and leaf in words):
            found.append(key)
    return sorted(found)


def extract_references(text: str | None, modules: Iterable[str]) -> list[Reference]:
    references = [Reference(path) for path in extract_file_paths(text)]
    references.extend(Reference(module, is_module=True) for module in extract_modules(text, modules))
    return references


def aggregate_ownership(
    references: Sequence[Reference],
    source: OwnershipSource,
) -> dict[str, OwnerScore]:
    """Sum fixed-point ownership strength per GitHub username over every match."""
    scores: dict[str, OwnerScore] = {}
    for reference in references:
        for entry in source.entries_for(reference):
            username = entry.github_username.strip().lstrip("@")
            if not username:
                continue
            owner = scores.setdefault(
                username.lower(),
                OwnerScore(github_username=username, owner_name=entry.owner_name),
            )
            points = entry.strength_points
            owner.score += points
            owner.matches.append((reference.value, entry.file_pattern))
            if points > owner.best_points:
                owner.best_points = points
                owner.best_pattern = entry.file_pattern
    return scores


def rank_owners(scores: dict[str, OwnerScore]) -> list[OwnerScore]:
    return sorted(scores.values(), key=lambda owner: (-owner.score, owner.github_username.lower()))


def select_owners(
    ranked: Sequence[OwnerScore],
    top_k: int = DEFAULT_MAX_ASSIGNEES,
    min_score: int = DEFAULT_MIN_OWNER_SCORE,
) -> list[OwnerScore]:
    return [owner for owner in ranked if owner.score > min_score][: max(0, top_k)]


def is_valid_username(username: str) -> bool:
    return bool(GITHUB_USERNAME_RE.match(username))


def validate_assignees(
    candidates: Iterable[str],
    collaborators: Iterable[str],
) -> tuple[list[str], list[str]]:
    """Split ``candidates`` into (valid, dropped) against the collaborator list."""
    known = {name.lower(): name for name in collaborators}
    valid: list[str] = []
    dropped: list[str] = []
    for candidate in candidates:
        name = candidate.strip().lstrip("@")
        if not is_valid_username(name):
            logger.warning("Dropping assignee with invalid GitHub username format: %r", candidate)
            dropped.append(candidate)
            continue
        if name.lower() not in known:
            logger.warning("Dropping assignee %s: not a collaborator on this repository", name)
            dropped.append(candidate)
            continue
        resolved = known[name.lower()]
        if resolved not in valid:
            valid.append(resolved)
    return valid, dropped


def resolve_assignment(
    text: str | None,
    source: OwnershipSource,
    collaborators: Iterable[str],
    modules: Iterable[str] = (),
    default_assignees: Iterable[str] = (),
    top_k: int = DEFAULT_MAX_ASSIGNEES,
    min_score: int = DEFAULT_MIN_OWNER_SCORE,
) -> AssignmentDecision:
    collaborators = list(collaborators)
    references = extract_references(text, modules)
    ranked = rank_owners(aggregate_ownership(references, source))
    selected = select_owners(ranked, top_k=top_k, min_score=min_score)
    scores = {owner.github_username: owner.score for owner in ranked}

    valid, dropped = validate_assignees(
        [owner.github_username for owner in selected], collaborators
    )
    if valid:
        patterns = {
            owner.github_username: owner.best_pattern
            for owner in selected
            if owner.github_username in valid
        }
        # validate_assignees may return the collaborator's canonical casing
        for name in valid:
            patterns.setdefault(name, _pattern_for(name, selected))
        return AssignmentDecision(
            method=METHOD_OWNERSHIP,
            assignees=tuple(valid),
            matched_patterns=patterns,
            scores=scores,
            dropped=tuple(dropped),
        )

    defaults, dropped_defaults = validate_assignees(default_assignees, collaborators)
    if defaults:
        return AssignmentDecision(
            method=METHOD_DEFAULT,
            assignees=tuple(defaults[: max(1, top_k)]),
            matched_patterns={},
            scores=scores,
            dropped=tuple(dropped + dropped_defaults),
        )
    return AssignmentDecision(
        method=METHOD_SKIP,
        assignees=(),
        matched_patterns={},
        scores=scores,
        dropped=tuple(dropped + dropped_defaults),
    )


def _pattern_for(username: str, owners: Sequence[OwnerScore]) -> str:
    for owner in owners:
        if owner.github_username.lower() == username.lower():
            return owner.best_pattern
    return ""


def assignment_comment(assignees: Sequence[str], method: str) -> str:
    mentions = ", ".join(f"@{name}" for name in assignees)
    if method == METHOD_OWNERSHIP:
        reason = "Based on code ownership patterns from files and modules mentioned in the issue"
    else:
        reason = "Default assignee from configuration"
    return (
        "## Issue Assignment\n\n"
        f"This issue has been automatically assigned to: {mentions}\n\n"
        f"**Reason:** {reason}\n\n"
        "If this assignment is incorrect, please reassign manually.\n"
    )
