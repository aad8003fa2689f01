"""Heuristic 1-5 complexity estimate with an optional historical blend."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, Sequence

from triage_bot.engine.classifier import keyword_matches_token
from triage_bot.engine.ownership import extract_file_paths
from triage_bot.engine.tokenizer import DEFAULT_STOP_WORDS, tokenize, tokenize_sequence

MIN_SCORE = 1
MAX_SCORE = 5

LINES_REFERENCE = 1000
FILES_REFERENCE = 20
KEYWORD_REFERENCE = 15
MAX_FILES = 20

DEFAULT_WEIGHTS = (0.3, 0.2, 0.5)
DEFAULT_HISTORY_BLEND = 0.3
DEFAULT_HISTORY_LOOKBACK_DAYS = 180
HISTORY_TERM_MIN_LENGTH = 4
HISTORY_TERM_LIMIT = 3

HIGH_KEYWORDS = (
    "refactor",
    "rewrite",
    "redesign",
    "restructure",
    "architecture",
    "migration",
    "overhaul",
)
MEDIUM_KEYWORDS = ("feature", "enhancement", "implement", "add", "support", "optimize", "improve")
LOW_KEYWORDS = ("minor", "trivial", "simple", "small", "typo", "tweak")
KEYWORD_POINTS = ((HIGH_KEYWORDS, 5), (MEDIUM_KEYWORDS, 2), (LOW_KEYWORDS, 1))

DESCRIPTIONS = {
    1: "Trivial - Quick fix, minimal changes",
    2: "Low - Simple changes, well-defined scope",
    3: "Medium - Moderate changes, some complexity",
    4: "High - Complex changes, multiple components",
    5: "Critical - Major refactoring or architecture changes",
}

_LINES_MENTION = re.compile(r"(\d+)\s*(?:lines?|loc)\b")
_FILES_MENTION = re.compile(r"(\d+)\s*files?\b")


@dataclass(frozen=True)
class HistoricalSample:
    title: str
    score: int
    estimated_at: datetime


@dataclass(frozen=True)
class ComplexityEstimate:
    score: int
    lines_estimate: int
    files_estimate: int
    keyword_score: int
    lines_factor: float
    files_factor: float
    keyword_factor: float
    raw: float
    final: float
    historical_avg: float | None = None

    @property
    def label(self) -> str:
        return complexity_label(self.score)

    @property
    def description(self) -> str:
        return DESCRIPTIONS.get(self.score, "Unknown")


def complexity_label(score: int) -> str:
    return f"complexity-{score}"


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp_score(value: int) -> int:
    return max(MIN_SCORE, min(MAX_SCORE, int(value)))


def estimate_lines(text: str | None) -> int:
    """Explicit "N lines" mention wins; otherwise bucket by word count."""
    lowered = (text or "").lower()
    mention = _LINES_MENTION.search(lowered)
    if mention:
        return int(mention.group(1))
    words = len(lowered.split())
    if words > 500:
        return 500
    if words > 200:
        return 200
    if words > 100:
        return 100
    return 50


def estimate_files(text: str | None) -> int:
    files = len(extract_file_paths(text))
    mention = _FILES_MENTION.search((text or "").lower())
    if mention:
        files = max(files, int(mention.group(1)))
    return min(files, MAX_FILES)


def score_keywords(tokens: Iterable[str]) -> int:
    tokens = frozenset(tokens)
    score = 0
    for keywords, points in KEYWORD_POINTS:
        for keyword in keywords:
            if any(keyword_matches_token(keyword, token) for token in tokens):
                score += points
    return score


def factors(lines: int, files: int, keyword_score: int) -> tuple[float, float, float]:
    return (
        min(max(lines, 0) / LINES_REFERENCE, 1.0),
        min(max(files, 0) / FILES_REFERENCE, 1.0),
        min(max(keyword_score, 0) / KEYWORD_REFERENCE, 1.0),
    )


def history_terms(title: str | None) -> list[str]:
    terms = tokenize_sequence(title, stop_words=DEFAULT_STOP_WORDS, min_length=HISTORY_TERM_MIN_LENGTH)
    return terms[:HISTORY_TERM_LIMIT]


def historical_average(
    title: str | None,
    history: Sequence[HistoricalSample],
    now: datetime | None = None,
    lookback_days: int = DEFAULT_HISTORY_LOOKBACK_DAYS,
) -> float | None:
    """Mean score of recent samples whose title shares a significant term."""
    terms = set(history_terms(title))
    if not terms:
        return None
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=lookback_days)
    scores: list[int] = []
    for sample in history:
        estimated_at = sample.estimated_at
        if estimated_at.tzinfo is None:
            estimated_at = estimated_at.replace(tzinfo=timezone.utc)
        if estimated_at < cutoff:
            continue
        if terms & tokenize(sample.title, min_length=HISTORY_TERM_MIN_LENGTH):
            scores.append(clamp_score(sample.score))
    if not scores:
        return None
    return sum(scores) / len(scores)


def estimate(
    title: str | None,
    body: str | None,
    history: Sequence[HistoricalSample] = (),
    weights: tuple[float, float, float] = DEFAULT_WEIGHTS,
    history_blend: float = DEFAULT_HISTORY_BLEND,
    lookback_days: int = DEFAULT_HISTORY_LOOKBACK_DAYS,
    now: datetime | None = None,
) -> ComplexityEstimate:
    text = f"{title or ''} {body or ''}".strip()
    lines = estimate_lines(text)
    files = estimate_files(text)
    keyword_score = score_keywords(tokenize(text, min_length=3))
    lines_factor, files_factor, keyword_factor = factors(lines, files, keyword_score)

    w_lines, w_files, w_keywords = weights
    raw = w_lines * lines_factor + w_files * files_factor + w_keywords * keyword_factor

    avg = historical_average(title, history, now=now, lookback_days=lookback_days)
    final = raw
    if avg is not None:
        normalized = (avg - MIN_SCORE) / (MAX_SCORE - MIN_SCORE)
        final = (1.0 - history_blend) * raw + history_blend * normalized

    score = clamp_score(round_half_up(final * 4 + 1))
    return ComplexityEstimate(
        score=score,
        lines_estimate=lines,
        files_estimate=files,
        keyword_score=keyword_score,
        lines_factor=lines_factor,
        files_factor=files_factor,
        keyword_factor=keyword_factor,
        raw=raw,
        final=final,
        historical_avg=avg,
    )


def complexity_comment(result: ComplexityEstimate) -> str:
    lines = [
        "## Complexity Estimate",
        "",
        f"**Complexity:** {result.score}/5 - {result.description}",
        "",
        "### Breakdown",
        f"- Lines of code (estimated): {result.lines_estimate}",
        f"- Files affected (estimated): {result.files_estimate}",
        f"- Keyword score: {result.keyword_score}",
    ]
    if result.historical_avg is not None:
        lines.append(f"- Historical average for similar issues: {result.historical_avg:.1f}")
    lines.extend(["", "This is an automated estimate. Adjust the label if it looks wrong."])
    return "\n".join(lines) + "\n"
