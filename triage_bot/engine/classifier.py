"""Weighted keyword classifier with priority-based tie-breaking."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

from triage_bot.engine.tokenizer import (
    DEFAULT_MIN_TOKEN_LENGTH,
    DEFAULT_STOP_WORDS,
    normalize_text,
    tokenize,
)

INFLECTION_SUFFIXES = ("", "s", "es", "ed", "d", "ing", "er", "ers", "ly")

DEFAULT_CATEGORY = "question"
DEFAULT_CONFIDENCE = 0.70


@dataclass(frozen=True)
class CategoryRule:
    name: str
    priority: int
    keywords: tuple[str, ...]


DEFAULT_RULES: tuple[CategoryRule, ...] = (
    CategoryRule(
        "security",
        10,
        (
            "security",
            "vulnerability",
            "exploit",
            "hack",
            "attack",
            "secure",
            "permission",
            "auth",
            "cve",
            "xss",
            "injection",
        ),
    ),
    CategoryRule(
        "bug",
        8,
        (
            "crash",
            "error",
            "broken",
            "doesn't work",
            "failing",
            "fix",
            "bug",
            "problem",
            "fail",
            "exception",
        ),
    ),
    CategoryRule(
        "performance",
        6,
        ("slow", "performance", "optimize", "faster", "lag", "speed", "latency", "memory"),
    ),
    CategoryRule(
        "feature",
        5,
        ("add", "implement", "new feature", "would like", "request", "feature", "support"),
    ),
    CategoryRule(
        "enhancement",
        3,
        (
            "improve",
            "enhance",
            "better",
            "optimize",
            "refactor",
            "cleanup",
            "enhancement",
            "improvement",
        ),
    ),
    CategoryRule(
        "documentation",
        2,
        ("docs", "readme", "documentation", "guide", "tutorial", "doc"),
    ),
    CategoryRule(
        "question",
        1,
        ("how", "what", "why", "when", "where", "who", "help", "question", "?"),
    ),
)


@dataclass(frozen=True)
class Classification:
    category: str
    confidence: float
    scores: dict[str, int]
    matched_keywords: dict[str, tuple[str, ...]]


def keyword_matches_token(keyword: str, token: str) -> bool:
    if not token.startswith(keyword):
        return False
    return token[len(keyword) :] in INFLECTION_SUFFIXES


def _phrase_pattern(phrase: str) -> re.Pattern[str]:
    return re.compile(r"(?:^| )" + re.escape(phrase) + r"(?: |$)")


def match_keywords(
    keywords: Iterable[str],
    tokens: frozenset[str],
    normalized: str,
    raw_text: str = "",
) -> tuple[str, ...]:
    """Return the distinct keywords of a category found in an issue.

    Single words are compared against tokens (allowing simple inflections),
    multi-word phrases against the normalized text, and the ``?`` keyword
    against the raw text.
    """
    matched: list[str] = []
    for keyword in keywords:
        if keyword in matched:
            continue
        if keyword == "?":
            if "?" in raw_text:
                matched.append(keyword)
            continue
        phrase = normalize_text(keyword)
        if not phrase:
            continue
        if " " in phrase:
            if _phrase_pattern(phrase).search(normalized):
                matched.append(keyword)
            continue
        if phrase in tokens or any(keyword_matches_token(phrase, token) for token in tokens):
            matched.append(keyword)
    return tuple(matched)


def score_categories(
    rules: Iterable[CategoryRule],
    tokens: frozenset[str],
    normalized: str,
    raw_text: str = "",
) -> tuple[dict[str, int], dict[str, tuple[str, ...]]]:
    scores: dict[str, int] = {}
    matched: dict[str, tuple[str, ...]] = {}
    for rule in rules:
        hits = match_keywords(rule.keywords, tokens, normalized, raw_text)
        matched[rule.name] = hits
        scores[rule.name] = len(hits) * rule.priority
    return scores, matched


def select_category(
    scores: dict[str, int],
    rules: Iterable[CategoryRule],
    default_category: str = DEFAULT_CATEGORY,
    default_confidence: float = DEFAULT_CONFIDENCE,
) -> tuple[str, float]:
    priorities = {rule.name: rule.priority for rule in rules}
    total = sum(scores.values())
    if total <= 0:
        return default_category, default_confidence
    winner = sorted(
        scores.items(),
        key=lambda item: (-item[1], -priorities.get(item[0], 0), item[0]),
    )[0]
    confidence = round(min(max(winner[1] / total, 0.0), 1.0), 2)
    return winner[0], confidence


def classify(
    title: str | None,
    body: str | None,
    rules: Iterable[CategoryRule] = DEFAULT_RULES,
    stop_words: Iterable[str] = DEFAULT_STOP_WORDS,
    min_token_length: int = DEFAULT_MIN_TOKEN_LENGTH,
    default_category: str = DEFAULT_CATEGORY,
    default_confidence: float = DEFAULT_CONFIDENCE,
) -> Classification:
    """Classify an issue into exactly one category; never raises on empty text."""
    rules = tuple(rules)
    raw_text = f"{title or ''} {body or ''}"
    # Keyword matching must see short words like "add" and "how"; stop words still apply.
    tokens = tokenize(raw_text, stop_words=stop_words, min_length=min(min_token_length, 2))
    normalized = normalize_text(raw_text)
    scores, matched = score_categories(rules, tokens, normalized, raw_text)
    category, confidence = select_category(
        scores,
        rules,
        default_category=default_category,
        default_confidence=default_confidence,
    )
    return Classification(
        category=category,
        confidence=confidence,
        scores=scores,
        matched_keywords=matched,
    )
