"""Lexical near-duplicate detection over a bounded candidate set."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Sequence

from triage_bot.engine.tokenizer import (
    DEFAULT_MIN_TOKEN_LENGTH,
    DEFAULT_STOP_WORDS,
    issue_text,
    normalize_text,
    tokenize,
)

DEFAULT_THRESHOLD = 0.70
DEFAULT_MAX_CANDIDATES = 20
DEFAULT_PREFIX_MIN_LENGTH = 3
SEARCH_TERM_MIN_LENGTH = 4
SEARCH_TERM_LIMIT = 5


@dataclass(frozen=True)
class DuplicateCandidate:
    number: int
    title: str
    body: str = ""
    state: str = "open"


@dataclass(frozen=True)
class ScoredCandidate:
    number: int
    similarity: float


@dataclass(frozen=True)
class DuplicateResult:
    issue_number: int
    threshold: float
    scored: tuple[ScoredCandidate, ...] = ()
    matches: tuple[ScoredCandidate, ...] = ()
    selected: ScoredCandidate | None = None
    skipped: tuple[int, ...] = field(default_factory=tuple)

    @property
    def is_duplicate(self) -> bool:
        return self.selected is not None


def jaccard_similarity(left: Iterable[str], right: Iterable[str]) -> float:
    """|A & B| / |A | B|; an empty union scores 0.0."""
    a = set(left)
    b = set(right)
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def fold_prefixes(
    left: Iterable[str],
    right: Iterable[str],
    min_length: int = DEFAULT_PREFIX_MIN_LENGTH,
) -> tuple[frozenset[str], frozenset[str]]:
    """Map tokens onto shorter tokens they extend, e.g. ``application`` -> ``app``.

    Roots are chosen from the union of both sets, shortest first, so the
    mapping is identical whichever side is passed first.
    """
    a = set(left)
    b = set(right)
    roots: list[str] = []
    canonical: dict[str, str] = {}
    for token in sorted(a | b, key=lambda tok: (len(tok), tok)):
        root = next(
            (r for r in roots if len(r) >= min_length and token.startswith(r)),
            None,
        )
        if root is None:
            roots.append(token)
            canonical[token] = token
        else:
            canonical[token] = root
    return (
        frozenset(canonical[token] for token in a),
        frozenset(canonical[token] for token in b),
    )


def similarity(
    left: Iterable[str],
    right: Iterable[str],
    prefix_folding: bool = True,
    prefix_min_length: int = DEFAULT_PREFIX_MIN_LENGTH,
) -> float:
    if prefix_folding:
        left, right = fold_prefixes(left, right, min_length=prefix_min_length)
    return jaccard_similarity(left, right)


def build_search_query(title: str) -> str:
    terms: list[str] = []
    for word in normalize_text(title).split():
        if len(word) >= SEARCH_TERM_MIN_LENGTH and word not in terms:
            terms.append(word)
        if len(terms) >= SEARCH_TERM_LIMIT:
            break
    return " ".join(terms)


def detect_duplicate(
    issue_number: int,
    title: str,
    body: str,
    candidates: Sequence[DuplicateCandidate],
    threshold: float = DEFAULT_THRESHOLD,
    max_candidates: int = DEFAULT_MAX_CANDIDATES,
    stop_words: Iterable[str] = DEFAULT_STOP_WORDS,
    min_token_length: int = DEFAULT_MIN_TOKEN_LENGTH,
    prefix_folding: bool = True,
    prefix_min_length: int = DEFAULT_PREFIX_MIN_LENGTH,
) -> DuplicateResult:
    """Score candidates in the order received and pick the best one at or above threshold.

    Ties on similarity go to the lowest (oldest) issue number. The issue
    itself and closed candidates are skipped; anything past
    ``max_candidates`` is ignored.
    """
    stops = frozenset(stop_words)
    own_tokens = tokenize(issue_text(title, body), stop_words=stops, min_length=min_token_length)

    scored: list[ScoredCandidate] = []
    skipped: list[int] = []
    for candidate in list(candidates)[: max(0, max_candidates)]:
        if candidate.number == issue_number or candidate.state.lower() != "open":
            skipped.append(candidate.number)
            continue
        other_tokens = tokenize(
            issue_text(candidate.title, candidate.body),
            stop_words=stops,
            min_length=min_token_length,
        )
        score = similarity(
            own_tokens,
            other_tokens,
            prefix_folding=prefix_folding,
            prefix_min_length=prefix_min_length,
        )
        scored.append(ScoredCandidate(number=candidate.number, similarity=score))

    matches = tuple(item for item in scored if item.similarity >= threshold)
    selected = None
    if matches:
        selected = sorted(matches, key=lambda item: (-item.similarity, item.number))[0]
    return DuplicateResult(
        issue_number=issue_number,
        threshold=threshold,
        scored=tuple(scored),
        matches=matches,
        selected=selected,
        skipped=tuple(skipped),
    )


def duplicate_comment(duplicate_of: int, score: float, repo: str = "") -> str:
    reference = f"#{duplicate_of}"
    if repo:
        reference = f"[#{duplicate_of}](https://github.com/{repo}/issues/{duplicate_of})"
    return (
        "## Potential Duplicate Detected\n\n"
        f"This issue may be a duplicate of {reference}.\n\n"
        f"**Similarity Score:** {score:.2f}\n\n"
        "Please review both issues and:\n"
        "- If they are duplicates: close this issue and add any relevant comments to the original\n"
        "- If they are different: remove the `duplicate` label and explain the differences\n"
    )
