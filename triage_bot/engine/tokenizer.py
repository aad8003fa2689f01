"""Text normalization and tokenization shared by every triage component."""

from __future__ import annotations

import re
from collections.abc import Iterable

DEFAULT_STOP_WORDS = frozenset(
    """
    a an the and or but is are was were be been being have has had do does did
    will would should could may might must can this that these those with for
    from at by to in on of it its
    """.split()
)
DEFAULT_MIN_TOKEN_LENGTH = 3

_APOSTROPHES = re.compile(r"['’`]")
_NON_ALNUM = re.compile(r"[^0-9a-z]+")


def normalize_text(text: str | None) -> str:
    """Lowercase ``text``, drop apostrophes, and collapse other punctuation to spaces."""
    if not text:
        return ""
    lowered = _APOSTROPHES.sub("", text.lower())
    return _NON_ALNUM.sub(" ", lowered).strip()


def tokenize_sequence(
    text: str | None,
    stop_words: Iterable[str] = DEFAULT_STOP_WORDS,
    min_length: int = DEFAULT_MIN_TOKEN_LENGTH,
) -> list[str]:
    stops = stop_words if isinstance(stop_words, (set, frozenset)) else frozenset(stop_words)
    seen: set[str] = set()
    ordered: list[str] = []
    for word in normalize_text(text).split():
        if len(word) < min_length or word in stops or word in seen:
            continue
        seen.add(word)
        ordered.append(word)
    return ordered


def tokenize(
    text: str | None,
    stop_words: Iterable[str] = DEFAULT_STOP_WORDS,
    min_length: int = DEFAULT_MIN_TOKEN_LENGTH,
) -> frozenset[str]:
    """Return the set of significant lowercase tokens in ``text``.

    Empty or whitespace-only input yields an empty set.
    """
    return frozenset(tokenize_sequence(text, stop_words=stop_words, min_length=min_length))


def tokens_to_text(tokens: Iterable[str]) -> str:
    return " ".join(sorted(tokens))


def issue_text(title: str | None, body: str | None) -> str:
    return f"{title or ''} {body or ''}".strip()
