from __future__ import annotations

import logging

import pytest

from triage_bot.engine.ownership import (
    METHOD_DEFAULT,
    METHOD_OWNERSHIP,
    METHOD_SKIP,
    OwnershipEntry,
    Reference,
    StaticOwnershipSource,
    aggregate_ownership,
    assignment_comment,
    extract_file_paths,
    extract_modules,
    extract_references,
    pattern_matches_module,
    pattern_matches_path,
    rank_owners,
    resolve_assignment,
    select_owners,
    validate_assignees,
)

ENTRIES = (
    OwnershipEntry("app/**", "Alice", "alice", 0.8),
    OwnershipEntry("core", "Bob", "bob", 0.5),
)


def test_file_owner_outranks_module_owner() -> None:
    source = StaticOwnershipSource(ENTRIES)
    references = extract_references("Crash in app/Main.kt when the core module loads", ["core"])

    assert references == [Reference("app/Main.kt"), Reference("core", is_module=True)]
    ranked = rank_owners(aggregate_ownership(references, source))
    assert [(owner.github_username, owner.score) for owner in ranked] == [("alice", 80), ("bob", 50)]
    assert ranked[0].best_pattern == "app/**"


def test_aggregation_only_grows_with_more_matches() -> None:
    source = StaticOwnershipSource(
        ENTRIES + (OwnershipEntry("*.kt", "Alice", "Alice", 0.3),)
    )
    one = aggregate_ownership([Reference("app/Main.kt")], source)
    two = aggregate_ownership([Reference("app/Main.kt"), Reference("app/Other.kt")], source)

    assert one["alice"].score == 110
    assert two["alice"].score == 220
    assert two["alice"].score >= one["alice"].score


@pytest.mark.parametrize(
    ("pattern", "path", "expected"),
    [
        ("app/**", "app/src/Main.kt", True),
        ("app/**", "lib/app/Main.kt", False),
        ("*.py", "src/tools/run.py", True),
        ("src/*.py", "src/run.py", True),
        ("src/*.py", "src/sub/run.py", False),
        ("/build", "build/out.txt", True),
        ("/build", "src/build", False),
        ("docs/", "docs/guide.md", True),
        ("**/test_*.py", "tests/test_api.py", True),
        ("file?.txt", "file1.txt", True),
        ("", "anything", False),
    ],
)
def test_pattern_matches_path(pattern: str, path: str, expected: bool) -> None:
    assert pattern_matches_path(pattern, path) is expected


def test_module_matches_directory_patterns() -> None:
    assert pattern_matches_module("core", "core")
    assert pattern_matches_module("core/", "core")
    assert pattern_matches_module("/services/**", "services")
    assert not pattern_matches_module("core", "")


def test_extract_file_paths_ignores_urls() -> None:
    text = "See https://example.com/a/b.html and src/app/main.py, also README.md."
    assert extract_file_paths(text) == ["README.md", "src/app/main.py"]
    assert extract_file_paths(None) == []


def test_extract_file_paths_skips_abbreviations_and_slash_phrases() -> None:
    text = "Crash on save, e.g. with and/or without client/server sync, i.e. always. See src/io.py"
    assert extract_file_paths(text) == ["src/io.py"]
    assert extract_file_paths("Either/Or toggles, Read/Write mode") == []


def test_extract_modules_matches_whole_words_and_leaf_names() -> None:
    modules = ["core", "services/payments", "ui"]
    assert extract_modules("Payments fail in core after upgrade", modules) == [
        "core",
        "services/payments",
    ]
    assert extract_modules("nothing relevant", modules) == []


def test_select_owners_requires_score_above_minimum() -> None:
    ranked = rank_owners(
        aggregate_ownership(
            [Reference("app/Main.kt"), Reference("core", is_module=True)],
            StaticOwnershipSource(ENTRIES),
        )
    )
    assert [owner.github_username for owner in select_owners(ranked, top_k=3, min_score=50)] == ["alice"]
    assert [owner.github_username for owner in select_owners(ranked, top_k=1, min_score=0)] == ["alice"]


def test_validate_assignees_drops_invalid_and_unknown(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING):
        valid, dropped = validate_assignees(["alice", "@Bob", "bad_name!", "carol"], ["Alice", "bob"])

    assert valid == ["Alice", "bob"]
    assert dropped == ["bad_name!", "carol"]
    assert "invalid GitHub username" in caplog.text
    assert "not a collaborator" in caplog.text


def test_resolve_assignment_prefers_ownership() -> None:
    decision = resolve_assignment(
        "Crash in app/Main.kt",
        StaticOwnershipSource(ENTRIES),
        collaborators=["alice", "bob"],
        default_assignees=["bob"],
    )
    assert decision.method == METHOD_OWNERSHIP
    assert decision.assignees == ("alice",)
    assert decision.matched_patterns == {"alice": "app/**"}


def test_resolve_assignment_falls_back_to_default_when_owner_is_not_collaborator() -> None:
    decision = resolve_assignment(
        "Crash in app/Main.kt",
        StaticOwnershipSource(ENTRIES),
        collaborators=["bob"],
        default_assignees=["bob"],
    )
    assert decision.method == METHOD_DEFAULT
    assert decision.assignees == ("bob",)
    assert decision.dropped == ("alice",)


def test_resolve_assignment_skips_without_owner_or_default() -> None:
    decision = resolve_assignment("No paths here", StaticOwnershipSource(ENTRIES), collaborators=["bob"])
    assert decision.method == METHOD_SKIP
    assert decision.assignees == ()


def test_assignment_comment_mentions_assignees() -> None:
    comment = assignment_comment(["alice", "bob"], METHOD_OWNERSHIP)
    assert "@alice, @bob" in comment
    assert "code ownership" in comment
    assert "Default assignee" in assignment_comment(["bob"], METHOD_DEFAULT)
