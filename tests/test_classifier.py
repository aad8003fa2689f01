from __future__ import annotations

from triage_bot.engine.classifier import (
    DEFAULT_RULES,
    CategoryRule,
    classify,
    keyword_matches_token,
    select_category,
)


def test_crash_title_is_classified_as_bug() -> None:
    result = classify("App crashes on login", "")
    assert result.category == "bug"
    assert result.matched_keywords["bug"] == ("crash",)
    assert result.scores["bug"] == 8


def test_empty_issue_defaults_to_question() -> None:
    result = classify("", None)
    assert result.category == "question"
    assert result.confidence == 0.70
    assert all(score == 0 for score in result.scores.values())


def test_classification_is_deterministic() -> None:
    first = classify("Login is slow and crashes", "Please improve performance")
    second = classify("Login is slow and crashes", "Please improve performance")
    assert first == second


def test_overlapping_keyword_resolved_by_priority() -> None:
    # "optimize" belongs to both performance (6) and enhancement (3).
    result = classify("Optimize image decoding", "")
    assert result.category == "performance"
    assert result.scores["performance"] == 6
    assert result.scores["enhancement"] == 3
    assert result.confidence == round(6 / 9, 2)


def test_security_outweighs_bug_keywords() -> None:
    result = classify("XSS vulnerability causes error", "")
    assert result.category == "security"
    assert result.scores["security"] == 20
    assert result.scores["bug"] == 8


def test_phrase_and_question_mark_keywords() -> None:
    bug = classify("Export doesn't work anymore", "")
    assert "doesn't work" in bug.matched_keywords["bug"]

    question = classify("Is there a dark theme?", "")
    assert question.category == "question"
    assert question.matched_keywords["question"] == ("?",)


def test_tie_is_broken_by_priority_not_order() -> None:
    rules = (
        CategoryRule("low", 1, ("alpha",)),
        CategoryRule("high", 2, ("beta",)),
    )
    category, confidence = select_category({"low": 2, "high": 2}, rules)
    assert category == "high"
    assert confidence == 0.5


def test_keyword_inflections() -> None:
    assert keyword_matches_token("crash", "crashes")
    assert keyword_matches_token("fail", "failing")
    assert keyword_matches_token("fix", "fixed")
    assert not keyword_matches_token("add", "address")
    assert not keyword_matches_token("hack", "hackathon")


def test_default_rules_cover_all_categories() -> None:
    names = {rule.name for rule in DEFAULT_RULES}
    assert names == {
        "bug",
        "feature",
        "enhancement",
        "documentation",
        "performance",
        "security",
        "question",
    }


def test_confidence_is_within_unit_interval() -> None:
    for title in ["", "crash", "add docs for the new feature", "slow slow slow", "how?"]:
        result = classify(title, "")
        assert 0.0 <= result.confidence <= 1.0
