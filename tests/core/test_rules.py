"""Tests for the keyword-rule intent classifier.

Tests cover:
- Confidence arithmetic (base, bonus per extra keyword, cap)
- Exclusion vetoes
- Tie-breaking by priority and declaration order
- The bundled rule file
- Rule file loading errors
"""

from __future__ import annotations

from pathlib import Path

import pytest

from tutorbot.core.intent import Intent, Rule, RuleBasedIntentClassifier, RuleLoadError
from tutorbot.core.intent.rules import DEFAULT_RULES_PATH, load_rules

# =============================================================================
# Rule scoring
# =============================================================================


class TestRuleScore:
    """Tests for Rule.score()."""

    def test_single_keyword_scores_base_confidence(self) -> None:
        rule = Rule(intent=Intent.CANCEL_COURSE, keywords=("取消", "刪除"))
        assert rule.score("取消數學課") == 0.8

    def test_each_extra_keyword_adds_bonus(self) -> None:
        rule = Rule(intent=Intent.CANCEL_COURSE, keywords=("取消", "刪除"))
        assert rule.score("取消並刪除數學課") == 0.9

    def test_repeated_keyword_counts_once(self) -> None:
        rule = Rule(intent=Intent.CANCEL_COURSE, keywords=("取消", "刪除"))
        assert rule.score("取消取消取消") == 0.8

    def test_confidence_capped_at_one(self) -> None:
        rule = Rule(intent=Intent.QUERY_SCHEDULE, keywords=("a", "b", "c", "d", "e"))
        assert rule.score("a b c d e") == 1.0

    def test_exclusion_vetoes_regardless_of_keywords(self) -> None:
        rule = Rule(
            intent=Intent.CANCEL_COURSE,
            keywords=("取消", "刪除", "移除"),
            exclusions=("新增",),
        )
        assert rule.score("取消刪除移除新增") == 0.0

    def test_no_keyword_scores_zero(self) -> None:
        rule = Rule(intent=Intent.CANCEL_COURSE, keywords=("取消",))
        assert rule.score("明天下午3點") == 0.0

    def test_from_dict_lowercases_keywords(self) -> None:
        rule = Rule.from_dict("record_course", {"keywords": ["Python"], "exclusions": ["NO"]})
        assert rule.keywords == ("python",)
        assert rule.exclusions == ("no",)

    def test_from_dict_rejects_unknown_intent(self) -> None:
        with pytest.raises(RuleLoadError):
            Rule.from_dict("book_flight", {"keywords": ["fly"]})

    def test_from_dict_rejects_empty_keywords(self) -> None:
        with pytest.raises(RuleLoadError):
            Rule.from_dict("record_course", {"keywords": []})


# =============================================================================
# Classifier selection
# =============================================================================


class TestClassifierSelection:
    """Tests for winner selection across rules."""

    def test_highest_confidence_wins(self) -> None:
        classifier = RuleBasedIntentClassifier(
            rules=[
                Rule(intent=Intent.RECORD_COURSE, keywords=("課",), priority=10),
                Rule(intent=Intent.QUERY_SCHEDULE, keywords=("查詢", "課表")),
            ]
        )
        match = classifier.analyze_intent("查詢課表")
        assert match.intent == Intent.QUERY_SCHEDULE
        assert match.confidence == 0.9

    def test_tie_broken_by_priority(self) -> None:
        classifier = RuleBasedIntentClassifier(
            rules=[
                Rule(intent=Intent.RECORD_COURSE, keywords=("課",), priority=1),
                Rule(intent=Intent.CANCEL_COURSE, keywords=("課",), priority=5),
            ]
        )
        assert classifier.analyze_intent("數學課").intent == Intent.CANCEL_COURSE

    def test_tie_on_priority_goes_to_first_declared(self) -> None:
        classifier = RuleBasedIntentClassifier(
            rules=[
                Rule(intent=Intent.SET_REMINDER, keywords=("課",), priority=3),
                Rule(intent=Intent.QUERY_SCHEDULE, keywords=("課",), priority=3),
            ]
        )
        assert classifier.analyze_intent("數學課").intent == Intent.SET_REMINDER

    def test_deterministic(self) -> None:
        classifier = RuleBasedIntentClassifier()
        results = {classifier.analyze_intent("明天下午3點數學課").intent for _ in range(20)}
        assert results == {Intent.RECORD_COURSE}

    def test_case_insensitive(self) -> None:
        classifier = RuleBasedIntentClassifier(
            rules=[Rule.from_dict("record_course", {"keywords": ["Python"]})]
        )
        assert classifier.analyze_intent("PYTHON lesson").intent == Intent.RECORD_COURSE

    def test_matched_keywords_reported(self) -> None:
        classifier = RuleBasedIntentClassifier()
        match = classifier.analyze_intent("取消數學課")
        assert match.matched_keywords == ("取消",)


# =============================================================================
# Bundled rules
# =============================================================================


class TestBundledRules:
    """Tests against intent_rules.yaml shipped with the package."""

    @pytest.fixture
    def classifier(self) -> RuleBasedIntentClassifier:
        return RuleBasedIntentClassifier()

    @pytest.mark.parametrize(
        ("text", "intent"),
        [
            ("明天下午3點數學課", Intent.RECORD_COURSE),
            ("法語課", Intent.RECORD_COURSE),
            ("取消數學課", Intent.CANCEL_COURSE),
            ("明天的鋼琴課請假", Intent.CANCEL_COURSE),
            ("把數學課改到下午4點", Intent.MODIFY_COURSE),
            ("每週三下午3點數學課", Intent.CREATE_RECURRING_COURSE),
            ("明天天母上課", Intent.RECORD_COURSE),
            ("不對，是4點", Intent.CORRECTION_INTENT),
            ("數學課前30分鐘提醒我", Intent.SET_REMINDER),
            ("清空我的課表", Intent.CLEAR_SCHEDULE),
        ],
    )
    def test_classifies(self, classifier: RuleBasedIntentClassifier, text: str, intent: Intent) -> None:
        assert classifier.analyze_intent(text).intent == intent

    def test_cancel_confidence(self, classifier: RuleBasedIntentClassifier) -> None:
        assert classifier.analyze_intent("取消數學課").confidence >= 0.8

    def test_query_with_two_keywords(self, classifier: RuleBasedIntentClassifier) -> None:
        match = classifier.analyze_intent("查詢課表")
        assert match.intent == Intent.QUERY_SCHEDULE
        assert match.confidence == 0.9

    def test_excluded_phrase_yields_unknown(self, classifier: RuleBasedIntentClassifier) -> None:
        match = classifier.analyze_intent("不要清空")
        assert match.intent == Intent.UNKNOWN
        assert match.confidence == 0.0

    def test_no_match_is_unknown_zero(self, classifier: RuleBasedIntentClassifier) -> None:
        match = classifier.analyze_intent("今天天氣如何")
        assert match.intent == Intent.UNKNOWN
        assert match.confidence == 0.0

    def test_empty_text(self, classifier: RuleBasedIntentClassifier) -> None:
        assert classifier.analyze_intent("   ").intent == Intent.UNKNOWN

    def test_supported_intents_in_declaration_order(self, classifier: RuleBasedIntentClassifier) -> None:
        intents = classifier.supported_intents()
        assert intents[0] == Intent.CORRECTION_INTENT
        assert intents[-1] == Intent.RECORD_COURSE
        assert Intent.UNKNOWN not in intents

    def test_get_examples(self, classifier: RuleBasedIntentClassifier) -> None:
        assert "取消數學課" in classifier.get_examples("cancel_course")
        assert classifier.get_examples(Intent.CANCEL_COURSE) == classifier.get_examples("cancel_course")
        assert classifier.get_examples("not_a_real_intent") == []

    def test_rules_loaded_once(self, classifier: RuleBasedIntentClassifier) -> None:
        assert classifier.rules is classifier.rules

    def test_reload_rules(self, tmp_path: Path) -> None:
        path = tmp_path / "rules.yaml"
        path.write_text("cancel_course:\n  keywords: [取消]\n", encoding="utf-8")
        classifier = RuleBasedIntentClassifier(rules_path=path)
        assert len(classifier.rules) == 1

        path.write_text(
            "cancel_course:\n  keywords: [取消]\nquery_schedule:\n  keywords: [課表]\n",
            encoding="utf-8",
        )
        assert len(classifier.reload_rules()) == 2


# =============================================================================
# Loading
# =============================================================================


class TestLoadRules:
    """Tests for load_rules()."""

    def test_bundled_file_loads(self) -> None:
        rules = load_rules(DEFAULT_RULES_PATH)
        assert {r.intent for r in rules} >= {Intent.RECORD_COURSE, Intent.CANCEL_COURSE}

    def test_custom_confidence_values(self, tmp_path: Path) -> None:
        path = tmp_path / "rules.yaml"
        path.write_text(
            "record_course:\n"
            "  keywords: [課]\n"
            "  base_confidence: 0.5\n"
            "  bonus_per_extra_keyword: 0.2\n"
            "  priority: 7\n",
            encoding="utf-8",
        )
        (rule,) = load_rules(path)
        assert rule.base_confidence == 0.5
        assert rule.bonus_per_extra_keyword == 0.2
        assert rule.priority == 7

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(RuleLoadError):
            load_rules(tmp_path / "missing.yaml")

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "rules.yaml"
        path.write_text("", encoding="utf-8")
        with pytest.raises(RuleLoadError):
            load_rules(path)

    def test_rule_not_mapping(self, tmp_path: Path) -> None:
        path = tmp_path / "rules.yaml"
        path.write_text("record_course: [課]\n", encoding="utf-8")
        with pytest.raises(RuleLoadError):
            load_rules(path)

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "rules.yaml"
        path.write_text("record_course: {keywords: [課\n", encoding="utf-8")
        with pytest.raises(RuleLoadError):
            load_rules(path)
