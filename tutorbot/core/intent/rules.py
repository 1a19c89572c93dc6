"""Deterministic keyword-rule intent classifier.

Rules are declared in intent_rules.yaml (shipped with the package) and loaded
once per classifier instance. Classification is pure: no I/O after the first
load, no randomness.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ruamel.yaml import YAML

from .taxonomy import Intent, IntentMatch, clamp_confidence

logger = logging.getLogger(__name__)

DEFAULT_RULES_PATH = Path(__file__).with_name("intent_rules.yaml")


class RuleLoadError(Exception):
    """Rule file missing or malformed."""

    pass


@dataclass(frozen=True)
class Rule:
    """Keyword rule for one intent.

    Attributes:
        intent: Intent this rule votes for
        keywords: Substrings that trigger the rule
        exclusions: Substrings that veto the rule outright
        priority: Tie-breaker when two rules score the same
        base_confidence: Score for the first matched keyword
        bonus_per_extra_keyword: Added per additional distinct keyword
        examples: Sample utterances for help output
    """

    intent: Intent
    keywords: tuple[str, ...]
    exclusions: tuple[str, ...] = ()
    priority: int = 1
    base_confidence: float = 0.8
    bonus_per_extra_keyword: float = 0.1
    examples: tuple[str, ...] = field(default=(), compare=False)

    def matched_keywords(self, text: str) -> tuple[str, ...]:
        """Distinct keywords present in already-normalized text."""
        seen: dict[str, None] = {}
        for keyword in self.keywords:
            if keyword and keyword in text:
                seen[keyword] = None
        return tuple(seen)

    def score(self, text: str) -> float:
        """Confidence this rule assigns to normalized text."""
        if any(exclusion and exclusion in text for exclusion in self.exclusions):
            return 0.0
        matched = self.matched_keywords(text)
        if not matched:
            return 0.0
        extra = len(matched) - 1
        return clamp_confidence(self.base_confidence + extra * self.bonus_per_extra_keyword)

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> Rule:
        """Build a rule from its YAML mapping."""
        intent = Intent.parse(name)
        if intent is Intent.UNKNOWN:
            raise RuleLoadError(f"Unknown intent in rule file: {name!r}")

        keywords = tuple(str(k).lower() for k in data.get("keywords") or [])
        if not keywords:
            raise RuleLoadError(f"Rule {name!r} has no keywords")

        return cls(
            intent=intent,
            keywords=keywords,
            exclusions=tuple(str(e).lower() for e in data.get("exclusions") or []),
            priority=int(data.get("priority", 1)),
            base_confidence=float(data.get("base_confidence", 0.8)),
            bonus_per_extra_keyword=float(data.get("bonus_per_extra_keyword", 0.1)),
            examples=tuple(str(e) for e in data.get("examples") or []),
        )


def load_rules(path: Path) -> list[Rule]:
    """Read rules from a YAML file, preserving declaration order.

    Raises:
        RuleLoadError: If the file is missing or malformed
    """
    yaml = YAML(typ="safe")
    try:
        with Path(path).open(encoding="utf-8") as f:
            data = yaml.load(f)
    except OSError as e:
        raise RuleLoadError(f"Failed to read intent rules from {path}: {e}") from e
    except Exception as e:
        raise RuleLoadError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict) or not data:
        raise RuleLoadError(f"Intent rule file {path} is empty or not a mapping")

    rules = []
    for name, body in data.items():
        if not isinstance(body, dict):
            raise RuleLoadError(f"Rule {name!r} must be a mapping")
        rules.append(Rule.from_dict(str(name), body))
    logger.debug(f"Loaded {len(rules)} intent rules from {path}")
    return rules


class RuleBasedIntentClassifier:
    """Keyword/exclusion/priority matcher producing (intent, confidence).

    Example:
        classifier = RuleBasedIntentClassifier()
        match = classifier.analyze_intent("取消數學課")
        assert match.intent == Intent.CANCEL_COURSE
        assert match.confidence == 0.8
    """

    def __init__(
        self,
        rules: list[Rule] | None = None,
        rules_path: Path | None = None,
    ) -> None:
        """Initialize the classifier.

        Args:
            rules: Explicit rule list (skips file loading)
            rules_path: YAML rule file; defaults to the bundled rules
        """
        self.rules_path = Path(rules_path) if rules_path else DEFAULT_RULES_PATH
        self._rules: tuple[Rule, ...] | None = tuple(rules) if rules is not None else None

    @property
    def rules(self) -> tuple[Rule, ...]:
        """Loaded rules, read from disk on first access."""
        if self._rules is None:
            self._rules = tuple(load_rules(self.rules_path))
        return self._rules

    def reload_rules(self) -> tuple[Rule, ...]:
        """Re-read the rule file. Administrative, not called per request."""
        self._rules = None
        return self.rules

    def analyze_intent(self, text: str) -> IntentMatch:
        """Classify text by keyword rules.

        Highest confidence wins; ties go to higher priority, then to the rule
        declared first.

        Args:
            text: User message

        Returns:
            IntentMatch, UNKNOWN with confidence 0 when nothing matched
        """
        normalized = (text or "").lower().strip()
        if not normalized:
            return IntentMatch.unknown()

        best: Rule | None = None
        best_score = 0.0
        for rule in self.rules:
            score = rule.score(normalized)
            if score <= 0:
                continue
            if (
                best is None
                or score > best_score
                or (score == best_score and rule.priority > best.priority)
            ):
                best, best_score = rule, score

        if best is None:
            return IntentMatch.unknown()

        return IntentMatch(
            intent=best.intent,
            confidence=best_score,
            matched_keywords=best.matched_keywords(normalized),
        )

    def supported_intents(self) -> list[Intent]:
        """Intents covered by the rule set, in declaration order."""
        return [rule.intent for rule in self.rules]

    def get_examples(self, intent: Intent | str) -> list[str]:
        """Sample utterances declared for an intent."""
        target = Intent.parse(intent.value if isinstance(intent, Intent) else intent)
        for rule in self.rules:
            if rule.intent is target:
                return list(rule.examples)
        return []


__all__ = [
    "DEFAULT_RULES_PATH",
    "Rule",
    "RuleBasedIntentClassifier",
    "RuleLoadError",
    "load_rules",
]
