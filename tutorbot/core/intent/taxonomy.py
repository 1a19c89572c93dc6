"""Intent taxonomy and confidence thresholds for tutorbot.

This module defines the intents the assistant understands, the closed set of
analysis methods reported to callers, and the confidence arithmetic shared by
the pipeline stages.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Intent(str, Enum):
    """Course-management actions a chat message can request."""

    RECORD_COURSE = "record_course"
    MODIFY_COURSE = "modify_course"
    CANCEL_COURSE = "cancel_course"
    QUERY_SCHEDULE = "query_schedule"
    CREATE_RECURRING_COURSE = "create_recurring_course"
    SET_REMINDER = "set_reminder"
    CLEAR_SCHEDULE = "clear_schedule"
    CORRECTION_INTENT = "correction_intent"  # Revises the previous turn
    NOT_COURSE_RELATED = "not_course_related"
    AMBIGUOUS_INPUT = "ambiguous_input"  # Time-only utterance
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> Intent:
        """Map a free-form intent string to a member, UNKNOWN if unrecognized."""
        if not value:
            return cls.UNKNOWN
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.UNKNOWN


class AnalysisMethod(str, Enum):
    """Which stage of the pipeline produced an AnalysisResult."""

    RULE_ENGINE = "rule_engine"
    RULE_ENGINE_PRIMARY = "rule_engine_primary"
    OPENAI = "openai"
    ENHANCED_OPENAI = "enhanced_openai"
    DETAILED_FALLBACK = "detailed_fallback"
    RULE_ENGINE_FALLBACK = "rule_engine_fallback"
    RULE_ENGINE_FINAL_FALLBACK = "rule_engine_final_fallback"
    REJECTED_PURE_TIME = "rejected_pure_time"
    REJECTED_NOT_COURSE_RELATED = "rejected_not_course_related"
    ERROR = "error"
    ALL_FAILED = "all_failed"


# Rule confidence at or above this skips the LLM entirely
TRUST_RULES_THRESHOLD = 0.8

CORRECTION_CONFIDENCE_BOOST = 0.1
CORRECTION_NO_CONTEXT_PENALTY = 0.3
MIN_CORRECTION_CONFIDENCE = 0.1

# Outcomes that create or replace a pending correction context
CONTEXT_INTENTS: frozenset[Intent] = frozenset(
    {Intent.RECORD_COURSE, Intent.MODIFY_COURSE, Intent.CANCEL_COURSE}
)


def clamp_confidence(value: float) -> float:
    """Clamp to [0, 1] and round away float noise."""
    return round(max(0.0, min(1.0, float(value))), 4)


@dataclass
class IntentMatch:
    """Output of the rule classifier.

    Attributes:
        intent: Winning intent (UNKNOWN when no rule matched)
        confidence: Score in [0, 1]
        matched_keywords: Keywords that contributed, for debugging
    """

    intent: Intent
    confidence: float
    matched_keywords: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        self.confidence = clamp_confidence(self.confidence)

    @classmethod
    def unknown(cls) -> IntentMatch:
        return cls(intent=Intent.UNKNOWN, confidence=0.0)


__all__ = [
    "AnalysisMethod",
    "CONTEXT_INTENTS",
    "CORRECTION_CONFIDENCE_BOOST",
    "CORRECTION_NO_CONTEXT_PENALTY",
    "Intent",
    "IntentMatch",
    "MIN_CORRECTION_CONFIDENCE",
    "TRUST_RULES_THRESHOLD",
    "clamp_confidence",
]
