"""Local intent analysis used when the LLM is unreachable.

Broader and looser than the keyword rules: synonyms and colloquial verbs are
accepted, confidence stays below the trust threshold, and messages with no
course vocabulary at all are flagged as out of domain. Never touches the
network.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from . import vocabulary as vocab
from .taxonomy import Intent, clamp_confidence

logger = logging.getLogger(__name__)

FALLBACK_BASE_CONFIDENCE = 0.6
FALLBACK_KEYWORD_BONUS = 0.05
# Stays below the trust threshold so fallback results are never mistaken for rule hits
FALLBACK_MAX_CONFIDENCE = 0.75
NOT_COURSE_CONFIDENCE = 0.9

# Evaluated in order; the first intent with the most hits wins
FALLBACK_KEYWORDS: dict[Intent, tuple[str, ...]] = {
    Intent.CLEAR_SCHEDULE: ("清空", "全部刪", "刪光", "清掉", "全部取消", "重置課表"),
    Intent.CANCEL_COURSE: ("取消", "刪除", "刪掉", "移除", "不上", "不去", "停課", "請假", "撤銷", "拿掉"),
    Intent.MODIFY_COURSE: ("改", "換", "調", "延後", "提前", "挪", "移到", "更新", "變更"),
    Intent.CREATE_RECURRING_COURSE: ("每週", "每周", "每天", "每日", "每月", "每個", "固定", "重複", "定期"),
    Intent.QUERY_SCHEDULE: ("查", "看", "課表", "有什麼", "哪些", "幾點", "什麼時候", "行程", "列出", "顯示"),
    Intent.SET_REMINDER: ("提醒", "通知", "叫我", "記得", "鬧鐘"),
    Intent.RECORD_COURSE: ("新增", "加", "安排", "預約", "報名", "記錄", "登記", "上課", "要上", "排"),
}

# Any of these makes a message course-related
DOMAIN_WORDS: tuple[str, ...] = (
    "課", "班", "上課", "老師", "教室", "學生", "補習", "家教", "提醒", "課表", "行程", "排程", "清空",
)

_TIME_HINT = re.compile(r"[0-9一二三四五六七八九十兩]+[點時]|今天|明天|後天|下午|上午|早上|晚上|週|星期|禮拜")


@dataclass
class FallbackAnalysis:
    """Result of local fallback analysis.

    Attributes:
        intent: Best-guess intent (value string)
        confidence: Confidence in [0, 1]
        entities: course_name, location, teacher, recurrence_pattern
        reasoning: Short explanation for logs and result payloads
    """

    intent: str
    confidence: float
    entities: dict[str, Any] = field(default_factory=dict)
    reasoning: str = ""

    @property
    def is_usable(self) -> bool:
        return (
            self.confidence > 0
            and self.intent not in (Intent.UNKNOWN.value, Intent.NOT_COURSE_RELATED.value)
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "intent": self.intent,
            "confidence": self.confidence,
            "entities": dict(self.entities),
            "reasoning": self.reasoning,
        }


class DetailedFallbackAnalyzer:
    """Keyword and vocabulary analysis that needs no external service."""

    def __init__(self, keywords: dict[Intent, tuple[str, ...]] | None = None) -> None:
        self.keywords = keywords or FALLBACK_KEYWORDS

    def is_course_related(self, text: str) -> bool:
        """Whether a message mentions anything from the course domain."""
        if any(word in text for word in DOMAIN_WORDS):
            return True
        return vocab.find_course_in_catalog(text) is not None

    def analyze(self, text: str) -> FallbackAnalysis:
        """Guess intent and entities for a message.

        Args:
            text: User message

        Returns:
            FallbackAnalysis; intent "unknown" with confidence 0 when nothing fits
        """
        normalized = (text or "").strip()
        if not normalized:
            return FallbackAnalysis(Intent.UNKNOWN.value, 0.0, reasoning="empty input")

        if not self.is_course_related(normalized):
            logger.debug(f"Fallback flagged out-of-domain input: {normalized!r}")
            return FallbackAnalysis(
                Intent.NOT_COURSE_RELATED.value,
                NOT_COURSE_CONFIDENCE,
                reasoning="no course vocabulary found",
            )

        best_intent = Intent.UNKNOWN
        best_hits: list[str] = []
        for intent, words in self.keywords.items():
            hits = [w for w in words if w in normalized]
            if len(hits) > len(best_hits):
                best_intent, best_hits = intent, hits

        entities = self._entities(normalized)

        if not best_hits:
            # A course name plus a time reads as a new booking
            if entities.get("course_name") and _TIME_HINT.search(normalized):
                return FallbackAnalysis(
                    Intent.RECORD_COURSE.value,
                    FALLBACK_BASE_CONFIDENCE,
                    entities,
                    reasoning="course name with time expression",
                )
            return FallbackAnalysis(Intent.UNKNOWN.value, 0.0, entities, reasoning="no intent keywords")

        confidence = clamp_confidence(
            min(
                FALLBACK_MAX_CONFIDENCE,
                FALLBACK_BASE_CONFIDENCE + FALLBACK_KEYWORD_BONUS * (len(best_hits) - 1),
            )
        )
        return FallbackAnalysis(
            best_intent.value,
            confidence,
            entities,
            reasoning=f"keywords: {', '.join(best_hits)}",
        )

    @staticmethod
    def _entities(text: str) -> dict[str, Any]:
        location = None
        for pattern in vocab.LOCATION_PATTERNS:
            match = pattern.search(text)
            if match:
                location = vocab.strip_noise_prefix(match.group(1).strip()) or None
                break

        teacher = None
        for pattern in vocab.TEACHER_PATTERNS:
            match = pattern.search(text)
            if match and match.group(1):
                teacher = match.group(1)
                break

        return {
            "course_name": vocab.normalize_course_name(vocab.find_course_in_catalog(text)),
            "location": location,
            "teacher": teacher,
            "recurrence_pattern": vocab.detect_recurrence(text),
        }


__all__ = [
    "DetailedFallbackAnalyzer",
    "FallbackAnalysis",
]
