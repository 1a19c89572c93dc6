"""Rejection of time-only utterances.

"下午3點" on its own cannot be scheduled: there is no course to attach the
time to. The guard recognizes such inputs with exact, anchored patterns so
that longer sentences carrying a course name are never caught.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Inputs longer than this are assumed to carry more than a time
MAX_PURE_TIME_LENGTH = 15

_PERIOD = r"(?:早上|上午|中午|下午|傍晚|晚上|夜晚)"
_DAY = r"(?:今天|明天|後天|昨天|前天)"
_CN_HOUR = r"(?:十一|十二|一|二|兩|三|四|五|六|七|八|九|十)"
_UNIT = r"[點点時时]"

PURE_TIME_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(p)
    for p in (
        # Bare day-part
        rf"^{_PERIOD}$",
        # Bare hour
        rf"^\d{{1,2}}{_UNIT}半?$",
        r"^\d{1,2}[:：]\d{2}$",
        rf"^{_CN_HOUR}{_UNIT}半?$",
        # Date word + day-part
        rf"^{_DAY}{_PERIOD}$",
        # Date word + day-part + hour
        rf"^{_DAY}{_PERIOD}(?:\d{{1,2}}|{_CN_HOUR}){_UNIT}半?$",
        # Day-part + hour
        rf"^{_PERIOD}(?:\d{{1,2}}|{_CN_HOUR}){_UNIT}半?$",
    )
)

REJECTION_TEMPLATE = (
    "我需要更清楚的課程資訊才能幫您安排。僅提供時間「{text}」無法確定您的具體需求。\n\n"
    "請完整輸入課程資訊，例如：「明天下午3點數學課」、「後天早上10點鋼琴課」"
)


@dataclass(frozen=True)
class GuardResult:
    """Outcome of the pure-time check."""

    is_pure_time_input: bool
    rejection_message: str | None = None


class AmbiguityGuard:
    """Detect utterances that consist of nothing but a time."""

    def __init__(
        self,
        patterns: tuple[re.Pattern[str], ...] = PURE_TIME_PATTERNS,
        max_length: int = MAX_PURE_TIME_LENGTH,
    ) -> None:
        self.patterns = patterns
        self.max_length = max_length

    def detect_pure_time_input(self, text: str) -> GuardResult:
        """Check whether text is only a time expression.

        Args:
            text: User message

        Returns:
            GuardResult with a clarification message when rejected
        """
        trimmed = (text or "").strip()
        if not trimmed or len(trimmed) > self.max_length:
            return GuardResult(is_pure_time_input=False)

        if any(pattern.match(trimmed) for pattern in self.patterns):
            logger.debug(f"Rejected time-only input: {trimmed!r}")
            return GuardResult(
                is_pure_time_input=True,
                rejection_message=REJECTION_TEMPLATE.format(text=trimmed),
            )

        return GuardResult(is_pure_time_input=False)


__all__ = [
    "AmbiguityGuard",
    "GuardResult",
    "MAX_PURE_TIME_LENGTH",
    "REJECTION_TEMPLATE",
]
