"""Time expression resolution for tutorbot.

Turns chat phrases such as "明天晚上十點半" or "下週三 3pm" into timezone-aware
datetimes, and packages them as canonical TimeInfo records.

All clock access goes through TimeService.now() so tests can pin the
reference time.
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Callable
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)


class ParseError(ValueError):
    """Text does not contain a resolvable date or clock time."""

    pass


# =============================================================================
# Vocabulary
# =============================================================================

CHINESE_DIGITS: dict[str, int] = {
    "零": 0,
    "〇": 0,
    "一": 1,
    "二": 2,
    "兩": 2,
    "两": 2,
    "三": 3,
    "四": 4,
    "五": 5,
    "六": 6,
    "七": 7,
    "八": 8,
    "九": 9,
}

# Longest first so 大後天 wins over 後天
DATE_OFFSETS: list[tuple[str, int]] = [
    ("大後天", 3),
    ("今天", 0),
    ("今日", 0),
    ("今晚", 0),
    ("明天", 1),
    ("明日", 1),
    ("明晚", 1),
    ("後天", 2),
    ("昨天", -1),
    ("昨日", -1),
    ("前天", -2),
]

# Day-part words mapped to how they shift an hour
PERIOD_WORDS: list[tuple[str, str]] = [
    ("凌晨", "early"),
    ("半夜", "night"),
    ("深夜", "night"),
    ("早上", "am"),
    ("早晨", "am"),
    ("上午", "am"),
    ("中午", "noon"),
    ("下午", "pm"),
    ("傍晚", "pm"),
    ("晚上", "pm"),
    ("夜晚", "pm"),
    ("今晚", "pm"),
    ("明晚", "pm"),
]

WEEKDAYS: dict[str, int] = {
    "一": 0,
    "二": 1,
    "三": 2,
    "四": 3,
    "五": 4,
    "六": 5,
    "日": 6,
    "天": 6,
}

WEEK_PREFIX_OFFSETS: dict[str, int] = {
    "下下": 14,
    "下": 7,
    "這": 0,
    "这": 0,
    "本": 0,
    "上": -7,
}

_NUM = r"[零〇一二兩两三四五六七八九十\d]"

PATTERNS = {
    "iso_date": re.compile(r"(\d{4})[-/.](\d{1,2})[-/.](\d{1,2})"),
    "month_day": re.compile(rf"({_NUM}{{1,3}})月({_NUM}{{1,3}})[日號号]?"),
    "slash_date": re.compile(r"(?<![\d:：])(\d{1,2})/(\d{1,2})(?![\d/])"),
    "weekday": re.compile(
        r"(?:(?<![早晚])(下下|下|這|这|本|上))?個?(?:週|周|星期|禮拜|礼拜)([一二三四五六日天])"
    ),
    "clock": re.compile(r"(?<!\d)(\d{1,2})[:：](\d{2})(?!\d)"),
    "english": re.compile(r"(?<![\d:])(\d{1,2})(?::(\d{2}))?\s*(am|pm)(?![a-z])", re.IGNORECASE),
    "hour": re.compile(
        r"(\d{1,2}|[一二]?十[一二三四]?|[零〇一二兩两三四五六七八九])\s*(?:點鐘|點|点|時)"
        r"(?:\s*(半|一刻|三刻|\d{1,2}(?=分|\D|$)|[一二三四五]?十[一二三四五六七八九]?|"
        r"[零〇一二三四五六七八九]{1,2}(?=分)))?"
    ),
}


def chinese_to_int(token: str) -> int | None:
    """Convert a small Chinese or Arabic numeral (0-99) to int.

    Args:
        token: Numeral such as "3", "十", "二十三", "兩"

    Returns:
        Integer value, or None if the token is not a numeral
    """
    token = token.strip()
    if not token:
        return None
    if token.isdigit():
        return int(token)

    if "十" in token:
        tens_part, _, ones_part = token.partition("十")
        tens = CHINESE_DIGITS.get(tens_part, None) if tens_part else 1
        ones = CHINESE_DIGITS.get(ones_part, None) if ones_part else 0
        if tens is None or ones is None:
            return None
        return tens * 10 + ones

    if len(token) == 1:
        return CHINESE_DIGITS.get(token)

    # Digit-by-digit form such as 〇五
    value = 0
    for char in token:
        digit = CHINESE_DIGITS.get(char)
        if digit is None:
            return None
        value = value * 10 + digit
    return value


# =============================================================================
# Data Models
# =============================================================================


@dataclass(frozen=True)
class TimeInfo:
    """Canonical resolved time.

    Attributes:
        display: "MM/DD H:MM AM|PM" for chat replies
        date: "YYYY-MM-DD"
        raw: ISO-8601 timestamp with offset
        timestamp: Epoch milliseconds
    """

    display: str
    date: str
    raw: str
    timestamp: int

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TimeInfo:
        """Deserialize from dictionary."""
        return cls(
            display=data["display"],
            date=data["date"],
            raw=data["raw"],
            timestamp=int(data["timestamp"]),
        )

    def to_datetime(self) -> datetime:
        """Return the aware datetime this record was built from."""
        return datetime.fromisoformat(self.raw)


DISPLAY_RE = re.compile(r"^\d{2}/\d{2} \d{1,2}:\d{2} (AM|PM)$")
DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


# =============================================================================
# Service
# =============================================================================


class TimeService:
    """Resolve natural-language time phrases against a reference time.

    Example:
        service = TimeService("Asia/Taipei")
        when = service.parse_time_string("明天下午3點")
        info = service.create_time_info(when)
        print(info.display)  # "05/02 3:00 PM"

    Attributes:
        timezone: Name of the IANA timezone used for relative dates
    """

    def __init__(
        self,
        timezone: str = "Asia/Taipei",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            timezone: IANA timezone name
            clock: Optional callable returning the current time (for tests)
        """
        self.timezone = timezone
        self._tz = ZoneInfo(timezone)
        self._clock = clock

    def now(self) -> datetime:
        """Current time in the configured timezone."""
        current = self._clock() if self._clock else datetime.now(self._tz)
        return self._localize(current)

    def _localize(self, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=self._tz)
        return value.astimezone(self._tz)

    # -------------------------------------------------------------------------
    # Parsing
    # -------------------------------------------------------------------------

    def parse_time_string(
        self,
        text: str,
        reference: datetime | None = None,
        default_period: str | None = None,
    ) -> datetime:
        """Parse a time phrase into an aware datetime.

        A phrase must name a date, a clock time, or both. When only a date is
        given the reference time-of-day is kept; when only a clock time is
        given the reference date is used.

        Args:
            text: Phrase such as "明天晚上十點半" or "下週三 3pm"
            reference: Base time (defaults to now())
            default_period: Day-part ("am"/"pm") applied when the text has none

        Returns:
            Resolved datetime in the service timezone

        Raises:
            ParseError: If neither a date nor a clock time is found
        """
        if not text or not isinstance(text, str):
            raise ParseError("time text must be a non-empty string")

        base = self._localize(reference) if reference else self.now()
        normalized = text.strip().lower()

        day = self._parse_date(normalized, base)
        clock = self._parse_clock(normalized, default_period)

        if day is None and clock is None:
            raise ParseError(f"no date or time found in {text!r}")

        result = base.replace(second=0, microsecond=0)
        if day is not None:
            result = result.replace(year=day.year, month=day.month, day=day.day)
        if clock is not None:
            hour, minute = clock
            result = result.replace(hour=hour, minute=minute)

        logger.debug(f"Parsed {text!r} -> {result.isoformat()}")
        return result

    def _parse_date(self, text: str, base: datetime) -> datetime | None:
        match = PATTERNS["iso_date"].search(text)
        if match:
            return self._build_date(
                int(match.group(1)), int(match.group(2)), int(match.group(3)), text
            )

        match = PATTERNS["month_day"].search(text)
        if match:
            month = chinese_to_int(match.group(1))
            day = chinese_to_int(match.group(2))
            if month is not None and day is not None:
                return self._build_date(base.year, month, day, text)

        match = PATTERNS["slash_date"].search(text)
        if match:
            return self._build_date(base.year, int(match.group(1)), int(match.group(2)), text)

        match = PATTERNS["weekday"].search(text)
        if match:
            prefix, weekday_char = match.group(1), match.group(2)
            target = WEEKDAYS[weekday_char]
            week_start = base - timedelta(days=base.weekday())
            if prefix:
                return week_start + timedelta(days=WEEK_PREFIX_OFFSETS[prefix] + target)
            days_ahead = target - base.weekday()
            if days_ahead < 0:
                days_ahead += 7
            return base + timedelta(days=days_ahead)

        for word, offset in DATE_OFFSETS:
            if word in text:
                return base + timedelta(days=offset)

        return None

    def _build_date(self, year: int, month: int, day: int, text: str) -> datetime:
        try:
            return datetime(year, month, day, tzinfo=self._tz)
        except ValueError as e:
            raise ParseError(f"invalid calendar date in {text!r}") from e

    def _parse_clock(self, text: str, default_period: str | None) -> tuple[int, int] | None:
        hour: int | None = None
        minute = 0
        period = self._detect_period(text)

        match = PATTERNS["english"].search(text)
        if match:
            hour = int(match.group(1))
            minute = int(match.group(2) or 0)
            period = match.group(3).lower()
        else:
            match = PATTERNS["clock"].search(text)
            if match:
                hour = int(match.group(1))
                minute = int(match.group(2))
            else:
                match = PATTERNS["hour"].search(text)
                if match:
                    hour = chinese_to_int(match.group(1))
                    minute = self._parse_minute(match.group(2))

        if hour is None:
            return None

        hour = self._apply_period(hour, period or default_period)

        if not 0 <= hour <= 23 or not 0 <= minute <= 59:
            raise ParseError(f"clock time out of range in {text!r}")
        return hour, minute

    @staticmethod
    def _parse_minute(token: str | None) -> int:
        if not token:
            return 0
        if token == "半":
            return 30
        if token == "一刻":
            return 15
        if token == "三刻":
            return 45
        value = chinese_to_int(token)
        return value if value is not None else 0

    @staticmethod
    def _detect_period(text: str) -> str | None:
        for word, period in PERIOD_WORDS:
            if word in text:
                return period
        return None

    @staticmethod
    def _apply_period(hour: int, period: str | None) -> int:
        if period == "pm" and hour < 12:
            return hour + 12
        if period in ("am", "early") and hour == 12:
            return 0
        if period == "noon" and 1 <= hour <= 5:
            return hour + 12
        if period == "night":
            if hour == 12:
                return 0
            if 7 <= hour <= 11:
                return hour + 12
        return hour

    # -------------------------------------------------------------------------
    # Formatting
    # -------------------------------------------------------------------------

    def create_time_info(self, value: datetime | str | None) -> TimeInfo | None:
        """Build a TimeInfo from a datetime or ISO string.

        Args:
            value: Datetime (naive values are read in the service timezone)
                or ISO-8601 string

        Returns:
            TimeInfo, or None if the value cannot be interpreted
        """
        if value is None:
            return None
        if isinstance(value, str):
            try:
                value = datetime.fromisoformat(value)
            except ValueError:
                logger.debug(f"Invalid ISO time string: {value!r}")
                return None
        if not isinstance(value, datetime):
            return None

        local = self._localize(value)
        return TimeInfo(
            display=self.format_for_display(local),
            date=local.strftime("%Y-%m-%d"),
            raw=self.format_for_storage(local),
            timestamp=int(local.timestamp() * 1000),
        )

    def format_for_display(self, value: datetime) -> str:
        """Format as "MM/DD H:MM AM|PM"."""
        local = self._localize(value)
        hour12 = local.hour % 12 or 12
        suffix = "AM" if local.hour < 12 else "PM"
        return f"{local.month:02d}/{local.day:02d} {hour12}:{local.minute:02d} {suffix}"

    def format_for_storage(self, value: datetime) -> str:
        """Format as an ISO-8601 string with offset."""
        return self._localize(value).isoformat()

    @staticmethod
    def validate_time_info(info: TimeInfo | None) -> bool:
        """Check that a TimeInfo has canonical display and date strings."""
        if info is None:
            return False
        return bool(DISPLAY_RE.match(info.display) and DATE_RE.match(info.date))


__all__ = [
    "ParseError",
    "TimeInfo",
    "TimeService",
    "chinese_to_int",
]
