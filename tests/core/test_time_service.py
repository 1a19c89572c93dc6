"""Tests for time phrase resolution.

Tests cover:
- Relative dates, weekdays, explicit dates
- Chinese and Arabic hours, minutes, day-parts
- Reference time and default period (used by corrections)
- TimeInfo construction, formatting and validation
"""

from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from tutorbot.core.time_service import (
    ParseError,
    TimeInfo,
    TimeService,
    chinese_to_int,
)

TZ = ZoneInfo("Asia/Taipei")

# Thursday
NOW = datetime(2025, 5, 1, 10, 0, tzinfo=TZ)


@pytest.fixture
def service() -> TimeService:
    return TimeService("Asia/Taipei", clock=lambda: NOW)


# =============================================================================
# Numerals
# =============================================================================


class TestChineseToInt:
    """Tests for chinese_to_int()."""

    @pytest.mark.parametrize(
        ("token", "value"),
        [("3", 3), ("十", 10), ("十一", 11), ("二十三", 23), ("兩", 2), ("〇五", 5), ("三十", 30)],
    )
    def test_converts(self, token: str, value: int) -> None:
        assert chinese_to_int(token) == value

    def test_non_numeral(self) -> None:
        assert chinese_to_int("課") is None
        assert chinese_to_int("") is None


# =============================================================================
# Parsing
# =============================================================================


class TestParseTimeString:
    """Tests for TimeService.parse_time_string()."""

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("明天下午3點", datetime(2025, 5, 2, 15, 0, tzinfo=TZ)),
            ("明天晚上十點半", datetime(2025, 5, 2, 22, 30, tzinfo=TZ)),
            ("後天早上10點", datetime(2025, 5, 3, 10, 0, tzinfo=TZ)),
            ("大後天下午2點", datetime(2025, 5, 4, 14, 0, tzinfo=TZ)),
            ("今天下午三點一刻", datetime(2025, 5, 1, 15, 15, tzinfo=TZ)),
            ("下午三點三刻", datetime(2025, 5, 1, 15, 45, tzinfo=TZ)),
            ("晚上7點20分", datetime(2025, 5, 1, 19, 20, tzinfo=TZ)),
            ("14:30", datetime(2025, 5, 1, 14, 30, tzinfo=TZ)),
            ("3pm", datetime(2025, 5, 1, 15, 0, tzinfo=TZ)),
            ("10:30 am", datetime(2025, 5, 1, 10, 30, tzinfo=TZ)),
            ("凌晨12點", datetime(2025, 5, 1, 0, 0, tzinfo=TZ)),
            ("中午12點", datetime(2025, 5, 1, 12, 0, tzinfo=TZ)),
            ("中午1點", datetime(2025, 5, 1, 13, 0, tzinfo=TZ)),
        ],
    )
    def test_relative_phrases(self, service: TimeService, text: str, expected: datetime) -> None:
        assert service.parse_time_string(text) == expected

    def test_date_only_keeps_reference_time_of_day(self, service: TimeService) -> None:
        result = service.parse_time_string("5月20日")
        assert result == datetime(2025, 5, 20, 10, 0, tzinfo=TZ)

    def test_iso_date_with_hour(self, service: TimeService) -> None:
        result = service.parse_time_string("2025-12-25 下午2點")
        assert result == datetime(2025, 12, 25, 14, 0, tzinfo=TZ)

    def test_slash_date(self, service: TimeService) -> None:
        assert service.parse_time_string("6/3 上午9點") == datetime(2025, 6, 3, 9, 0, tzinfo=TZ)

    def test_next_week_weekday(self, service: TimeService) -> None:
        assert service.parse_time_string("下週三").date() == datetime(2025, 5, 7).date()

    def test_this_week_weekday(self, service: TimeService) -> None:
        assert service.parse_time_string("這週五").date() == datetime(2025, 5, 2).date()

    def test_bare_weekday_rolls_forward(self, service: TimeService) -> None:
        result = service.parse_time_string("週一三點")
        assert result.date() == datetime(2025, 5, 5).date()
        assert result.hour == 3

    def test_weekday_same_day_is_today(self, service: TimeService) -> None:
        assert service.parse_time_string("星期四").date() == NOW.date()

    def test_default_period_applies_without_day_part(self, service: TimeService) -> None:
        reference = datetime(2025, 5, 2, 15, 0, tzinfo=TZ)
        result = service.parse_time_string("不對，是4點", reference=reference, default_period="pm")
        assert result == datetime(2025, 5, 2, 16, 0, tzinfo=TZ)

    def test_explicit_day_part_beats_default(self, service: TimeService) -> None:
        reference = datetime(2025, 5, 2, 15, 0, tzinfo=TZ)
        result = service.parse_time_string("早上9點", reference=reference, default_period="pm")
        assert result.hour == 9

    @pytest.mark.parametrize("text", ["法語課", "你好", "", "   "])
    def test_unparseable_raises(self, service: TimeService, text: str) -> None:
        with pytest.raises(ParseError):
            service.parse_time_string(text)

    def test_invalid_calendar_date_raises(self, service: TimeService) -> None:
        with pytest.raises(ParseError):
            service.parse_time_string("2月30日")

    def test_out_of_range_hour_raises(self, service: TimeService) -> None:
        with pytest.raises(ParseError):
            service.parse_time_string("下午25點")


# =============================================================================
# TimeInfo
# =============================================================================


class TestTimeInfo:
    """Tests for TimeInfo construction and formatting."""

    def test_create_from_datetime(self, service: TimeService) -> None:
        info = service.create_time_info(datetime(2025, 5, 2, 22, 30, tzinfo=TZ))
        assert info.display == "05/02 10:30 PM"
        assert info.date == "2025-05-02"
        assert info.raw == "2025-05-02T22:30:00+08:00"
        assert info.timestamp == int(datetime(2025, 5, 2, 22, 30, tzinfo=TZ).timestamp() * 1000)

    def test_create_from_iso_string(self, service: TimeService) -> None:
        info = service.create_time_info("2025-05-02T09:05:00+08:00")
        assert info.display == "05/02 9:05 AM"

    def test_naive_datetime_read_in_service_timezone(self, service: TimeService) -> None:
        info = service.create_time_info(datetime(2025, 5, 2, 9, 0))
        assert info.raw.endswith("+08:00")

    @pytest.mark.parametrize("value", [None, "not a date", 12345])
    def test_invalid_input_returns_none(self, service: TimeService, value) -> None:
        assert service.create_time_info(value) is None

    def test_midnight_and_noon_display(self, service: TimeService) -> None:
        assert service.format_for_display(datetime(2025, 5, 1, 0, 0, tzinfo=TZ)) == "05/01 12:00 AM"
        assert service.format_for_display(datetime(2025, 5, 1, 12, 0, tzinfo=TZ)) == "05/01 12:00 PM"

    def test_round_trip_through_dict(self, service: TimeService) -> None:
        info = service.create_time_info(NOW)
        assert TimeInfo.from_dict(info.to_dict()) == info
        assert info.to_datetime() == NOW

    def test_parse_then_create_is_canonical(self, service: TimeService) -> None:
        for text in ("明天晚上十點半", "下週三 3pm", "5月20日", "後天早上10點"):
            info = service.create_time_info(service.parse_time_string(text))
            assert TimeService.validate_time_info(info)

    def test_validate_rejects_bad_records(self) -> None:
        assert TimeService.validate_time_info(None) is False
        bad = TimeInfo(display="tomorrow", date="2025-05-02", raw="", timestamp=0)
        assert TimeService.validate_time_info(bad) is False

    def test_format_for_storage(self, service: TimeService) -> None:
        assert service.format_for_storage(datetime(2025, 5, 2, 15, 30)) == "2025-05-02T15:30:00+08:00"
        utc = datetime(2025, 5, 2, 7, 30, tzinfo=ZoneInfo("UTC"))
        assert service.format_for_storage(utc) == "2025-05-02T15:30:00+08:00"

    def test_frozen(self, service: TimeService) -> None:
        info = service.create_time_info(NOW)
        with pytest.raises(AttributeError):
            info.display = "x"  # type: ignore[misc]

    def test_now_uses_clock(self, service: TimeService) -> None:
        assert service.now() == NOW
