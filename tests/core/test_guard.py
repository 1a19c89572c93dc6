"""Tests for the pure-time input guard."""

from __future__ import annotations

import pytest

from tutorbot.core.intent import AmbiguityGuard


@pytest.fixture
def guard() -> AmbiguityGuard:
    return AmbiguityGuard()


class TestPureTimeDetection:
    """Tests for AmbiguityGuard.detect_pure_time_input()."""

    @pytest.mark.parametrize(
        "text",
        [
            "下午",
            "晚上",
            "3點",
            "3點半",
            "三點半",
            "十一點",
            "14:30",
            "明天下午",
            "明天下午3點",
            "明天晚上十點半",
            "下午3點",
            "  下午3點  ",
        ],
    )
    def test_rejects_time_only(self, guard: AmbiguityGuard, text: str) -> None:
        result = guard.detect_pure_time_input(text)
        assert result.is_pure_time_input is True
        assert result.rejection_message

    @pytest.mark.parametrize(
        "text",
        [
            "明天下午3點數學課",
            "法語課",
            "取消數學課",
            "下午3點在前台上課",
            "不對，是4點",
            "",
        ],
    )
    def test_accepts_course_bearing_input(self, guard: AmbiguityGuard, text: str) -> None:
        result = guard.detect_pure_time_input(text)
        assert result.is_pure_time_input is False
        assert result.rejection_message is None

    def test_rejection_names_the_phrase(self, guard: AmbiguityGuard) -> None:
        result = guard.detect_pure_time_input("下午3點")
        assert "「下午3點」" in result.rejection_message
        assert "數學課" in result.rejection_message

    def test_length_ceiling(self) -> None:
        guard = AmbiguityGuard(max_length=3)
        assert guard.detect_pure_time_input("明天下午").is_pure_time_input is False
        assert guard.detect_pure_time_input("下午").is_pure_time_input is True

    def test_none_input(self, guard: AmbiguityGuard) -> None:
        assert guard.detect_pure_time_input(None).is_pure_time_input is False  # type: ignore[arg-type]
