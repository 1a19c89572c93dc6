"""Course records and token-usage accounting for tutorbot.

The NLU pipeline only reads courses (to disambiguate course names) and
appends token-usage records. Data for the file-backed repository is stored in:
- <data_path>/courses.json - array of course records
- <data_path>/token_usage.jsonl - one LLM usage record per line, append-only
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# =============================================================================
# Data Models
# =============================================================================


class Course(BaseModel):
    """A stored tutoring session.

    Attributes:
        user_id: Owner of the course
        course_name: Normalized name such as "數學課"
        status: "scheduled", "completed" or "cancelled"
        schedule_time: When the session takes place
        location: Room or branch
        teacher: Teacher name
        student_name: Student attending the session
        recurrence_pattern: "weekly:tue", "daily", ... for recurring courses
    """

    user_id: str
    course_name: str
    status: str = "scheduled"
    schedule_time: datetime | None = None
    location: str | None = None
    teacher: str | None = None
    student_name: str | None = None
    recurrence_pattern: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON persistence."""
        data: dict[str, Any] = {
            "user_id": self.user_id,
            "course_name": self.course_name,
            "status": self.status,
        }
        if self.schedule_time is not None:
            data["schedule_time"] = self.schedule_time.isoformat()
        for key in ("location", "teacher", "student_name", "recurrence_pattern"):
            value = getattr(self, key)
            if value:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Course:
        """Deserialize from dictionary."""
        schedule_time = data.get("schedule_time")
        if isinstance(schedule_time, str):
            schedule_time = datetime.fromisoformat(schedule_time)

        return cls(
            user_id=data["user_id"],
            course_name=data["course_name"],
            status=data.get("status", "scheduled"),
            schedule_time=schedule_time,
            location=data.get("location"),
            teacher=data.get("teacher"),
            student_name=data.get("student_name"),
            recurrence_pattern=data.get("recurrence_pattern"),
        )


class TokenUsageRecord(BaseModel):
    """Cost accounting for one LLM call."""

    user_id: str
    model: str
    total_tokens: int = 0
    total_cost_twd: float = 0.0
    user_message: str = ""
    created_at: datetime = Field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON persistence."""
        return {
            "user_id": self.user_id,
            "model": self.model,
            "total_tokens": self.total_tokens,
            "total_cost_twd": self.total_cost_twd,
            "user_message": self.user_message,
            "created_at": self.created_at.isoformat(),
        }


# =============================================================================
# Repositories
# =============================================================================


class CourseRepository(ABC):
    """Read access to stored courses plus usage logging."""

    @abstractmethod
    async def get_user_courses(
        self, user_id: str, filters: dict[str, Any] | None = None
    ) -> list[Course]:
        """Return the user's courses matching every filter key."""

    @abstractmethod
    async def log_token_usage(self, record: TokenUsageRecord) -> None:
        """Append an LLM usage record."""


def _matches(course: Course, filters: dict[str, Any] | None) -> bool:
    if not filters:
        return True
    return all(getattr(course, key, None) == value for key, value in filters.items())


class InMemoryCourseRepository(CourseRepository):
    """Process-local repository, used by tests and the interactive CLI."""

    def __init__(self, courses: list[Course] | None = None) -> None:
        self._courses: list[Course] = list(courses or [])
        self.usage: list[TokenUsageRecord] = []

    def add_course(self, course: Course) -> None:
        self._courses.append(course)

    async def get_user_courses(
        self, user_id: str, filters: dict[str, Any] | None = None
    ) -> list[Course]:
        return [c for c in self._courses if c.user_id == user_id and _matches(c, filters)]

    async def log_token_usage(self, record: TokenUsageRecord) -> None:
        self.usage.append(record)


class JsonCourseRepository(CourseRepository):
    """File-backed repository.

    Example:
        >>> repo = JsonCourseRepository(Path("~/.tutorbot/data").expanduser())
        >>> repo.add_course(Course(user_id="u1", course_name="數學課"))
        >>> courses = await repo.get_user_courses("u1", {"status": "scheduled"})
    """

    COURSES_FILE = "courses.json"
    USAGE_FILE = "token_usage.jsonl"

    def __init__(self, data_path: Path) -> None:
        """Initialize the repository.

        Args:
            data_path: Directory holding the JSON files
        """
        self.data_path = Path(data_path)

    @property
    def courses_file(self) -> Path:
        return self.data_path / self.COURSES_FILE

    @property
    def usage_file(self) -> Path:
        return self.data_path / self.USAGE_FILE

    def _read(self, path: Path) -> list[dict[str, Any]]:
        if not path.exists():
            return []
        try:
            with path.open("r", encoding="utf-8") as f:
                return json.load(f)
        except Exception as e:
            logger.error(f"Failed to load {path.name}: {e}")
            return []

    def _write(self, path: Path, data: list[dict[str, Any]]) -> None:
        self.data_path.mkdir(parents=True, exist_ok=True)

        # Atomic write
        temp_file = path.with_suffix(".json.tmp")
        try:
            with temp_file.open("w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            temp_file.rename(path)
        except Exception as e:
            if temp_file.exists():
                temp_file.unlink()
            raise RuntimeError(f"Failed to save {path.name}: {e}") from e

    def add_course(self, course: Course) -> None:
        data = self._read(self.courses_file)
        data.append(course.to_dict())
        self._write(self.courses_file, data)
        logger.debug(f"Stored course {course.course_name} for {course.user_id}")

    def _append_usage(self, record: TokenUsageRecord) -> None:
        self.data_path.mkdir(parents=True, exist_ok=True)
        line = json.dumps(record.to_dict(), ensure_ascii=False)
        with self.usage_file.open("a", encoding="utf-8") as f:
            f.write(line + "\n")

    def read_usage(self) -> list[dict[str, Any]]:
        """Load every usage record, skipping lines that fail to parse."""
        if not self.usage_file.exists():
            return []
        records: list[dict[str, Any]] = []
        with self.usage_file.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(json.loads(line))
                except json.JSONDecodeError as e:
                    logger.warning(f"Skipping bad usage line: {e}")
        return records

    async def get_user_courses(
        self, user_id: str, filters: dict[str, Any] | None = None
    ) -> list[Course]:
        data = await asyncio.to_thread(self._read, self.courses_file)
        courses = [Course.from_dict(d) for d in data]
        return [c for c in courses if c.user_id == user_id and _matches(c, filters)]

    async def log_token_usage(self, record: TokenUsageRecord) -> None:
        await asyncio.to_thread(self._append_usage, record)


__all__ = [
    "Course",
    "CourseRepository",
    "InMemoryCourseRepository",
    "JsonCourseRepository",
    "TokenUsageRecord",
]
