"""Core components for tutorbot."""

from .courses import (
    Course,
    CourseRepository,
    InMemoryCourseRepository,
    JsonCourseRepository,
    TokenUsageRecord,
)
from .llm import (
    ExternalServiceError,
    LLMService,
    LLMTimeoutError,
)
from .time_service import (
    ParseError,
    TimeInfo,
    TimeService,
)

__all__ = [
    "Course",
    "CourseRepository",
    "ExternalServiceError",
    "InMemoryCourseRepository",
    "JsonCourseRepository",
    "LLMService",
    "LLMTimeoutError",
    "ParseError",
    "TimeInfo",
    "TimeService",
    "TokenUsageRecord",
]
