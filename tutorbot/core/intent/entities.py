"""Entity extraction for tutorbot intent analysis.

Pulls course name, student, location, teacher, confirmation, recurrence and
time out of a chat message. Each stage proposes ExtractionCandidates; one
reconciliation step at the end decides the final Entities.

Stages:
1. Student separation - positional regex, exclude-list validated
2. LLM full-entity pass (optional)
3. Regex fallback - smart segmentation plus the course vocabulary
4. Intent-aware heuristics ranked against the user's stored courses
5. Assembly - location, teacher, confirmation, recurrence
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ..llm import ExternalServiceError
from ..time_service import ParseError, TimeInfo, TimeService
from . import vocabulary as vocab
from .taxonomy import Intent

if TYPE_CHECKING:
    from ..courses import Course, CourseRepository
    from ..llm import LLMService

logger = logging.getLogger(__name__)

# How much each strategy is trusted when candidates disagree
STRATEGY_CONFIDENCE: dict[str, float] = {
    "confirmation": 1.0,
    "recurrence": 1.0,
    "fuzzy_match": 0.95,
    "separation": 0.9,
    "llm": 0.85,
    "segmentation": 0.8,
    "pattern": 0.75,
    "catalog": 0.7,
    "heuristic_ranked": 0.65,
    "llm_student": 0.6,
    "heuristic": 0.5,
}

FUZZY_MATCH_INTENTS = frozenset({Intent.MODIFY_COURSE, Intent.CANCEL_COURSE})


@dataclass
class Entities:
    """Structured fields extracted from one message.

    Every field is optional; an Entities object is always returned, even on
    total failure.

    Attributes:
        course_name: Normalized course name ("數學課")
        location: Room, floor or branch
        teacher: Teacher name without title
        student: Student token found inside the sentence
        student_name: The student the message is about
        confirmation: Confirmation phrase ("確認清空")
        recurrence_pattern: "daily", "weekly", "weekly:tue", "monthly:15", ...
        time_info: Resolved time, None when the message has none
        original_text: Message the fields were extracted from
    """

    course_name: str | None = None
    location: str | None = None
    teacher: str | None = None
    student: str | None = None
    student_name: str | None = None
    confirmation: str | None = None
    recurrence_pattern: str | None = None
    time_info: TimeInfo | None = None
    original_text: str | None = None

    @classmethod
    def empty(cls, original_text: str | None = None) -> Entities:
        return cls(original_text=original_text)

    def replace(self, **changes: Any) -> Entities:
        """Copy with some fields changed."""
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary. Every key is always present."""
        data = {f.name: getattr(self, f.name) for f in dataclasses.fields(self)}
        data["time_info"] = self.time_info.to_dict() if self.time_info else None
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Entities:
        """Deserialize from dictionary, ignoring unknown keys."""
        data = data or {}
        names = {f.name for f in dataclasses.fields(cls)}
        values = {k: v for k, v in data.items() if k in names}
        time_info = values.get("time_info")
        if isinstance(time_info, dict):
            values["time_info"] = TimeInfo.from_dict(time_info)
        return cls(**values)


@dataclass(frozen=True)
class ExtractionCandidate:
    """One stage's proposal for one field."""

    field: str
    value: Any
    strategy: str
    confidence: float

    @classmethod
    def of(cls, field: str, value: Any, strategy: str) -> ExtractionCandidate:
        return cls(field, value, strategy, STRATEGY_CONFIDENCE[strategy])


@dataclass(frozen=True)
class StudentSeparation:
    """A student name split off the front or middle of a message."""

    name: str
    remaining_text: str
    strategy: str = "sentence_start"


def _clean(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    value = value.strip()
    if not value or value.lower() in ("null", "none", "無"):
        return None
    return value


def _best(candidates: list[ExtractionCandidate], field: str) -> ExtractionCandidate | None:
    best = None
    for candidate in candidates:
        if candidate.field != field or candidate.value in (None, ""):
            continue
        if best is None or candidate.confidence > best.confidence:
            best = candidate
    return best


def fuzzy_match_course(name: str, courses: list["Course"]) -> str | None:
    """Stored course name that contains, or is contained in, name (case-insensitive)."""
    needle = name.lower()
    for course in courses:
        stored = course.course_name.lower()
        if stored in needle or needle in stored:
            return course.course_name
    return None


def reconcile_candidates(
    candidates: list[ExtractionCandidate],
    original_text: str | None,
    time_info: TimeInfo | None = None,
) -> Entities:
    """Pick one value per field and build Entities.

    The highest-confidence candidate wins; earlier candidates win ties. A
    course name that is really a person ("LUMI課表") is relabeled as the
    student when the message is a schedule query.
    """
    chosen: dict[str, ExtractionCandidate] = {}
    for field_name in {c.field for c in candidates}:
        best = _best(candidates, field_name)
        if best is not None:
            chosen[field_name] = best

    text = original_text or ""
    course = chosen.get("course_name")
    if (
        course is not None
        and "student_name" not in chosen
        and any(marker in text for marker in vocab.SCHEDULE_QUERY_MARKERS)
    ):
        bare = course.value
        for suffix in vocab.STUDENT_QUERY_SUFFIXES:
            if bare.endswith(suffix):
                bare = bare[: -len(suffix)]
                break
        if vocab.looks_like_student_not_course(bare):
            logger.debug(f"Relabeled course {course.value!r} as student {bare!r}")
            del chosen["course_name"]
            chosen["student_name"] = ExtractionCandidate("student_name", bare, "relabel", course.confidence)
            chosen.setdefault("student", ExtractionCandidate("student", bare, "relabel", course.confidence))

    if "student_name" not in chosen and "student" in chosen:
        chosen["student_name"] = chosen["student"]

    values = {name: c.value for name, c in chosen.items()}
    course_name = vocab.normalize_course_name(values.get("course_name"))
    if course_name in vocab.INVALID_COURSE_NAMES:
        course_name = None
    return Entities(
        course_name=course_name,
        location=values.get("location"),
        teacher=values.get("teacher"),
        student=values.get("student"),
        student_name=values.get("student_name"),
        confirmation=values.get("confirmation"),
        recurrence_pattern=values.get("recurrence_pattern"),
        time_info=time_info,
        original_text=original_text,
    )


class EntityExtractor:
    """Extract course entities from natural language text.

    Example:
        extractor = EntityExtractor(time_service=TimeService())
        entities = await extractor.extract_entities("小明明天下午3點數學課", "u1")
        assert entities.course_name == "數學課"
        assert entities.student_name == "小明"
    """

    def __init__(
        self,
        time_service: TimeService | None = None,
        llm: "LLMService | None" = None,
        repository: "CourseRepository | None" = None,
    ) -> None:
        """Initialize the extractor.

        Args:
            time_service: Resolver for time phrases
            llm: Optional LLM collaborator for the primary extraction pass
            repository: Optional course store for disambiguation
        """
        self.time_service = time_service or TimeService()
        self.llm = llm
        self.repository = repository

    @property
    def llm_available(self) -> bool:
        return self.llm is not None and bool(getattr(self.llm, "is_available", False))

    # =========================================================================
    # Public API
    # =========================================================================

    async def extract_entities(
        self,
        text: str,
        user_id: str | None = None,
        intent_hint: Intent | str | None = None,
        *,
        use_llm: bool = True,
    ) -> Entities:
        """Extract all entities from a message. Never raises.

        Args:
            text: User message
            user_id: Owner of stored courses used for disambiguation
            intent_hint: Classified intent, selects heuristics and fuzzy matching
            use_llm: False for the fast regex-only path

        Returns:
            Entities, with every field None in the worst case
        """
        original = text.strip() if isinstance(text, str) else None
        try:
            return await self._extract(original, user_id, self._hint(intent_hint), use_llm)
        except Exception as e:
            logger.exception(f"Entity extraction failed, returning empty entities: {e}")
            return Entities.empty(original_text=original)

    def separate_student(self, text: str) -> StudentSeparation | None:
        """Split a student name off the message.

        Returns:
            StudentSeparation, or None when no valid name is found
        """
        if not text or not isinstance(text, str):
            return None

        for strategy, pattern in vocab.STUDENT_PATTERNS:
            match = pattern.search(text)
            if not match or not vocab.is_valid_student_name(match.group(1)):
                continue
            name = match.group(1)
            remaining = text.replace(name, "", 1).strip().strip("的").strip()
            logger.debug(f"Student {name!r} found by {strategy}, remaining {remaining!r}")
            # An empty remainder means "show this student's schedule"
            return StudentSeparation(name=name, remaining_text=remaining or "課表", strategy=strategy)

        return None

    async def resolve_time(
        self,
        text: str | None,
        *,
        allow_llm: bool = True,
        reference: Any = None,
        default_period: str | None = None,
    ) -> TimeInfo | None:
        """Resolve a time from text, asking the LLM to isolate phrases once on failure.

        Args:
            text: Message or phrase to parse
            allow_llm: Whether the LLM-assisted retry may run
            reference: Base datetime (defaults to now)
            default_period: "am"/"pm" applied when the text has no day-part

        Returns:
            TimeInfo, or None when no time can be resolved
        """
        if not text:
            return None

        try:
            parsed = self.time_service.parse_time_string(text, reference, default_period)
            return self.time_service.create_time_info(parsed)
        except ParseError as e:
            logger.debug(f"Direct time parse failed: {e}")

        if not allow_llm or not self.llm_available:
            return None

        assert self.llm is not None
        try:
            date_phrase, time_phrase = await self.llm.extract_time_phrases(text)
            combined = "".join(p for p in (date_phrase, time_phrase) if p)
            if not combined:
                return None
            parsed = self.time_service.parse_time_string(combined, reference, default_period)
            return self.time_service.create_time_info(parsed)
        except (ExternalServiceError, ParseError) as e:
            logger.debug(f"LLM-assisted time parse failed: {e}")
            return None

    # =========================================================================
    # Pipeline
    # =========================================================================

    @staticmethod
    def _hint(intent_hint: Intent | str | None) -> Intent | None:
        if intent_hint is None:
            return None
        if isinstance(intent_hint, Intent):
            return intent_hint
        return Intent.parse(intent_hint)

    async def _extract(
        self,
        original: str | None,
        user_id: str | None,
        hint: Intent | None,
        use_llm: bool,
    ) -> Entities:
        if not original:
            return Entities.empty(original_text=original)

        candidates: list[ExtractionCandidate] = []
        working = original

        separation = self.separate_student(original)
        if separation:
            candidates.append(ExtractionCandidate.of("student_name", separation.name, "separation"))
            working = separation.remaining_text

        time_text: str | None = None
        if use_llm and self.llm_available:
            llm_candidates, time_text = await self._llm_stage(working)
            candidates.extend(llm_candidates)

        if _best(candidates, "course_name") is None:
            regex_candidates, segment_time = self._regex_stage(working, original)
            candidates.extend(regex_candidates)
            time_text = time_text or segment_time

        if _best(candidates, "course_name") is None:
            candidates.extend(await self._heuristic_stage(working, user_id, hint))

        candidates.extend(self._assembly_stage(working, original, candidates))

        course = _best(candidates, "course_name")
        if course is not None and user_id and hint in FUZZY_MATCH_INTENTS:
            matched = await self._fuzzy_match(course.value, user_id)
            if matched and matched != course.value:
                candidates.append(ExtractionCandidate.of("course_name", matched, "fuzzy_match"))

        time_info = await self.resolve_time(time_text or working, allow_llm=use_llm)
        return reconcile_candidates(candidates, original, time_info=time_info)

    async def _llm_stage(self, text: str) -> tuple[list[ExtractionCandidate], str | None]:
        assert self.llm is not None
        try:
            response = await self.llm.extract_all_entities(text)
        except Exception as e:
            logger.warning(f"LLM entity extraction raised: {e}")
            return [], None

        if not response.success:
            logger.debug(f"LLM entity extraction unsuccessful: {response.error}")
            return [], None

        entities = response.entities or {}
        candidates: list[ExtractionCandidate] = []

        course = _clean(entities.get("course_name"))
        if course and course not in vocab.INVALID_COURSE_NAMES:
            candidates.append(ExtractionCandidate.of("course_name", course, "llm"))
        for key in ("location", "teacher"):
            value = _clean(entities.get(key))
            if value:
                candidates.append(ExtractionCandidate.of(key, value, "llm"))
        student = _clean(entities.get("student"))
        if student:
            candidates.append(ExtractionCandidate.of("student", student, "llm"))
            candidates.append(ExtractionCandidate.of("student_name", student, "llm_student"))

        phrase = "".join(
            p for p in (_clean(entities.get("date_phrase")), _clean(entities.get("time_phrase"))) if p
        )
        return candidates, phrase or None

    def _regex_stage(self, working: str, original: str) -> tuple[list[ExtractionCandidate], str | None]:
        candidates: list[ExtractionCandidate] = []
        time_phrase: str | None = None

        segment = vocab.SMART_SEGMENT.match(working) or vocab.SMART_SEGMENT.match(original)
        if segment:
            parts = segment.groupdict()
            if parts["location"]:
                candidates.append(ExtractionCandidate.of("location", parts["location"], "segmentation"))
            if parts["student"]:
                candidates.append(ExtractionCandidate.of("student", parts["student"], "segmentation"))
            course = vocab.find_course_in_catalog(parts["course"])
            if course:
                candidates.append(ExtractionCandidate.of("course_name", course, "segmentation"))
            time_phrase = "".join(p for p in (parts["date"], parts["vague"], parts["specific"]) if p) or None

        course = vocab.find_course_in_catalog(working)
        if course:
            candidates.append(ExtractionCandidate.of("course_name", course, "catalog"))

        return candidates, time_phrase

    async def _heuristic_stage(
        self, text: str, user_id: str | None, hint: Intent | None
    ) -> list[ExtractionCandidate]:
        if hint in FUZZY_MATCH_INTENTS:
            patterns = vocab.MODIFY_HEURISTICS
        elif hint in (Intent.RECORD_COURSE, Intent.CREATE_RECURRING_COURSE):
            patterns = vocab.RECORD_HEURISTICS
        else:
            patterns = vocab.GENERIC_HEURISTICS

        names: list[str] = []
        for pattern in patterns:
            for match in pattern.finditer(text):
                name = vocab.strip_noise_prefix(match.group(1).strip())
                if len(name) < 2 or name in vocab.HEURISTIC_EXCLUDE_WORDS:
                    continue
                if vocab.COURSE_NOISE.search(name) or name in vocab.INVALID_COURSE_NAMES:
                    continue
                if name not in names:
                    names.append(name)

        if not names:
            return []

        courses = await self._scheduled_courses(user_id)
        for name in names:
            matched = fuzzy_match_course(name, courses) if courses else None
            if matched:
                return [ExtractionCandidate.of("course_name", matched, "heuristic_ranked")]

        return [ExtractionCandidate.of("course_name", names[0], "heuristic")]

    def _assembly_stage(
        self, working: str, original: str, candidates: list[ExtractionCandidate]
    ) -> list[ExtractionCandidate]:
        assembled: list[ExtractionCandidate] = []

        location = self._find_location(working)
        if location:
            assembled.append(ExtractionCandidate.of("location", location, "pattern"))

        teacher = self._find_teacher(working)
        known_locations = [c.value for c in candidates if c.field == "location"]
        if location:
            known_locations.append(location)
        if teacher and not any(teacher in loc for loc in known_locations):
            assembled.append(ExtractionCandidate.of("teacher", teacher, "pattern"))

        confirmation = vocab.CONFIRMATION_PHRASES.get(original.strip())
        if confirmation:
            assembled.append(ExtractionCandidate.of("confirmation", confirmation, "confirmation"))

        recurrence = vocab.detect_recurrence(original)
        if recurrence:
            assembled.append(ExtractionCandidate.of("recurrence_pattern", recurrence, "recurrence"))

        return assembled

    @staticmethod
    def _find_location(text: str) -> str | None:
        for pattern in vocab.LOCATION_PATTERNS:
            match = pattern.search(text)
            if not match:
                continue
            location = vocab.strip_noise_prefix(match.group(1).strip())
            location = location.replace("上課", "").replace("在", "").strip()
            if location.endswith("教室"):
                location = location[: -len("教室")]
            if not location:
                continue
            if "樓" not in location and not location.endswith(vocab.LOCATION_SUFFIXES):
                location += "教室"
            return location
        return None

    @staticmethod
    def _find_teacher(text: str) -> str | None:
        for pattern in vocab.TEACHER_PATTERNS:
            match = pattern.search(text)
            if match and match.group(1):
                teacher = vocab.strip_noise_prefix(match.group(1).strip())
                if teacher:
                    return teacher
        return None

    async def _scheduled_courses(self, user_id: str | None) -> list["Course"]:
        if not user_id or self.repository is None:
            return []
        try:
            return await self.repository.get_user_courses(user_id, {"status": "scheduled"})
        except Exception as e:
            logger.warning(f"Course lookup failed for {user_id}: {e}")
            return []

    async def _fuzzy_match(self, name: str, user_id: str) -> str | None:
        courses = await self._scheduled_courses(user_id)
        return fuzzy_match_course(name, courses) if courses else None


__all__ = [
    "Entities",
    "EntityExtractor",
    "ExtractionCandidate",
    "StudentSeparation",
    "fuzzy_match_course",
    "reconcile_candidates",
]
