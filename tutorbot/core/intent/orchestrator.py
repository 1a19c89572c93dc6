"""Decision orchestrator for tutorbot.

Sequences the pipeline for one chat message:

1. Validate (raises InvalidInputError synchronously)
2. Pure-time guard (skipped while a correction context is pending)
3. Rule classification
4. Correction branch (context) or standard entity extraction
5. Confidence gate - confident rules answer without the LLM
6. LLM fallback, then local detailed fallback, then the rule result
7. Safety net - any exception becomes an "error" result

The orchestrator never lets an exception escape from the awaited result.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable

from ..courses import TokenUsageRecord
from ..time_service import TimeService
from . import vocabulary as vocab
from .context import ConversationContextStore
from .entities import Entities, EntityExtractor
from .fallback import DetailedFallbackAnalyzer, FallbackAnalysis
from .guard import AmbiguityGuard
from .rules import RuleBasedIntentClassifier
from .taxonomy import (
    CORRECTION_CONFIDENCE_BOOST,
    CORRECTION_NO_CONTEXT_PENALTY,
    MIN_CORRECTION_CONFIDENCE,
    TRUST_RULES_THRESHOLD,
    AnalysisMethod,
    Intent,
    IntentMatch,
    clamp_confidence,
)

if TYPE_CHECKING:
    from ...config import AppConfig
    from ..courses import CourseRepository
    from ..llm import IntentAnalysisResponse, LLMService

logger = logging.getLogger(__name__)

DEFAULT_LLM_TIMEOUT = 10.0

NOT_COURSE_RELATED_MESSAGE = (
    "抱歉，我是課程管理助手，只能協助處理課程相關的事務。請告訴我您需要幫助的課程安排、查詢或修改等需求。"
)
ALL_FAILED_MESSAGE = "無法理解您的輸入，請提供更清楚的描述"


class InvalidInputError(ValueError):
    """Missing message text or user id."""

    pass


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class AnalysisResult:
    """Structured outcome of one analyze() call.

    Attributes:
        success: Whether the message was understood as a course action
        method: Pipeline stage that produced the result
        intent: Final intent
        confidence: Final confidence in [0, 1]
        entities: Extracted entities, all-null on failure
        reasoning: Explanation from the LLM or fallback analyzer
        error: Exception text for method=error, LLM error otherwise
        message: User-facing clarification or refusal
        usage: Token usage of the LLM call, if one was made
        context: Caller-supplied context echoed back
        analysis_time: Epoch milliseconds when the result was built
    """

    success: bool
    method: AnalysisMethod
    intent: Intent
    confidence: float
    entities: Entities
    reasoning: str | None = None
    error: str | None = None
    message: str | None = None
    usage: dict[str, Any] | None = None
    context: dict[str, Any] | None = None
    analysis_time: int = field(default_factory=_now_ms)

    def __post_init__(self) -> None:
        self.confidence = clamp_confidence(self.confidence)

    @classmethod
    def failure(
        cls,
        method: AnalysisMethod,
        intent: Intent = Intent.UNKNOWN,
        *,
        original_text: str | None = None,
        **kwargs: Any,
    ) -> AnalysisResult:
        """Unsuccessful result with all-null entities."""
        kwargs.setdefault("confidence", 0.0)
        return cls(
            success=False,
            method=method,
            intent=intent,
            entities=Entities.empty(original_text=original_text),
            **kwargs,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for downstream consumers."""
        return {
            "success": self.success,
            "method": self.method.value,
            "intent": self.intent.value,
            "confidence": self.confidence,
            "entities": self.entities.to_dict(),
            "reasoning": self.reasoning,
            "error": self.error,
            "message": self.message,
            "usage": self.usage,
            "context": self.context,
            "analysis_time": self.analysis_time,
        }


class DecisionOrchestrator:
    """Turn a chat message into an AnalysisResult.

    Every collaborator is injected; create_orchestrator() wires the defaults.

    Example:
        orchestrator = DecisionOrchestrator()
        result = await orchestrator.analyze("明天下午3點數學課", "u1")
        assert result.method == AnalysisMethod.RULE_ENGINE
    """

    def __init__(
        self,
        classifier: RuleBasedIntentClassifier | None = None,
        guard: AmbiguityGuard | None = None,
        extractor: EntityExtractor | None = None,
        context_store: ConversationContextStore | None = None,
        llm: "LLMService | None" = None,
        repository: "CourseRepository | None" = None,
        fallback_analyzer: DetailedFallbackAnalyzer | None = None,
        trust_threshold: float = TRUST_RULES_THRESHOLD,
        llm_timeout: float = DEFAULT_LLM_TIMEOUT,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            classifier: Keyword rule classifier
            guard: Pure-time input guard
            extractor: Entity extractor; built from llm and repository if omitted
            context_store: Per-user correction context
            llm: Optional LLM collaborator
            repository: Optional course store for token accounting
            fallback_analyzer: Local analyzer; the LLM service's one is used if omitted
            trust_threshold: Rule confidence at which the LLM is skipped
            llm_timeout: Seconds allowed for the LLM intent call
        """
        self.classifier = classifier or RuleBasedIntentClassifier()
        self.guard = guard or AmbiguityGuard()
        self.llm = llm
        self.repository = repository
        self.extractor = extractor or EntityExtractor(
            time_service=TimeService(), llm=llm, repository=repository
        )
        self.context_store = context_store or ConversationContextStore()
        self.fallback_analyzer = fallback_analyzer
        self.trust_threshold = trust_threshold
        self.llm_timeout = llm_timeout

    # =========================================================================
    # Public API
    # =========================================================================

    def analyze(
        self,
        text: str,
        user_id: str,
        context: dict[str, Any] | None = None,
    ) -> Awaitable[AnalysisResult]:
        """Analyze one message.

        Arguments are validated before anything is scheduled, so bad input
        raises at the call site rather than when awaited.

        Args:
            text: User message
            user_id: Sender
            context: Optional caller metadata echoed into the result

        Returns:
            Awaitable resolving to an AnalysisResult

        Raises:
            InvalidInputError: If text is empty or user_id missing
        """
        if not isinstance(text, str) or not text.strip():
            raise InvalidInputError("text must be a non-empty string")
        if not user_id:
            raise InvalidInputError("user_id is required")

        return self._analyze_serialized(text.strip(), str(user_id), context)

    async def aclose(self) -> None:
        if self.llm is not None:
            await self.llm.aclose()

    # =========================================================================
    # Pipeline
    # =========================================================================

    async def _analyze_serialized(
        self, text: str, user_id: str, context: dict[str, Any] | None
    ) -> AnalysisResult:
        lock = self.context_store.lock(user_id)
        async with lock:
            try:
                return await self._analyze(text, user_id, context)
            except Exception as e:
                logger.exception(f"Analysis failed for {user_id}: {e}")
                return AnalysisResult.failure(
                    AnalysisMethod.ERROR,
                    error=str(e),
                    context=context,
                )

    async def _analyze(
        self, text: str, user_id: str, context: dict[str, Any] | None
    ) -> AnalysisResult:
        has_context = await self.context_store.has_valid_context(user_id)

        if not has_context:
            guard = self.guard.detect_pure_time_input(text)
            if guard.is_pure_time_input:
                return AnalysisResult.failure(
                    AnalysisMethod.REJECTED_PURE_TIME,
                    Intent.AMBIGUOUS_INPUT,
                    original_text=text,
                    message=guard.rejection_message,
                    context=context,
                )

        match = self.classifier.analyze_intent(text)
        intent, confidence = match.intent, match.confidence
        logger.debug(f"Rules: {intent.value} ({confidence}) for {text!r}")

        from_context = False
        if intent is Intent.CORRECTION_INTENT:
            resolved = await self._resolve_correction(text, user_id) if has_context else None
            if resolved is not None:
                entities = resolved
                intent = Intent.MODIFY_COURSE
                confidence = clamp_confidence(confidence + CORRECTION_CONFIDENCE_BOOST)
                from_context = True
            else:
                confidence = clamp_confidence(
                    max(MIN_CORRECTION_CONFIDENCE, confidence - CORRECTION_NO_CONTEXT_PENALTY)
                )
                entities = await self.extractor.extract_entities(
                    text, user_id, Intent.CORRECTION_INTENT, use_llm=confidence < self.trust_threshold
                )
        else:
            entities = await self.extractor.extract_entities(
                text, user_id, intent, use_llm=confidence < self.trust_threshold
            )

        # Confidence gate
        if confidence >= self.trust_threshold:
            result = AnalysisResult(
                success=True,
                method=AnalysisMethod.RULE_ENGINE,
                intent=intent,
                confidence=confidence,
                entities=entities,
                reasoning=self._rule_reasoning(match, from_context),
                context=context,
            )
            if not from_context:
                await self._remember(user_id, result)
            return result

        return await self._fallback_chain(
            text, user_id, context, match, intent, confidence, entities, from_context
        )

    async def _resolve_correction(self, text: str, user_id: str) -> Entities | None:
        """Entities of the pending turn with fields the correction restates replaced."""
        pending = await self.context_store.get_pending_context(user_id)
        if pending is None:
            return None
        previous = await self.context_store.resolve_entities_from_context(user_id, text)
        if previous is None:
            return None

        fresh = await self.extractor.extract_entities(
            text, user_id, Intent.MODIFY_COURSE, use_llm=False
        )

        reference = previous.time_info.to_datetime() if previous.time_info else None
        # "是4點" after an afternoon course means 4 PM
        default_period = "pm" if reference is not None and reference.hour >= 12 else None
        time_info = await self.extractor.resolve_time(
            text, reference=reference, default_period=default_period
        )

        logger.debug(f"Correction for {user_id} resolved against {previous.course_name}")
        return previous.replace(
            course_name=fresh.course_name or previous.course_name,
            location=fresh.location or previous.location,
            teacher=fresh.teacher or previous.teacher,
            time_info=time_info or previous.time_info,
        )

    async def _fallback_chain(
        self,
        text: str,
        user_id: str,
        context: dict[str, Any] | None,
        match: IntentMatch,
        intent: Intent,
        confidence: float,
        entities: Entities,
        from_context: bool,
    ) -> AnalysisResult:
        response = await self._call_llm(text, user_id)
        llm_error = None

        if response is not None and response.success:
            analysis = response.analysis or {}
            llm_intent = Intent.parse(analysis.get("intent"))
            usage = response.usage.to_dict() if response.usage else None

            if llm_intent is Intent.NOT_COURSE_RELATED:
                logger.info(f"LLM rejected out-of-domain input from {user_id}")
                return AnalysisResult.failure(
                    AnalysisMethod.REJECTED_NOT_COURSE_RELATED,
                    Intent.NOT_COURSE_RELATED,
                    original_text=text,
                    confidence=analysis.get("confidence", 0.0),
                    reasoning=analysis.get("reasoning"),
                    message=NOT_COURSE_RELATED_MESSAGE,
                    usage=usage,
                    context=context,
                )

            if llm_intent is not Intent.UNKNOWN:
                result = AnalysisResult(
                    success=True,
                    method=AnalysisMethod.OPENAI,
                    intent=llm_intent,
                    confidence=analysis.get("confidence", 0.0),
                    entities=self._merge_llm_entities(analysis.get("entities") or {}, entities),
                    reasoning=analysis.get("reasoning"),
                    usage=usage,
                    context=context,
                )
                if not from_context:
                    await self._remember(user_id, result)
                return result

            llm_error = f"LLM returned unrecognized intent {analysis.get('intent')!r}"
        elif response is not None:
            llm_error = response.error
        elif self.llm is None or not self.llm.is_available:
            llm_error = "LLM not configured"
        else:
            llm_error = "LLM request failed"

        logger.debug(f"LLM fallback unavailable ({llm_error}), using local analysis")

        fallback = self._local_fallback(text)
        if fallback.intent == Intent.NOT_COURSE_RELATED.value and match.confidence == 0:
            return AnalysisResult.failure(
                AnalysisMethod.REJECTED_NOT_COURSE_RELATED,
                Intent.NOT_COURSE_RELATED,
                original_text=text,
                confidence=fallback.confidence,
                reasoning=fallback.reasoning,
                message=NOT_COURSE_RELATED_MESSAGE,
                error=llm_error,
                context=context,
            )

        if fallback.is_usable:
            result = AnalysisResult(
                success=True,
                method=AnalysisMethod.DETAILED_FALLBACK,
                intent=Intent.parse(fallback.intent),
                confidence=fallback.confidence,
                entities=self._merge_fallback_entities(fallback, entities),
                reasoning=fallback.reasoning,
                error=llm_error,
                context=context,
            )
            if not from_context:
                await self._remember(user_id, result)
            return result

        if match.confidence > 0 and intent is not Intent.UNKNOWN:
            result = AnalysisResult(
                success=True,
                method=AnalysisMethod.RULE_ENGINE_FINAL_FALLBACK,
                intent=intent,
                confidence=confidence,
                entities=entities,
                error=llm_error,
                context=context,
            )
            if not from_context:
                await self._remember(user_id, result)
            return result

        return AnalysisResult.failure(
            AnalysisMethod.ALL_FAILED,
            original_text=text,
            message=ALL_FAILED_MESSAGE,
            error=llm_error,
            context=context,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _call_llm(self, text: str, user_id: str) -> "IntentAnalysisResponse | None":
        """LLM intent analysis bounded by llm_timeout. None on any failure."""
        if self.llm is None or not self.llm.is_available:
            return None

        try:
            response = await asyncio.wait_for(
                self.llm.analyze_intent(text, user_id), timeout=self.llm_timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"LLM intent analysis timed out after {self.llm_timeout}s")
            return None
        except Exception as e:
            logger.warning(f"LLM intent analysis failed: {e}")
            return None

        await self._log_usage(user_id, text, response)
        return response

    async def _log_usage(
        self, user_id: str, text: str, response: "IntentAnalysisResponse"
    ) -> None:
        if self.repository is None or self.llm is None or response.usage is None:
            return
        try:
            model = response.model or self.llm.model
            total_tokens = response.usage.total_tokens
            await self.repository.log_token_usage(
                TokenUsageRecord(
                    user_id=user_id,
                    model=model,
                    total_tokens=total_tokens,
                    total_cost_twd=self.llm.calculate_cost(total_tokens, model),
                    user_message=text,
                )
            )
        except Exception as e:
            logger.warning(f"Failed to log token usage for {user_id}: {e}")

    def _local_fallback(self, text: str) -> FallbackAnalysis:
        if self.fallback_analyzer is not None:
            return self.fallback_analyzer.analyze(text)
        if self.llm is not None:
            return self.llm.fallback_intent_analysis(text)
        self.fallback_analyzer = DetailedFallbackAnalyzer()
        return self.fallback_analyzer.analyze(text)

    async def _remember(self, user_id: str, result: AnalysisResult) -> None:
        await self.context_store.update_context(
            user_id, result.intent, result.entities, result.to_dict()
        )

    @staticmethod
    def _rule_reasoning(match: IntentMatch, from_context: bool) -> str:
        keywords = ", ".join(match.matched_keywords) or "none"
        if from_context:
            return f"correction resolved from pending context (keywords: {keywords})"
        return f"rule keywords: {keywords}"

    @staticmethod
    def _merge_llm_entities(llm_entities: dict[str, Any], extracted: Entities) -> Entities:
        def value(key: str) -> Any:
            raw = llm_entities.get(key)
            if isinstance(raw, str):
                raw = raw.strip() or None
            return raw

        raw_course = value("course_name")
        course = vocab.normalize_course_name(raw_course)
        if raw_course in vocab.INVALID_COURSE_NAMES or course in vocab.INVALID_COURSE_NAMES:
            logger.debug(f"Dropped generic course name from LLM: {raw_course!r}")
            course = None

        return extracted.replace(
            course_name=course or extracted.course_name,
            location=value("location") or extracted.location,
            teacher=value("teacher") or extracted.teacher,
            student=value("student") or extracted.student,
            student_name=value("student_name") or extracted.student_name,
            recurrence_pattern=value("recurrence_pattern") or extracted.recurrence_pattern,
        )

    @staticmethod
    def _merge_fallback_entities(fallback: FallbackAnalysis, extracted: Entities) -> Entities:
        found = fallback.entities
        return extracted.replace(
            course_name=found.get("course_name") or extracted.course_name,
            location=found.get("location") or extracted.location,
            teacher=found.get("teacher") or extracted.teacher,
            recurrence_pattern=found.get("recurrence_pattern") or extracted.recurrence_pattern,
        )


def create_orchestrator(
    config: "AppConfig | None" = None,
    repository: "CourseRepository | None" = None,
) -> DecisionOrchestrator:
    """Build an orchestrator with every collaborator wired from configuration.

    Args:
        config: Application config (defaults plus environment when omitted)
        repository: Course store; a JSON store under config.data_path by default

    Returns:
        Ready-to-use DecisionOrchestrator
    """
    from ...config import AppConfig
    from ..courses import JsonCourseRepository
    from ..llm import LLMService

    config = config or AppConfig()
    repository = repository or JsonCourseRepository(config.data_path)
    fallback_analyzer = DetailedFallbackAnalyzer()
    llm = LLMService(config.llm, fallback_analyzer=fallback_analyzer)
    time_service = TimeService(config.pipeline.timezone)

    return DecisionOrchestrator(
        classifier=RuleBasedIntentClassifier(rules_path=config.pipeline.rules_path),
        guard=AmbiguityGuard(),
        extractor=EntityExtractor(time_service=time_service, llm=llm, repository=repository),
        context_store=ConversationContextStore(ttl_seconds=config.pipeline.context_ttl_seconds),
        llm=llm,
        repository=repository,
        fallback_analyzer=fallback_analyzer,
        trust_threshold=config.pipeline.trust_rules_threshold,
        llm_timeout=config.llm.timeout,
    )


__all__ = [
    "ALL_FAILED_MESSAGE",
    "AnalysisResult",
    "DecisionOrchestrator",
    "InvalidInputError",
    "NOT_COURSE_RELATED_MESSAGE",
    "create_orchestrator",
]
