"""LLM collaborator for tutorbot.

Talks to any OpenAI-compatible chat-completion endpoint (OpenAI, vLLM,
Ollama's /v1 shim) over HTTP. Used for:
- intent + entity analysis when keyword rules are not confident enough
- full-entity extraction ahead of the regex catalog
- isolating date/time phrases the local time parser could not handle

Every network problem surfaces as ExternalServiceError so the pipeline can
fall back to local analysis.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import httpx

if TYPE_CHECKING:
    from ..config import LLMSettings
    from .intent.fallback import DetailedFallbackAnalyzer, FallbackAnalysis

logger = logging.getLogger(__name__)


# Exceptions
class ExternalServiceError(Exception):
    """LLM request failed or returned an unusable response."""

    pass


class LLMTimeoutError(ExternalServiceError):
    """LLM request exceeded its time budget."""

    pass


# USD per token
MODEL_PRICING: dict[str, float] = {
    "gpt-3.5-turbo": 0.000002,
    "gpt-4": 0.00003,
}

SYSTEM_PROMPT = "你是一個課程管理助手，專門幫助用戶分析課程相關的自然語言輸入。"

INTENT_PROMPT = """\
分析以下用戶輸入，識別課程管理相關的意圖和實體：

用戶輸入: "{text}"
用戶ID: {user_id}

意圖類型：record_course, modify_course, cancel_course, query_schedule, \
create_recurring_course, set_reminder, clear_schedule, not_course_related

請以 JSON 格式回應：
{{
  "intent": "意圖類型",
  "confidence": 0.0-1.0,
  "entities": {{
    "course_name": null,
    "student": null,
    "location": null,
    "teacher": null,
    "date_phrase": null,
    "time_phrase": null
  }},
  "reasoning": "分析理由"
}}

只回應 JSON，不要其他文字。"""

ENTITY_PROMPT = """\
從以下課程相關的輸入中提取實體：

用戶輸入: "{text}"

請以 JSON 格式回應，找不到的欄位填 null：
{{
  "course_name": "課程名稱",
  "student": "學生姓名",
  "location": "地點",
  "teacher": "老師",
  "date_phrase": "日期片語，例如 明天、下週三、3月5日",
  "time_phrase": "時間片語，例如 下午3點、晚上十點半"
}}

只回應 JSON，不要其他文字。"""

TIME_PROMPT = """\
從以下輸入中找出日期片語與時間片語，保持原文用字：

用戶輸入: "{text}"

請以 JSON 格式回應：
{{"date_phrase": null, "time_phrase": null}}

只回應 JSON，不要其他文字。"""


def parse_json_object(content: str) -> dict[str, Any]:
    """Extract the first JSON object from a model response.

    Handles responses wrapped in ``` fences or surrounded by prose.

    Raises:
        ValueError: If no JSON object can be decoded
    """
    cleaned = re.sub(r"```(?:json)?", "", content).strip()
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end <= start:
        raise ValueError("no JSON object in response")
    data = json.loads(cleaned[start : end + 1])
    if not isinstance(data, dict):
        raise ValueError("response JSON is not an object")
    return data


@dataclass
class LLMUsage:
    """Token counts reported by the endpoint."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> LLMUsage:
        data = data or {}
        return cls(
            prompt_tokens=int(data.get("prompt_tokens", 0) or 0),
            completion_tokens=int(data.get("completion_tokens", 0) or 0),
            total_tokens=int(data.get("total_tokens", 0) or 0),
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass
class Completion:
    content: str
    usage: LLMUsage
    model: str


@dataclass
class EntityExtractionResponse:
    """Result of a full-entity extraction call."""

    success: bool
    entities: dict[str, Any] = field(default_factory=dict)
    usage: LLMUsage = field(default_factory=LLMUsage)
    error: str | None = None


@dataclass
class IntentAnalysisResponse:
    """Result of an intent analysis call.

    Attributes:
        success: True when the response decoded into an analysis
        analysis: {"intent", "confidence", "entities", "reasoning"}
        usage: Token counts for cost accounting
        model: Model that served the request
        error: Failure description when success is False
        raw_content: Undecodable response text, for diagnostics
    """

    success: bool
    analysis: dict[str, Any] = field(default_factory=dict)
    usage: LLMUsage = field(default_factory=LLMUsage)
    model: str = ""
    error: str | None = None
    raw_content: str | None = None


class LLMService:
    """HTTP client for an OpenAI-compatible chat-completion API.

    Example:
        service = LLMService(settings)
        response = await service.analyze_intent("幫我排數學課", "u1")
        if response.success:
            print(response.analysis["intent"])
        await service.aclose()
    """

    def __init__(
        self,
        settings: "LLMSettings",
        fallback_analyzer: "DetailedFallbackAnalyzer | None" = None,
    ) -> None:
        """Initialize the service.

        Args:
            settings: Endpoint, model and limits
            fallback_analyzer: Local analyzer used by fallback_intent_analysis()
        """
        self.settings = settings
        self._endpoint = settings.endpoint.rstrip("/")
        self._client: httpx.AsyncClient | None = None
        self._fallback_analyzer = fallback_analyzer

    @property
    def model(self) -> str:
        return self.settings.model

    @property
    def is_available(self) -> bool:
        """Hosted endpoints need a key; self-hosted ones do not."""
        if self.settings.api_key:
            return True
        return "api.openai.com" not in self._endpoint

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.settings.timeout)
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP client. Safe to call multiple times."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def complete(
        self,
        prompt: str,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> Completion:
        """Send one non-streaming chat completion.

        Raises:
            LLMTimeoutError: If the endpoint does not answer in time
            ExternalServiceError: On connection, HTTP or payload errors
        """
        if not prompt:
            raise ValueError("prompt is required")

        headers = {"Content-Type": "application/json"}
        if self.settings.api_key:
            headers["Authorization"] = f"Bearer {self.settings.api_key}"

        payload = {
            "model": self.settings.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "stream": False,
            "max_tokens": max_tokens or self.settings.max_tokens,
            "temperature": self.settings.temperature if temperature is None else temperature,
        }

        client = self._get_client()
        try:
            response = await client.post(
                f"{self._endpoint}/v1/chat/completions",
                json=payload,
                headers=headers,
            )
        except httpx.TimeoutException as e:
            raise LLMTimeoutError(f"Timeout calling LLM at {self._endpoint}") from e
        except httpx.HTTPError as e:
            raise ExternalServiceError(f"Cannot reach LLM at {self._endpoint}: {e}") from e

        if response.status_code != 200:
            error_msg = f"LLM API error (status {response.status_code})"
            try:
                data = response.json()
                if "error" in data:
                    detail = data["error"]
                    if isinstance(detail, dict):
                        detail = detail.get("message", detail)
                    error_msg = f"LLM error: {detail}"
            except (json.JSONDecodeError, ValueError, TypeError):
                pass
            raise ExternalServiceError(error_msg)

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"] or ""
        except (json.JSONDecodeError, ValueError, KeyError, IndexError, TypeError) as e:
            raise ExternalServiceError(f"Malformed LLM response: {e}") from e

        return Completion(
            content=content,
            usage=LLMUsage.from_dict(data.get("usage")),
            model=data.get("model", self.settings.model),
        )

    async def analyze_intent(self, text: str, user_id: str) -> IntentAnalysisResponse:
        """Classify intent and extract entities in one call.

        A response that is not valid JSON yields success=False rather than
        raising, so token usage can still be logged.

        Raises:
            ExternalServiceError: If the request itself fails
        """
        completion = await self.complete(
            INTENT_PROMPT.format(text=text, user_id=user_id),
            max_tokens=300,
            temperature=0.3,
        )

        try:
            analysis = parse_json_object(completion.content)
        except ValueError as e:
            logger.warning(f"Failed to parse intent analysis as JSON: {e}")
            return IntentAnalysisResponse(
                success=False,
                usage=completion.usage,
                model=completion.model,
                error="Failed to parse JSON response",
                raw_content=completion.content,
            )

        try:
            confidence = max(0.0, min(1.0, float(analysis.get("confidence", 0.5))))
        except (ValueError, TypeError):
            confidence = 0.5
        analysis["confidence"] = confidence
        if not isinstance(analysis.get("entities"), dict):
            analysis["entities"] = {}

        return IntentAnalysisResponse(
            success=True,
            analysis=analysis,
            usage=completion.usage,
            model=completion.model,
        )

    async def extract_all_entities(self, text: str) -> EntityExtractionResponse:
        """Extract course, student, location, teacher, date and time phrases."""
        try:
            completion = await self.complete(ENTITY_PROMPT.format(text=text), temperature=0.1)
            entities = parse_json_object(completion.content)
        except (ExternalServiceError, ValueError) as e:
            logger.debug(f"Entity extraction via LLM failed: {e}")
            return EntityExtractionResponse(success=False, error=str(e))

        return EntityExtractionResponse(success=True, entities=entities, usage=completion.usage)

    async def extract_time_phrases(self, text: str) -> tuple[str | None, str | None]:
        """Isolate (date_phrase, time_phrase) from free text.

        Raises:
            ExternalServiceError: If the request fails or the answer is not JSON
        """
        completion = await self.complete(TIME_PROMPT.format(text=text), max_tokens=80)
        try:
            data = parse_json_object(completion.content)
        except ValueError as e:
            raise ExternalServiceError(f"Unusable time extraction: {e}") from e

        def _phrase(key: str) -> str | None:
            value = data.get(key)
            return value.strip() or None if isinstance(value, str) else None

        return _phrase("date_phrase"), _phrase("time_phrase")

    def fallback_intent_analysis(self, text: str) -> "FallbackAnalysis":
        """Local keyword analysis used when the endpoint is unavailable."""
        if self._fallback_analyzer is None:
            from .intent.fallback import DetailedFallbackAnalyzer

            self._fallback_analyzer = DetailedFallbackAnalyzer()
        return self._fallback_analyzer.analyze(text)

    def calculate_cost(self, total_tokens: int, model: str | None = None) -> float:
        """Cost of a call in TWD."""
        price = MODEL_PRICING.get(model or self.settings.model, MODEL_PRICING["gpt-3.5-turbo"])
        return total_tokens * price * self.settings.usd_to_twd


__all__ = [
    "Completion",
    "EntityExtractionResponse",
    "ExternalServiceError",
    "IntentAnalysisResponse",
    "LLMService",
    "LLMTimeoutError",
    "LLMUsage",
    "parse_json_object",
]
