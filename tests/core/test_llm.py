"""Tests for the LLM collaborator.

Tests the LLMService class which wraps an OpenAI-compatible chat-completion API.
All HTTP calls are mocked - no real endpoint required.
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from tutorbot.config import LLMSettings
from tutorbot.core.llm import (
    ExternalServiceError,
    LLMService,
    LLMTimeoutError,
    LLMUsage,
    parse_json_object,
)

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def settings() -> LLMSettings:
    return LLMSettings(endpoint="http://localhost:8000/", model="gpt-3.5-turbo", api_key="sk-test")


@pytest.fixture
def service(settings: LLMSettings) -> LLMService:
    return LLMService(settings)


@pytest.fixture
def mock_client() -> AsyncMock:
    """Create a mock httpx.AsyncClient."""
    client = AsyncMock(spec=httpx.AsyncClient)
    client.aclose = AsyncMock()
    return client


def completion_response(content: str, status_code: int = 200, usage: dict | None = None) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = {
        "model": "gpt-3.5-turbo",
        "choices": [{"message": {"role": "assistant", "content": content}}],
        "usage": usage or {"prompt_tokens": 50, "completion_tokens": 25, "total_tokens": 75},
    }
    return response


# =============================================================================
# Construction
# =============================================================================


class TestLLMServiceInit:
    def test_strips_trailing_slash(self, service: LLMService) -> None:
        assert service._endpoint == "http://localhost:8000"
        assert service._client is None

    def test_model(self, service: LLMService) -> None:
        assert service.model == "gpt-3.5-turbo"

    def test_hosted_endpoint_needs_key(self) -> None:
        assert LLMService(LLMSettings()).is_available is False
        assert LLMService(LLMSettings(api_key="sk")).is_available is True

    def test_self_hosted_endpoint_without_key(self) -> None:
        assert LLMService(LLMSettings(endpoint="http://localhost:11434")).is_available is True

    @pytest.mark.asyncio
    async def test_aclose_idempotent(self, service: LLMService, mock_client: AsyncMock) -> None:
        service._client = mock_client
        await service.aclose()
        await service.aclose()
        mock_client.aclose.assert_awaited_once()
        assert service._client is None


# =============================================================================
# complete()
# =============================================================================


class TestComplete:
    """Tests for LLMService.complete()."""

    @pytest.mark.asyncio
    async def test_sends_chat_request(self, service: LLMService, mock_client: AsyncMock) -> None:
        mock_client.post.return_value = completion_response("hi")
        service._client = mock_client

        completion = await service.complete("hello", max_tokens=50, temperature=0.3)

        assert completion.content == "hi"
        assert completion.usage.total_tokens == 75
        url = mock_client.post.call_args.args[0]
        kwargs = mock_client.post.call_args.kwargs
        assert url == "http://localhost:8000/v1/chat/completions"
        assert kwargs["headers"]["Authorization"] == "Bearer sk-test"
        assert kwargs["json"]["max_tokens"] == 50
        assert kwargs["json"]["temperature"] == 0.3
        assert kwargs["json"]["messages"][-1] == {"role": "user", "content": "hello"}

    @pytest.mark.asyncio
    async def test_no_auth_header_without_key(self, mock_client: AsyncMock) -> None:
        service = LLMService(LLMSettings(endpoint="http://localhost:8000"))
        mock_client.post.return_value = completion_response("hi")
        service._client = mock_client

        await service.complete("hello")

        assert "Authorization" not in mock_client.post.call_args.kwargs["headers"]

    @pytest.mark.asyncio
    async def test_empty_prompt(self, service: LLMService) -> None:
        with pytest.raises(ValueError):
            await service.complete("")

    @pytest.mark.asyncio
    async def test_timeout(self, service: LLMService, mock_client: AsyncMock) -> None:
        mock_client.post.side_effect = httpx.ReadTimeout("slow")
        service._client = mock_client

        with pytest.raises(LLMTimeoutError):
            await service.complete("hello")

    @pytest.mark.asyncio
    async def test_connection_error(self, service: LLMService, mock_client: AsyncMock) -> None:
        mock_client.post.side_effect = httpx.ConnectError("refused")
        service._client = mock_client

        with pytest.raises(ExternalServiceError, match="Cannot reach LLM"):
            await service.complete("hello")

    @pytest.mark.asyncio
    async def test_http_error_with_detail(self, service: LLMService, mock_client: AsyncMock) -> None:
        response = MagicMock()
        response.status_code = 401
        response.json.return_value = {"error": {"message": "invalid api key"}}
        mock_client.post.return_value = response
        service._client = mock_client

        with pytest.raises(ExternalServiceError, match="invalid api key"):
            await service.complete("hello")

    @pytest.mark.asyncio
    async def test_http_error_without_body(self, service: LLMService, mock_client: AsyncMock) -> None:
        response = MagicMock()
        response.status_code = 503
        response.json.side_effect = json.JSONDecodeError("bad", "", 0)
        mock_client.post.return_value = response
        service._client = mock_client

        with pytest.raises(ExternalServiceError, match="status 503"):
            await service.complete("hello")

    @pytest.mark.asyncio
    async def test_malformed_payload(self, service: LLMService, mock_client: AsyncMock) -> None:
        response = MagicMock()
        response.status_code = 200
        response.json.return_value = {"choices": []}
        mock_client.post.return_value = response
        service._client = mock_client

        with pytest.raises(ExternalServiceError, match="Malformed"):
            await service.complete("hello")


# =============================================================================
# Structured calls
# =============================================================================


class TestAnalyzeIntent:
    @pytest.mark.asyncio
    async def test_parses_fenced_json(self, service: LLMService, mock_client: AsyncMock) -> None:
        content = '```json\n{"intent": "cancel_course", "confidence": 1.4, "entities": null}\n```'
        mock_client.post.return_value = completion_response(content)
        service._client = mock_client

        response = await service.analyze_intent("取消數學課", "u1")

        assert response.success is True
        assert response.analysis["intent"] == "cancel_course"
        assert response.analysis["confidence"] == 1.0
        assert response.analysis["entities"] == {}
        assert response.usage.total_tokens == 75
        assert response.model == "gpt-3.5-turbo"

    @pytest.mark.asyncio
    async def test_non_json_keeps_usage(self, service: LLMService, mock_client: AsyncMock) -> None:
        mock_client.post.return_value = completion_response("I think it is a cancel.")
        service._client = mock_client

        response = await service.analyze_intent("取消數學課", "u1")

        assert response.success is False
        assert response.error == "Failed to parse JSON response"
        assert response.raw_content == "I think it is a cancel."
        assert response.usage.total_tokens == 75

    @pytest.mark.asyncio
    async def test_request_failure_propagates(self, service: LLMService, mock_client: AsyncMock) -> None:
        mock_client.post.side_effect = httpx.ConnectError("refused")
        service._client = mock_client

        with pytest.raises(ExternalServiceError):
            await service.analyze_intent("取消數學課", "u1")


class TestEntityCalls:
    @pytest.mark.asyncio
    async def test_extract_all_entities(self, service: LLMService, mock_client: AsyncMock) -> None:
        mock_client.post.return_value = completion_response(
            '{"course_name": "數學", "student": null, "time_phrase": "下午3點"}'
        )
        service._client = mock_client

        response = await service.extract_all_entities("明天下午3點數學")

        assert response.success is True
        assert response.entities["course_name"] == "數學"

    @pytest.mark.asyncio
    async def test_extract_all_entities_never_raises(self, service: LLMService, mock_client: AsyncMock) -> None:
        mock_client.post.side_effect = httpx.ConnectError("refused")
        service._client = mock_client

        response = await service.extract_all_entities("明天下午3點數學")

        assert response.success is False
        assert response.error

    @pytest.mark.asyncio
    async def test_extract_time_phrases(self, service: LLMService, mock_client: AsyncMock) -> None:
        mock_client.post.return_value = completion_response('{"date_phrase": " 明天 ", "time_phrase": ""}')
        service._client = mock_client

        assert await service.extract_time_phrases("tomorrow") == ("明天", None)

    @pytest.mark.asyncio
    async def test_extract_time_phrases_bad_json(self, service: LLMService, mock_client: AsyncMock) -> None:
        mock_client.post.return_value = completion_response("no idea")
        service._client = mock_client

        with pytest.raises(ExternalServiceError):
            await service.extract_time_phrases("tomorrow")


# =============================================================================
# Helpers
# =============================================================================


class TestHelpers:
    def test_parse_json_object_with_prose(self) -> None:
        assert parse_json_object('Sure! {"a": 1} hope that helps') == {"a": 1}

    @pytest.mark.parametrize("content", ["", "nothing here", "[1, 2]", "{not json}"])
    def test_parse_json_object_rejects(self, content: str) -> None:
        with pytest.raises(ValueError):
            parse_json_object(content)

    def test_usage_from_partial_dict(self) -> None:
        usage = LLMUsage.from_dict({"total_tokens": 12, "prompt_tokens": None})
        assert usage.to_dict() == {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 12}

    def test_calculate_cost(self, service: LLMService) -> None:
        assert service.calculate_cost(1000) == pytest.approx(1000 * 0.000002 * 31.5)
        assert service.calculate_cost(1000, "gpt-4") == pytest.approx(1000 * 0.00003 * 31.5)
        assert service.calculate_cost(1000, "mystery-model") == service.calculate_cost(1000)

    def test_fallback_intent_analysis_is_local(self, service: LLMService) -> None:
        result = service.fallback_intent_analysis("今天天氣如何")
        assert result.intent == "not_course_related"
