"""Unit tests for the Gemini rewrite engine."""

import json
from unittest.mock import AsyncMock, Mock, patch

import aiohttp
import pytest

from feed_relay.config import GeminiConfig
from feed_relay.errors import ErrorCode, ExtractionError, GenerationError
from feed_relay.http_client import HttpResponse
from feed_relay.models import FeedItem, RewriteStrategy
from feed_relay.prompts import (
    EXTRACTION_SENTINEL,
    URL_CONTEXT_SENTINEL,
    build_extraction_prompt,
    build_url_context_prompt,
)
from feed_relay.rewrite import RewriteEngine, extract_candidate_text

ARTICLE = "<h1>عنوان</h1><p>نص المقال</p>"
ITEM = FeedItem(title="Story", link="https://example.com/story", guid="g1")


def gemini_response(text, status=200):
    body = {"candidates": [{"content": {"parts": [{"text": text}]}}]}
    return HttpResponse(status=status, text=json.dumps(body))


@pytest.fixture(autouse=True)
def no_backoff_sleep():
    with patch("feed_relay.retry.asyncio.sleep", new=AsyncMock()) as sleep:
        yield sleep


class TestExtractCandidateTextUnit:
    """Unit tests for response validation."""

    def test_returns_first_part(self):
        body = {"candidates": [{"content": {"parts": [{"text": "hi"}, {"text": "x"}]}}]}
        assert extract_candidate_text(body) == "hi"

    @pytest.mark.parametrize(
        "body, code",
        [
            ([], ErrorCode.INVALID_RESPONSE),
            ({}, ErrorCode.NO_CANDIDATES),
            ({"candidates": []}, ErrorCode.NO_CANDIDATES),
            ({"candidates": [{"content": {}}]}, ErrorCode.NO_CONTENT),
            ({"candidates": [{"content": {"parts": [{}]}}]}, ErrorCode.NO_CONTENT),
        ],
    )
    def test_malformed_bodies(self, body, code):
        with pytest.raises(GenerationError) as exc_info:
            extract_candidate_text(body)
        assert exc_info.value.code is code

    def test_sentinels(self):
        for sentinel, code in (
            (URL_CONTEXT_SENTINEL, ErrorCode.URL_CONTEXT_FAIL),
            (EXTRACTION_SENTINEL, ErrorCode.HTML_CONTENT_FAIL),
        ):
            body = {"candidates": [{"content": {"parts": [{"text": sentinel.upper()}]}}]}
            with pytest.raises(GenerationError) as exc_info:
                extract_candidate_text(body)
            assert exc_info.value.code is code


class TestRewriteEngineUnit:
    """Unit tests for the two-strategy rewrite."""

    def setup_method(self):
        self.http = Mock()
        self.extractor = Mock()
        self.extractor.fetch_and_extract = AsyncMock(return_value="Extracted article text")
        self.engine = RewriteEngine(
            GeminiConfig(api_key="test-key"), self.http, self.extractor
        )

    @pytest.mark.asyncio
    async def test_url_context_success(self):
        self.http.post_json = AsyncMock(return_value=gemini_response(ARTICLE))

        result = await self.engine.rewrite(ITEM)

        assert result.text == ARTICLE
        assert result.strategy is RewriteStrategy.URL_CONTEXT
        self.extractor.fetch_and_extract.assert_not_awaited()

        url, payload = self.http.post_json.call_args.args
        assert url.endswith("/models/gemini-2.5-flash:generateContent")
        assert self.http.post_json.call_args.kwargs["headers"] == {
            "x-goog-api-key": "test-key"
        }
        assert payload["tools"] == [{"urlContext": {}}]
        assert ITEM.link in payload["contents"][0]["parts"][0]["text"]

    @pytest.mark.asyncio
    async def test_sentinel_falls_back_to_extraction(self):
        self.http.post_json = AsyncMock(
            side_effect=[
                gemini_response(URL_CONTEXT_SENTINEL),
                gemini_response(URL_CONTEXT_SENTINEL),
                gemini_response(ARTICLE),
            ]
        )
        on_fallback = Mock()

        result = await self.engine.rewrite(ITEM, on_fallback=on_fallback)

        assert result.strategy is RewriteStrategy.EXTRACTION
        assert result.text == ARTICLE
        assert URL_CONTEXT_SENTINEL not in result.text
        on_fallback.assert_called_once()
        self.extractor.fetch_and_extract.assert_awaited_once_with(ITEM.link)

        last_payload = self.http.post_json.call_args.args[1]
        assert "tools" not in last_payload
        assert "Extracted article text" in last_payload["contents"][0]["parts"][0]["text"]

    @pytest.mark.asyncio
    async def test_both_strategies_fail(self):
        self.http.post_json = AsyncMock(
            return_value=HttpResponse(status=500, text="internal")
        )

        with pytest.raises(GenerationError) as exc_info:
            await self.engine.rewrite(ITEM)

        assert exc_info.value.code is ErrorCode.API_ERROR
        # two attempts per strategy
        assert self.http.post_json.await_count == 4

    @pytest.mark.asyncio
    async def test_extraction_failure_keeps_its_code(self):
        self.http.post_json = AsyncMock(side_effect=aiohttp.ClientConnectionError("x"))
        self.extractor.fetch_and_extract = AsyncMock(
            side_effect=ExtractionError("too short")
        )

        with pytest.raises(GenerationError) as exc_info:
            await self.engine.rewrite(ITEM)

        assert exc_info.value.code is ErrorCode.EXTRACTION_FAILED

    @pytest.mark.asyncio
    async def test_extraction_sentinel_reports_html_content_fail(self):
        self.http.post_json = AsyncMock(
            side_effect=[
                HttpResponse(status=503, text="busy"),
                HttpResponse(status=503, text="busy"),
                gemini_response(EXTRACTION_SENTINEL),
                gemini_response(EXTRACTION_SENTINEL),
            ]
        )

        with pytest.raises(GenerationError) as exc_info:
            await self.engine.rewrite(ITEM)

        assert exc_info.value.code is ErrorCode.HTML_CONTENT_FAIL

    @pytest.mark.asyncio
    async def test_retry_backoff(self, no_backoff_sleep):
        self.http.post_json = AsyncMock(
            side_effect=[HttpResponse(status=502, text="bad"), gemini_response(ARTICLE)]
        )

        result = await self.engine.rewrite(ITEM)

        assert result.strategy is RewriteStrategy.URL_CONTEXT
        no_backoff_sleep.assert_awaited_once_with(1.0)

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        self.http.post_json = AsyncMock(return_value=HttpResponse(status=200, text="<html>"))

        with pytest.raises(GenerationError) as exc_info:
            await self.engine.generate("prompt")

        assert exc_info.value.code is ErrorCode.INVALID_RESPONSE

    def test_payload_generation_config(self):
        payload = self.engine.build_payload("p", use_url_context=False)

        assert payload["generationConfig"] == {
            "temperature": 0.7,
            "maxOutputTokens": 2048,
            "thinkingConfig": {"thinkingBudget": 0},
        }
        assert payload["contents"] == [{"role": "user", "parts": [{"text": "p"}]}]


class TestPromptsUnit:
    """Unit tests for prompt construction."""

    def test_url_context_prompt(self):
        prompt = build_url_context_prompt("https://example.com/a", 3000)

        assert prompt.endswith("URL: https://example.com/a")
        assert URL_CONTEXT_SENTINEL in prompt
        assert "3000" in prompt

    def test_extraction_prompt(self):
        prompt = build_extraction_prompt("https://example.com/a", "Body text")

        assert prompt.endswith("Article content:\nBody text")
        assert EXTRACTION_SENTINEL in prompt
        assert URL_CONTEXT_SENTINEL not in prompt
