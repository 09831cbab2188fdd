"""Arabic rewrite of feed items through the Gemini generateContent API."""

import time
from collections.abc import Callable
from typing import Any

import aiohttp

from .config import GeminiConfig, RelayLimits
from .errors import ErrorCode, GenerationError, RelayError
from .extractor import ContentExtractor
from .http_client import HttpClient
from .logging_config import create_execution_logger
from .models import FeedItem, RewriteResult, RewriteStrategy
from .prompts import (
    EXTRACTION_SENTINEL,
    URL_CONTEXT_SENTINEL,
    build_extraction_prompt,
    build_url_context_prompt,
)
from .retry import retry_with_backoff

# Keeps generated articles under Telegram's hard limit with room for markup
MAX_ARTICLE_CHARS = 3000


def extract_candidate_text(response_body: Any) -> str:
    """Return the first text part of the top candidate.

    Raises:
        GenerationError: NO_CANDIDATES, NO_CONTENT, INVALID_RESPONSE,
            URL_CONTEXT_FAIL or HTML_CONTENT_FAIL
    """
    if not isinstance(response_body, dict):
        raise GenerationError(
            "Gemini response is not a JSON object", ErrorCode.INVALID_RESPONSE
        )

    candidates = response_body.get("candidates") or []
    if not candidates:
        raise GenerationError("No candidates in Gemini response", ErrorCode.NO_CANDIDATES)

    content = candidates[0].get("content") or {}
    parts = content.get("parts") or []
    if not parts:
        raise GenerationError("No content in Gemini response", ErrorCode.NO_CONTENT)

    text = parts[0].get("text")
    if not isinstance(text, str) or not text.strip():
        raise GenerationError("No text in Gemini response", ErrorCode.NO_CONTENT)

    lowered = text.lower()
    if URL_CONTEXT_SENTINEL in lowered:
        raise GenerationError(
            "Failed to get article using url_context", ErrorCode.URL_CONTEXT_FAIL
        )
    if EXTRACTION_SENTINEL in lowered:
        raise GenerationError(
            "Failed to get article using html content", ErrorCode.HTML_CONTENT_FAIL
        )
    return text


class RewriteEngine:
    """Two-strategy rewrite: URL context first, extracted text as fallback."""

    def __init__(
        self,
        config: GeminiConfig,
        http: HttpClient,
        extractor: ContentExtractor,
        limits: RelayLimits | None = None,
        execution_id: str | None = None,
    ):
        self.config = config
        self.http = http
        self.extractor = extractor
        self.limits = limits or RelayLimits()
        self.logger = create_execution_logger("rewrite_engine", execution_id)

    @property
    def endpoint(self) -> str:
        """generateContent URL for the configured model."""
        return f"{self.config.api_base}/models/{self.config.model}:generateContent"

    async def rewrite(
        self,
        item: FeedItem,
        on_fallback: Callable[[], None] | None = None,
    ) -> RewriteResult:
        """Rewrite an item into an Arabic article.

        Args:
            item: validated feed item (title and link present)
            on_fallback: called once when switching to the extraction strategy

        Raises:
            RelayError: when both strategies fail; carries the last error's code
        """
        self.logger.info("Starting rewrite", item_title=item.title, url=item.link)

        try:
            text = await self.generate(
                build_url_context_prompt(item.link, MAX_ARTICLE_CHARS),
                use_url_context=True,
            )
            self.logger.info(
                "Rewrite succeeded with URL context",
                item_title=item.title,
                strategy=RewriteStrategy.URL_CONTEXT.value,
            )
            return RewriteResult(text=text, strategy=RewriteStrategy.URL_CONTEXT)
        except Exception as e:
            self.logger.warning(
                f"URL context rewrite failed, trying manual extraction: {e}",
                item_title=item.title,
                error=str(e),
                code=getattr(getattr(e, "code", None), "value", None),
            )

        if on_fallback:
            on_fallback()

        try:
            article_content = await self.extractor.fetch_and_extract(item.link)
            text = await self.generate(
                build_extraction_prompt(item.link, article_content, MAX_ARTICLE_CHARS),
                use_url_context=False,
            )
        except GenerationError:
            raise
        except RelayError as e:
            raise GenerationError(f"Extraction fallback failed: {e}", e.code) from e
        except Exception as e:
            raise GenerationError(
                f"Extraction fallback failed: {e}", ErrorCode.API_ERROR
            ) from e

        self.logger.info(
            "Rewrite succeeded with manual extraction",
            item_title=item.title,
            strategy=RewriteStrategy.EXTRACTION.value,
        )
        return RewriteResult(text=text, strategy=RewriteStrategy.EXTRACTION)

    async def generate(self, prompt: str, use_url_context: bool = False) -> str:
        """Call the backend with exponential-backoff retries."""
        return await retry_with_backoff(
            lambda: self._generate_once(prompt, use_url_context),
            self.limits.max_retries,
            self.limits.retry_delay_base,
            logger=self.logger,
            operation_name="Gemini request",
        )

    def build_payload(self, prompt: str, use_url_context: bool) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.limits.gemini_temperature,
                "maxOutputTokens": self.limits.gemini_max_tokens,
                "thinkingConfig": {"thinkingBudget": 0},
            },
        }
        if use_url_context:
            payload["tools"] = [{"urlContext": {}}]
        return payload

    async def _generate_once(self, prompt: str, use_url_context: bool) -> str:
        payload = self.build_payload(prompt, use_url_context)
        start_time = time.time()
        try:
            response = await self.http.post_json(
                self.endpoint,
                payload,
                headers={"x-goog-api-key": self.config.api_key},
            )
        except aiohttp.ClientError as e:
            raise GenerationError(f"Gemini request failed: {e}", ErrorCode.API_ERROR) from e

        response_time_ms = int((time.time() - start_time) * 1000)
        if not response.ok:
            raise GenerationError(
                f"API error: {response.status} - {response.text[:500]}",
                ErrorCode.API_ERROR,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise GenerationError(
                f"Invalid JSON from Gemini: {e}", ErrorCode.INVALID_RESPONSE
            ) from e

        text = extract_candidate_text(body)
        self.logger.info(
            "Gemini response received",
            model=self.config.model,
            url_context=use_url_context,
            response_length=len(text),
            response_time_ms=response_time_ms,
        )
        return text
