"""Telegram delivery for the RSS Arabic relay."""

import asyncio
import time
from typing import Any

import aiohttp

from .config import RelayLimits, TelegramConfig
from .errors import RelayError
from .formatter import strip_markup
from .http_client import HttpClient, HttpResponse
from .logging_config import create_execution_logger
from .models import DeliveryReport, DeliveryStatus

FORMATTING_ERROR_MARKERS = (
    "can't parse entities",
    "unsupported start tag",
    "can't find end tag",
    "unexpected end tag",
    "unclosed start tag",
)


def _response_body(response: HttpResponse) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {"ok": False, "description": response.text}
    return body if isinstance(body, dict) else {"ok": False, "description": str(body)}


class TelegramPublisher:
    """Sends message chunks to a Telegram chat, in order, one at a time."""

    def __init__(
        self,
        config: TelegramConfig,
        http: HttpClient,
        limits: RelayLimits | None = None,
        execution_id: str | None = None,
    ):
        """Initialize Telegram publisher with configuration."""
        self.config = config
        self.http = http
        self.limits = limits or RelayLimits()
        self.logger = create_execution_logger("telegram_publisher", execution_id)
        self.base_url = f"{config.api_base}/bot{config.bot_token}"

        self.logger.info(
            "TelegramPublisher initialized",
            chat_id=config.chat_id,
            parse_mode=config.parse_mode,
        )

    @property
    def delay_between_messages(self) -> float:
        """Pause between chunks that keeps under the per-minute request cap."""
        return max(self.limits.message_delay, 60 / self.limits.max_requests_per_minute)

    async def deliver(
        self, chunks: list[str], chat_id: str | None = None
    ) -> list[DeliveryReport]:
        """Send every chunk and report the outcome of each, in order.

        A 429 sleeps for the server's ``retry_after`` and retries that chunk once.
        A formatting rejection switches the rest of the batch, starting with the
        rejected chunk, to plain text; this happens at most once per call.
        Per-chunk failures are reported, never raised.
        """
        chat_id = chat_id or self.config.chat_id
        reports: list[DeliveryReport] = []
        plain_text = False
        rate_limit_retried: set[int] = set()
        index = 0

        while index < len(chunks):
            text = strip_markup(chunks[index]) if plain_text else chunks[index]
            report, response = await self._send_chunk(index, text, chat_id, plain_text)

            if report.status is DeliveryStatus.FAILED and response is not None:
                body = report.response_or_error
                if response.status == 429:
                    if index not in rate_limit_retried:
                        retry_after = self._retry_after(body)
                        self.logger.warning(
                            f"Rate limited. Waiting {retry_after} seconds...",
                            message_index=index,
                            retry_after=retry_after,
                        )
                        await asyncio.sleep(retry_after)
                        rate_limit_retried.add(index)
                        continue
                elif not plain_text and self.is_formatting_error(response, body):
                    self.logger.warning(
                        "Telegram rejected HTML formatting, resending as plain text",
                        message_index=index,
                        remaining_chunks=len(chunks) - index,
                    )
                    plain_text = True
                    continue

            reports.append(report)
            index += 1
            if index < len(chunks):
                await asyncio.sleep(self.delay_between_messages)

        return reports

    async def _send_chunk(
        self, index: int, text: str, chat_id: str, plain_text: bool
    ) -> tuple[DeliveryReport, HttpResponse | None]:
        payload: dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
            "disable_web_page_preview": self.config.disable_web_page_preview,
        }
        if not plain_text:
            payload["parse_mode"] = self.config.parse_mode
        if self.config.reply_to_message_id is not None:
            payload["reply_to_message_id"] = self.config.reply_to_message_id

        start_time = time.monotonic()
        try:
            response = await self.http.post_json(f"{self.base_url}/sendMessage", payload)
        except (aiohttp.ClientError, RelayError) as e:
            duration_ms = int((time.monotonic() - start_time) * 1000)
            self.logger.error(
                f"Telegram message {index} error: {e}", message_index=index, error=str(e)
            )
            self.logger.log_chunk_delivery(index, "error", duration_ms, plain_text)
            report = DeliveryReport(
                index=index,
                status=DeliveryStatus.ERROR,
                response_or_error=str(e),
                duration_ms=duration_ms,
                plain_text=plain_text,
            )
            return report, None

        duration_ms = int((time.monotonic() - start_time) * 1000)
        body = _response_body(response)
        success = response.ok and body.get("ok", True) is not False
        status = DeliveryStatus.SUCCESS if success else DeliveryStatus.FAILED

        if not success:
            self.logger.error(
                f"Telegram message {index} failed: {body.get('description')}",
                message_index=index,
                http_code=response.status,
            )
        self.logger.log_chunk_delivery(index, status.value, duration_ms, plain_text)

        report = DeliveryReport(
            index=index,
            status=status,
            response_or_error=body,
            duration_ms=duration_ms,
            plain_text=plain_text,
        )
        return report, response

    def _retry_after(self, body: dict[str, Any]) -> int:
        parameters = body.get("parameters") or {}
        retry_after = parameters.get("retry_after")
        if isinstance(retry_after, (int, float)) and retry_after > 0:
            return int(retry_after)
        return self.limits.default_retry_after

    @staticmethod
    def is_formatting_error(response: HttpResponse, body: dict[str, Any]) -> bool:
        """Whether Telegram rejected the message because of its HTML entities."""
        if response.status != 400:
            return False
        description = str(body.get("description", "")).lower()
        return any(marker in description for marker in FORMATTING_ERROR_MARKERS)
