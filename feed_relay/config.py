"""Configuration management for the RSS Arabic relay."""

import os
from dataclasses import dataclass

from .errors import ConfigError


@dataclass(frozen=True)
class RelayLimits:
    """Length limits, retry counts and delays shared by all components."""

    telegram_max_length: int = 4096
    safe_message_length: int = 3800
    max_content_length: int = 5000
    min_content_length: int = 100
    max_retries: int = 2
    retry_delay_base: float = 1.0  # seconds, doubled per attempt
    item_ttl: int = 604800  # 7 days
    request_timeout: float = 30.0
    message_delay: float = 1.0
    max_requests_per_minute: int = 20
    default_retry_after: int = 60
    gemini_max_tokens: int = 2048
    gemini_temperature: float = 0.7


@dataclass
class TelegramConfig:
    """Configuration for Telegram Bot API."""

    bot_token: str
    chat_id: str
    parse_mode: str = "HTML"
    disable_web_page_preview: bool = True
    reply_to_message_id: int | None = None
    api_base: str = "https://api.telegram.org"


@dataclass
class GeminiConfig:
    """Configuration for the Gemini generateContent API."""

    api_key: str
    model: str = "gemini-2.5-flash"
    api_base: str = "https://generativelanguage.googleapis.com/v1beta"


@dataclass
class TelegraphConfig:
    """Configuration for the optional Telegraph publisher."""

    access_token: str
    author_name: str = ""
    author_url: str = ""
    endpoint: str = "https://api.telegra.ph/createPage"


class Config:
    """Main configuration manager."""

    REQUIRED = ("RSS_FEED_URL", "TELEGRAM_CHAT_ID", "GEMINI_API_KEY", "DYNAMODB_TABLE")

    def __init__(self):
        """Initialize configuration from environment variables."""
        self.feed_url = os.getenv("RSS_FEED_URL", "")
        self.bot_token = os.getenv("TELEGRAM_BOT_TOKEN", "")
        self.telegram_secret_name = os.getenv(
            "TELEGRAM_SECRET_NAME", "rss-arabic-relay-token"
        )
        self.chat_id = os.getenv("TELEGRAM_CHAT_ID", "")
        self.reply_to_message_id = os.getenv("TELEGRAM_REPLY_TO_MESSAGE_ID", "")
        self.gemini_api_key = os.getenv("GEMINI_API_KEY", "")
        self.gemini_model = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
        self.dynamodb_table = os.getenv("DYNAMODB_TABLE", "rss-arabic-relay-dedup")
        self.aws_region = os.getenv(
            "CURRENT_AWS_REGION", os.getenv("AWS_DEFAULT_REGION", "us-east-1")
        )
        self.telegraph_token = os.getenv("TELEGRAPH_ACCESS_TOKEN", "")
        self.telegraph_author_name = os.getenv("TELEGRAPH_AUTHOR_NAME", "")
        self.telegraph_author_url = os.getenv("TELEGRAPH_AUTHOR_URL", "")
        self.limits = RelayLimits()

    def validate(self) -> None:
        """Raise ConfigError naming every missing required variable."""
        missing = [name for name in self.REQUIRED if not os.getenv(name)]
        if missing:
            raise ConfigError(
                f"Missing required environment variables: {', '.join(missing)}"
            )

    def get_telegram_config(self) -> TelegramConfig:
        """Get Telegram configuration.

        The token may be empty here; the handler then fetches it from Secrets Manager.
        """
        reply_to = None
        if self.reply_to_message_id.strip().lstrip("-").isdigit():
            reply_to = int(self.reply_to_message_id)
        return TelegramConfig(
            bot_token=self.bot_token,
            chat_id=self.chat_id,
            reply_to_message_id=reply_to,
        )

    def get_gemini_config(self) -> GeminiConfig:
        """Get Gemini configuration."""
        return GeminiConfig(api_key=self.gemini_api_key, model=self.gemini_model)

    def get_telegraph_config(self) -> TelegraphConfig | None:
        """Get Telegraph configuration, or None when publishing is disabled."""
        if not self.telegraph_token:
            return None
        return TelegraphConfig(
            access_token=self.telegraph_token,
            author_name=self.telegraph_author_name,
            author_url=self.telegraph_author_url,
        )
