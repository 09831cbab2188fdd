"""RSS/Atom feed parsing and fetching for the RSS Arabic relay."""

import io
from datetime import UTC, datetime
from urllib.parse import urlparse

import aiohttp
import feedparser
from bs4 import BeautifulSoup
from dateutil import parser as date_parser

from .config import RelayLimits
from .errors import ErrorCode, FeedError, RelayError, ValidationError
from .http_client import HttpClient
from .logging_config import create_execution_logger
from .models import FeedItem

FEED_ACCEPT_HEADERS = {
    "Accept": "application/rss+xml, application/atom+xml, application/xml, text/xml",
    "Cache-Control": "no-cache",
}

_EPOCH = datetime.fromtimestamp(0, UTC)


def clean_text(value: str | None) -> str | None:
    """Strip markup, decode entities and normalize whitespace.

    Returns None for missing or blank values.
    """
    if value is None:
        return None
    text = str(value)
    if "<" in text or "&" in text:
        text = BeautifulSoup(text, "html.parser").get_text(separator=" ")
    text = text.replace("\xa0", " ")
    text = " ".join(text.split())
    return text or None


def parse_date(value: str | None) -> datetime | None:
    """Parse an RSS/Atom date string into an aware datetime."""
    if not value:
        return None
    try:
        published = date_parser.parse(value)
    except (ValueError, TypeError, OverflowError):
        return None
    if published.tzinfo is None:
        published = published.replace(tzinfo=UTC)
    return published


def validate_item(item: FeedItem) -> None:
    """Ensure an item has a title and an absolute http(s) link.

    Raises:
        ValidationError: with MISSING_TITLE, MISSING_LINK or INVALID_URL
    """
    if not item.title or not item.title.strip():
        raise ValidationError("RSS item missing title", ErrorCode.MISSING_TITLE)
    if not item.link or not item.link.strip():
        raise ValidationError("RSS item missing link", ErrorCode.MISSING_LINK)
    parsed = urlparse(item.link.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError(
            f"RSS item has invalid URL format: {item.link}", ErrorCode.INVALID_URL
        )


class FeedParser:
    """Turns raw RSS 2.0 or Atom text into normalized FeedItems."""

    def __init__(self, execution_id: str | None = None):
        self.logger = create_execution_logger("feed_parser", execution_id)

    def parse(self, raw_text: str) -> list[FeedItem]:
        """Parse feed text into items ordered newest first.

        Items without a parsable date sort last; items without a title are dropped.

        Raises:
            FeedError: EMPTY_FEED for blank input, PARSE_ERROR when parsing blows up
        """
        if not raw_text or not raw_text.strip():
            raise FeedError("Empty RSS feed received", ErrorCode.EMPTY_FEED)

        try:
            feed = feedparser.parse(io.BytesIO(raw_text.encode("utf-8")))
        except Exception as e:
            raise FeedError(f"Failed to parse RSS: {e}", ErrorCode.PARSE_ERROR) from e

        if feed.bozo and not feed.entries:
            self.logger.warning(
                f"Feed parsing warning: {feed.get('bozo_exception')}",
                bozo_exception=str(feed.get("bozo_exception")),
            )

        items = []
        for entry in feed.entries:
            item = self.normalize_item(entry)
            if item.title:
                items.append(item)

        items.sort(
            key=lambda item: item.published or _EPOCH,
            reverse=True,
        )

        self.logger.info(
            "Parsed feed",
            feed_version=feed.get("version", ""),
            items_count=len(items),
            total_entries=len(feed.entries),
        )
        return items

    def normalize_item(self, entry) -> FeedItem:
        """Normalize one feedparser entry; a failing field becomes None."""
        title = self._field(entry, "title", lambda e: clean_text(e.get("title")))
        link = self._field(entry, "link", self._extract_link)
        description = self._field(entry, "description", self._extract_description)
        published_at = self._field(
            entry,
            "published",
            lambda e: clean_text(e.get("published") or e.get("updated")),
        )
        guid = self._field(entry, "guid", lambda e: clean_text(e.get("id")))
        author = self._field(entry, "author", lambda e: clean_text(e.get("author")))

        return FeedItem(
            title=title,
            link=link,
            description=description,
            published_at=published_at,
            guid=guid,
            author=author,
            published=parse_date(published_at),
        )

    def _field(self, entry, name: str, extractor):
        try:
            return extractor(entry)
        except Exception as e:
            self.logger.warning(f"Error extracting {name}: {e}", field=name, error=str(e))
            return None

    @staticmethod
    def _extract_link(entry) -> str | None:
        link = clean_text(entry.get("link"))
        if link:
            return link
        # Atom entries can carry the URL only as an href attribute
        for candidate in entry.get("links", []):
            href = clean_text(candidate.get("href"))
            if href:
                return href
        return None

    @staticmethod
    def _extract_description(entry) -> str | None:
        for key in ("summary", "description"):
            text = clean_text(entry.get(key))
            if text:
                return text
        for content in entry.get("content", []):
            text = clean_text(content.get("value"))
            if text:
                return text
        return None


class FeedProcessor:
    """Fetches the configured feed and returns its newest item."""

    def __init__(
        self,
        http: HttpClient,
        limits: RelayLimits | None = None,
        execution_id: str | None = None,
    ):
        self.http = http
        self.limits = limits or RelayLimits()
        self.parser = FeedParser(execution_id)
        self.logger = create_execution_logger("feed_processor", execution_id)

    async def fetch_feed_text(self, feed_url: str) -> str:
        """Download the raw feed document.

        Raises:
            FeedError: HTTP_ERROR on non-2xx, FETCH_ERROR on transport failure,
                EMPTY_FEED on an empty body
        """
        self.logger.info("Downloading feed content", feed_url=feed_url)
        try:
            response = await self.http.get(feed_url, headers=FEED_ACCEPT_HEADERS)
        except (aiohttp.ClientError, RelayError) as e:
            self.logger.error(
                f"Failed to download feed {feed_url}: {e}",
                feed_url=feed_url,
                error=str(e),
            )
            raise FeedError(
                f"Failed to fetch RSS: {e}", ErrorCode.FETCH_ERROR
            ) from e

        if not response.ok:
            raise FeedError(
                f"HTTP {response.status}: {response.reason}", ErrorCode.HTTP_ERROR
            )
        if not response.text or not response.text.strip():
            raise FeedError("Empty RSS feed received", ErrorCode.EMPTY_FEED)

        self.logger.info(
            "Feed downloaded successfully",
            feed_url=feed_url,
            status_code=response.status,
            content_length=len(response.text),
        )
        return response.text

    async def fetch_latest_item(self, feed_url: str) -> FeedItem | None:
        """Return the newest item of the feed, or None when it has no items."""
        items = self.parser.parse(await self.fetch_feed_text(feed_url))
        if not items:
            self.logger.info("No items found in RSS feed", feed_url=feed_url)
            return None
        self.logger.info(
            f"Found {len(items)} items in RSS feed",
            feed_url=feed_url,
            items_count=len(items),
        )
        return items[0]
