"""Main-content extraction from arbitrary article HTML."""

import re

import aiohttp
from bs4 import BeautifulSoup, Tag

from .config import RelayLimits
from .errors import ErrorCode, ExtractionError
from .http_client import HttpClient
from .logging_config import create_execution_logger
from .retry import retry_with_backoff

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "DNT": "1",
    "Upgrade-Insecure-Requests": "1",
    "Cache-Control": "max-age=0",
}

UNWANTED_TAGS = ["script", "style", "nav", "header", "footer", "aside"]
BOILERPLATE_KEYWORDS = re.compile(
    r"sidebar|menu|advertisement|ads|related|comments|social|share", re.IGNORECASE
)
CONTENT_CLASSES = re.compile(
    r"post-content|entry-content|article-content|main-content|content-body",
    re.IGNORECASE,
)
CONTENT_IDS = re.compile(r"content|main|article|post|entry", re.IGNORECASE)
NEWS_CLASSES = re.compile(r"story|news|article", re.IGNORECASE)
BOILERPLATE_LINE = re.compile(
    r"^(Advertisement|Sponsored|Related:|Share this:|Tags:|Categories:"
    r"|Read more|Continue reading|Click here)"
)
BLOCK_TAGS = [
    "p", "div", "br", "li", "ul", "ol", "section", "article", "main",
    "h1", "h2", "h3", "h4", "h5", "h6", "blockquote", "pre", "tr", "table",
]

SUBSTANTIAL_MARKUP_LENGTH = 500
PARAGRAPH_FALLBACK_LENGTH = 200


def _attr_text(tag: Tag, name: str) -> str:
    value = tag.get(name)
    if isinstance(value, list):
        return " ".join(value)
    return value or ""


def _class_matches(pattern: re.Pattern, names=("div",)):
    return lambda tag: tag.name in names and bool(pattern.search(_attr_text(tag, "class")))


def _id_matches(pattern: re.Pattern):
    return lambda tag: tag.name == "div" and bool(pattern.search(_attr_text(tag, "id")))


def _role_main(tag: Tag) -> bool:
    return tag.name in ("div", "section") and _attr_text(tag, "role") == "main"


# Selector passes in priority order; the longest match of a pass wins.
SELECTOR_PASSES = [
    ("article", lambda tag: tag.name == "article"),
    ("main", lambda tag: tag.name == "main"),
    ("content_class", _class_matches(CONTENT_CLASSES)),
    ("content_id", _id_matches(CONTENT_IDS)),
    ("role_main", _role_main),
    ("any_content_class", _class_matches(re.compile("content", re.IGNORECASE))),
]


class ContentExtractor:
    """Best-effort article text extraction with a fallback chain."""

    def __init__(
        self,
        http: HttpClient | None = None,
        limits: RelayLimits | None = None,
        execution_id: str | None = None,
    ):
        self.http = http
        self.limits = limits or RelayLimits()
        self.logger = create_execution_logger("content_extractor", execution_id)

    async def fetch_and_extract(self, url: str) -> str:
        """Download an article page and extract its main text, with retries."""
        if self.http is None:
            raise ExtractionError("No HTTP client configured for article fetch")

        async def attempt() -> str:
            self.logger.info("Extracting content from URL", url=url)
            try:
                response = await self.http.get(url, headers=BROWSER_HEADERS)
            except aiohttp.ClientError as e:
                raise ExtractionError(f"Article fetch failed: {e}") from e
            if not response.ok:
                raise ExtractionError(f"HTTP {response.status}: {response.reason}")
            if not response.text or not response.text.strip():
                raise ExtractionError("Empty response received")
            return self.extract(response.text)

        return await retry_with_backoff(
            attempt,
            self.limits.max_retries,
            self.limits.retry_delay_base,
            logger=self.logger,
            operation_name="Article extraction",
        )

    def extract(self, html: str) -> str:
        """Extract the main readable text of an article page.

        Raises:
            ExtractionError: when fewer than ``min_content_length`` characters survive
        """
        if not html or not html.strip():
            raise ExtractionError("Empty HTML document")

        soup = BeautifulSoup(html, "html.parser")
        self._strip_boilerplate(soup)

        extracted = ""
        strategy = "none"
        for name, matcher in SELECTOR_PASSES:
            matches = soup.find_all(matcher)
            if not matches:
                continue
            extracted = max((str(tag) for tag in matches), key=len)
            strategy = name
            if len(extracted) > SUBSTANTIAL_MARKUP_LENGTH:
                break

        if len(extracted) < PARAGRAPH_FALLBACK_LENGTH:
            paragraphs = soup.find_all("p")
            if paragraphs:
                extracted = "\n".join(str(p) for p in paragraphs)
                strategy = "paragraphs"

        if len(extracted) < PARAGRAPH_FALLBACK_LENGTH:
            news = soup.find(_class_matches(NEWS_CLASSES, names=("div", "section")))
            if news is not None:
                extracted = str(news)
                strategy = "news_structure"

        if len(extracted) < self.limits.min_content_length:
            extracted = str(soup)
            strategy = "document"

        text = clean_text_content(extracted)
        if len(text) < self.limits.min_content_length:
            raise ExtractionError(
                "Insufficient content extracted from HTML",
                ErrorCode.EXTRACTION_FAILED,
            )

        self.logger.debug(
            "Extracted article content", strategy=strategy, content_length=len(text)
        )
        return text[: self.limits.max_content_length]

    @staticmethod
    def _strip_boilerplate(soup: BeautifulSoup) -> None:
        for tag in soup.find_all(UNWANTED_TAGS):
            tag.extract()
        boilerplate = [
            tag
            for tag in soup.find_all(["div", "section"])
            if BOILERPLATE_KEYWORDS.search(_attr_text(tag, "class"))
            or BOILERPLATE_KEYWORDS.search(_attr_text(tag, "id"))
        ]
        for tag in boilerplate:
            tag.extract()


def clean_text_content(html: str) -> str:
    """Turn an HTML fragment into clean text lines without boilerplate."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup.find_all(BLOCK_TAGS):
        tag.insert_after("\n")
    text = soup.get_text().replace("\xa0", " ")

    lines = []
    for line in text.splitlines():
        line = " ".join(line.split())
        if not line or BOILERPLATE_LINE.match(line):
            continue
        lines.append(line)
    return "\n".join(lines)
