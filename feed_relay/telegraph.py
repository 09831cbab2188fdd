"""Optional Telegraph page publishing for generated articles."""

from typing import Any

import aiohttp
from bs4 import BeautifulSoup, NavigableString, Tag

from .config import TelegraphConfig
from .errors import RelayError
from .formatter import strip_code_fence
from .http_client import HttpClient
from .logging_config import create_execution_logger
from .models import PublishResult

TITLE_MAX_LENGTH = 256

# Source tag -> Telegraph node tag. Anything else is unwrapped.
NODE_TAGS = {
    "p": "p",
    "h1": "h3",
    "h2": "h3",
    "h3": "h4",
    "h4": "h4",
    "h5": "h4",
    "h6": "h4",
    "blockquote": "blockquote",
    "pre": "pre",
    "b": "b",
    "strong": "strong",
    "i": "i",
    "em": "em",
    "u": "u",
    "s": "s",
    "strike": "s",
    "del": "s",
    "code": "code",
    "a": "a",
    "br": "br",
}

Node = str | dict[str, Any]


def _convert(node) -> list[Node]:
    if isinstance(node, NavigableString):
        if type(node) is not NavigableString:
            return []
        return [str(node)] if str(node) else []

    if not isinstance(node, Tag):
        return []

    children: list[Node] = []
    for child in node.children:
        children.extend(_convert(child))

    tag = NODE_TAGS.get(node.name)
    if tag is None:
        return children

    element: dict[str, Any] = {"tag": tag}
    if tag == "a":
        href = node.get("href")
        if not href:
            return children
        element["attrs"] = {"href": href}
    if tag != "br" and children:
        element["children"] = children
    elif tag != "br":
        return []
    return [element]


def html_to_nodes(html: str) -> list[Node]:
    """Convert whitelisted HTML into Telegraph's node tree.

    Whitespace-only strings between top-level blocks are dropped.
    """
    soup = BeautifulSoup(html, "html.parser")
    nodes: list[Node] = []
    for child in soup.children:
        for node in _convert(child):
            if isinstance(node, str) and not node.strip():
                continue
            nodes.append(node)
    return nodes


def split_title(html: str, fallback: str) -> tuple[str, str]:
    """Pull the first <h1> out as the page title.

    Returns the title and the remaining markup.
    """
    soup = BeautifulSoup(strip_code_fence(html), "html.parser")
    heading = soup.find("h1")
    if heading is None:
        return fallback[:TITLE_MAX_LENGTH], str(soup)
    title = " ".join(heading.get_text().split()) or fallback
    heading.extract()
    return title[:TITLE_MAX_LENGTH], str(soup)


class TelegraphPublisher:
    """Best-effort publisher; failures are reported in the result, not raised."""

    def __init__(
        self,
        config: TelegraphConfig,
        http: HttpClient,
        execution_id: str | None = None,
    ):
        self.config = config
        self.http = http
        self.logger = create_execution_logger("telegraph_publisher", execution_id)

    async def publish(self, html: str, fallback_title: str) -> PublishResult:
        title, body = split_title(html, fallback_title)
        payload = {
            "access_token": self.config.access_token,
            "title": title,
            "content": html_to_nodes(body),
            "author_name": self.config.author_name,
            "author_url": self.config.author_url,
            "return_content": False,
        }
        headers = {"Authorization": f"Bearer {self.config.access_token}"}

        try:
            response = await self.http.post_json(
                self.config.endpoint, payload, headers=headers
            )
            data = response.json() if response.text else {}
        except (aiohttp.ClientError, RelayError, ValueError) as e:
            self.logger.warning(f"Site posting failed: {e}", error=str(e))
            return PublishResult(success=False, error=str(e))

        if not response.ok or not isinstance(data, dict) or not data.get("ok"):
            error = (
                data.get("error") if isinstance(data, dict) else None
            ) or f"API error: {response.status}"
            self.logger.warning(
                f"Site posting failed: {error}", http_code=response.status
            )
            return PublishResult(success=False, error=error)

        url = (data.get("result") or {}).get("url")
        self.logger.info("Published Telegraph page", page_url=url, title=title)
        return PublishResult(success=True, url=url)
