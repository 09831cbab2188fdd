"""Cleanup and chunking of generated articles for Telegram."""

import html
import re

from bs4 import BeautifulSoup, NavigableString, Tag

from .config import RelayLimits
from .logging_config import create_execution_logger

ELLIPSIS = "..."

SENTENCE_SPLIT = re.compile(r"[.!?]+\s+")
CODE_FENCE_START = re.compile(r"^```[\w-]*[ \t]*\n?")
CODE_FENCE_END = re.compile(r"\n?```$")
TAG_PATTERN = re.compile(r"<(/?)([a-zA-Z][a-zA-Z0-9]*)(?:\s[^>]*)?>")
PARTIAL_ENTITY = re.compile(r"&#?[a-zA-Z0-9]*")

# Tags Telegram's HTML parse mode accepts, mapped from what the model may emit
INLINE_TAGS = {
    "b": "b",
    "strong": "b",
    "i": "i",
    "em": "i",
    "u": "u",
    "ins": "u",
    "s": "s",
    "strike": "s",
    "del": "s",
    "code": "code",
    "pre": "pre",
    "blockquote": "blockquote",
}
HEADING_TAGS = {"h1", "h2", "h3", "h4", "h5", "h6"}
PARAGRAPH_TAGS = {"p", "div", "section", "article"}


def strip_code_fence(text: str) -> str:
    """Remove a ```html ... ``` wrapper around the whole output."""
    text = text.strip()
    if text.startswith("```"):
        text = CODE_FENCE_START.sub("", text, count=1)
    if text.endswith("```"):
        text = CODE_FENCE_END.sub("", text, count=1)
    return text.strip()


def _render(node) -> str:
    if isinstance(node, NavigableString):
        # Comments, doctypes and CDATA are NavigableString subclasses
        if type(node) is not NavigableString:
            return ""
        text = re.sub(r"[ \t\r\f\v]+", " ", str(node))
        return html.escape(text, quote=False)

    if not isinstance(node, Tag):
        return ""

    inner = "".join(_render(child) for child in node.children)
    name = node.name

    if name == "br":
        return "\n"
    if name in HEADING_TAGS:
        inner = inner.strip()
        return f"\n\n<b>{inner}</b>\n\n" if inner else ""
    if name in PARAGRAPH_TAGS:
        return f"\n\n{inner.strip()}\n\n"
    if name == "li":
        return f"\n• {inner.strip()}"
    if name in ("ul", "ol"):
        return f"\n\n{inner.strip()}\n\n"
    if name == "a":
        href = node.get("href")
        if href:
            return f'<a href="{html.escape(href, quote=True)}">{inner}</a>'
        return inner
    if name in INLINE_TAGS:
        tag = INLINE_TAGS[name]
        return f"<{tag}>{inner}</{tag}>" if inner.strip() else ""
    return inner


def normalize_markup(text: str) -> str:
    """Rewrite generated HTML into Telegram's supported subset.

    Headings become bold paragraphs, paragraphs are separated by blank lines,
    unsupported tags are unwrapped and bare text is entity-escaped.
    """
    soup = BeautifulSoup(text, "html.parser")
    rendered = "".join(_render(child) for child in soup.children)
    rendered = re.sub(r"[ \t]*\n[ \t]*", "\n", rendered)
    rendered = re.sub(r"\n{3,}", "\n\n", rendered)
    return rendered.strip()


def strip_markup(text: str) -> str:
    """Plain-text version of a Telegram HTML message."""
    plain = BeautifulSoup(text, "html.parser").get_text()
    return plain.replace("\xa0", " ").strip()


def _open_tags(
    text: str, stack: list[tuple[str, str]] | None = None
) -> list[tuple[str, str]]:
    """Tags left open after ``text``, outermost first, as (name, opening tag)."""
    open_tags = list(stack or [])
    for match in TAG_PATTERN.finditer(text):
        closing, name = match.group(1), match.group(2).lower()
        if not closing:
            open_tags.append((name, match.group(0)))
            continue
        for position in range(len(open_tags) - 1, -1, -1):
            if open_tags[position][0] == name:
                del open_tags[position]
                break
    return open_tags


def _render_chunk(opening: list[tuple[str, str]], body: str) -> str:
    """Reopen the carried-over tags before ``body`` and close whatever is left open."""
    prefix = "".join(tag for _, tag in opening)
    closers = "".join(f"</{name}>" for name, _ in reversed(_open_tags(body, opening)))
    return f"{prefix}{body}{closers}"


def _safe_cut(text: str, limit: int) -> str:
    """Prefix of at most ``limit`` chars that does not end inside a tag or entity."""
    cut = text[: max(limit, 0)]
    tag_start = cut.rfind("<")
    if tag_start > cut.rfind(">"):
        cut = cut[:tag_start]
    entity_start = cut.rfind("&")
    if entity_start != -1 and PARTIAL_ENTITY.fullmatch(cut[entity_start:]):
        cut = cut[:entity_start]
    return cut


def _truncate(unit: str, opening: list[tuple[str, str]], max_length: int) -> str:
    if max_length <= len(ELLIPSIS):
        return ELLIPSIS[:max_length]
    budget = max_length - len(ELLIPSIS)
    while True:
        limit = budget - sum(len(tag) for _, tag in opening)
        if limit <= 0 and opening:
            # carried-over tags alone do not fit; drop them
            opening = []
            continue
        chunk = _render_chunk(opening, _safe_cut(unit, limit).rstrip() + ELLIPSIS)
        if len(chunk) <= max_length:
            return chunk
        budget -= len(chunk) - max_length


def split_message_smart(text: str, max_length: int) -> list[str]:
    """Greedy paragraph-then-sentence packing into chunks of at most max_length.

    Paragraphs are separated by blank lines; an oversize paragraph is broken on
    sentence ends, and a single sentence that still does not fit is cut with an
    ellipsis, never inside a tag or entity. Tags left open at the end of a chunk
    are closed there and reopened at the start of the next one. Deterministic,
    and never returns a chunk longer than max_length.
    """
    if len(text) <= max_length:
        return [text] if text.strip() else []

    chunks: list[str] = []
    opening: list[tuple[str, str]] = []
    current = ""

    def flush() -> None:
        nonlocal current, opening
        body = current.strip()
        if body:
            chunks.append(_render_chunk(opening, body))
            opening = _open_tags(body, opening)
        current = ""

    def add(unit: str, separator: str) -> None:
        nonlocal current, opening
        unit = unit.strip()
        candidate = f"{current}{separator}{unit}" if current else unit
        if len(_render_chunk(opening, candidate)) <= max_length:
            current = candidate
            return
        flush()
        if len(_render_chunk(opening, unit)) <= max_length:
            current = unit
            return
        chunks.append(_truncate(unit, opening, max_length))
        opening = _open_tags(unit, opening)

    for paragraph in text.split("\n\n"):
        if not paragraph.strip():
            continue
        if len(paragraph) > max_length:
            for sentence in SENTENCE_SPLIT.split(paragraph):
                sentence = sentence.strip()
                if not sentence:
                    continue
                if sentence[-1] not in ".!?":
                    sentence += "."
                add(sentence, " ")
        else:
            add(paragraph, "\n\n")

    flush()
    return [chunk for chunk in chunks if chunk.strip()]


class MessageFormatter:
    """Turns raw model output into ordered Telegram-sized chunks."""

    def __init__(self, limits: RelayLimits | None = None, execution_id: str | None = None):
        self.limits = limits or RelayLimits()
        self.logger = create_execution_logger("message_formatter", execution_id)

    def format(self, raw_generated: str) -> list[str]:
        """Strip fences, normalize markup and split into safe-length chunks."""
        cleaned = normalize_markup(strip_code_fence(raw_generated))
        chunks = split_message_smart(cleaned, self.limits.safe_message_length)
        self.logger.info(
            "Formatted article into messages",
            original_length=len(raw_generated),
            formatted_length=len(cleaned),
            chunk_count=len(chunks),
        )
        return chunks
