"""Data models for the RSS Arabic relay."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


@dataclass
class FeedItem:
    """Represents a single RSS/Atom feed item."""

    title: str | None = None
    link: str | None = None
    description: str | None = None
    published_at: str | None = None
    guid: str | None = None
    author: str | None = None
    published: datetime | None = None


@dataclass
class DedupCheck:
    """Outcome of a dedup store lookup."""

    is_new: bool
    prior_output: str | None = None


@dataclass
class ProcessedRecord:
    """Value persisted under ``processed_item_<item_id>``."""

    item_id: str
    processed_at: str
    generated_content: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed_at": self.processed_at,
            "item_id": self.item_id,
            "generatedContent": self.generated_content,
        }


class RewriteStrategy(str, Enum):
    """Which generation strategy produced the article."""

    URL_CONTEXT = "url_context"
    EXTRACTION = "extraction"


@dataclass
class RewriteResult:
    """Generated article body and the strategy that produced it."""

    text: str
    strategy: RewriteStrategy


class DeliveryStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    ERROR = "error"


@dataclass
class DeliveryReport:
    """Outcome of sending one chunk."""

    index: int
    status: DeliveryStatus
    response_or_error: Any = None
    duration_ms: int = 0
    plain_text: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "message_index": self.index,
            "status": self.status.value,
            "response": self.response_or_error,
            "duration_ms": self.duration_ms,
            "plain_text": self.plain_text,
        }


@dataclass
class PublishResult:
    """Outcome of the optional Telegraph publish."""

    success: bool
    url: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "url": self.url, "error": self.error}


class CycleState(str, Enum):
    """States one check cycle moves through."""

    FETCHING = "FETCHING"
    PARSED = "PARSED"
    DUPLICATE = "DUPLICATE"
    GENERATING = "GENERATING"
    EXTRACTING = "EXTRACTING"
    GENERATED = "GENERATED"
    FORMATTING = "FORMATTING"
    DELIVERING = "DELIVERING"
    DONE = "DONE"
    ERROR = "ERROR"


@dataclass
class CycleResult:
    """Result of one ``run_check_cycle`` call."""

    status: str
    state: CycleState
    message: str | None = None
    item_id: str | None = None
    item_title: str | None = None
    error: str | None = None
    code: str | None = None
    strategy: RewriteStrategy | None = None
    content_length: int = 0
    delivery: list[DeliveryReport] = field(default_factory=list)
    publish: PublishResult | None = None
    processing_time_ms: int = 0
    transitions: list[CycleState] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "status": self.status,
            "state": self.state.value,
            "processing_time_ms": self.processing_time_ms,
        }
        if self.message:
            data["message"] = self.message
        if self.item_id:
            data["item_id"] = self.item_id
        if self.item_title:
            data["item_title"] = self.item_title
        if self.error:
            data["error"] = self.error
            data["code"] = self.code or "UNKNOWN_ERROR"
        if self.strategy:
            data["strategy"] = self.strategy.value
            data["content_length"] = self.content_length
        if self.delivery:
            data["telegram_results"] = [report.to_dict() for report in self.delivery]
        if self.publish:
            data["site_result"] = self.publish.to_dict()
        return data
