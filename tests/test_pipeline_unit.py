"""Unit tests for the check-cycle controller."""

from unittest.mock import AsyncMock, Mock

import pytest

from feed_relay.errors import ErrorCode, FeedError, GenerationError, StorageError
from feed_relay.models import (
    CycleState,
    DedupCheck,
    DeliveryReport,
    DeliveryStatus,
    FeedItem,
    PublishResult,
    RewriteResult,
    RewriteStrategy,
)
from feed_relay.pipeline import RelayPipeline, get_operational_stats

FEED_URL = "https://example.com/feed"
ARTICLE = "<h1>عنوان</h1><p>نص</p>"


def delivered(count, status=DeliveryStatus.SUCCESS):
    return [DeliveryReport(index=i, status=status) for i in range(count)]


class TestRelayPipelineUnit:
    """Unit tests for RelayPipeline.run_check_cycle with mocked components."""

    def setup_method(self):
        self.item = FeedItem(
            title="Story", link="https://example.com/story", guid="g1"
        )
        self.feed_processor = Mock()
        self.feed_processor.fetch_latest_item = AsyncMock(return_value=self.item)

        self.deduplicator = Mock()
        self.deduplicator.generate_item_id = Mock(return_value="g1")
        self.deduplicator.is_new = AsyncMock(return_value=DedupCheck(is_new=True))
        self.deduplicator.mark_processed = AsyncMock()
        self.deduplicator.record_last_check = AsyncMock()

        self.rewrite_engine = Mock()
        self.rewrite_engine.rewrite = AsyncMock(
            return_value=RewriteResult(ARTICLE, RewriteStrategy.URL_CONTEXT)
        )

        self.formatter = Mock()
        self.formatter.format = Mock(return_value=["chunk 1", "chunk 2"])

        self.telegram = Mock()
        self.telegram.deliver = AsyncMock(return_value=delivered(2))

    def build(self, telegraph=None):
        return RelayPipeline(
            feed_url=FEED_URL,
            feed_processor=self.feed_processor,
            deduplicator=self.deduplicator,
            rewrite_engine=self.rewrite_engine,
            formatter=self.formatter,
            telegram=self.telegram,
            telegraph=telegraph,
            execution_id="test-exec",
        )

    @pytest.mark.asyncio
    async def test_new_item_is_processed_and_marked(self):
        result = await self.build().run_check_cycle()

        assert result.status == "success"
        assert result.state is CycleState.DONE
        assert result.item_id == "g1"
        assert result.strategy is RewriteStrategy.URL_CONTEXT
        assert result.transitions == [
            CycleState.FETCHING,
            CycleState.PARSED,
            CycleState.GENERATING,
            CycleState.GENERATED,
            CycleState.FORMATTING,
            CycleState.DELIVERING,
            CycleState.DONE,
        ]
        self.feed_processor.fetch_latest_item.assert_awaited_once_with(FEED_URL)
        self.deduplicator.is_new.assert_awaited_once_with("g1")
        self.telegram.deliver.assert_awaited_once_with(["chunk 1", "chunk 2"])
        self.deduplicator.mark_processed.assert_awaited_once_with("g1", ARTICLE)

        data = result.to_dict()
        assert data["status"] == "success"
        assert data["strategy"] == "url_context"
        assert len(data["telegram_results"]) == 2

    @pytest.mark.asyncio
    async def test_reaches_generating_with_guid_as_item_id(self):
        states_at_rewrite = []

        async def rewrite(item, on_fallback=None):
            states_at_rewrite.append(item.guid)
            raise GenerationError("down", ErrorCode.API_ERROR)

        self.rewrite_engine.rewrite = rewrite

        result = await self.build().run_check_cycle()

        assert states_at_rewrite == ["g1"]
        assert CycleState.GENERATING in result.transitions
        assert result.item_id == "g1"
        assert result.status == "error"
        assert result.code == "API_ERROR"
        self.deduplicator.mark_processed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_extraction_fallback_transition(self):
        async def rewrite(item, on_fallback=None):
            on_fallback()
            return RewriteResult(ARTICLE, RewriteStrategy.EXTRACTION)

        self.rewrite_engine.rewrite = rewrite

        result = await self.build().run_check_cycle()

        assert result.status == "success"
        assert result.strategy is RewriteStrategy.EXTRACTION
        generating = result.transitions.index(CycleState.GENERATING)
        assert result.transitions[generating + 1] is CycleState.EXTRACTING

    @pytest.mark.asyncio
    async def test_duplicate_item_skipped(self):
        self.deduplicator.is_new = AsyncMock(
            return_value=DedupCheck(is_new=False, prior_output="old")
        )

        result = await self.build().run_check_cycle()

        assert result.status == "success"
        assert result.state is CycleState.DUPLICATE
        assert result.to_dict()["state"] == "DUPLICATE"
        assert result.message == "Item already processed"
        self.rewrite_engine.rewrite.assert_not_awaited()
        self.telegram.deliver.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_feed(self):
        self.feed_processor.fetch_latest_item = AsyncMock(return_value=None)

        result = await self.build().run_check_cycle()

        assert result.status == "success"
        assert result.state is CycleState.DONE
        assert result.to_dict()["message"] == "No items found"

    @pytest.mark.asyncio
    async def test_feed_error_is_reported_with_code(self):
        self.feed_processor.fetch_latest_item = AsyncMock(
            side_effect=FeedError("HTTP 503", ErrorCode.HTTP_ERROR)
        )

        result = await self.build().run_check_cycle()

        assert result.status == "error"
        assert result.state is CycleState.ERROR
        assert result.to_dict()["code"] == "HTTP_ERROR"

    @pytest.mark.asyncio
    async def test_invalid_link_fails_validation(self):
        self.item.link = "ftp://example.com/story"

        result = await self.build().run_check_cycle()

        assert result.code == "INVALID_URL"
        self.rewrite_engine.rewrite.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_nothing_delivered_leaves_item_unmarked(self):
        self.telegram.deliver = AsyncMock(
            return_value=delivered(2, DeliveryStatus.FAILED)
        )

        result = await self.build().run_check_cycle()

        assert result.status == "error"
        assert result.code == "DELIVERY_FAILED"
        self.deduplicator.mark_processed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_partial_delivery_marks_item(self):
        self.telegram.deliver = AsyncMock(
            return_value=[
                DeliveryReport(index=0, status=DeliveryStatus.SUCCESS),
                DeliveryReport(index=1, status=DeliveryStatus.ERROR),
            ]
        )

        result = await self.build().run_check_cycle()

        assert result.status == "success"
        self.deduplicator.mark_processed.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unexpected_exception_never_escapes(self):
        self.formatter.format = Mock(side_effect=RuntimeError("boom"))

        result = await self.build().run_check_cycle()

        assert result.status == "error"
        assert result.code == "UNKNOWN_ERROR"
        assert result.error == "boom"

    @pytest.mark.asyncio
    async def test_telegraph_runs_alongside_delivery(self):
        telegraph = Mock()
        telegraph.publish = AsyncMock(
            return_value=PublishResult(success=False, error="ACCESS_TOKEN_INVALID")
        )

        result = await self.build(telegraph).run_check_cycle()

        assert result.status == "success"
        telegraph.publish.assert_awaited_once_with(ARTICLE, "Story")
        assert result.to_dict()["site_result"]["success"] is False


class TestOperationalStatsUnit:
    """Unit tests for get_operational_stats."""

    @pytest.mark.asyncio
    async def test_stats(self):
        deduplicator = Mock()
        deduplicator.count_processed = AsyncMock(return_value=7)
        deduplicator.get_last_check = AsyncMock(return_value="2024-01-01T00:00:00+00:00")

        stats = await get_operational_stats(deduplicator)

        assert stats["status"] == "operational"
        assert stats["storage_stats"] == {
            "processed_items": 7,
            "last_check": "2024-01-01T00:00:00+00:00",
        }

    @pytest.mark.asyncio
    async def test_stats_unavailable(self):
        deduplicator = Mock()
        deduplicator.count_processed = AsyncMock(side_effect=StorageError("denied"))

        stats = await get_operational_stats(deduplicator)

        assert stats["storage_stats"] == {"error": "Stats unavailable"}
