"""Check-cycle controller: feed -> dedup -> rewrite -> format -> deliver -> mark."""

import asyncio
import time
from datetime import UTC, datetime
from typing import Any

from .dedup import Deduplicator
from .errors import DeliveryError, ErrorCode, RelayError, StorageError
from .formatter import MessageFormatter
from .logging_config import ExecutionLogger, create_execution_logger
from .models import CycleResult, CycleState, DeliveryStatus
from .rewrite import RewriteEngine
from .rss import FeedProcessor, validate_item
from .telegram import TelegramPublisher
from .telegraph import TelegraphPublisher


class RelayPipeline:
    """Runs one check cycle for a single feed.

    Build one instance per invocation; the dedup store is the only state
    shared between concurrent cycles.
    """

    def __init__(
        self,
        feed_url: str,
        feed_processor: FeedProcessor,
        deduplicator: Deduplicator,
        rewrite_engine: RewriteEngine,
        formatter: MessageFormatter,
        telegram: TelegramPublisher,
        telegraph: TelegraphPublisher | None = None,
        execution_id: str | None = None,
    ):
        self.feed_url = feed_url
        self.feed_processor = feed_processor
        self.deduplicator = deduplicator
        self.rewrite_engine = rewrite_engine
        self.formatter = formatter
        self.telegram = telegram
        self.telegraph = telegraph
        self.logger = create_execution_logger("pipeline", execution_id)

    async def run_check_cycle(self) -> CycleResult:
        """Process the newest feed item, if it has not been handled yet.

        Never raises; failures come back as ``status == "error"`` with a code.
        The item is marked processed only after a successful rewrite and at
        least one delivered chunk.
        """
        start_time = time.monotonic()
        result = CycleResult(status="error", state=CycleState.FETCHING)

        def transition(state: CycleState) -> None:
            result.state = state
            result.transitions.append(state)
            self.logger.log_state(state.value, item_id=result.item_id)

        def finish(status: str, state: CycleState, **fields) -> CycleResult:
            result.status = status
            for name, value in fields.items():
                setattr(result, name, value)
            transition(state)
            result.processing_time_ms = int((time.monotonic() - start_time) * 1000)
            self.logger.info(
                f"RSS check completed in {result.processing_time_ms}ms",
                cycle_status=status,
                item_id=result.item_id,
                processing_time_ms=result.processing_time_ms,
            )
            return result

        try:
            transition(CycleState.FETCHING)
            await self.deduplicator.record_last_check()
            item = await self.feed_processor.fetch_latest_item(self.feed_url)
            if item is None:
                return finish("success", CycleState.DONE, message="No items found")

            transition(CycleState.PARSED)
            result.item_title = item.title
            result.item_id = self.deduplicator.generate_item_id(item)

            check = await self.deduplicator.is_new(result.item_id)
            if not check.is_new:
                self.logger.info("Item already processed", item_id=result.item_id)
                return finish(
                    "success", CycleState.DUPLICATE, message="Item already processed"
                )

            transition(CycleState.GENERATING)
            validate_item(item)
            rewrite = await self.rewrite_engine.rewrite(
                item, on_fallback=lambda: transition(CycleState.EXTRACTING)
            )
            result.strategy = rewrite.strategy
            result.content_length = len(rewrite.text)
            transition(CycleState.GENERATED)

            transition(CycleState.FORMATTING)
            chunks = self.formatter.format(rewrite.text)
            if not chunks:
                raise DeliveryError("Generated article is empty after formatting")

            transition(CycleState.DELIVERING)
            if self.telegraph is not None:
                result.delivery, result.publish = await asyncio.gather(
                    self.telegram.deliver(chunks),
                    self.telegraph.publish(rewrite.text, item.title),
                )
            else:
                result.delivery = await self.telegram.deliver(chunks)

            delivered = sum(
                1 for report in result.delivery if report.status is DeliveryStatus.SUCCESS
            )
            if delivered == 0:
                raise DeliveryError(
                    f"None of {len(chunks)} messages were delivered",
                    ErrorCode.DELIVERY_FAILED,
                )

            await self.deduplicator.mark_processed(result.item_id, rewrite.text)
            return finish("success", CycleState.DONE)

        except RelayError as e:
            self.logger.error(
                f"RSS check failed: {e}",
                item_id=result.item_id,
                error=str(e),
                code=e.code.value,
                failed_state=result.state.value,
            )
            return finish("error", CycleState.ERROR, error=str(e), code=e.code.value)
        except Exception as e:
            self.logger.error(
                f"RSS check failed with unexpected error: {e}",
                item_id=result.item_id,
                error=str(e),
                failed_state=result.state.value,
            )
            return finish(
                "error",
                CycleState.ERROR,
                error=str(e),
                code=ErrorCode.UNKNOWN_ERROR.value,
            )

    async def get_operational_stats(self) -> dict[str, Any]:
        """Operational stats from this pipeline's dedup store."""
        return await get_operational_stats(self.deduplicator, self.logger)


async def get_operational_stats(
    deduplicator: Deduplicator, logger: ExecutionLogger | None = None
) -> dict[str, Any]:
    """Processed-item count and last-check time from the dedup store."""
    try:
        storage_stats: dict[str, Any] = {
            "processed_items": await deduplicator.count_processed(),
            "last_check": await deduplicator.get_last_check(),
        }
    except StorageError as e:
        if logger:
            logger.warning(f"Could not get storage stats: {e}", error=str(e))
        storage_stats = {"error": "Stats unavailable"}

    return {
        "status": "operational",
        "timestamp": datetime.now(UTC).isoformat(),
        "storage_stats": storage_stats,
    }
