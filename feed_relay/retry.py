"""Exponential backoff retry helper."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from .logging_config import ExecutionLogger

T = TypeVar("T")


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int,
    base_delay: float,
    logger: ExecutionLogger | None = None,
    operation_name: str = "operation",
) -> T:
    """Run ``operation`` until it succeeds or ``max_attempts`` is exhausted.

    Waits ``base_delay * 2 ** (attempt - 1)`` seconds between attempts and
    re-raises the last error once attempts run out.
    """
    attempts = max(1, max_attempts)
    attempt = 0

    while True:
        attempt += 1
        try:
            return await operation()
        except Exception as e:
            if logger:
                logger.warning(
                    f"{operation_name} attempt {attempt}/{attempts} failed: {e}",
                    attempt=attempt,
                    max_attempts=attempts,
                    error=str(e),
                )
            if attempt >= attempts:
                raise

        wait_time = base_delay * 2 ** (attempt - 1)
        if logger:
            logger.debug(f"Waiting {wait_time}s before retry", backoff_time=wait_time)
        await asyncio.sleep(wait_time)
