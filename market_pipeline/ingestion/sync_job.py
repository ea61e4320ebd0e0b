"""
Sequential Sync Job

Runs a per-item handler over many items one after another with a fixed pause
between successive items, so a multi-SKU sync never fans out requests against
a provider.
"""

import asyncio
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

import structlog

from market_pipeline.config import get_settings

logger = structlog.get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")


async def run_sequential_sync(
    items: Sequence[T],
    handler: Callable[[T], Awaitable[R]],
    delay_seconds: Optional[float] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> List[R]:
    """
    Await handler(item) for each item in order.

    Args:
        items: Work items, processed in the given order
        handler: Coroutine function run once per item
        delay_seconds: Pause between items (settings request_delay_ms by default)
        sleep: Sleep coroutine, replaceable in tests

    Returns:
        Handler results in item order

    A handler exception stops the job and propagates; items already handled
    keep their writes.
    """
    if delay_seconds is None:
        delay_seconds = get_settings().ingestion.request_delay_seconds

    results: List[R] = []
    for index, item in enumerate(items):
        if index > 0 and delay_seconds > 0:
            await sleep(delay_seconds)

        try:
            results.append(await handler(item))
        except Exception as e:
            logger.error(
                "Sync job aborted",
                item=repr(item),
                completed=index,
                total=len(items),
                error=str(e),
            )
            raise

    logger.info("Sync job complete", items=len(items), delay_seconds=delay_seconds)
    return results
