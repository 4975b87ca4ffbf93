"""Downstream consumers that drain the watcher's streams."""

import asyncio
import logging
from collections.abc import Callable
from typing import TypeVar

from brc20_watcher.core.broadcast import Subscription
from brc20_watcher.core.shutdown import ShutdownCoordinator
from brc20_watcher.core.types import BlockStats, ChainState, FeeEstimate

T = TypeVar("T")

logger = logging.getLogger(__name__)


def log_chain_state(chain_state: ChainState) -> None:
    logger.info(
        "new_block_received",
        extra={
            "height": chain_state.height,
            "chain": chain_state.chain,
            "best_block_hash": chain_state.best_block_hash,
            "verification_progress": chain_state.verification_progress,
        },
    )


def log_block_stats(block_stats: BlockStats) -> None:
    logger.info(
        "block_stats_received",
        extra={
            "height": block_stats.height,
            "txs": block_stats.txs,
            "total_fee": block_stats.total_fee,
            "median_fee": block_stats.median_fee,
            "avg_fee_rate": block_stats.avg_fee_rate,
        },
    )


def log_fee_estimate(fee_estimate: FeeEstimate) -> None:
    logger.info(
        "fee_estimate_received",
        extra={
            "hour_fee": fee_estimate.hour_fee,
            "half_hour_fee": fee_estimate.half_hour_fee,
            "fastest_fee": fee_estimate.fastest_fee,
        },
    )


async def drain_subscription(
    subscription: Subscription[T], *handlers: Callable[[T], None]
) -> int:
    """Hand every value to `handlers` until the channel closes; return the count."""

    received = 0
    try:
        async for value in subscription:
            received += 1
            for handler in handlers:
                handler(value)
    finally:
        if subscription.dropped:
            logger.info(
                "subscription_lagged",
                extra={"dropped": subscription.dropped, "received": received},
            )
        subscription.unsubscribe()
    return received


async def drain_queue(
    queue: "asyncio.Queue[T]",
    shutdown: ShutdownCoordinator,
    *handlers: Callable[[T], None],
) -> int:
    """Hand queued values to `handlers` until shutdown; return the count.

    Values already queued when shutdown fires are still handed over.
    """

    received = 0
    shutdown_task = asyncio.ensure_future(shutdown.wait())
    get_task: asyncio.Future[T] | None = None
    try:
        while True:
            get_task = asyncio.ensure_future(queue.get())
            done, _ = await asyncio.wait(
                {get_task, shutdown_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
            if get_task not in done:
                break

            value = get_task.result()
            get_task = None
            received += 1
            for handler in handlers:
                handler(value)
    finally:
        shutdown_task.cancel()
        if get_task is not None:
            get_task.cancel()

    while not queue.empty():
        value = queue.get_nowait()
        received += 1
        for handler in handlers:
            handler(value)
    return received
