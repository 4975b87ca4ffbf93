"""Interval pollers that observe the node and fee service and fan results out.

Three loops run as independent asyncio tasks:

* `ChainStatePoller` publishes chain state to a broadcast channel, but only
  when the height advances past the last one it saw (the first value is
  always published as the baseline).
* `BlockStatsPoller` follows that channel to learn the latest height and
  fetches stats for it on its own interval.
* `FeePoller` pushes fee tiers onto an unbounded queue.

Every wait is raced against the shared `ShutdownCoordinator`. Fetch failures
are logged and skipped; the next tick simply tries again.
"""

import asyncio
import logging
from collections.abc import Coroutine
from dataclasses import dataclass
from typing import Any, Protocol

from brc20_watcher.core.broadcast import BroadcastChannel, Subscription
from brc20_watcher.core.errors import ChannelClosed
from brc20_watcher.core.shutdown import ShutdownCoordinator
from brc20_watcher.core.types import BlockStats, ChainState, FeeEstimate
from brc20_watcher.source.base import DataSource

logger = logging.getLogger(__name__)


class Ticker(Protocol):
    async def tick(self) -> None: ...


class IntervalTicker:
    """Fixed-interval timer whose first tick fires immediately.

    A late tick fires at once and the schedule restarts from that instant,
    so ticks missed during a slow fetch are not replayed in a burst.
    """

    def __init__(self, interval_s: float) -> None:
        if interval_s <= 0:
            raise ValueError("tick interval must be positive")
        self.interval_s = interval_s
        self._deadline: float | None = None

    async def tick(self) -> None:
        loop = asyncio.get_running_loop()
        if self._deadline is None:
            self._deadline = loop.time()

        delay = self._deadline - loop.time()
        if delay > 0:
            await asyncio.sleep(delay)
        self._deadline = max(self._deadline, loop.time()) + self.interval_s


class HeightFilter:
    """Baseline-then-strictly-increasing height gate.

    `last_height` is None until the first height is accepted; any first
    height, including 0, becomes the baseline.
    """

    def __init__(self) -> None:
        self.last_height: int | None = None

    def accept(self, height: int) -> bool:
        if self.last_height is not None and height <= self.last_height:
            return False
        self.last_height = height
        return True


async def wait_for_tick(ticker: Ticker, shutdown: ShutdownCoordinator) -> bool:
    """Race the next tick against shutdown; True means the tick won."""

    if shutdown.triggered:
        return False

    tick_task = asyncio.ensure_future(ticker.tick())
    shutdown_task = asyncio.ensure_future(shutdown.wait())
    try:
        done, _ = await asyncio.wait(
            {tick_task, shutdown_task},
            return_when=asyncio.FIRST_COMPLETED,
        )
    finally:
        _cancel_pending(tick_task, shutdown_task)

    if shutdown_task in done:
        return False
    tick_task.result()
    return True


def _cancel_pending(*tasks: asyncio.Future[Any] | None) -> None:
    for task in tasks:
        if task is None:
            continue
        if not task.done():
            task.cancel()
        elif not task.cancelled():
            # mark a result we are abandoning as retrieved
            task.exception()


class ChainStatePoller:
    """Publish chain state whenever the observed height advances."""

    def __init__(
        self,
        source: DataSource,
        ticker: Ticker,
        channel: BroadcastChannel[ChainState],
        shutdown: ShutdownCoordinator,
    ) -> None:
        self._source = source
        self._ticker = ticker
        self._channel = channel
        self._shutdown = shutdown
        self.height_filter = HeightFilter()
        self.published = 0

    async def run(self) -> None:
        logger.info("chain_state_poller_started")
        try:
            while await wait_for_tick(self._ticker, self._shutdown):
                await self.poll_once()
        finally:
            self._channel.close()
            logger.info("chain_state_poller_shutdown", extra={"published": self.published})

    async def poll_once(self) -> bool:
        """Fetch once and publish if the height is new; return whether it published."""

        try:
            chain_state = await self._source.fetch_chain_state()
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.warning("chain_state_fetch_failed", extra={"error": str(exc)})
            return False

        if not self.height_filter.accept(chain_state.height):
            logger.debug(
                "chain_state_unchanged",
                extra={"height": chain_state.height, "last_height": self.height_filter.last_height},
            )
            return False

        delivered = self._channel.send(chain_state)
        self.published += 1
        logger.info(
            "chain_state_published",
            extra={"height": chain_state.height, "subscribers": delivered},
        )
        return True


class BlockStatsPoller:
    """Fetch stats for the most recently received height on every tick."""

    def __init__(
        self,
        source: DataSource,
        ticker: Ticker,
        chain_states: Subscription[ChainState],
        channel: BroadcastChannel[BlockStats],
        shutdown: ShutdownCoordinator,
    ) -> None:
        self._source = source
        self._ticker = ticker
        self._chain_states = chain_states
        self._channel = channel
        self._shutdown = shutdown
        self.latest_height: int | None = None
        self.published = 0

    async def run(self) -> None:
        logger.info("block_stats_poller_started")
        shutdown_task = asyncio.ensure_future(self._shutdown.wait())
        recv_task: asyncio.Future[ChainState] | None = asyncio.ensure_future(
            self._chain_states.recv()
        )
        tick_task: asyncio.Future[None] | None = None
        try:
            while True:
                if tick_task is None:
                    tick_task = asyncio.ensure_future(self._ticker.tick())
                waiters: set[asyncio.Future[Any]] = {shutdown_task, tick_task}
                if recv_task is not None:
                    waiters.add(recv_task)

                done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
                if shutdown_task in done:
                    return

                # apply a height that arrived alongside the tick before using it
                if recv_task is not None and recv_task in done:
                    recv_task = self._apply_chain_state(recv_task)

                if tick_task in done:
                    tick_task.result()
                    tick_task = None
                    await self.poll_once()
        finally:
            _cancel_pending(shutdown_task, recv_task, tick_task)
            self._chain_states.unsubscribe()
            self._channel.close()
            logger.info("block_stats_poller_shutdown", extra={"published": self.published})

    def _apply_chain_state(
        self, recv_task: asyncio.Future[ChainState]
    ) -> asyncio.Future[ChainState] | None:
        try:
            chain_state = recv_task.result()
        except ChannelClosed:
            logger.info(
                "block_stats_upstream_closed",
                extra={"latest_height": self.latest_height},
            )
            return None

        self.latest_height = chain_state.height
        return asyncio.ensure_future(self._chain_states.recv())

    async def poll_once(self) -> bool:
        height = self.latest_height
        if height is None:
            return False

        try:
            block_stats = await self._source.fetch_block_stats(height)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "block_stats_fetch_failed",
                extra={"height": height, "error": str(exc)},
            )
            return False

        delivered = self._channel.send(block_stats)
        self.published += 1
        logger.info(
            "block_stats_published",
            extra={"height": block_stats.height, "subscribers": delivered},
        )
        return True


class FeePoller:
    """Push every successfully fetched fee estimate onto an unbounded queue."""

    def __init__(
        self,
        source: DataSource,
        ticker: Ticker,
        queue: "asyncio.Queue[FeeEstimate]",
        shutdown: ShutdownCoordinator,
    ) -> None:
        self._source = source
        self._ticker = ticker
        self._queue = queue
        self._shutdown = shutdown
        self.published = 0

    async def run(self) -> None:
        logger.info("fee_poller_started")
        try:
            while await wait_for_tick(self._ticker, self._shutdown):
                await self.poll_once()
        finally:
            logger.info("fee_poller_shutdown", extra={"published": self.published})

    async def poll_once(self) -> bool:
        try:
            estimate = await self._source.fetch_fee_estimate()
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.warning("fee_estimate_fetch_failed", extra={"error": str(exc)})
            return False

        self._queue.put_nowait(estimate)
        self.published += 1
        logger.debug("fee_estimate_published", extra={"queued": self._queue.qsize()})
        return True


class PollerGroup:
    """Owns spawned loop tasks and provides the join barrier used at shutdown."""

    def __init__(self) -> None:
        self._tasks: list[asyncio.Task[Any]] = []

    @property
    def tasks(self) -> tuple[asyncio.Task[Any], ...]:
        return tuple(self._tasks)

    def spawn(self, name: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.append(task)
        return task

    async def join(self, timeout_s: float | None = None) -> bool:
        """Wait for every task; cancel stragglers after `timeout_s`. True if all exited."""

        if not self._tasks:
            return True

        done, pending = await asyncio.wait(self._tasks, timeout=timeout_s)
        for task in pending:
            logger.warning("task_join_timeout", extra={"task": task.get_name()})
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        for task in done:
            if task.cancelled():
                continue
            exc = task.exception()
            if exc is not None:
                logger.error(
                    "task_failed",
                    extra={"task": task.get_name()},
                    exc_info=(type(exc), exc, exc.__traceback__),
                )
        return not pending


@dataclass(frozen=True, slots=True)
class WatcherStreams:
    """Consumer-facing outputs of the three pollers."""

    chain_states: BroadcastChannel[ChainState]
    block_stats: BroadcastChannel[BlockStats]
    fee_estimates: "asyncio.Queue[FeeEstimate]"


def spawn_pollers(
    group: PollerGroup,
    source: DataSource,
    shutdown: ShutdownCoordinator,
    block_interval_s: float,
    block_stats_interval_s: float,
    fee_interval_s: float,
    capacity: int,
) -> WatcherStreams:
    """Create the channels, start all three pollers and return their outputs.

    Subscribe consumers before the caller next awaits so they see the
    first published values.
    """

    streams = WatcherStreams(
        chain_states=BroadcastChannel(capacity, name="chain_states"),
        block_stats=BroadcastChannel(capacity, name="block_stats"),
        fee_estimates=asyncio.Queue(),
    )

    chain_poller = ChainStatePoller(
        source, IntervalTicker(block_interval_s), streams.chain_states, shutdown
    )
    stats_poller = BlockStatsPoller(
        source,
        IntervalTicker(block_stats_interval_s),
        streams.chain_states.subscribe(),
        streams.block_stats,
        shutdown,
    )
    fee_poller = FeePoller(source, IntervalTicker(fee_interval_s), streams.fee_estimates, shutdown)

    group.spawn("chain_state_poller", chain_poller.run())
    logger.info("chain_state_poller_spawned", extra={"interval_s": block_interval_s})
    group.spawn("block_stats_poller", stats_poller.run())
    logger.info("block_stats_poller_spawned", extra={"interval_s": block_stats_interval_s})
    group.spawn("fee_poller", fee_poller.run())
    logger.info("fee_poller_spawned", extra={"interval_s": fee_interval_s})
    return streams
