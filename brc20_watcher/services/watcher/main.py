"""Watcher process: poll the node and fee service, fan results out to consumers."""

import asyncio
import logging
from collections.abc import Callable

from brc20_watcher.core.config import Settings, get_settings
from brc20_watcher.core.logging import configure_logging
from brc20_watcher.core.shutdown import ShutdownCoordinator, install_signal_handlers
from brc20_watcher.services.api.main import create_app
from brc20_watcher.services.api.server import serve_status_api
from brc20_watcher.services.api.status import StatusBoard
from brc20_watcher.services.watcher.consumers import (
    drain_queue,
    drain_subscription,
    log_block_stats,
    log_chain_state,
    log_fee_estimate,
)
from brc20_watcher.services.watcher.pollers import PollerGroup, WatcherStreams, spawn_pollers
from brc20_watcher.source.bitcoin_client import BitcoinClient

_JOIN_GRACE_S = 1.0


def _spawn_consumers(
    group: PollerGroup,
    streams: WatcherStreams,
    shutdown: ShutdownCoordinator,
    board: StatusBoard | None,
) -> None:
    chain_handlers = [log_chain_state]
    stats_handlers = [log_block_stats]
    fee_handlers = [log_fee_estimate]
    if board is not None:
        chain_handlers.append(board.record_chain_state)
        stats_handlers.append(board.record_block_stats)
        fee_handlers.append(board.record_fee_estimate)

    group.spawn(
        "chain_state_consumer",
        drain_subscription(streams.chain_states.subscribe(), *chain_handlers),
    )
    group.spawn(
        "block_stats_consumer",
        drain_subscription(streams.block_stats.subscribe(), *stats_handlers),
    )
    group.spawn(
        "fee_estimate_consumer",
        drain_queue(streams.fee_estimates, shutdown, *fee_handlers),
    )


def _build_client(settings: Settings) -> BitcoinClient:
    return BitcoinClient(
        settings.rpc_url(),
        fee_api_url=settings.FEE_API_URL,
        auth=settings.rpc_auth(),
        timeout_s=settings.HTTP_TIMEOUT_S,
    )


async def _run(
    settings: Settings,
    client_factory: Callable[[Settings], BitcoinClient] = _build_client,
    shutdown: ShutdownCoordinator | None = None,
) -> int:
    logger = logging.getLogger(__name__)

    if not settings.rpc_url():
        logger.error("watcher_missing_rpc_url")
        return 1

    shutdown = shutdown or ShutdownCoordinator()
    install_signal_handlers(shutdown)

    client = client_factory(settings)
    logger.info(
        "watcher_startup",
        extra={
            "env": settings.ENV,
            "version": settings.VERSION,
            "block_interval_s": settings.block_interval(),
            "block_stats_interval_s": settings.block_stats_interval(),
            "fee_interval_s": settings.fee_interval(),
            "api_enabled": settings.API_ENABLED,
        },
    )

    group = PollerGroup()
    try:
        streams = spawn_pollers(
            group,
            client,
            shutdown,
            block_interval_s=settings.block_interval(),
            block_stats_interval_s=settings.block_stats_interval(),
            fee_interval_s=settings.fee_interval(),
            capacity=settings.broadcast_capacity(),
        )

        board = StatusBoard() if settings.API_ENABLED else None
        _spawn_consumers(group, streams, shutdown, board)
        if board is not None:
            group.spawn(
                "status_api",
                serve_status_api(
                    create_app(settings, board), settings.HOST, settings.PORT, shutdown
                ),
            )

        await shutdown.wait()
        clean = await group.join(timeout_s=settings.HTTP_TIMEOUT_S + _JOIN_GRACE_S)
    finally:
        shutdown.trigger("watcher_exit")
        await client.aclose()

    logger.info("watcher_shutdown", extra={"reason": shutdown.reason, "clean": clean})
    return 0


def main() -> int:
    """Run the watcher until interrupted."""

    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    try:
        return asyncio.run(_run(settings))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
