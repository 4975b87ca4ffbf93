"""One-shot cooperative shutdown signal shared by every polling loop."""

import asyncio
import logging
import signal

logger = logging.getLogger(__name__)


class ShutdownCoordinator:
    """Multi-waiter cancellation token that can be triggered once."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def triggered(self) -> bool:
        return self._event.is_set()

    def trigger(self, reason: str = "requested") -> bool:
        """Flip the signal and wake every waiter; later calls are no-ops."""

        if self._event.is_set():
            return False
        self.reason = reason
        logger.info("shutdown_triggered", extra={"reason": reason})
        self._event.set()
        return True

    async def wait(self) -> None:
        """Suspend until the signal has been triggered."""

        await self._event.wait()


def install_signal_handlers(shutdown: ShutdownCoordinator) -> None:
    """Trigger `shutdown` on SIGINT and SIGTERM."""

    loop = asyncio.get_running_loop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown.trigger, sig.name)
        except NotImplementedError:
            signal_name = sig.name
            signal.signal(
                sig,
                lambda *_, signal_name=signal_name: loop.call_soon_threadsafe(
                    shutdown.trigger, signal_name
                ),
            )
