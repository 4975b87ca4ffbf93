"""Run the status API inside the watcher's event loop until shutdown."""

import asyncio
import logging
import socket
from collections.abc import Iterator
from contextlib import contextmanager

import uvicorn
from fastapi import FastAPI

from brc20_watcher.core.shutdown import ShutdownCoordinator

logger = logging.getLogger(__name__)


class EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the host process."""

    def install_signal_handlers(self) -> None:
        return

    @contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


def _bind_socket(host: str, port: int) -> socket.socket:
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
    except OSError:
        sock.close()
        raise
    sock.setblocking(False)
    return sock


async def _serve(server: EmbeddedServer, sock: socket.socket) -> bool:
    """Run uvicorn on `sock`; False if it gave up during startup."""

    # uvicorn reports startup failures with sys.exit, which must not leave this task
    try:
        await server.serve(sockets=[sock])
    except SystemExit as exc:
        logger.error("status_api_failed", extra={"exit_code": exc.code})
        return False
    return True


async def serve_status_api(
    app: FastAPI, host: str, port: int, shutdown: ShutdownCoordinator
) -> bool:
    """Serve `app` until shutdown; False when the API could not start.

    A failure here only disables the status surface; the pollers keep running.
    """

    try:
        sock = _bind_socket(host, port)
    except OSError as exc:
        logger.error(
            "status_api_bind_failed",
            extra={"host": host, "port": port, "error": str(exc)},
        )
        return False

    server = EmbeddedServer(uvicorn.Config(app, log_config=None))
    serve_task = asyncio.ensure_future(_serve(server, sock))
    shutdown_task = asyncio.ensure_future(shutdown.wait())
    logger.info("status_api_serving", extra={"host": host, "port": port})
    try:
        await asyncio.wait({serve_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        shutdown_task.cancel()
        server.should_exit = True
    try:
        return await serve_task
    finally:
        sock.close()
