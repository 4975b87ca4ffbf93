"""FastAPI status surface exposing health, version and the latest observed values."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request

from brc20_watcher.core.config import Settings, get_settings
from brc20_watcher.services.api.status import StatusBoard

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, board: StatusBoard | None = None) -> FastAPI:
    """Build the app around `board`, which the watcher's consumers keep current."""

    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "api_startup",
            extra={"service": "api", "env": settings.ENV, "version": settings.VERSION},
        )
        yield
        logger.info("api_shutdown")

    app = FastAPI(title=settings.APP_NAME, version=settings.VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.board = board or StatusBoard()

    @app.get("/health")
    def health() -> dict[str, str]:
        """Return process liveness status."""

        return {"status": "ok"}

    @app.get("/version")
    def version() -> dict[str, str]:
        return {
            "name": settings.APP_NAME,
            "version": settings.VERSION,
            "env": settings.ENV,
        }

    @app.get("/status")
    def status(request: Request) -> dict[str, Any]:
        """Return the latest chain state, block stats and fee estimate received."""

        return request.app.state.board.snapshot()

    return app
